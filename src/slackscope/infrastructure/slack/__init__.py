"""Slack transports and auth routing."""

from slackscope.infrastructure.slack.auth_router import AuthRouter
from slackscope.infrastructure.slack.transport import (
    DelegatedTransport,
    ImpersonatedTransport,
    SlackTransport,
)

__all__ = [
    "AuthRouter",
    "DelegatedTransport",
    "ImpersonatedTransport",
    "SlackTransport",
]
