"""Logging infrastructure module."""

from slackscope.infrastructure.logging.setup import TRACE, get_logger, setup_logging, trace

__all__ = ["TRACE", "get_logger", "setup_logging", "trace"]
