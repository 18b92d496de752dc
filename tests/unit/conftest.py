"""Shared fixtures: a fake Slack Web API served by aiohttp."""

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
import structlog
from aiohttp import web
from aiohttp.test_utils import TestServer

from slackscope.config.models import RateLimitConfig, SlackConfig
from slackscope.infrastructure.rate_gate import RateGate

Responder = Callable[[dict[str, str]], dict[str, Any] | web.Response]


@dataclass
class RecordedCall:
    """One request received by the fake upstream."""

    operation: str
    form: dict[str, str]
    headers: dict[str, str]
    query: dict[str, str]
    content_type: str


@dataclass
class FakeSlack:
    """Fake Slack Web API.

    Responses are registered per operation, either as a fixed payload or
    as a callable receiving the decoded form. A list of payloads is served
    one per call, repeating the last one.
    """

    base_url: str = ""
    calls: list[RecordedCall] = field(default_factory=list)
    responses: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.app = web.Application()
        self.app.router.add_post("/api/{operation}", self._handle)

    @property
    def api_url(self) -> str:
        return self.base_url + "api/"

    def on(self, operation: str, response: Any) -> None:
        self.responses[operation] = response

    def calls_to(self, operation: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.operation == operation]

    def default_auth(self, **overrides: Any) -> dict[str, Any]:
        return {
            "ok": True,
            "url": self.base_url,
            "team": "Acme",
            "user": "alice",
            "team_id": "T1",
            "user_id": "U1",
            **overrides,
        }

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        operation = request.match_info["operation"]
        form = {k: v for k, v in (await request.post()).items() if isinstance(v, str)}
        self.calls.append(
            RecordedCall(
                operation=operation,
                form=form,
                headers=dict(request.headers),
                query=dict(request.query),
                content_type=request.content_type,
            )
        )
        response = self.responses.get(operation)
        if response is None and operation == "auth.test":
            response = self.default_auth()
        if response is None:
            return web.json_response({"ok": False, "error": "unknown_method"})
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if callable(response):
            response = response(form)
        if isinstance(response, web.StreamResponse):
            return response
        return web.json_response(response)


@pytest.fixture
async def fake_slack() -> AsyncIterator[FakeSlack]:
    slack = FakeSlack()
    server = TestServer(slack.app)
    await server.start_server()
    slack.base_url = str(server.make_url("/"))
    yield slack
    await server.close()


@pytest.fixture
def rate_gate() -> RateGate:
    """A gate generous enough not to delay tests."""
    return RateGate(
        RateLimitConfig(tier2=60000, tier3=60000, tier4=60000, max_wait=5.0, max_retries=2)
    )


@pytest.fixture
def delegated_config(fake_slack: FakeSlack) -> SlackConfig:
    return SlackConfig(xoxp_token="xoxp-test", api_url=fake_slack.api_url)


@pytest.fixture
def impersonated_config(fake_slack: FakeSlack) -> SlackConfig:
    return SlackConfig(
        xoxc_token="xoxc-test", xoxd_token="xoxd-cookie", api_url=fake_slack.api_url
    )


@pytest.fixture
def logger() -> structlog.BoundLogger:
    return structlog.get_logger()
