"""Outbound Slack transports.

Two variants share one ``execute(operation, params)`` interface:

- ``DelegatedTransport``: OAuth token sent as a bearer header to the Web API.
- ``ImpersonatedTransport``: browser session token in the form body plus the
  ``d`` session cookie, which also unlocks the edge ``client.*`` operations.

Both POST form-encoded bodies and unwrap the ``{"ok": ..., "error": ...}``
envelope into either the payload or a typed error.
"""

import ssl
from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from slackscope.config.models import SlackConfig
from slackscope.domain.entities.credential import (
    Credential,
    DelegatedCredential,
    ImpersonatedCredential,
)
from slackscope.domain.errors import RateLimitedError, UpstreamAuthError, UpstreamError
from slackscope.infrastructure.logging import get_logger, trace
from slackscope.infrastructure.rate_gate import RateGate, endpoint_class_for

logger = get_logger(__name__)

DEFAULT_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36"
)

# Used when the upstream throttles without a Retry-After header
DEFAULT_RETRY_AFTER = 1.0

AUTH_ERROR_CODES = frozenset(
    {
        "invalid_auth",
        "not_authed",
        "token_revoked",
        "token_expired",
        "account_inactive",
    }
)

RETRYABLE_ERROR_CODES = frozenset(
    {
        "internal_error",
        "fatal_error",
        "service_unavailable",
        "request_timeout",
    }
)


def encode_form(params: dict[str, Any] | None) -> dict[str, str]:
    """Flatten call parameters into form fields.

    None values are dropped and booleans are spelled ``true``/``false``.
    """
    form: dict[str, str] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            form[key] = "true" if value else "false"
        else:
            form[key] = str(value)
    return form


def parse_retry_after(value: str | None) -> float:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER


def build_ssl_context(config: SlackConfig) -> ssl.SSLContext | bool:
    """Build the TLS settings for outbound connections.

    Returns True to use aiohttp's defaults when nothing is overridden.
    """
    tls = config.tls
    if tls.verify and tls.ca_bundle is None and tls.ciphers is None:
        return True
    context = ssl.create_default_context(
        cafile=str(tls.ca_bundle) if tls.ca_bundle else None
    )
    if tls.ciphers:
        context.set_ciphers(tls.ciphers)
    if not tls.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class SlackTransport(ABC):
    """Base class for the credential-specific transports."""

    kind: str = ""

    def __init__(
        self,
        config: SlackConfig,
        rate_gate: RateGate,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._gate = rate_gate
        self._session = session
        self._owns_session = session is None
        self._api_url = _normalize_api_url(config.api_url)

    @property
    def api_url(self) -> str:
        """Return the base URL operations are appended to."""
        return self._api_url

    def set_routing_host(self, url: str) -> None:
        """Route subsequent calls through the workspace host.

        Args:
            url: Workspace URL returned by the identity handshake, for
                example ``https://acme.slack.com/``.
        """
        self._api_url = url.rstrip("/") + "/api/"
        logger.debug("Routing host set", api_url=self._api_url)

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Return the headers sent with every call."""

    @abstractmethod
    def _form(self, params: dict[str, Any] | None) -> dict[str, str]:
        """Return the form body for a call."""

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
            connector = aiohttp.TCPConnector(ssl=build_ssl_context(self._config))
            self._session = aiohttp.ClientSession(timeout=timeout, connector=connector)
        return self._session

    async def execute(
        self, operation: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Call an upstream operation and return its payload.

        Throttled calls are retried through the rate gate until the retry
        budget is exhausted.

        Args:
            operation: Logical operation name such as ``conversations.history``.
            params: Operation parameters.

        Returns:
            The decoded response envelope.

        Raises:
            RateLimitedError: If throttling persists or the gate's wait
                budget would be exceeded.
            UpstreamAuthError: If the credentials are rejected.
            UpstreamError: For any other non-ok response.
        """
        session = await self._ensure_session()
        endpoint_class = endpoint_class_for(operation)
        url = self._api_url + operation
        form = self._form(params)
        headers = self._headers()
        retry_after = DEFAULT_RETRY_AFTER

        for attempt in range(self._gate.max_retries + 1):
            await self._gate.acquire(endpoint_class)
            trace(
                __name__,
                "Calling upstream",
                operation=operation,
                transport=self.kind,
                attempt=attempt,
            )
            try:
                async with session.post(
                    url, data=form, headers=headers, proxy=self._config.proxy
                ) as response:
                    if response.status == 429:
                        retry_after = parse_retry_after(response.headers.get("Retry-After"))
                        self._gate.penalize(endpoint_class, retry_after)
                        continue
                    if response.status >= 500:
                        raise UpstreamError(
                            operation, f"http_{response.status}", retryable=True
                        )
                    payload = await response.json(content_type=None)
            except aiohttp.ClientError as e:
                raise UpstreamError(operation, f"connection_error: {e}", retryable=True) from e
            except ValueError as e:
                raise UpstreamError(operation, "invalid_response") from e

            if not isinstance(payload, dict):
                raise UpstreamError(operation, "invalid_response")
            if payload.get("ok"):
                return payload

            code = str(payload.get("error") or "unknown_error")
            if code == "ratelimited":
                self._gate.penalize(endpoint_class, retry_after)
                continue
            if code in AUTH_ERROR_CODES:
                raise UpstreamAuthError(operation, code)
            raise UpstreamError(operation, code, retryable=code in RETRYABLE_ERROR_CODES)

        raise RateLimitedError(endpoint_class.value, retry_after)

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


class DelegatedTransport(SlackTransport):
    """Web API transport authenticated with a bearer token."""

    kind = "delegated"

    def __init__(
        self,
        credential: DelegatedCredential,
        config: SlackConfig,
        rate_gate: RateGate,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__(config, rate_gate, session)
        self._credential = credential

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._credential.token}"}
        if self._config.user_agent:
            headers["User-Agent"] = self._config.user_agent
        return headers

    def _form(self, params: dict[str, Any] | None) -> dict[str, str]:
        return encode_form(params)


class ImpersonatedTransport(SlackTransport):
    """Session transport authenticated with a session token and cookie.

    The token travels in the form body and the cookie in the ``Cookie``
    header. No browser-only query parameters are attached.
    """

    kind = "impersonated"

    def __init__(
        self,
        credential: ImpersonatedCredential,
        config: SlackConfig,
        rate_gate: RateGate,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__(config, rate_gate, session)
        self._credential = credential

    def _headers(self) -> dict[str, str]:
        return {
            "Cookie": f"d={self._credential.session_cookie}",
            "User-Agent": self._config.user_agent or DEFAULT_BROWSER_USER_AGENT,
        }

    def _form(self, params: dict[str, Any] | None) -> dict[str, str]:
        return {"token": self._credential.token, **encode_form(params)}


def build_transport(
    credential: Credential,
    config: SlackConfig,
    rate_gate: RateGate,
    session: aiohttp.ClientSession | None = None,
) -> SlackTransport:
    """Build the transport variant matching a credential."""
    if isinstance(credential, DelegatedCredential):
        return DelegatedTransport(credential, config, rate_gate, session)
    return ImpersonatedTransport(credential, config, rate_gate, session)


def _normalize_api_url(url: str) -> str:
    return url if url.endswith("/") else url + "/"
