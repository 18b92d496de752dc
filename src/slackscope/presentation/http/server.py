"""HTTP server exposing conversation queries and directory listings."""

import json
import math
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from aiohttp import web
from pydantic import BaseModel, ValidationError

from slackscope.application.services.conversation_engine import ConversationEngine
from slackscope.application.services.directory_lister import DirectoryLister
from slackscope.application.services.metadata_cache import MetadataCache
from slackscope.config.models import QueryConfig, ServerConfig
from slackscope.domain.entities.directory import Collection
from slackscope.domain.entities.query import (
    ChannelListQuery,
    ConversationQuery,
    EmojiListQuery,
    SearchQuery,
    UserListQuery,
)
from slackscope.domain.errors import (
    NotFoundError,
    NotReadyError,
    QueryValidationError,
    RateLimitedError,
    SlackscopeError,
    UpstreamAuthError,
    UpstreamError,
)
from slackscope.presentation.formatter import (
    render_directory_page,
    render_query_result,
    render_search_result,
)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]
T = TypeVar("T", bound=BaseModel)

# Collections that must be populated before the service reports ready
REQUIRED_COLLECTIONS = (Collection.USERS, Collection.CHANNELS)


def error_status(error: SlackscopeError) -> int:
    """Return the HTTP status for a core error."""
    if isinstance(error, QueryValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, NotReadyError):
        return 503
    if isinstance(error, RateLimitedError):
        return 429
    if isinstance(error, UpstreamAuthError):
        return 401
    if isinstance(error, UpstreamError):
        return 502
    return 500


class HTTPServer:
    """HTTP server for conversation queries and health checks.

    This server provides endpoints for:
    - GET /healthz: Liveness check
    - GET /readyz: Directory readiness
    - POST /api/v1/conversations/history: Channel history as CSV
    - POST /api/v1/conversations/replies: Thread replies as CSV
    - POST /api/v1/search/messages: Message search as CSV
    - POST /api/v1/channels/list: Channel directory as CSV
    - POST /api/v1/users/list: User directory as CSV
    - POST /api/v1/emoji/list: Emoji directory as CSV

    Args:
        config: Server configuration containing host and port.
        query_config: Defaults applied to incoming queries.
        engine: Engine executing the queries.
        cache: Directory cache reported by the readiness check and listed by
            the directory endpoints.
        logger: Structured logger for logging.
    """

    def __init__(
        self,
        config: ServerConfig,
        query_config: QueryConfig,
        engine: ConversationEngine,
        cache: MetadataCache,
        logger: structlog.BoundLogger,
    ) -> None:
        self.config = config
        self._query_config = query_config
        self._engine = engine
        self._cache = cache
        self._lister = DirectoryLister(cache)
        self._logger = logger
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def is_running(self) -> bool:
        """Return True if the server is running."""
        return self._site is not None

    @property
    def actual_port(self) -> int:
        """Return the actual port the server is listening on.

        This is useful when port 0 is configured to get a random port.

        Raises:
            RuntimeError: If the server is not running.
        """
        if self._site is None:
            raise RuntimeError("Server is not running")
        # aiohttp does not expose the bound socket on TCPSite
        server = getattr(self._site, "_server", None)
        if server is None:
            raise RuntimeError("Server is not running")
        sockets = getattr(server, "sockets", None)
        if sockets:
            return sockets[0].getsockname()[1]
        raise RuntimeError("No sockets available")

    def create_app(self) -> web.Application:
        """Create and return the aiohttp Application.

        This method is exposed for testing purposes.

        Returns:
            Configured aiohttp Application.
        """
        app = web.Application(middlewares=[self._request_context])
        app.router.add_get("/healthz", self._handle_health_check)
        app.router.add_get("/readyz", self._handle_ready_check)
        app.router.add_post("/api/v1/conversations/history", self._handle_history)
        app.router.add_post("/api/v1/conversations/replies", self._handle_replies)
        app.router.add_post("/api/v1/search/messages", self._handle_search)
        app.router.add_post("/api/v1/channels/list", self._handle_channels)
        app.router.add_post("/api/v1/users/list", self._handle_users)
        app.router.add_post("/api/v1/emoji/list", self._handle_emoji)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()
        self._logger.info(
            "HTTP server started",
            host=self.config.host,
            port=self.actual_port,
        )

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            self._app = None
            self._logger.info("HTTP server stopped")

    @web.middleware
    async def _request_context(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        request_id = uuid.uuid4().hex
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await handler(request)
        response.headers["X-Request-ID"] = request_id
        return response

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        """Handle GET /healthz requests."""
        return web.json_response({"status": "ok"})

    async def _handle_ready_check(self, request: web.Request) -> web.Response:
        """Handle GET /readyz requests.

        Returns:
            JSON response with the state of every collection, status 503
            until users and channels are ready.
        """
        states = {c.value: self._cache.state(c).model_dump(mode="json") for c in Collection}
        ready = all(self._cache.is_ready(c) for c in REQUIRED_COLLECTIONS)
        return web.json_response(
            {"status": "ready" if ready else "not_ready", "collections": states},
            status=200 if ready else 503,
        )

    async def _handle_history(self, request: web.Request) -> web.Response:
        """Handle POST /api/v1/conversations/history requests."""
        query = await self._parse_body(request, ConversationQuery)
        if isinstance(query, web.Response):
            return query
        return await self._run(
            "conversations.history",
            lambda: self._engine.history(
                self._with_default_limit(query), timeout=self._query_config.timeout
            ),
            render_query_result,
        )

    async def _handle_replies(self, request: web.Request) -> web.Response:
        """Handle POST /api/v1/conversations/replies requests."""
        query = await self._parse_body(request, ConversationQuery)
        if isinstance(query, web.Response):
            return query
        return await self._run(
            "conversations.replies",
            lambda: self._engine.replies(
                self._with_default_limit(query), timeout=self._query_config.timeout
            ),
            render_query_result,
        )

    async def _handle_search(self, request: web.Request) -> web.Response:
        """Handle POST /api/v1/search/messages requests."""
        query = await self._parse_body(request, SearchQuery)
        if isinstance(query, web.Response):
            return query
        return await self._run(
            "search.messages",
            lambda: self._engine.search(query, timeout=self._query_config.timeout),
            render_search_result,
        )

    async def _handle_channels(self, request: web.Request) -> web.Response:
        """Handle POST /api/v1/channels/list requests."""
        query = await self._parse_body(request, ChannelListQuery)
        if isinstance(query, web.Response):
            return query
        return await self._run(
            "channels.list", lambda: self._lister.channels(query), render_directory_page
        )

    async def _handle_users(self, request: web.Request) -> web.Response:
        """Handle POST /api/v1/users/list requests."""
        query = await self._parse_body(request, UserListQuery)
        if isinstance(query, web.Response):
            return query
        return await self._run(
            "users.list", lambda: self._lister.users(query), render_directory_page
        )

    async def _handle_emoji(self, request: web.Request) -> web.Response:
        """Handle POST /api/v1/emoji/list requests."""
        query = await self._parse_body(request, EmojiListQuery)
        if isinstance(query, web.Response):
            return query
        return await self._run(
            "emoji.list", lambda: self._lister.emoji(query), render_directory_page
        )

    def _with_default_limit(self, query: ConversationQuery) -> ConversationQuery:
        if query.limit.strip() or query.cursor.strip():
            return query
        return query.model_copy(update={"limit": self._query_config.default_limit})

    async def _parse_body(
        self, request: web.Request, model: type[T]
    ) -> T | web.Response:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return web.json_response(
                {"error": "validation_error", "message": "Invalid JSON"}, status=400
            )
        if not isinstance(body, dict):
            return web.json_response(
                {"error": "validation_error", "message": "Request body must be an object"},
                status=400,
            )
        try:
            return model.model_validate(body)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            return web.json_response(
                {"error": "validation_error", "field": field, "message": first["msg"]},
                status=400,
            )

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[object]],
        render: Callable[..., str],
    ) -> web.Response:
        try:
            result = await call()
        except SlackscopeError as e:
            status = error_status(e)
            log = self._logger.warning if status < 500 else self._logger.error
            log("Query failed", operation=operation, kind=e.kind, error=e.message)
            headers = {}
            if isinstance(e, RateLimitedError):
                headers["Retry-After"] = str(max(1, math.ceil(e.retry_after)))
            return web.json_response(e.to_dict(), status=status, headers=headers)
        except TimeoutError:
            self._logger.warning(
                "Query timed out", operation=operation, timeout=self._query_config.timeout
            )
            return web.json_response(
                {
                    "error": "timeout",
                    "message": f"{operation} did not complete within "
                    f"{self._query_config.timeout}s",
                },
                status=504,
            )

        body = render(result)
        records = getattr(result, "records", [])
        self._logger.info("Query completed", operation=operation, records=len(records))
        return web.Response(text=body, content_type="text/csv")
