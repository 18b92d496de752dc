"""Conversation history, replies and search queries."""

import base64
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlparse

from slackscope.application.query.fields import HISTORY_FIELDS, SEARCH_FIELDS, parse_fields
from slackscope.application.query.search_filters import (
    add_filter,
    build_date_filters,
    build_query,
    split_query,
)
from slackscope.application.query.window import WINDOW_PAGE_SIZE, Window, parse_window
from slackscope.application.services.metadata_cache import MetadataCache, is_literal_id
from slackscope.application.text.processor import flatten_message_text, timestamp_to_rfc3339
from slackscope.domain.entities.directory import Collection
from slackscope.domain.entities.message import MessageField, MessageRecord
from slackscope.domain.entities.query import (
    DEFAULT_HISTORY_FIELDS,
    DEFAULT_SEARCH_FIELDS,
    ConversationQuery,
    Pagination,
    QueryResult,
    SearchQuery,
    SearchResult,
    SortMode,
)
from slackscope.domain.errors import QueryValidationError
from slackscope.infrastructure.logging import get_logger
from slackscope.infrastructure.rate_gate import caller_timeout
from slackscope.infrastructure.slack.auth_router import AuthRouter

logger = get_logger(__name__)

# Subtypes rendered as regular messages even without include_activity_messages
REGULAR_SUBTYPES = frozenset({"", "bot_message", "thread_broadcast", "me_message", "file_share"})

SEARCH_MAX_COUNT = 100

_SORT_PARAMS: dict[SortMode, tuple[str, str]] = {
    SortMode.RELEVANCE: ("score", "desc"),
    SortMode.NEWEST: ("timestamp", "desc"),
    SortMode.OLDEST: ("timestamp", "asc"),
}


def render_reactions(reactions: list[dict[str, Any]] | None) -> str:
    """Render reactions as ``name:count:U1,U2`` joined by ``|``, in upstream order."""
    return "|".join(
        f"{r.get('name', '')}:{r.get('count', 0)}:{','.join(r.get('users') or [])}"
        for r in reactions or []
    )


def encode_search_cursor(page: int) -> str:
    """Encode a search page number as an opaque cursor."""
    return base64.b64encode(f"page:{page}".encode()).decode()


def decode_search_cursor(cursor: str) -> int:
    """Decode a search cursor into a page number.

    Raises:
        QueryValidationError: If the cursor was not produced by
            encode_search_cursor.
    """
    try:
        decoded = base64.b64decode(cursor, validate=True).decode()
    except ValueError as e:
        raise QueryValidationError("cursor", f"invalid cursor {cursor!r}") from e
    prefix, _, page = decoded.partition(":")
    if prefix != "page" or not page.isascii() or not page.isdigit() or int(page) < 1:
        raise QueryValidationError("cursor", f"invalid cursor {cursor!r}")
    return int(page)


def thread_ts_from_permalink(permalink: str | None) -> str:
    """Extract the thread root timestamp from a message permalink."""
    if not permalink:
        return ""
    values = parse_qs(urlparse(permalink).query).get("thread_ts")
    return values[0] if values else ""


class ConversationEngine:
    """Turns caller queries into upstream calls and projected records.

    All input validation happens before the first network call. Expensive
    per-message work is only done for the fields that were requested.

    Args:
        router: Router used to issue upstream calls.
        cache: Directory cache used to resolve selectors and authors.
    """

    def __init__(self, router: AuthRouter, cache: MetadataCache) -> None:
        self._router = router
        self._cache = cache

    async def history(
        self, query: ConversationQuery, timeout: float | None = None
    ) -> QueryResult:
        """Fetch one page of channel history.

        Raises:
            QueryValidationError: If the query is malformed.
            NotReadyError: If a name selector is used before channels load.
            NotFoundError: If the selector does not resolve.
            TimeoutError: If the timeout elapses.
        """
        async with caller_timeout(timeout):
            return await self._conversation("conversations.history", query)

    async def replies(
        self, query: ConversationQuery, timeout: float | None = None
    ) -> QueryResult:
        """Fetch one page of a thread. ``query.thread_ts`` is required."""
        async with caller_timeout(timeout):
            return await self._conversation("conversations.replies", query)

    async def search(self, query: SearchQuery, timeout: float | None = None) -> SearchResult:
        """Run a message search and project one page of matches."""
        async with caller_timeout(timeout):
            return await self._search(query)

    async def _conversation(self, operation: str, query: ConversationQuery) -> QueryResult:
        fields = parse_fields(query.fields, HISTORY_FIELDS, DEFAULT_HISTORY_FIELDS)
        limit = query.limit.strip()
        cursor = query.cursor.strip()
        if limit and cursor:
            raise QueryValidationError(
                "cursor,limit",
                "limit and cursor are mutually exclusive: pass a cursor to continue "
                "a previous page, or a limit to start a new query",
            )
        window = Window(limit=WINDOW_PAGE_SIZE) if cursor else parse_window(limit)

        thread_ts = (query.thread_ts or "").strip()
        if operation == "conversations.replies" and not thread_ts:
            raise QueryValidationError("thread_ts", "thread_ts must be provided")
        if not query.channel.strip():
            raise QueryValidationError("channel", "channel must be provided")

        channel_id = self._cache.resolve(query.channel)
        params: dict[str, Any] = {
            "channel": channel_id,
            "limit": window.limit,
            "oldest": window.oldest,
            "latest": window.latest,
            "cursor": cursor or None,
            "inclusive": False,
        }
        if operation == "conversations.replies":
            params["ts"] = thread_ts

        logger.debug(
            "Querying conversation",
            operation=operation,
            channel=channel_id,
            limit=window.limit,
            oldest=window.oldest,
            latest=window.latest,
            fields=[f.value for f in fields],
        )
        response = await self._router.execute(operation, params)
        messages = response.get("messages") or []

        records = self._project(
            messages,
            fields,
            include_activity=query.include_activity_messages,
            channel_value=lambda _msg: channel_id,
        )

        include_cursor = MessageField.CURSOR in fields
        next_cursor = None
        if include_cursor and response.get("has_more"):
            next_cursor = (response.get("response_metadata") or {}).get("next_cursor") or None
        if next_cursor and records:
            records[-1].cursor = next_cursor
        return QueryResult(
            records=records,
            fields=fields,
            next_cursor=next_cursor,
            include_cursor=include_cursor,
        )

    async def _search(self, query: SearchQuery) -> SearchResult:
        fields = parse_fields(query.fields, SEARCH_FIELDS, DEFAULT_SEARCH_FIELDS)
        if not 1 <= query.limit <= SEARCH_MAX_COUNT:
            raise QueryValidationError(
                "limit", f"limit must be between 1 and {SEARCH_MAX_COUNT}"
            )
        page = decode_search_cursor(query.cursor.strip()) if query.cursor.strip() else 1
        date_filters = build_date_filters(
            before=query.filter_date_before,
            after=query.filter_date_after,
            on=query.filter_date_on,
            during=query.filter_date_during,
        )

        free_text, filters = split_query(query.query.strip())
        if query.filter_threads_only:
            add_filter(filters, "is", "thread")
        if query.filter_in_channel:
            add_filter(filters, "in", self._channel_filter(query.filter_in_channel))
        elif query.filter_in_im_or_mpim:
            add_filter(filters, "in", self._conversation_filter(query.filter_in_im_or_mpim))
        if query.filter_users_with:
            add_filter(filters, "with", self._user_filter(query.filter_users_with))
        if query.filter_users_from:
            add_filter(filters, "from", self._user_filter(query.filter_users_from))
        for key, value in date_filters.items():
            add_filter(filters, key, value)

        final_query = build_query(free_text, filters)
        if not final_query:
            raise QueryValidationError(
                "query", "a search query or at least one filter must be provided"
            )

        sort, sort_dir = _SORT_PARAMS[query.sort]
        logger.debug("Searching messages", query=final_query, page=page, sort=query.sort.value)
        response = await self._router.execute(
            "search.messages",
            {
                "query": final_query,
                "count": query.limit,
                "page": page,
                "sort": sort,
                "sort_dir": sort_dir,
                "highlight": False,
            },
        )
        messages = response.get("messages") or {}
        raw_pagination = messages.get("pagination") or {}
        pagination = Pagination(
            total_count=raw_pagination.get("total_count", 0),
            page=raw_pagination.get("page", page),
            per_page=raw_pagination.get("per_page", query.limit),
            page_count=raw_pagination.get("page_count", 0),
            first=raw_pagination.get("first", 0),
            last=raw_pagination.get("last", 0),
        )

        records = self._project(
            messages.get("matches") or [],
            fields,
            include_activity=True,
            channel_value=_search_channel,
            search=True,
        )
        next_cursor = None
        if records and pagination.page * pagination.per_page < pagination.total_count:
            next_cursor = encode_search_cursor(pagination.page + 1)
        return SearchResult(
            records=records,
            fields=fields,
            pagination=pagination,
            next_cursor=next_cursor,
        )

    def _channel_filter(self, selector: str) -> str:
        selector = selector.strip()
        if is_literal_id(selector) and selector[0] in "CG":
            return f"<#{selector}>"
        if not selector.startswith("#"):
            raise QueryValidationError(
                "filter_in_channel",
                f"invalid channel filter {selector!r}: use #channel-name or a channel ID",
            )
        return self._cache.describe_channel(self._cache.resolve(selector)).name

    def _conversation_filter(self, selector: str) -> str:
        selector = selector.strip()
        if selector.startswith("D") and is_literal_id(selector):
            return self._cache.describe_channel(selector).name
        return f"<@{self._cache.resolve_user(selector)}>"

    def _user_filter(self, selector: str) -> str:
        return f"<@{self._cache.resolve_user(selector)}>"

    def _author(self, message: dict[str, Any]) -> tuple[str, str, bool]:
        user_id = message.get("user") or ""
        user = self._cache.lookup_user(user_id) if user_id else None
        if user is None and (message.get("bot_id") or message.get("username")):
            user = self._cache.resolve_bot(message.get("bot_id") or "", message)
        if user is None:
            return user_id, user_id, False
        return user.handle, user.display_name or user.handle, True

    def _project(
        self,
        messages: list[dict[str, Any]],
        fields: tuple[MessageField, ...],
        include_activity: bool,
        channel_value: Callable[[dict[str, Any]], str],
        search: bool = False,
    ) -> list[MessageRecord]:
        wanted = set(fields)
        need_author = bool(wanted & {MessageField.USER_HANDLE, MessageField.REAL_NAME})
        unresolved = False
        records: list[MessageRecord] = []

        for message in messages:
            subtype = message.get("subtype") or ""
            if subtype not in REGULAR_SUBTYPES and not include_activity:
                continue

            record = MessageRecord()
            if MessageField.TIME in wanted:
                try:
                    record.time = timestamp_to_rfc3339(message.get("ts") or "")
                except ValueError as e:
                    logger.error("Failed to convert timestamp", ts=message.get("ts"), error=str(e))
                    continue
            if MessageField.MSG_ID in wanted:
                record.msg_id = message.get("ts") or ""
            if MessageField.USER_ID in wanted:
                record.user_id = message.get("user") or ""
            if need_author:
                handle, real_name, resolved = self._author(message)
                unresolved = unresolved or not resolved
                record.user_handle = handle
                record.real_name = real_name
            if MessageField.CHANNEL_ID in wanted:
                record.channel_id = channel_value(message)
            if MessageField.THREAD_TS in wanted:
                record.thread_ts = (
                    thread_ts_from_permalink(message.get("permalink"))
                    if search
                    else message.get("thread_ts") or ""
                )
            if MessageField.TEXT in wanted:
                record.text = flatten_message_text(message, include_blocks=not search)
            if MessageField.REACTIONS in wanted:
                record.reactions = render_reactions(message.get("reactions"))
            if MessageField.PERMALINK in wanted:
                record.permalink = message.get("permalink") or ""
            records.append(record)

        if unresolved and not self._cache.is_ready(Collection.USERS):
            logger.warning(
                "Users directory is not ready yet, author names fall back to user IDs; "
                "retry once the users directory is populated"
            )
        return records


def _search_channel(message: dict[str, Any]) -> str:
    channel = message.get("channel") or {}
    name = channel.get("name")
    return f"#{name}" if name else channel.get("id") or ""
