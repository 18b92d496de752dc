"""Tests for ConversationEngine."""

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest
from pydantic import BaseModel

from slackscope.application.services.conversation_engine import (
    ConversationEngine,
    decode_search_cursor,
    encode_search_cursor,
    render_reactions,
    thread_ts_from_permalink,
)
from slackscope.application.services.metadata_cache import MetadataCache
from slackscope.domain.entities.directory import Collection
from slackscope.domain.entities.message import MessageField
from slackscope.domain.entities.query import ConversationQuery, SearchQuery, SortMode
from slackscope.domain.errors import NotReadyError, QueryValidationError

GENERAL = "C0GENERAL"
PERMALINK = (
    "https://acme.slack.com/archives/C2/p1700000000000100"
    "?thread_ts=1699999999.000100&cid=C2"
)


class FakeRouter:
    """Router stub that records calls and answers from canned payloads."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.is_enterprise = False
        self.is_impersonated = False
        self.responses: dict[str, Any] = {
            "users.list": {
                "ok": True,
                "members": [
                    {"id": "U1", "name": "alice", "real_name": "Alice Liddell"},
                    {"id": "U2", "name": "bob", "real_name": "Bob Builder"},
                ],
            },
            "conversations.list": {
                "ok": True,
                "channels": [
                    {"id": "C0GENERAL", "name": "general"},
                    {"id": "C2", "name": "ops"},
                    {"id": "D0BOB", "is_im": True, "user": "U2"},
                ],
            },
            "conversations.history": {"ok": True, "messages": []},
            "conversations.replies": {"ok": True, "messages": []},
            "search.messages": {"ok": True, "messages": {"matches": []}},
        }

    async def execute(
        self, operation: str, params: dict[str, Any] | None = None, team: str | None = None
    ) -> dict[str, Any]:
        self.calls.append((operation, params or {}))
        response = self.responses[operation]
        if callable(response):
            return await response(params or {})
        return response

    def params_for(self, operation: str) -> dict[str, Any]:
        return next(p for op, p in self.calls if op == operation)

    def query_calls(self) -> list[str]:
        directory = {"users.list", "conversations.list", "emoji.list"}
        return [op for op, _ in self.calls if op not in directory]


class NullStore:
    """SnapshotStore that persists nothing."""

    async def load(self, collection: Collection) -> list[BaseModel] | None:
        return None

    async def save(self, collection: Collection, entries: Sequence[BaseModel]) -> None:
        return None


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter()


@pytest.fixture
def cache(router: FakeRouter) -> MetadataCache:
    return MetadataCache(router, NullStore())  # type: ignore[arg-type]


@pytest.fixture
async def ready_cache(cache: MetadataCache) -> MetadataCache:
    await cache.refresh(Collection.USERS)
    await cache.refresh(Collection.CHANNELS)
    return cache


@pytest.fixture
def engine(router: FakeRouter, ready_cache: MetadataCache) -> ConversationEngine:
    return ConversationEngine(router, ready_cache)  # type: ignore[arg-type]


def _message(ts: str = "1700000000.000100", **extra: Any) -> dict[str, Any]:
    return {"type": "message", "ts": ts, "user": "U1", "text": "hello", **extra}


class TestHelpers:
    """Tests for module-level helpers."""

    def test_render_reactions(self) -> None:
        """Reactions keep upstream order as name:count:users joined by |."""
        reactions = [
            {"name": "thumbsup", "count": 2, "users": ["U1", "U2"]},
            {"name": "tada", "count": 1, "users": ["U3"]},
        ]

        assert render_reactions(reactions) == "thumbsup:2:U1,U2|tada:1:U3"

    def test_render_no_reactions(self) -> None:
        assert render_reactions(None) == ""

    def test_search_cursor(self) -> None:
        assert decode_search_cursor(encode_search_cursor(3)) == 3

    @pytest.mark.parametrize("cursor", ["!!!", "cGFnZTow", "Zm9vOjI=", "cGFnZTp4"])
    def test_invalid_search_cursor(self, cursor: str) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            decode_search_cursor(cursor)

        assert exc_info.value.field == "cursor"

    def test_thread_ts_from_permalink(self) -> None:
        assert thread_ts_from_permalink(PERMALINK) == "1699999999.000100"
        assert thread_ts_from_permalink("https://acme.slack.com/archives/C2/p1") == ""
        assert thread_ts_from_permalink(None) == ""


class TestValidation:
    """Input validation happens before any network call."""

    @pytest.mark.parametrize("limit", ["0d", "d", "5x", "", "0"])
    async def test_malformed_limit(
        self, router: FakeRouter, cache: MetadataCache, limit: str
    ) -> None:
        engine = ConversationEngine(router, cache)  # type: ignore[arg-type]

        with pytest.raises(QueryValidationError) as exc_info:
            await engine.history(ConversationQuery(channel=GENERAL, limit=limit))

        assert exc_info.value.field == "limit"
        assert router.calls == []

    async def test_cursor_and_limit(self, engine: ConversationEngine, router: FakeRouter) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.history(ConversationQuery(channel=GENERAL, limit="3d", cursor="abc"))

        assert exc_info.value.field == "cursor,limit"
        assert router.query_calls() == []

    async def test_unknown_field(self, engine: ConversationEngine, router: FakeRouter) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.history(ConversationQuery(channel=GENERAL, limit="10", fields="text,nope"))

        assert exc_info.value.field == "fields"
        assert router.query_calls() == []

    async def test_missing_channel(self, engine: ConversationEngine) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.history(ConversationQuery(channel=" ", limit="10"))

        assert exc_info.value.field == "channel"

    async def test_replies_require_thread_ts(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.replies(ConversationQuery(channel=GENERAL, limit="10"))

        assert exc_info.value.field == "thread_ts"
        assert router.query_calls() == []

    async def test_name_before_channels_ready(
        self, router: FakeRouter, cache: MetadataCache
    ) -> None:
        engine = ConversationEngine(router, cache)  # type: ignore[arg-type]

        with pytest.raises(NotReadyError):
            await engine.history(ConversationQuery(channel="#general", limit="1d"))

        assert router.calls == []


class TestHistory:
    """Tests for history queries."""

    async def test_time_window_projection(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        """A named channel over 7d yields exactly the requested columns."""
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [_message(text="one"), _message(ts="1700000100.000200", text="two")],
        }

        result = await engine.history(
            ConversationQuery(channel="#general", limit="7d", fields="msgID,text,time")
        )

        assert result.fields == (MessageField.MSG_ID, MessageField.TEXT, MessageField.TIME)
        assert [r.text for r in result.records] == ["one", "two"]
        assert result.records[0].time == "2023-11-14T22:13:20Z"
        assert result.records[0].user_id is None
        params = router.params_for("conversations.history")
        assert params["channel"] == GENERAL
        assert params["limit"] == 100
        assert params["oldest"] is not None
        assert params["latest"] is not None
        assert params["cursor"] is None

    async def test_count_window(self, engine: ConversationEngine, router: FakeRouter) -> None:
        await engine.history(ConversationQuery(channel=GENERAL, limit="25"))

        params = router.params_for("conversations.history")
        assert params["limit"] == 25
        assert params["oldest"] is None

    async def test_cursor_continuation(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        await engine.history(ConversationQuery(channel=GENERAL, cursor="bmV4dA=="))

        params = router.params_for("conversations.history")
        assert params["cursor"] == "bmV4dA=="
        assert params["limit"] == 100
        assert params["oldest"] is None

    async def test_all_fields(self, engine: ConversationEngine, router: FakeRouter) -> None:
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [
                _message(
                    thread_ts="1699999999.000100",
                    reactions=[
                        {"name": "thumbsup", "count": 2, "users": ["U1", "U2"]},
                        {"name": "tada", "count": 1, "users": ["U3"]},
                    ],
                )
            ],
        }

        result = await engine.history(ConversationQuery(channel="@bob", limit="5", fields="all"))

        record = result.records[0]
        assert record.msg_id == "1700000000.000100"
        assert record.user_id == "U1"
        assert record.user_handle == "alice"
        assert record.real_name == "Alice Liddell"
        assert record.channel_id == "D0BOB"
        assert record.thread_ts == "1699999999.000100"
        assert record.reactions == "thumbsup:2:U1,U2|tada:1:U3"

    async def test_unknown_author_falls_back_to_id(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [_message(user="U9")],
        }

        result = await engine.history(
            ConversationQuery(channel=GENERAL, limit="5", fields="userUser,realName")
        )

        assert result.records[0].user_handle == "U9"
        assert result.records[0].real_name == "U9"

    async def test_bot_author(self, engine: ConversationEngine, router: FakeRouter) -> None:
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [
                {
                    "ts": "1700000000.000100",
                    "subtype": "bot_message",
                    "bot_id": "B1",
                    "bot_profile": {"name": "Deployer"},
                    "text": "shipped",
                }
            ],
        }

        result = await engine.history(
            ConversationQuery(channel=GENERAL, limit="5", fields="userUser,realName,text")
        )

        assert result.records[0].user_handle == "deployer"
        assert result.records[0].real_name == "Deployer"

    async def test_activity_messages_filtered(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        """Join and leave events are dropped unless requested."""
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [
                _message(text="real"),
                _message(subtype="channel_join", text="joined"),
                _message(subtype="thread_broadcast", text="broadcast"),
            ],
        }

        default = await engine.history(ConversationQuery(channel=GENERAL, limit="5", fields="text"))
        everything = await engine.history(
            ConversationQuery(
                channel=GENERAL, limit="5", fields="text", include_activity_messages=True
            )
        )

        assert [r.text for r in default.records] == ["real", "broadcast"]
        assert [r.text for r in everything.records] == ["real", "joined", "broadcast"]

    async def test_bad_timestamp_skipped(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [_message(ts="garbage"), _message(text="kept")],
        }

        query = ConversationQuery(channel=GENERAL, limit="5", fields="text,time")
        result = await engine.history(query)

        assert [r.text for r in result.records] == ["kept"]

    async def test_cursor_only_when_requested(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [_message(text="a"), _message(text="b")],
            "has_more": True,
            "response_metadata": {"next_cursor": "bmV4dA=="},
        }

        plain = await engine.history(ConversationQuery(channel=GENERAL, limit="2", fields="text"))
        paged = await engine.history(
            ConversationQuery(channel=GENERAL, limit="2", fields="text,cursor")
        )

        assert plain.next_cursor is None
        assert plain.include_cursor is False
        assert paged.include_cursor is True
        assert paged.next_cursor == "bmV4dA=="
        assert paged.records[-1].cursor == "bmV4dA=="
        assert paged.records[0].cursor is None

    async def test_no_cursor_on_last_page(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        router.responses["conversations.history"] = {
            "ok": True,
            "messages": [_message()],
            "has_more": False,
        }

        query = ConversationQuery(channel=GENERAL, limit="2", fields="cursor")
        result = await engine.history(query)

        assert result.include_cursor is True
        assert result.next_cursor is None

    async def test_timeout(self, engine: ConversationEngine, router: FakeRouter) -> None:
        async def slow(params: dict[str, Any]) -> dict[str, Any]:
            await asyncio.sleep(5)
            return {"ok": True}

        router.responses["conversations.history"] = slow

        with pytest.raises(TimeoutError):
            await engine.history(ConversationQuery(channel=GENERAL, limit="5"), timeout=0.01)


class TestReplies:
    """Tests for thread replies."""

    async def test_passes_thread_ts(self, engine: ConversationEngine, router: FakeRouter) -> None:
        router.responses["conversations.replies"] = {
            "ok": True,
            "messages": [_message(ts="1699999999.000100", thread_ts="1699999999.000100")],
        }

        result = await engine.replies(
            ConversationQuery(
                channel="#general", limit="1w", thread_ts="1699999999.000100", fields="threadTs"
            )
        )

        params = router.params_for("conversations.replies")
        assert params["ts"] == "1699999999.000100"
        assert params["channel"] == GENERAL
        assert result.records[0].thread_ts == "1699999999.000100"


class TestSearch:
    """Tests for message search."""

    async def test_query_composition(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        """Structured filters are merged into the query string."""
        await engine.search(
            SearchQuery(
                query="deploy in:#ops",
                filter_threads_only=True,
                filter_users_from="@alice",
                filter_users_with="U2",
                filter_date_after="2024-01-02",
            )
        )

        params = router.params_for("search.messages")
        assert params["query"] == "deploy is:thread in:#ops from:<@U1> with:<@U2> after:2024-01-02"
        assert params["count"] == 100
        assert params["page"] == 1
        assert params["sort"] == "score"
        assert params["sort_dir"] == "desc"
        assert params["highlight"] is False

    async def test_sort_newest(self, engine: ConversationEngine, router: FakeRouter) -> None:
        await engine.search(SearchQuery(query="x", sort=SortMode.NEWEST))

        params = router.params_for("search.messages")
        assert (params["sort"], params["sort_dir"]) == ("timestamp", "desc")

    @pytest.mark.parametrize(
        ("selector", "expected"),
        [("#general", "in:#general"), ("C0123ABC", "in:<#C0123ABC>")],
    )
    async def test_channel_filter(
        self, engine: ConversationEngine, router: FakeRouter, selector: str, expected: str
    ) -> None:
        await engine.search(SearchQuery(query="x", filter_in_channel=selector))

        assert router.params_for("search.messages")["query"] == f"x {expected}"

    async def test_invalid_channel_filter(self, engine: ConversationEngine) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.search(SearchQuery(query="x", filter_in_channel="general"))

        assert exc_info.value.field == "filter_in_channel"

    @pytest.mark.parametrize(("selector", "expected"), [("@bob", "in:<@U2>"), ("D0BOB", "in:@bob")])
    async def test_im_filter(
        self, engine: ConversationEngine, router: FakeRouter, selector: str, expected: str
    ) -> None:
        await engine.search(SearchQuery(query="x", filter_in_im_or_mpim=selector))

        assert router.params_for("search.messages")["query"] == f"x {expected}"

    async def test_empty_query(self, engine: ConversationEngine, router: FakeRouter) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.search(SearchQuery(query="  "))

        assert exc_info.value.field == "query"
        assert router.query_calls() == []

    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_range(self, engine: ConversationEngine, limit: int) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.search(SearchQuery(query="x", limit=limit))

        assert exc_info.value.field == "limit"

    async def test_conflicting_date_filters(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            await engine.search(
                SearchQuery(query="x", filter_date_on="2024-01-02", filter_date_after="2024-01-01")
            )

        assert exc_info.value.field == "filter_date_on"
        assert router.query_calls() == []

    async def test_cursor_selects_page(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        await engine.search(SearchQuery(query="x", cursor=encode_search_cursor(3)))

        assert router.params_for("search.messages")["page"] == 3

    async def test_results_and_pagination(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        router.responses["search.messages"] = {
            "ok": True,
            "messages": {
                "matches": [
                    {
                        "ts": "1700000000.000100",
                        "user": "U1",
                        "text": "deploy done",
                        "channel": {"id": "C2", "name": "ops"},
                        "permalink": PERMALINK,
                        "blocks": [
                            {"type": "header", "text": {"type": "plain_text", "text": "Hdr"}}
                        ],
                    }
                ],
                "pagination": {
                    "total_count": 250,
                    "page": 1,
                    "per_page": 100,
                    "page_count": 3,
                    "first": 1,
                    "last": 100,
                },
            },
        }

        result = await engine.search(
            SearchQuery(query="deploy", fields="channelID,threadTs,text,permalink,userUser")
        )

        record = result.records[0]
        assert record.channel_id == "#ops"
        assert record.thread_ts == "1699999999.000100"
        assert record.text == "deploy done"
        assert record.permalink == PERMALINK
        assert record.user_handle == "alice"
        assert result.pagination.total_count == 250
        assert result.pagination.page_count == 3
        assert result.next_cursor == encode_search_cursor(2)

    async def test_last_page_has_no_cursor(
        self, engine: ConversationEngine, router: FakeRouter
    ) -> None:
        router.responses["search.messages"] = {
            "ok": True,
            "messages": {
                "matches": [_message()],
                "pagination": {"total_count": 101, "page": 2, "per_page": 100, "page_count": 2},
            },
        }

        result = await engine.search(SearchQuery(query="x"))

        assert result.next_cursor is None
