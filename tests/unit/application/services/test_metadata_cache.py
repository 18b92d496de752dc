"""Tests for MetadataCache."""

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest
from pydantic import BaseModel

from slackscope.application.services.metadata_cache import (
    MetadataCache,
    build_emoji,
    is_literal_id,
    map_channel,
    map_user,
)
from slackscope.domain.entities.directory import (
    CachedChannel,
    CachedUser,
    ChannelKind,
    Collection,
    DirectorySource,
)
from slackscope.domain.errors import (
    NotFoundError,
    NotReadyError,
    QueryValidationError,
    UpstreamError,
)

USERS = {
    "ok": True,
    "members": [
        {"id": "U1", "name": "alice", "real_name": "Alice Liddell"},
        {"id": "U2", "name": "bob", "profile": {"real_name": "Bob Builder"}},
        {"id": "U3", "name": "carol", "real_name": "Carol", "deleted": True},
        {
            "id": "U4",
            "name": "deploybot",
            "is_bot": True,
            "real_name": "Deploy Bot",
            "profile": {"api_app_id": "A1"},
        },
    ],
}

CHANNELS = {
    "ok": True,
    "channels": [
        {"id": "C1", "name": "general", "name_normalized": "general", "num_members": 3},
        {"id": "C2", "name": "secret", "is_private": True, "num_members": 2},
        {"id": "C3", "name": "old", "is_archived": True},
        {"id": "D1", "is_im": True, "user": "U2"},
    ],
}


class FakeRouter:
    """Router stub answering directory operations from canned payloads."""

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.is_enterprise = False
        self.is_impersonated = False

    async def execute(
        self, operation: str, params: dict[str, Any] | None = None, team: str | None = None
    ) -> dict[str, Any]:
        self.calls.append((operation, params or {}))
        response = self.responses[operation]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return await response(params or {})
        return response

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


class MemoryStore:
    """In-memory SnapshotStore."""

    def __init__(self, initial: dict[Collection, list[BaseModel]] | None = None) -> None:
        self.data: dict[Collection, list[BaseModel]] = dict(initial or {})
        self.saved: list[Collection] = []

    async def load(self, collection: Collection) -> list[BaseModel] | None:
        return self.data.get(collection)

    async def save(self, collection: Collection, entries: Sequence[BaseModel]) -> None:
        self.data[collection] = list(entries)
        self.saved.append(collection)


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter(
        {
            "users.list": USERS,
            "conversations.list": CHANNELS,
            "emoji.list": {"ok": True, "emoji": {"party": "https://e/party.png"}},
        }
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(router: FakeRouter, store: MemoryStore) -> MetadataCache:
    return MetadataCache(router, store)  # type: ignore[arg-type]


class TestIsLiteralId:
    """Tests for is_literal_id."""

    @pytest.mark.parametrize("selector", ["C1234ABCD", "D0ABC", "G0ABC"])
    def test_literal(self, selector: str) -> None:
        assert is_literal_id(selector)

    @pytest.mark.parametrize(
        "selector", ["#general", "@alice", "general", "c1234", "X123", "U01ABC", "W0ABC"]
    )
    def test_not_literal(self, selector: str) -> None:
        assert not is_literal_id(selector)


class TestMapping:
    """Tests for directory record mapping."""

    def test_map_user_display_name_fallbacks(self) -> None:
        assert map_user(USERS["members"][0]).display_name == "Alice Liddell"
        assert map_user(USERS["members"][1]).display_name == "Bob Builder"
        user = map_user({"id": "U9", "name": "x", "profile": {"display_name": "X"}})
        assert user.display_name == "X"

    def test_map_user_keeps_attributes(self) -> None:
        user = map_user(USERS["members"][3])

        assert user.is_bot is True
        assert user.app_id == "A1"

    def test_public_and_private_channels(self) -> None:
        public = map_channel(CHANNELS["channels"][0], {})
        private = map_channel(CHANNELS["channels"][1], {})

        assert public.name == "#general"
        assert public.kind is ChannelKind.PUBLIC
        assert public.member_count == 3
        assert private.name == "#secret"
        assert private.kind is ChannelKind.PRIVATE

    def test_im_named_after_handle(self) -> None:
        users = {"U3": map_user(USERS["members"][2])}

        channel = map_channel({"id": "D2", "is_im": True, "user": "U3"}, users)

        assert channel.name == "@carol"
        assert channel.kind is ChannelKind.IM
        assert channel.member_count == 2
        assert channel.purpose == "DM with Carol (deactivated)"

    def test_im_with_unknown_user(self) -> None:
        channel = map_channel({"id": "D2", "is_im": True, "user": "U77"}, {})

        assert channel.name == "@U77"
        assert channel.purpose == "DM with U77"

    def test_mpim(self) -> None:
        users = {u["id"]: map_user(u) for u in USERS["members"]}

        channel = map_channel(
            {
                "id": "G1",
                "is_mpim": True,
                "name": "mpdm-alice--bob-1",
                "members": ["U1", "U2"],
                "topic": {"value": "Group messaging"},
            },
            users,
        )

        assert channel.name == "@mpdm-alice--bob-1"
        assert channel.kind is ChannelKind.MPIM
        assert channel.purpose == "Group DM with Alice Liddell, Bob Builder"
        assert channel.topic == ""
        assert channel.member_count == 2

    def test_build_emoji(self) -> None:
        """Aliases fold into their target and common emoji are added."""
        emoji = {
            e.name: e
            for e in build_emoji(
                {"party": "https://e/party.png", "yay": "alias:party", "fire": "https://e/f.png"}
            )
        }

        assert emoji["party"].is_custom is True
        assert emoji["party"].aliases == ["yay"]
        assert "yay" not in emoji
        assert emoji["fire"].is_custom is True
        assert emoji["thumbsup"].is_custom is False

    def test_build_emoji_empty(self) -> None:
        assert {e.name for e in build_emoji({})} >= {"thumbsup", "tada", "eyes"}


class TestResolve:
    """Tests for selector resolution."""

    def test_literal_id_needs_no_directory(
        self, cache: MetadataCache, router: FakeRouter
    ) -> None:
        """Literal IDs return unchanged before anything is loaded."""
        assert cache.resolve("C1234ABCD") == "C1234ABCD"
        assert router.calls == []

    def test_name_before_ready(self, cache: MetadataCache) -> None:
        with pytest.raises(NotReadyError) as exc_info:
            cache.resolve("#general")

        assert exc_info.value.collection == "channels"
        assert "retry" in exc_info.value.message

    @pytest.mark.parametrize("selector", ["U01ABC", "W0ABC"])
    def test_user_id_is_not_a_channel(
        self, cache: MetadataCache, router: FakeRouter, selector: str
    ) -> None:
        """User IDs are rejected as channel selectors without any lookup."""
        with pytest.raises(QueryValidationError) as exc_info:
            cache.resolve(selector)

        assert exc_info.value.field == "channel"
        assert "user ID" in exc_info.value.message
        assert router.calls == []

    @pytest.mark.parametrize("selector", ["general", "#", "", "  "])
    def test_invalid_shape(self, cache: MetadataCache, selector: str) -> None:
        with pytest.raises(QueryValidationError) as exc_info:
            cache.resolve(selector)

        assert exc_info.value.field == "channel"

    async def test_resolves_after_refresh(self, cache: MetadataCache) -> None:
        await cache.refresh(Collection.USERS)
        await cache.refresh(Collection.CHANNELS)

        assert cache.resolve("#general") == "C1"
        assert cache.resolve("#General") == "C1"
        assert cache.resolve("@bob") == "D1"

    async def test_unknown_name(self, cache: MetadataCache) -> None:
        await cache.refresh(Collection.CHANNELS)

        with pytest.raises(NotFoundError) as exc_info:
            cache.resolve("#nope")

        assert exc_info.value.selector == "#nope"

    async def test_archived_channels_excluded(self, cache: MetadataCache) -> None:
        await cache.refresh(Collection.CHANNELS)

        with pytest.raises(NotFoundError):
            cache.resolve("#old")

    async def test_resolve_user(self, cache: MetadataCache) -> None:
        assert cache.resolve_user("U999") == "U999"
        assert cache.resolve_user("<@W123>") == "W123"
        with pytest.raises(NotReadyError):
            cache.resolve_user("@alice")

        await cache.refresh(Collection.USERS)

        assert cache.resolve_user("@alice") == "U1"
        assert cache.resolve_user("bob") == "U2"
        with pytest.raises(NotFoundError):
            cache.resolve_user("@zed")

    async def test_describe_channel(self, cache: MetadataCache) -> None:
        with pytest.raises(NotReadyError):
            cache.describe_channel("C1")

        await cache.refresh(Collection.CHANNELS)

        assert cache.describe_channel("C1").name == "#general"
        with pytest.raises(NotFoundError):
            cache.describe_channel("C404")


class TestRefresh:
    """Tests for refresh and state transitions."""

    async def test_successful_refresh_state(
        self, cache: MetadataCache, store: MemoryStore
    ) -> None:
        await cache.refresh(Collection.USERS)

        entries, state = cache.get(Collection.USERS)
        assert {u.id for u in entries} == {"U1", "U2", "U3", "U4"}
        assert state.ready is True
        assert state.source is DirectorySource.NETWORK
        assert state.stale is False
        assert state.last_error is None
        assert state.refreshing is False
        assert state.loaded_at is not None
        assert store.saved == [Collection.USERS]

    async def test_failed_first_refresh(self, cache: MetadataCache, router: FakeRouter) -> None:
        router.responses["users.list"] = UpstreamError("users.list", "internal_error", True)

        with pytest.raises(UpstreamError):
            await cache.refresh(Collection.USERS)

        state = cache.state(Collection.USERS)
        assert state.ready is False
        assert state.last_error == "users.list failed: internal_error"

    async def test_failed_refresh_keeps_previous_data(
        self, cache: MetadataCache, router: FakeRouter
    ) -> None:
        """A failed refresh never regresses readiness."""
        await cache.refresh(Collection.CHANNELS)
        router.responses["conversations.list"] = UpstreamError("conversations.list", "boom")

        with pytest.raises(UpstreamError):
            await cache.refresh(Collection.CHANNELS)

        state = cache.state(Collection.CHANNELS)
        assert state.ready is True
        assert state.source is DirectorySource.NETWORK
        assert state.last_error == "conversations.list failed: boom"
        assert cache.resolve("#general") == "C1"

    async def test_concurrent_refresh_is_joined(
        self, cache: MetadataCache, router: FakeRouter
    ) -> None:
        """Concurrent refreshes of one collection share a single fetch."""
        release = asyncio.Event()

        async def slow_users(params: dict[str, Any]) -> dict[str, Any]:
            await release.wait()
            return USERS

        router.responses["users.list"] = slow_users
        first = asyncio.create_task(cache.refresh(Collection.USERS))
        second = asyncio.create_task(cache.refresh(Collection.USERS))
        for _ in range(10):
            await asyncio.sleep(0)
        assert cache.state(Collection.USERS).refreshing is True

        release.set()
        await asyncio.gather(first, second)

        assert router.count("users.list") == 1
        assert cache.is_ready(Collection.USERS)

    async def test_pagination_follows_cursor(
        self, cache: MetadataCache, router: FakeRouter
    ) -> None:
        pages = {
            "": {
                "ok": True,
                "members": [USERS["members"][0]],
                "response_metadata": {"next_cursor": "page2"},
            },
            "page2": {
                "ok": True,
                "members": [USERS["members"][1]],
                "response_metadata": {"next_cursor": ""},
            },
        }

        async def paged(params: dict[str, Any]) -> dict[str, Any]:
            return pages[params.get("cursor") or ""]

        router.responses["users.list"] = paged

        await cache.refresh(Collection.USERS)

        entries, _ = cache.get(Collection.USERS)
        assert [u.handle for u in entries] == ["alice", "bob"]
        assert [p.get("cursor") for op, p in router.calls] == [None, "page2"]

    async def test_save_failure_keeps_refresh(
        self, cache: MetadataCache, store: MemoryStore
    ) -> None:
        async def failing_save(collection: Collection, entries: Sequence[BaseModel]) -> None:
            raise OSError("read-only")

        store.save = failing_save  # type: ignore[method-assign]

        await cache.refresh(Collection.EMOJI)

        assert cache.is_ready(Collection.EMOJI)

    async def test_enterprise_session_uses_user_boot(
        self, cache: MetadataCache, router: FakeRouter
    ) -> None:
        """Enterprise session credentials list channels from client.userBoot."""
        router.is_enterprise = True
        router.is_impersonated = True
        router.responses["client.userBoot"] = {
            "ok": True,
            "channels": [{"id": "C1", "name": "general"}],
            "ims": [{"id": "D5", "user": "U1"}],
        }

        await cache.refresh(Collection.CHANNELS)

        assert router.count("conversations.list") == 0
        assert cache.resolve("#general") == "C1"
        assert cache.describe_channel("D5").kind is ChannelKind.IM

    async def test_emoji_refresh(self, cache: MetadataCache) -> None:
        await cache.refresh(Collection.EMOJI)

        entries, state = cache.get(Collection.EMOJI)
        names = {e.name for e in entries}
        assert "party" in names
        assert "thumbsup" in names
        assert state.ready is True


class TestStart:
    """Tests for startup loading."""

    async def test_snapshot_marks_ready_and_stale(
        self, router: FakeRouter, store: MemoryStore
    ) -> None:
        """A loaded snapshot is usable immediately and marked stale."""
        store.data[Collection.CHANNELS] = [
            CachedChannel(id="C9", name="#from-disk", kind=ChannelKind.PUBLIC)
        ]
        cache = MetadataCache(router, store)  # type: ignore[arg-type]

        await cache.start()
        try:
            state = cache.state(Collection.CHANNELS)
            assert state.ready is True
            assert state.source is DirectorySource.CACHE_FILE
            assert state.stale is True
            assert cache.resolve("#from-disk") == "C9"
            assert cache.is_ready(Collection.USERS) is False
        finally:
            await cache.close()

    async def test_background_refresh_populates(
        self, router: FakeRouter, store: MemoryStore
    ) -> None:
        cache = MetadataCache(router, store)  # type: ignore[arg-type]

        await cache.start()
        try:
            for _ in range(50):
                if all(cache.is_ready(c) for c in Collection):
                    break
                await asyncio.sleep(0.01)

            assert all(cache.is_ready(c) for c in Collection)
            # DM names use handles because channels waited for users
            assert cache.resolve("@bob") == "D1"
        finally:
            await cache.close()

    async def test_background_failure_is_logged(
        self, router: FakeRouter, store: MemoryStore
    ) -> None:
        router.responses["emoji.list"] = UpstreamError("emoji.list", "boom")
        cache = MetadataCache(router, store)  # type: ignore[arg-type]

        await cache.start()
        try:
            for _ in range(50):
                if cache.state(Collection.EMOJI).last_error:
                    break
                await asyncio.sleep(0.01)

            assert cache.state(Collection.EMOJI).last_error == "emoji.list failed: boom"
            assert cache.is_ready(Collection.EMOJI) is False
        finally:
            await cache.close()


class TestResolveBot:
    """Tests for bot author resolution."""

    async def test_matches_bot_user_by_app(self, cache: MetadataCache) -> None:
        await cache.refresh(Collection.USERS)

        user = cache.resolve_bot("B1", {"bot_id": "B1", "bot_profile": {"app_id": "A1"}})

        assert user is not None
        assert user.id == "U4"

    def test_pseudo_user_from_profile(self, cache: MetadataCache, router: FakeRouter) -> None:
        user = cache.resolve_bot("B2", {"bot_id": "B2", "bot_profile": {"name": "CI"}})

        assert user == CachedUser(id="B2", handle="ci", display_name="CI", is_bot=True)
        assert router.calls == []

    def test_pseudo_user_from_username(self, cache: MetadataCache) -> None:
        user = cache.resolve_bot("", {"username": "webhook"})

        assert user is not None
        assert user.display_name == "webhook"

    def test_unknown_bot(self, cache: MetadataCache) -> None:
        assert cache.resolve_bot("B3", {"bot_id": "B3"}) is None

    def test_result_is_remembered(self, cache: MetadataCache) -> None:
        first = cache.resolve_bot("B2", {"bot_profile": {"name": "CI"}})
        second = cache.resolve_bot("B2", {})

        assert first is second
