"""Workspace directory cache for users, channels and emoji."""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from slackscope.domain.entities.directory import (
    CachedChannel,
    CachedEmoji,
    CachedUser,
    ChannelKind,
    Collection,
    DirectorySource,
    DirectoryState,
)
from slackscope.domain.errors import NotFoundError, NotReadyError, QueryValidationError
from slackscope.domain.repositories.directory_repository import SnapshotStore
from slackscope.infrastructure.logging import get_logger
from slackscope.infrastructure.slack.auth_router import AuthRouter

logger = get_logger(__name__)

# Literal conversation IDs, returned as-is by resolve()
LITERAL_ID_PATTERN = re.compile(r"^[CDG][A-Z0-9]{2,}$")
USER_ID_PATTERN = re.compile(r"^[UW][A-Z0-9]{2,}$")

CONVERSATION_TYPES = "public_channel,private_channel,im,mpim"
LIST_PAGE_SIZE = 1000

# Always available, not returned by emoji.list
COMMON_UNICODE_EMOJI: dict[str, str] = {
    "thumbsup": "👍",
    "thumbsdown": "👎",
    "heart": "❤️",
    "smile": "😊",
    "laughing": "😂",
    "cry": "😢",
    "angry": "😠",
    "clap": "👏",
    "fire": "🔥",
    "eyes": "👀",
    "rocket": "🚀",
    "100": "💯",
    "pray": "🙏",
    "tada": "🎉",
    "white_check_mark": "✅",
    "x": "❌",
    "warning": "⚠️",
    "question": "❓",
    "exclamation": "❗",
    "heavy_plus_sign": "+1",
    "heavy_minus_sign": "-1",
}


@dataclass(frozen=True)
class _Snapshot:
    """Complete view of one collection, replaced as a whole."""

    entries: dict[str, Any] = field(default_factory=dict)
    index: dict[str, str] = field(default_factory=dict)


def is_literal_id(selector: str) -> bool:
    """Return True if a selector is a literal conversation ID."""
    return bool(LITERAL_ID_PATTERN.match(selector))


def map_user(raw: dict[str, Any]) -> CachedUser:
    """Map a users.list member onto a cached user."""
    profile = raw.get("profile") or {}
    return CachedUser(
        id=raw["id"],
        handle=raw.get("name") or raw["id"],
        display_name=(
            raw.get("real_name") or profile.get("real_name") or profile.get("display_name") or ""
        ),
        is_bot=bool(raw.get("is_bot")),
        is_deleted=bool(raw.get("deleted")),
        attributes=raw,
    )


def _describe_user(user_id: str, users: dict[str, CachedUser]) -> str:
    user = users.get(user_id)
    if user is None:
        return user_id
    name = user.display_name
    if user.is_deleted and name:
        name += " (deactivated)"
    return name or user.handle


def map_channel(raw: dict[str, Any], users: dict[str, CachedUser]) -> CachedChannel:
    """Map a conversation onto a cached channel.

    DMs are named after their counterpart's handle and MPIMs after their
    normalized name, both with an ``@`` prefix. Channels get a ``#`` prefix.
    """
    topic = (raw.get("topic") or {}).get("value") or ""
    purpose = (raw.get("purpose") or {}).get("value") or ""
    normalized = raw.get("name_normalized") or raw.get("name") or raw["id"]

    if raw.get("is_im"):
        user_id = raw.get("user") or ""
        user = users.get(user_id)
        return CachedChannel(
            id=raw["id"],
            name="@" + (user.handle if user else user_id),
            kind=ChannelKind.IM,
            member_count=2,
            purpose="DM with " + _describe_user(user_id, users),
        )

    if raw.get("is_mpim"):
        members = raw.get("members") or []
        if members:
            names = ", ".join(_describe_user(uid, users) for uid in members)
            purpose = "Group DM with " + names
            topic = ""
        return CachedChannel(
            id=raw["id"],
            name="@" + normalized,
            kind=ChannelKind.MPIM,
            member_count=len(members) or int(raw.get("num_members") or 0),
            topic=topic,
            purpose=purpose,
        )

    return CachedChannel(
        id=raw["id"],
        name="#" + normalized,
        kind=ChannelKind.PRIVATE if raw.get("is_private") else ChannelKind.PUBLIC,
        member_count=int(raw.get("num_members") or 0),
        topic=topic,
        purpose=purpose,
    )


def build_emoji(custom: dict[str, str]) -> list[CachedEmoji]:
    """Build the emoji directory from an emoji.list payload.

    ``alias:<target>`` entries are folded into their target's aliases and
    the common unicode set is added for names not defined by the workspace.
    """
    emoji: dict[str, CachedEmoji] = {}
    aliases: list[tuple[str, str]] = []
    for name, url in custom.items():
        if url.startswith("alias:"):
            aliases.append((name, url.removeprefix("alias:")))
        else:
            emoji[name] = CachedEmoji(name=name, url=url, is_custom=True)
    for name, char in COMMON_UNICODE_EMOJI.items():
        emoji.setdefault(name, CachedEmoji(name=name, url=char))
    for name, target in aliases:
        if target in emoji:
            emoji[target].aliases.append(name)
    return list(emoji.values())


class MetadataCache:
    """Owns the users, channels and emoji directories.

    Each collection is an immutable snapshot swapped by assignment, so readers
    always see a complete map. A collection turns ready after its first
    successful load and never goes back on a failed refresh.

    Args:
        router: Router used for directory listing calls.
        store: Snapshot store mirroring each collection on disk.
    """

    def __init__(self, router: AuthRouter, store: SnapshotStore) -> None:
        self._router = router
        self._store = store
        self._snapshots: dict[Collection, _Snapshot] = {c: _Snapshot() for c in Collection}
        self._states: dict[Collection, DirectoryState] = {
            c: DirectoryState(collection=c) for c in Collection
        }
        self._inflight: dict[Collection, asyncio.Task[None]] = {}
        self._background: list[asyncio.Task[None]] = []
        self._bot_users: dict[str, CachedUser] = {}
        self._fetchers: dict[Collection, Callable[[], Awaitable[list[BaseModel]]]] = {
            Collection.USERS: self._fetch_users,
            Collection.CHANNELS: self._fetch_channels,
            Collection.EMOJI: self._fetch_emoji,
        }

    async def start(self) -> None:
        """Load snapshots from disk and schedule a refresh of every collection."""
        for collection in Collection:
            entries = await self._store.load(collection)
            if entries is None:
                continue
            self._install(collection, entries)
            self._states[collection] = DirectoryState(
                collection=collection,
                loaded_at=datetime.now(UTC),
                source=DirectorySource.CACHE_FILE,
                ready=True,
                stale=True,
            )
        for collection in Collection:
            self._background.append(
                asyncio.create_task(self._background_refresh(collection))
            )

    async def close(self) -> None:
        """Cancel pending refreshes."""
        tasks = [*self._background, *self._inflight.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        self._inflight.clear()

    def get(self, collection: Collection) -> tuple[list[Any], DirectoryState]:
        """Return the entries and state of a collection."""
        return list(self._snapshots[collection].entries.values()), self._states[collection]

    def state(self, collection: Collection) -> DirectoryState:
        """Return the state of a collection."""
        return self._states[collection]

    def is_ready(self, collection: Collection) -> bool:
        """Return True if a collection has been populated at least once."""
        return self._states[collection].ready

    async def refresh(self, collection: Collection) -> None:
        """Fetch a collection from the network and replace the snapshot.

        A refresh already running for the collection is joined instead of
        starting a second one. On failure the previous data and readiness are
        kept and the error is recorded in ``last_error`` before re-raising.
        """
        task = self._inflight.get(collection)
        if task is None or task.done():
            task = asyncio.create_task(self._run_refresh(collection))
            self._inflight[collection] = task
            task.add_done_callback(lambda t, c=collection: self._on_refresh_done(c, t))
        await asyncio.shield(task)

    def resolve(self, selector: str) -> str:
        """Resolve a channel selector to a conversation ID.

        Literal IDs are returned unchanged without consulting the directory.

        Raises:
            QueryValidationError: If the selector has no recognized shape.
            NotReadyError: If the channels directory is not populated yet.
            NotFoundError: If the name is unknown.
        """
        selector = selector.strip()
        if is_literal_id(selector):
            return selector
        if USER_ID_PATTERN.match(selector):
            raise QueryValidationError(
                "channel",
                f"invalid channel selector {selector!r}: this is a user ID, use @user-handle "
                "or the DM channel ID",
            )
        if len(selector) < 2 or selector[0] not in "#@":
            raise QueryValidationError(
                "channel",
                f"invalid channel selector {selector!r}: use a channel ID, "
                "#channel-name or @user-handle",
            )
        snapshot = self._require_ready(Collection.CHANNELS)
        channel_id = snapshot.index.get(selector) or snapshot.index.get(selector.lower())
        if channel_id is None:
            raise NotFoundError(selector, Collection.CHANNELS.value)
        return channel_id

    def resolve_user(self, selector: str) -> str:
        """Resolve a user selector (ID, ``<@ID>``, ``@handle`` or handle).

        Raises:
            QueryValidationError: If the selector is empty.
            NotReadyError: If a handle is given before users are populated.
            NotFoundError: If the handle is unknown.
        """
        value = selector.strip()
        if value.startswith("<@") and value.endswith(">"):
            value = value[2:-1]
        if USER_ID_PATTERN.match(value):
            return value
        handle = value.removeprefix("@")
        if not handle:
            raise QueryValidationError("user", "user selector must not be empty")
        snapshot = self._require_ready(Collection.USERS)
        user_id = snapshot.index.get(handle)
        if user_id is None:
            raise NotFoundError(selector, Collection.USERS.value)
        return user_id

    def describe_channel(self, channel_id: str) -> CachedChannel:
        """Return the cached record of a conversation.

        Raises:
            NotReadyError: If the channels directory is not populated yet.
            NotFoundError: If the conversation is unknown.
        """
        snapshot = self._require_ready(Collection.CHANNELS)
        channel = snapshot.entries.get(channel_id)
        if channel is None:
            raise NotFoundError(channel_id, Collection.CHANNELS.value)
        return channel

    def lookup_user(self, user_id: str) -> CachedUser | None:
        """Return a cached user, or None if unknown or not loaded yet."""
        return self._snapshots[Collection.USERS].entries.get(user_id)

    def resolve_bot(self, bot_id: str, message: dict[str, Any]) -> CachedUser | None:
        """Return a display identity for a bot author.

        Tries a bot user whose app matches the message's ``bot_profile``, then
        falls back to a pseudo-user named after the bot profile or the
        message's ``username``. Results are remembered per bot.
        """
        profile = message.get("bot_profile") or {}
        key = bot_id or message.get("username") or ""
        if not key:
            return None
        if key in self._bot_users:
            return self._bot_users[key]

        app_id = profile.get("app_id")
        user: CachedUser | None = None
        if app_id:
            for candidate in self._snapshots[Collection.USERS].entries.values():
                if candidate.is_bot and candidate.app_id == app_id:
                    user = candidate
                    break
        if user is None:
            name = profile.get("name") or message.get("username")
            if not name:
                return None
            user = CachedUser(
                id=bot_id or name, handle=name.lower(), display_name=name, is_bot=True
            )
            logger.debug("Created pseudo-user for bot", bot_id=bot_id, bot_name=name)
        self._bot_users[key] = user
        return user

    def _require_ready(self, collection: Collection) -> _Snapshot:
        if not self._states[collection].ready:
            raise NotReadyError(collection.value)
        return self._snapshots[collection]

    def _install(self, collection: Collection, entries: list[Any]) -> None:
        if collection is Collection.USERS:
            snapshot = _Snapshot(
                entries={u.id: u for u in entries},
                index={u.handle: u.id for u in entries},
            )
            self._bot_users = {}
        elif collection is Collection.CHANNELS:
            snapshot = _Snapshot(
                entries={c.id: c for c in entries},
                index={c.name: c.id for c in entries},
            )
        else:
            snapshot = _Snapshot(entries={e.name: e for e in entries})
        self._snapshots[collection] = snapshot

    def _update_state(self, collection: Collection, **changes: Any) -> None:
        self._states[collection] = self._states[collection].model_copy(update=changes)

    def _on_refresh_done(self, collection: Collection, task: asyncio.Task[None]) -> None:
        if self._inflight.get(collection) is task:
            del self._inflight[collection]
        if not task.cancelled():
            # Mark the exception retrieved; joiners re-raise it themselves
            task.exception()

    async def _background_refresh(self, collection: Collection) -> None:
        try:
            await self.refresh(collection)
        except Exception as e:
            logger.error(
                "Background refresh failed",
                collection=collection.value,
                error=str(e),
            )

    async def _run_refresh(self, collection: Collection) -> None:
        self._update_state(collection, refreshing=True)
        try:
            if collection is Collection.CHANNELS:
                await self._wait_for_users()
            entries = await self._fetchers[collection]()
        except asyncio.CancelledError:
            self._update_state(collection, refreshing=False)
            raise
        except Exception as e:
            self._update_state(collection, refreshing=False, last_error=str(e))
            logger.error("Refresh failed", collection=collection.value, error=str(e))
            raise

        self._install(collection, entries)
        self._states[collection] = DirectoryState(
            collection=collection,
            loaded_at=datetime.now(UTC),
            source=DirectorySource.NETWORK,
            ready=True,
            stale=False,
        )
        logger.info("Refreshed directory", collection=collection.value, count=len(entries))
        try:
            await self._store.save(collection, entries)
        except OSError as e:
            logger.error(
                "Failed to write snapshot", collection=collection.value, error=str(e)
            )

    async def _wait_for_users(self) -> None:
        # DM names resolve to handles only once users have settled
        task = self._inflight.get(Collection.USERS)
        if task is not None and not task.done():
            await asyncio.wait([task])

    async def _paginate(
        self, operation: str, params: dict[str, Any], key: str
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        cursor = ""
        while True:
            response = await self._router.execute(
                operation, {**params, "cursor": cursor or None}
            )
            items.extend(response.get(key) or [])
            cursor = (response.get("response_metadata") or {}).get("next_cursor") or ""
            if not cursor:
                return items

    async def _fetch_users(self) -> list[BaseModel]:
        members = await self._paginate("users.list", {"limit": LIST_PAGE_SIZE}, "members")
        return [map_user(m) for m in members if m.get("id")]

    async def _fetch_channels(self) -> list[BaseModel]:
        if self._router.is_enterprise and self._router.is_impersonated:
            # conversations.list is unavailable to session credentials on
            # enterprise orgs; the boot payload lists channels and DMs
            boot = await self._router.execute("client.userBoot")
            raw_channels = list(boot.get("channels") or [])
            raw_channels += [{**im, "is_im": True} for im in boot.get("ims") or []]
        else:
            raw_channels = await self._paginate(
                "conversations.list",
                {
                    "types": CONVERSATION_TYPES,
                    "exclude_archived": True,
                    "limit": LIST_PAGE_SIZE,
                },
                "channels",
            )
        users = self._snapshots[Collection.USERS].entries
        seen: set[str] = set()
        channels: list[BaseModel] = []
        for raw in raw_channels:
            channel_id = raw.get("id")
            if not channel_id or channel_id in seen or raw.get("is_archived"):
                continue
            seen.add(channel_id)
            channels.append(map_channel(raw, users))
        return channels

    async def _fetch_emoji(self) -> list[BaseModel]:
        response = await self._router.execute("emoji.list")
        return list(build_emoji(response.get("emoji") or {}))
