"""Filtered, paginated listings of the cached directories."""

import base64
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from slackscope.application.query.fields import parse_fields
from slackscope.application.services.metadata_cache import MetadataCache
from slackscope.domain.entities.directory import (
    CachedChannel,
    CachedEmoji,
    CachedUser,
    ChannelField,
    ChannelKind,
    Collection,
    EmojiField,
    UserField,
)
from slackscope.domain.entities.query import (
    DEFAULT_CHANNEL_FIELDS,
    DEFAULT_EMOJI_FIELDS,
    DEFAULT_USER_FIELDS,
    ChannelListQuery,
    ChannelSort,
    DirectoryPage,
    EmojiListQuery,
    EmojiType,
    UserFilter,
    UserListQuery,
)
from slackscope.domain.errors import NotReadyError, QueryValidationError
from slackscope.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DIRECTORY_MAX_LIMIT = 1000

CHANNEL_TYPES: dict[str, ChannelKind] = {
    "public_channel": ChannelKind.PUBLIC,
    "private_channel": ChannelKind.PRIVATE,
    "im": ChannelKind.IM,
    "mpim": ChannelKind.MPIM,
}

# Listed when channel_types names no type at all
DEFAULT_CHANNEL_KINDS = frozenset({ChannelKind.PUBLIC, ChannelKind.PRIVATE})


def encode_offset_cursor(offset: int) -> str:
    """Encode a listing offset as an opaque cursor."""
    return base64.b64encode(f"offset:{offset}".encode()).decode()


def decode_offset_cursor(cursor: str) -> int:
    """Decode a listing cursor into an offset.

    Raises:
        QueryValidationError: If the cursor was not produced by
            encode_offset_cursor.
    """
    try:
        decoded = base64.b64decode(cursor, validate=True).decode()
    except ValueError as e:
        raise QueryValidationError("cursor", f"invalid cursor {cursor!r}") from e
    prefix, _, offset = decoded.partition(":")
    if prefix != "offset" or not offset.isascii() or not offset.isdigit():
        raise QueryValidationError("cursor", f"invalid cursor {cursor!r}")
    return int(offset)


def paginate(items: Sequence[T], cursor: str, limit: int) -> tuple[list[T], str | None]:
    """Slice one page out of items.

    Returns:
        The page and the cursor of the next one, None on the last page.
    """
    start = decode_offset_cursor(cursor) if cursor.strip() else 0
    end = start + limit
    next_cursor = encode_offset_cursor(end) if end < len(items) else None
    return list(items[start:end]), next_cursor


def parse_channel_kinds(raw: str) -> frozenset[ChannelKind]:
    """Parse a comma-separated channel type list.

    Raises:
        QueryValidationError: If a type name is unknown.
    """
    kinds: set[ChannelKind] = set()
    for name in raw.split(","):
        name = name.strip().lower()
        if not name:
            continue
        kind = CHANNEL_TYPES.get(name)
        if kind is None:
            raise QueryValidationError(
                "channel_types",
                f"unknown channel type {name!r}; known types: " + ",".join(CHANNEL_TYPES),
            )
        kinds.add(kind)
    return frozenset(kinds) or DEFAULT_CHANNEL_KINDS


def _check_limit(limit: int) -> None:
    if not 1 <= limit <= DIRECTORY_MAX_LIMIT:
        raise QueryValidationError(
            "limit", f"limit must be between 1 and {DIRECTORY_MAX_LIMIT}, got {limit}"
        )


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _contains(needle: str, *haystacks: str) -> bool:
    return any(needle in h.lower() for h in haystacks if h)


def _profile(user: CachedUser) -> dict[str, Any]:
    return user.attributes.get("profile") or {}


def is_admin(user: CachedUser) -> bool:
    """Return True for admins and owners."""
    attrs = user.attributes
    return bool(attrs.get("is_admin") or attrs.get("is_owner") or attrs.get("is_primary_owner"))


CHANNEL_COLUMNS: dict[ChannelField, Callable[[CachedChannel], str]] = {
    ChannelField.ID: lambda c: c.id,
    ChannelField.NAME: lambda c: c.name,
    ChannelField.TOPIC: lambda c: c.topic,
    ChannelField.PURPOSE: lambda c: c.purpose,
    ChannelField.MEMBER_COUNT: lambda c: str(c.member_count),
}

USER_COLUMNS: dict[UserField, Callable[[CachedUser], str]] = {
    UserField.ID: lambda u: u.id,
    UserField.NAME: lambda u: u.handle,
    UserField.REAL_NAME: lambda u: u.display_name,
    UserField.EMAIL: lambda u: _profile(u).get("email") or "",
    UserField.STATUS: lambda u: "deleted" if u.is_deleted else "active",
    UserField.IS_BOT: lambda u: _flag(u.is_bot),
    UserField.IS_ADMIN: lambda u: _flag(is_admin(u)),
    UserField.TIME_ZONE: lambda u: u.attributes.get("tz") or "",
    UserField.TITLE: lambda u: _profile(u).get("title") or "",
    UserField.PHONE: lambda u: _profile(u).get("phone") or "",
}

EMOJI_COLUMNS: dict[EmojiField, Callable[[CachedEmoji], str]] = {
    EmojiField.NAME: lambda e: e.name,
    EmojiField.URL: lambda e: e.url,
    EmojiField.IS_CUSTOM: lambda e: _flag(e.is_custom),
    EmojiField.ALIASES: lambda e: "|".join(e.aliases),
}


def _matches_user_filter(user: CachedUser, user_filter: UserFilter) -> bool:
    if user_filter is UserFilter.ACTIVE:
        return not user.is_deleted
    if user_filter is UserFilter.DELETED:
        return user.is_deleted
    if user_filter is UserFilter.BOTS:
        return user.is_bot
    if user_filter is UserFilter.HUMANS:
        return not user.is_bot
    if user_filter is UserFilter.ADMINS:
        return is_admin(user)
    return True


class DirectoryLister:
    """Answers listing queries from the metadata cache without network calls.

    Every listing is filtered and sorted before it is paginated, so offset
    cursors stay stable while the directory does not change.

    Args:
        cache: Directory cache holding the collections.
    """

    def __init__(self, cache: MetadataCache) -> None:
        self._cache = cache

    async def channels(self, query: ChannelListQuery) -> DirectoryPage:
        """List channels by type, text match and minimum member count.

        Raises:
            QueryValidationError: If a parameter is malformed.
            NotReadyError: If the channels directory is not populated yet.
        """
        fields = parse_fields(query.fields, tuple(ChannelField), DEFAULT_CHANNEL_FIELDS)
        kinds = parse_channel_kinds(query.channel_types)
        _check_limit(query.limit)
        if query.min_members < 0:
            raise QueryValidationError("min_members", "min_members must not be negative")
        channels: list[CachedChannel] = self._entries(Collection.CHANNELS)

        needle = query.query.strip().lower()
        selected = [
            c
            for c in channels
            if c.kind in kinds
            and c.member_count >= query.min_members
            and (not needle or _contains(needle, c.name, c.topic, c.purpose))
        ]
        if query.sort is ChannelSort.POPULARITY:
            selected.sort(key=lambda c: (-c.member_count, c.id))
        else:
            selected.sort(key=lambda c: c.id)

        page, next_cursor = paginate(selected, query.cursor, query.limit)
        return DirectoryPage(
            collection=Collection.CHANNELS,
            columns=tuple(f.value for f in fields),
            records=[tuple(CHANNEL_COLUMNS[f](c) for f in fields) for c in page],
            total=len(selected),
            next_cursor=next_cursor,
        )

    async def users(self, query: UserListQuery) -> DirectoryPage:
        """List users by subset and text match, ordered by handle.

        Deactivated users are hidden unless ``include_deleted`` is set or
        the ``deleted`` subset is requested.

        Raises:
            QueryValidationError: If a parameter is malformed.
            NotReadyError: If the users directory is not populated yet.
        """
        fields = parse_fields(query.fields, tuple(UserField), DEFAULT_USER_FIELDS)
        _check_limit(query.limit)
        users: list[CachedUser] = self._entries(Collection.USERS)

        needle = query.query.strip().lower()
        show_deleted = query.include_deleted or query.filter is UserFilter.DELETED
        selected = []
        for user in users:
            if user.is_deleted and not show_deleted:
                continue
            if user.is_bot and not query.include_bots:
                continue
            if not _matches_user_filter(user, query.filter):
                continue
            profile = _profile(user)
            if needle and not _contains(
                needle,
                user.handle,
                user.display_name,
                profile.get("display_name") or "",
                profile.get("real_name") or "",
            ):
                continue
            selected.append(user)
        selected.sort(key=lambda u: (u.handle, u.id))

        page, next_cursor = paginate(selected, query.cursor, query.limit)
        return DirectoryPage(
            collection=Collection.USERS,
            columns=tuple(f.value for f in fields),
            records=[tuple(USER_COLUMNS[f](u) for f in fields) for u in page],
            total=len(selected),
            next_cursor=next_cursor,
        )

    async def emoji(self, query: EmojiListQuery) -> DirectoryPage:
        """List emoji by type and name or alias match, ordered by name.

        Raises:
            QueryValidationError: If a parameter is malformed.
            NotReadyError: If the emoji directory is not populated yet.
        """
        fields = parse_fields(query.fields, tuple(EmojiField), DEFAULT_EMOJI_FIELDS)
        _check_limit(query.limit)
        emoji: list[CachedEmoji] = self._entries(Collection.EMOJI)

        needle = query.query.strip().lower()
        selected = [
            e
            for e in emoji
            if (query.type is EmojiType.ALL or e.is_custom == (query.type is EmojiType.CUSTOM))
            and (not needle or _contains(needle, e.name, *e.aliases))
        ]
        selected.sort(key=lambda e: e.name)

        page, next_cursor = paginate(selected, query.cursor, query.limit)
        return DirectoryPage(
            collection=Collection.EMOJI,
            columns=tuple(f.value for f in fields),
            records=[tuple(EMOJI_COLUMNS[f](e) for f in fields) for e in page],
            total=len(selected),
            next_cursor=next_cursor,
        )

    def _entries(self, collection: Collection) -> list[Any]:
        entries, state = self._cache.get(collection)
        if not state.ready:
            raise NotReadyError(collection.value)
        logger.debug("Listing directory", collection=collection.value, count=len(entries))
        return entries
