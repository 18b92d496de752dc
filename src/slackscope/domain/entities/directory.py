"""Directory entities cached by the metadata cache."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Collection(str, Enum):
    """Directory collection names."""

    USERS = "users"
    CHANNELS = "channels"
    EMOJI = "emoji"


class DirectorySource(str, Enum):
    """Where the current snapshot of a collection came from."""

    CACHE_FILE = "cache-file"
    NETWORK = "network"


class ChannelKind(str, Enum):
    """Conversation kinds."""

    PUBLIC = "public"
    PRIVATE = "private"
    IM = "im"
    MPIM = "mpim"


class ChannelField(str, Enum):
    """Columns of a channel listing."""

    ID = "id"
    NAME = "name"
    TOPIC = "topic"
    PURPOSE = "purpose"
    MEMBER_COUNT = "member_count"


class UserField(str, Enum):
    """Columns of a user listing."""

    ID = "id"
    NAME = "name"
    REAL_NAME = "real_name"
    EMAIL = "email"
    STATUS = "status"
    IS_BOT = "is_bot"
    IS_ADMIN = "is_admin"
    TIME_ZONE = "time_zone"
    TITLE = "title"
    PHONE = "phone"


class EmojiField(str, Enum):
    """Columns of an emoji listing."""

    NAME = "name"
    URL = "url"
    IS_CUSTOM = "is_custom"
    ALIASES = "aliases"


class CachedUser(BaseModel):
    """A workspace member keyed by id, indexed by handle."""

    id: str
    handle: str
    display_name: str = ""
    is_bot: bool = False
    is_deleted: bool = False
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def app_id(self) -> str | None:
        """Return the app id a bot user belongs to, if any."""
        profile = self.attributes.get("profile") or {}
        return profile.get("api_app_id") or None


class CachedChannel(BaseModel):
    """A conversation keyed by id, indexed by its selector name.

    ``name`` is stored in selector form: ``#general`` for channels and
    ``@alice`` or ``@mpdm-alice--bob-1`` for direct messages.
    """

    id: str
    name: str
    kind: ChannelKind
    member_count: int = 0
    topic: str = ""
    purpose: str = ""


class CachedEmoji(BaseModel):
    """A custom or common unicode emoji."""

    name: str
    url: str = ""
    is_custom: bool = False
    aliases: list[str] = Field(default_factory=list)


class DirectoryState(BaseModel):
    """Lifecycle state of one directory collection.

    ``ready`` only turns true after a successful cache-file load or network
    refresh and is never reset by a failed refresh.
    """

    collection: Collection
    loaded_at: datetime | None = None
    source: DirectorySource | None = None
    ready: bool = False
    stale: bool = False
    last_error: str | None = None
    refreshing: bool = False
