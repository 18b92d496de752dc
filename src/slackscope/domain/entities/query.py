"""Inbound query parameters and query results."""

from enum import Enum

from pydantic import BaseModel, Field

from slackscope.domain.entities.directory import Collection
from slackscope.domain.entities.message import MessageField, MessageRecord

DEFAULT_HISTORY_FIELDS = "msgID,userUser,realName,text,time"
DEFAULT_SEARCH_FIELDS = "msgID,userUser,realName,channelID,text,time"
DEFAULT_CHANNEL_FIELDS = "id,name"
DEFAULT_USER_FIELDS = "id,name,real_name,status"
DEFAULT_EMOJI_FIELDS = "name,url,is_custom,aliases"


class SortMode(str, Enum):
    """Search result ordering."""

    RELEVANCE = "relevance"
    NEWEST = "newest"
    OLDEST = "oldest"


class ConversationQuery(BaseModel):
    """Parameters of a history or replies query, as supplied by the caller.

    ``limit`` is a window (``50``, ``3d``, ``2w``, ``1m``) and is
    mutually exclusive with ``cursor``.
    """

    channel: str
    limit: str = ""
    cursor: str = ""
    fields: str = DEFAULT_HISTORY_FIELDS
    include_activity_messages: bool = False
    thread_ts: str | None = None


class SearchQuery(BaseModel):
    """Parameters of a message search."""

    query: str = ""
    limit: int = 100
    cursor: str = ""
    fields: str = DEFAULT_SEARCH_FIELDS
    sort: SortMode = SortMode.RELEVANCE
    filter_in_channel: str | None = None
    filter_in_im_or_mpim: str | None = None
    filter_users_with: str | None = None
    filter_users_from: str | None = None
    filter_date_before: str | None = None
    filter_date_after: str | None = None
    filter_date_on: str | None = None
    filter_date_during: str | None = None
    filter_threads_only: bool = False


class QueryResult(BaseModel):
    """Projected page of a history or replies query."""

    records: list[MessageRecord] = Field(default_factory=list)
    fields: tuple[MessageField, ...]
    next_cursor: str | None = None
    include_cursor: bool = False


class Pagination(BaseModel):
    """Upstream search pagination block."""

    total_count: int = 0
    page: int = 1
    per_page: int = 0
    page_count: int = 0
    first: int = 0
    last: int = 0


class SearchResult(BaseModel):
    """Projected page of a search query."""

    records: list[MessageRecord] = Field(default_factory=list)
    fields: tuple[MessageField, ...]
    pagination: Pagination = Field(default_factory=Pagination)
    next_cursor: str | None = None


class ChannelSort(str, Enum):
    """Channel listing order."""

    POPULARITY = "popularity"
    ID = "id"


class UserFilter(str, Enum):
    """User listing subsets."""

    ALL = "all"
    ACTIVE = "active"
    DELETED = "deleted"
    BOTS = "bots"
    HUMANS = "humans"
    ADMINS = "admins"


class EmojiType(str, Enum):
    """Emoji listing subsets."""

    ALL = "all"
    CUSTOM = "custom"
    UNICODE = "unicode"


class ChannelListQuery(BaseModel):
    """Parameters of a channel directory listing.

    ``channel_types`` is a comma-separated subset of ``public_channel``,
    ``private_channel``, ``im`` and ``mpim``.
    """

    query: str = ""
    channel_types: str = "public_channel"
    sort: ChannelSort = ChannelSort.POPULARITY
    min_members: int = 0
    cursor: str = ""
    limit: int = 1000
    fields: str = DEFAULT_CHANNEL_FIELDS


class UserListQuery(BaseModel):
    """Parameters of a user directory listing."""

    query: str = ""
    filter: UserFilter = UserFilter.ALL
    include_deleted: bool = False
    include_bots: bool = True
    cursor: str = ""
    limit: int = 1000
    fields: str = DEFAULT_USER_FIELDS


class EmojiListQuery(BaseModel):
    """Parameters of an emoji directory listing."""

    query: str = ""
    type: EmojiType = EmojiType.ALL
    cursor: str = ""
    limit: int = 1000
    fields: str = DEFAULT_EMOJI_FIELDS


class DirectoryPage(BaseModel):
    """One page of a directory listing, already projected to columns."""

    collection: Collection
    columns: tuple[str, ...]
    records: list[tuple[str, ...]] = Field(default_factory=list)
    total: int = 0
    next_cursor: str | None = None
