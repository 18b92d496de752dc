"""Domain entities."""

from slackscope.domain.entities.credential import (
    Credential,
    DelegatedCredential,
    Identity,
    ImpersonatedCredential,
    TeamScope,
)
from slackscope.domain.entities.directory import (
    CachedChannel,
    CachedEmoji,
    CachedUser,
    ChannelField,
    ChannelKind,
    Collection,
    DirectorySource,
    DirectoryState,
    EmojiField,
    UserField,
)
from slackscope.domain.entities.message import MessageField, MessageRecord, Reaction
from slackscope.domain.entities.query import (
    ChannelListQuery,
    ChannelSort,
    ConversationQuery,
    DirectoryPage,
    EmojiListQuery,
    EmojiType,
    Pagination,
    QueryResult,
    SearchQuery,
    SearchResult,
    SortMode,
    UserFilter,
    UserListQuery,
)

__all__ = [
    "CachedChannel",
    "CachedEmoji",
    "CachedUser",
    "ChannelField",
    "ChannelKind",
    "ChannelListQuery",
    "ChannelSort",
    "Collection",
    "ConversationQuery",
    "Credential",
    "DelegatedCredential",
    "DirectoryPage",
    "DirectorySource",
    "DirectoryState",
    "EmojiField",
    "EmojiListQuery",
    "EmojiType",
    "Identity",
    "ImpersonatedCredential",
    "MessageField",
    "MessageRecord",
    "Pagination",
    "QueryResult",
    "Reaction",
    "SearchQuery",
    "SearchResult",
    "SortMode",
    "TeamScope",
    "UserField",
    "UserFilter",
    "UserListQuery",
]
