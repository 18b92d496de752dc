"""Message records produced by the conversation query engine."""

from enum import Enum

from pydantic import BaseModel, Field


class MessageField(str, Enum):
    """Projectable message fields, valued by their external names."""

    MSG_ID = "msgID"
    USER_ID = "userID"
    USER_HANDLE = "userUser"
    REAL_NAME = "realName"
    CHANNEL_ID = "channelID"
    THREAD_TS = "threadTs"
    TEXT = "text"
    TIME = "time"
    REACTIONS = "reactions"
    CURSOR = "cursor"
    PERMALINK = "permalink"


# Record attribute backing each field
FIELD_ATTRIBUTES: dict[MessageField, str] = {
    MessageField.MSG_ID: "msg_id",
    MessageField.USER_ID: "user_id",
    MessageField.USER_HANDLE: "user_handle",
    MessageField.REAL_NAME: "real_name",
    MessageField.CHANNEL_ID: "channel_id",
    MessageField.THREAD_TS: "thread_ts",
    MessageField.TEXT: "text",
    MessageField.TIME: "time",
    MessageField.REACTIONS: "reactions",
    MessageField.CURSOR: "cursor",
    MessageField.PERMALINK: "permalink",
}


class Reaction(BaseModel):
    """One emoji reaction on a message."""

    name: str
    count: int
    users: list[str] = Field(default_factory=list)


class MessageRecord(BaseModel):
    """A message projected onto the requested fields.

    Attributes left as None were not requested and were never computed.
    """

    msg_id: str | None = None
    user_id: str | None = None
    user_handle: str | None = None
    real_name: str | None = None
    channel_id: str | None = None
    thread_ts: str | None = None
    text: str | None = None
    time: str | None = None
    reactions: str | None = None
    cursor: str | None = None
    permalink: str | None = None

    def value(self, field: MessageField) -> str:
        """Return the rendered value of a field, empty when unset."""
        value = getattr(self, FIELD_ATTRIBUTES[field])
        return "" if value is None else value
