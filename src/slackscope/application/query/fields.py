"""Requested field list parsing."""

from enum import Enum
from typing import TypeVar

from slackscope.domain.entities.message import MessageField
from slackscope.domain.errors import QueryValidationError

F = TypeVar("F", bound=Enum)

HISTORY_FIELDS: tuple[MessageField, ...] = (
    MessageField.MSG_ID,
    MessageField.USER_ID,
    MessageField.USER_HANDLE,
    MessageField.REAL_NAME,
    MessageField.CHANNEL_ID,
    MessageField.THREAD_TS,
    MessageField.TEXT,
    MessageField.TIME,
    MessageField.REACTIONS,
    MessageField.CURSOR,
)

# Search pages through its own cursor in the header block
SEARCH_FIELDS: tuple[MessageField, ...] = (
    MessageField.MSG_ID,
    MessageField.USER_ID,
    MessageField.USER_HANDLE,
    MessageField.REAL_NAME,
    MessageField.CHANNEL_ID,
    MessageField.THREAD_TS,
    MessageField.TEXT,
    MessageField.TIME,
    MessageField.REACTIONS,
    MessageField.PERMALINK,
)


def parse_fields(raw: str, allowed: tuple[F, ...], default: str) -> tuple[F, ...]:
    """Parse a comma-separated field list into an ordered tuple.

    Duplicates collapse onto their first occurrence. ``all`` expands to every
    allowed field and an empty list falls back to ``default``. Names match
    case-insensitively.

    Raises:
        QueryValidationError: If a name is unknown or not allowed here.
    """
    raw = raw.strip() or default
    if raw.lower() == "all":
        return allowed

    by_name = {f.value.lower(): f for f in allowed}
    fields: list[F] = []
    for name in raw.split(","):
        name = name.strip()
        if not name:
            continue
        field = by_name.get(name.lower())
        if field is None:
            raise QueryValidationError(
                "fields",
                f"unknown field {name!r}; known fields: "
                + ",".join(f.value for f in allowed)
                + " or 'all'",
            )
        if field not in fields:
            fields.append(field)
    if not fields:
        raise QueryValidationError("fields", "at least one field must be requested")
    return tuple(fields)
