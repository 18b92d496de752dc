"""Window limit parsing for history queries."""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta

from slackscope.domain.errors import QueryValidationError

# Page size used for time windows and cursor continuation
WINDOW_PAGE_SIZE = 100

_SUFFIXES = "dwm"


@dataclass(frozen=True)
class Window:
    """Upstream paging bounds derived from a window limit."""

    limit: int
    oldest: str | None = None
    latest: str | None = None


def format_ts(moment: datetime) -> str:
    """Format a datetime as an upstream timestamp at second precision."""
    return f"{int(moment.timestamp())}.000000"


def _is_count(value: str) -> bool:
    return value.isascii() and value.isdigit()


def _subtract_months(moment: datetime, months: int) -> datetime:
    total = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def parse_window(limit: str, now: datetime | None = None) -> Window:
    """Parse a window limit.

    ``<n>`` is a message count used as the page size. ``<n>d``, ``<n>w`` and
    ``<n>m`` select a time window ending now and starting at local midnight
    ``n`` days, weeks or months back, where ``1d`` means today.

    Args:
        limit: The window limit.
        now: Current local time, for testing.

    Raises:
        QueryValidationError: If the limit is malformed.
    """
    limit = limit.strip()
    if not limit:
        raise QueryValidationError("limit", "limit must be provided when no cursor is given")
    if _is_count(limit):
        count = int(limit)
        if count <= 0:
            raise QueryValidationError("limit", f"invalid limit {limit!r}: must be positive")
        return Window(limit=count)

    if len(limit) < 2:
        raise QueryValidationError("limit", f"invalid limit {limit!r}: too short")
    suffix, digits = limit[-1], limit[:-1]
    if suffix not in _SUFFIXES:
        raise QueryValidationError(
            "limit",
            f"invalid limit {limit!r}: must be a positive integer, optionally "
            "followed by 'd', 'w' or 'm'",
        )
    if not _is_count(digits) or int(digits) <= 0:
        raise QueryValidationError(
            "limit",
            f"invalid limit {limit!r}: must be a positive integer followed by "
            "'d', 'w' or 'm'",
        )
    count = int(digits)

    # Naive local time so day arithmetic follows wall-clock midnight
    current = now or datetime.now()
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    if suffix == "d":
        oldest = midnight - timedelta(days=count - 1)
    elif suffix == "w":
        oldest = midnight - timedelta(days=count * 7 - 1)
    else:
        oldest = _subtract_months(midnight, count)
    return Window(
        limit=WINDOW_PAGE_SIZE,
        oldest=format_ts(oldest),
        latest=format_ts(current),
    )
