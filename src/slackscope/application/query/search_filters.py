"""Search query composition and date filter parsing."""

import re
from datetime import UTC, date, datetime, timedelta

from slackscope.domain.errors import QueryValidationError

# Filter keys in the order they are emitted
FILTER_KEYS = ("is", "in", "from", "with", "before", "after", "on", "during")

_NUMERIC_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)

_MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

# Patterns with a month name, paired with the meaning of each group
_NAMED_MONTH_PATTERNS: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (re.compile(r"^(\d{4})\s+([A-Za-z]+)$"), ("y", "m")),
    (re.compile(r"^([A-Za-z]+)\s+(\d{4})$"), ("m", "y")),
    (re.compile(r"^(\d{1,2})[-\s]+([A-Za-z]+)[-\s]+(\d{4})$"), ("d", "m", "y")),
    (re.compile(r"^([A-Za-z]+)[-\s]+(\d{1,2})[-\s]+(\d{4})$"), ("m", "d", "y")),
    (re.compile(r"^(\d{4})[-\s]+([A-Za-z]+)[-\s]+(\d{1,2})$"), ("y", "m", "d")),
)
_DAYS_AGO = re.compile(r"^(\d+)\s+days?\s+ago$")


def split_query(raw: str) -> tuple[list[str], dict[str, list[str]]]:
    """Split a search string into free text and ``key:value`` filters."""
    free_text: list[str] = []
    filters: dict[str, list[str]] = {}
    for token in raw.split():
        key, sep, value = token.partition(":")
        if sep and key.lower() in FILTER_KEYS:
            add_filter(filters, key.lower(), value)
        else:
            free_text.append(token)
    return free_text, filters


def add_filter(filters: dict[str, list[str]], key: str, value: str) -> None:
    """Add a filter value unless it is already present."""
    values = filters.setdefault(key, [])
    if value not in values:
        values.append(value)


def build_query(free_text: list[str], filters: dict[str, list[str]]) -> str:
    """Join free text and filters back into a search string."""
    parts = list(free_text)
    for key in FILTER_KEYS:
        parts.extend(f"{key}:{value}" for value in filters.get(key, []))
    return " ".join(parts)


def _month_date(year: int, month_name: str, day: int) -> date | None:
    month = _MONTHS.get(month_name.lower())
    if month is None:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_flexible_date(value: str, today: date | None = None) -> date:
    """Parse a date written in one of the accepted forms.

    Accepts ISO, US and EU numeric dates, month names (``Jan 2, 2024``,
    ``2 January 2024``, ``2024 March``), ``today``, ``yesterday``,
    ``tomorrow`` and ``N days ago``. Relative forms count in UTC days.

    Raises:
        ValueError: If the value matches none of the forms.
    """
    value = value.strip()
    for fmt in _NUMERIC_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    for pattern, order in _NAMED_MONTH_PATTERNS:
        match = pattern.match(value)
        if match is None:
            continue
        parts = dict(zip(order, match.groups(), strict=True))
        parsed = _month_date(int(parts["y"]), parts["m"], int(parts.get("d", 1)))
        if parsed is not None:
            return parsed

    current = today or datetime.now(UTC).date()
    lower = value.lower()
    relative = {"today": 0, "yesterday": -1, "tomorrow": 1}
    if lower in relative:
        return current + timedelta(days=relative[lower])
    match = _DAYS_AGO.match(lower)
    if match is not None:
        return current - timedelta(days=int(match.group(1)))

    raise ValueError(f"unable to parse date: {value}")


def _parse(field: str, value: str, today: date | None) -> date:
    try:
        return parse_flexible_date(value, today)
    except ValueError as e:
        raise QueryValidationError(field, f"invalid date for {field}: {e}") from e


def build_date_filters(
    before: str | None = None,
    after: str | None = None,
    on: str | None = None,
    during: str | None = None,
    today: date | None = None,
) -> dict[str, str]:
    """Validate date filters and normalize them to ``YYYY-MM-DD``.

    Raises:
        QueryValidationError: If a date is unparseable, ``on`` or ``during``
            is combined with other date filters, or ``after`` is later than
            ``before``.
    """
    if on:
        if before or after or during:
            raise QueryValidationError(
                "filter_date_on", "'on' cannot be combined with other date filters"
            )
        return {"on": _parse("filter_date_on", on, today).isoformat()}
    if during:
        if before or after:
            raise QueryValidationError(
                "filter_date_during",
                "'during' cannot be combined with 'before' or 'after'",
            )
        return {"during": _parse("filter_date_during", during, today).isoformat()}

    filters: dict[str, str] = {}
    after_date = _parse("filter_date_after", after, today) if after else None
    before_date = _parse("filter_date_before", before, today) if before else None
    if after_date and before_date and after_date > before_date:
        raise QueryValidationError(
            "filter_date_after,filter_date_before",
            "'after' date is later than 'before' date",
        )
    if after_date:
        filters["after"] = after_date.isoformat()
    if before_date:
        filters["before"] = before_date.isoformat()
    return filters
