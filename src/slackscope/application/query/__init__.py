"""Query input parsing."""

from slackscope.application.query.fields import HISTORY_FIELDS, SEARCH_FIELDS, parse_fields
from slackscope.application.query.search_filters import (
    add_filter,
    build_date_filters,
    build_query,
    parse_flexible_date,
    split_query,
)
from slackscope.application.query.window import Window, parse_window

__all__ = [
    "HISTORY_FIELDS",
    "SEARCH_FIELDS",
    "Window",
    "add_filter",
    "build_date_filters",
    "build_query",
    "parse_fields",
    "parse_flexible_date",
    "parse_window",
    "split_query",
]
