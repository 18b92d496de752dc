"""CSV rendering of projected query results and directory listings."""

import csv
import io
from collections.abc import Iterable, Sequence

from slackscope.domain.entities.directory import Collection
from slackscope.domain.entities.message import MessageField, MessageRecord
from slackscope.domain.entities.query import DirectoryPage, QueryResult, SearchResult

LAST_PAGE = "(none - last page)"

DIRECTORY_TOTALS = {
    Collection.USERS: "Total users",
    Collection.CHANNELS: "Total channels",
    Collection.EMOJI: "Total emojis",
}


def render(
    records: Iterable[MessageRecord],
    fields: Sequence[MessageField],
    metadata: Sequence[tuple[str, object]] | None = None,
) -> str:
    """Render records as ``# key: value`` header lines followed by CSV.

    Columns follow the order of ``fields``. The header row is always
    written, so an empty result still renders the column names.
    """
    return render_table(
        [f.value for f in fields],
        ([record.value(f) for f in fields] for record in records),
        metadata,
    )


def render_table(
    columns: Sequence[str],
    rows: Iterable[Sequence[object]],
    metadata: Sequence[tuple[str, object]] | None = None,
) -> str:
    """Render ``# key: value`` header lines, a header row and the rows as CSV."""
    buffer = io.StringIO()
    for key, value in metadata or ():
        buffer.write(f"# {key}: {value}\n")
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    writer.writerows(rows)
    return buffer.getvalue()


def query_metadata(result: QueryResult) -> list[tuple[str, object]]:
    """Header lines for history and replies; only when a cursor was requested."""
    if not result.include_cursor:
        return []
    return [
        ("Returned in this page", len(result.records)),
        ("Next cursor", result.next_cursor or LAST_PAGE),
    ]


def search_metadata(result: SearchResult) -> list[tuple[str, object]]:
    """Header lines for search results."""
    pagination = result.pagination
    lines: list[tuple[str, object]] = [
        ("Total messages", pagination.total_count),
        ("Total pages", pagination.page_count),
        ("Current page", pagination.page),
        ("Items per page", pagination.per_page),
        ("Returned in this page", len(result.records)),
    ]
    if pagination.first > 0 and pagination.last > 0:
        lines.append(("Item range", f"{pagination.first}-{pagination.last}"))
    lines.append(("Next cursor", result.next_cursor or LAST_PAGE))
    return lines


def render_query_result(result: QueryResult) -> str:
    """Render a history or replies page."""
    return render(result.records, result.fields, query_metadata(result))


def render_search_result(result: SearchResult) -> str:
    """Render a search page."""
    return render(result.records, result.fields, search_metadata(result))


def directory_metadata(page: DirectoryPage) -> list[tuple[str, object]]:
    """Header lines for directory listings."""
    return [
        (DIRECTORY_TOTALS[page.collection], page.total),
        ("Returned in this page", len(page.records)),
        ("Next cursor", page.next_cursor or LAST_PAGE),
    ]


def render_directory_page(page: DirectoryPage) -> str:
    """Render a users, channels or emoji listing page."""
    return render_table(page.columns, page.records, directory_metadata(page))
