"""Error taxonomy surfaced to callers of the query core.

Every error carries a stable ``kind`` plus the structured detail a caller
needs to act on it (offending field, collection, retry hint) without parsing
the message text.
"""

from typing import Any


class SlackscopeError(Exception):
    """Base class for all errors raised by the query core."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable description of the error."""
        return {"error": self.kind, "message": self.message}


class QueryValidationError(SlackscopeError):
    """Caller input rejected before any network call."""

    kind = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field}


class TeamAmbiguityError(QueryValidationError):
    """A team-scoped operation was requested without choosing a team."""

    kind = "team_ambiguous"

    def __init__(self, operation: str, teams: list[str]) -> None:
        super().__init__(
            "team_id",
            f"operation {operation!r} must disambiguate team: identity can "
            f"reach {len(teams)} teams ({', '.join(teams)}), pass team_id",
        )
        self.operation = operation
        self.teams = list(teams)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "teams": self.teams}


class NotReadyError(SlackscopeError):
    """A directory collection has not completed its first population."""

    kind = "not_ready"

    def __init__(self, collection: str) -> None:
        super().__init__(
            f"{collection} cache is not ready yet, sync process is still "
            f"running... please retry once the {collection} directory is populated"
        )
        self.collection = collection

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "collection": self.collection}


class NotFoundError(SlackscopeError):
    """A selector did not resolve although its collection is ready."""

    kind = "not_found"

    def __init__(self, selector: str, collection: str) -> None:
        super().__init__(f"{selector!r} not found in {collection} directory")
        self.selector = selector
        self.collection = collection

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "selector": self.selector,
            "collection": self.collection,
        }


class RateLimitedError(SlackscopeError):
    """The request budget for an endpoint class is exhausted."""

    kind = "rate_limited"

    def __init__(self, endpoint_class: str, retry_after: float) -> None:
        super().__init__(
            f"rate limited on {endpoint_class} endpoints, retry after "
            f"{retry_after:.1f}s"
        )
        self.endpoint_class = endpoint_class
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "endpoint_class": self.endpoint_class,
            "retry_after": round(self.retry_after, 3),
        }


class UpstreamAuthError(SlackscopeError):
    """The upstream rejected the configured credentials."""

    kind = "upstream_auth"

    def __init__(self, operation: str, code: str) -> None:
        super().__init__(f"{operation} rejected credentials: {code}")
        self.operation = operation
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "operation": self.operation, "code": self.code}


class UpstreamError(SlackscopeError):
    """Any other non-ok upstream response."""

    kind = "upstream_error"

    def __init__(self, operation: str, code: str, retryable: bool = False) -> None:
        super().__init__(f"{operation} failed: {code}")
        self.operation = operation
        self.code = code
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "operation": self.operation,
            "code": self.code,
            "retryable": self.retryable,
        }
