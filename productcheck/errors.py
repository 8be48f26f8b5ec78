"""Exception types shared by the suggestion and verification paths."""
from __future__ import annotations


class ProductCheckError(Exception):
    """Base class for errors raised by this package."""


class QueryValidationError(ProductCheckError, ValueError):
    """Query is empty or shorter than the configured minimum length."""

    def __init__(self, query: str, min_length: int) -> None:
        super().__init__(f"Query {query!r} is shorter than {min_length} characters")
        self.query = query
        self.min_length = min_length


class SourceError(ProductCheckError):
    """A source adapter could not produce an answer."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class SourceTimeoutError(SourceError):
    """An external source exceeded its timeout budget."""

    def __init__(self, source: str, budget_ms: int) -> None:
        super().__init__(source, f"timed out after {budget_ms}ms")
        self.budget_ms = budget_ms


class SourceFailureError(SourceError):
    """Transport or payload failure while talking to a source."""


class AllSourcesFailedError(SourceFailureError):
    """Every external source errored during a validation."""

    def __init__(self, statuses: list, message: str) -> None:
        super().__init__("external", message)
        self.statuses = statuses


class RequestSuperseded(ProductCheckError):
    """Raised to unwind work whose request token is no longer current.

    Not a failure: callers drop the outcome without logging it as an error.
    """

    def __init__(self, seq: int) -> None:
        super().__init__(f"request #{seq} was superseded")
        self.seq = seq
