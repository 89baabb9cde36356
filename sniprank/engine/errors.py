"""Exception taxonomy for the search pipeline.

Only validation, timeout and upstream failures ever reach the caller.
Invalid filters and ranking failures are absorbed inside the pipeline.
"""

from typing import Optional

from .models import SearchOptions


class SearchError(Exception):
    """Base class for errors surfaced by a search call."""

    def __init__(self,
                 message: str,
                 query: str = "",
                 options: Optional[SearchOptions] = None,
                 original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.query = query
        self.options = options
        self.original_error = original_error

    def __str__(self) -> str:
        base = super().__str__()
        if self.query:
            return f"{base} (query={self.query!r})"
        return base


class QueryValidationError(SearchError):
    """The query was empty or whitespace only."""


class SearchTimeoutError(SearchError):
    """The upstream similarity search exceeded the caller's budget."""


class UpstreamError(SearchError):
    """The similarity-search collaborator failed."""
