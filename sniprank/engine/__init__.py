"""Search-and-rank pipeline."""

from .config import Config, RankingWeights
from .errors import QueryValidationError, SearchError, SearchTimeoutError, UpstreamError
from .models import CandidateResult, Feedback, RankedResult, SearchContext, SearchFilter, SearchOptions
from .service import CodeSearchService

__all__ = [
    "CandidateResult",
    "CodeSearchService",
    "Config",
    "Feedback",
    "QueryValidationError",
    "RankedResult",
    "RankingWeights",
    "SearchContext",
    "SearchError",
    "SearchFilter",
    "SearchOptions",
    "SearchTimeoutError",
    "UpstreamError",
]
