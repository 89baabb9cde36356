"""Upstream search orchestration: candidate retrieval, filtering and timeout racing."""

import asyncio
import re
from pathlib import PurePath
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from .collaborators import SimilaritySearch
from .errors import SearchError, SearchTimeoutError, UpstreamError
from .models import CandidateResult, FilterOperator, SearchFilter, SearchOptions


def _file_type(candidate: CandidateResult) -> str:
    suffix = PurePath(candidate.file_path).suffix
    return suffix[1:] if suffix else ''


FILTER_FIELDS: Dict[str, Callable[[CandidateResult], str]] = {
    'file': lambda c: c.file_path,
    'function': lambda c: c.function_name or '',
    'class': lambda c: c.class_name or '',
    'namespace': lambda c: c.namespace or '',
    'fileType': _file_type,
}

# snake_case aliases
FILTER_FIELDS.update({
    'file_path': FILTER_FIELDS['file'],
    'function_name': FILTER_FIELDS['function'],
    'class_name': FILTER_FIELDS['class'],
    'file_type': FILTER_FIELDS['fileType'],
})


class CompiledFilter:
    """A filter prepared for repeated evaluation within one search call."""

    def __init__(self, definition: SearchFilter):
        self.definition = definition
        self.accessor = FILTER_FIELDS.get(definition.field)
        self.regex: Optional[re.Pattern] = None
        self.rejects_all = False

        if self.accessor is None:
            logger.debug(f"Ignoring filter on unknown field: {definition.field}")

        if definition.operator is FilterOperator.REGEX:
            try:
                self.regex = re.compile(definition.value)
            except re.error as e:
                logger.warning(f"Invalid filter regex {definition.value!r}: {e}; excluding all candidates")
                self.rejects_all = True

    def matches(self, candidate: CandidateResult) -> bool:
        if self.rejects_all:
            return False
        if self.accessor is None:
            return True

        value = self.accessor(candidate)
        operator = self.definition.operator

        if operator is FilterOperator.EQUALS:
            return value == self.definition.value
        if operator is FilterOperator.CONTAINS:
            return self.definition.value in value
        if operator is FilterOperator.STARTS_WITH:
            return value.startswith(self.definition.value)
        return self.regex.search(value) is not None


def apply_filters(candidates: Sequence[CandidateResult],
                  filters: Sequence[SearchFilter]) -> List[CandidateResult]:
    """Keep candidates that satisfy every filter."""
    if not filters:
        return list(candidates)
    compiled = [CompiledFilter(f) for f in filters]
    return [c for c in candidates if all(f.matches(c) for f in compiled)]


def _discard_late_result(task: asyncio.Future) -> None:
    """Consume the outcome of an abandoned upstream call."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned upstream search finished with error: {error}")
    else:
        logger.debug("Discarded late upstream response")


class SearchOrchestrator:
    """Requests candidates upstream and shapes them for ranking."""

    def __init__(self, similarity_search: SimilaritySearch, max_results: int = 50):
        """
        Args:
            similarity_search: Upstream collaborator
            max_results: Upper bound on candidates requested per call
        """
        self.similarity_search = similarity_search
        self.max_results = max_results

    async def execute_search(self,
                             processed_query: str,
                             options: SearchOptions) -> List[CandidateResult]:
        """
        Fetch, threshold, filter and truncate candidates.

        Requests twice ``top_k`` so filtering still leaves enough results.
        """
        top_k = options.top_k
        k = min(top_k * 2, self.max_results)

        try:
            raw = await self.similarity_search.search_similar(processed_query, k)
        except asyncio.CancelledError:
            raise
        except SearchError:
            raise
        except Exception as e:
            logger.error(f"Similarity search failed: {e}")
            raise UpstreamError(
                f"Similarity search failed: {e}",
                query=processed_query,
                options=options,
                original_error=e
            ) from e

        threshold = options.similarity_threshold
        passing = [c for c in raw if c.score >= threshold]
        passing = apply_filters(passing, options.filters)

        logger.debug(
            f"Upstream returned {len(raw)} candidates, {len(passing)} passed "
            f"threshold {threshold} and {len(options.filters)} filters"
        )
        return passing[:top_k]

    async def search(self,
                     processed_query: str,
                     options: SearchOptions) -> List[CandidateResult]:
        """
        Run ``execute_search`` against the caller's timeout.

        On timeout the upstream task is cancelled and left to finish on its
        own; its result, if any, is discarded.
        """
        timeout = options.search_timeout_ms / 1000.0
        task = asyncio.ensure_future(self.execute_search(processed_query, options))

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_discard_late_result)
            raise

        if task not in done:
            task.cancel()
            task.add_done_callback(_discard_late_result)
            logger.warning(f"Search timed out after {options.search_timeout_ms}ms: {processed_query!r}")
            raise SearchTimeoutError(
                f"Search timed out after {options.search_timeout_ms}ms",
                query=processed_query,
                options=options
            )

        return task.result()
