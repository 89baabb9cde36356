"""Search service facade: preprocessing, caching, upstream search and ranking."""

import dataclasses
import threading
import time
from collections import OrderedDict
from pathlib import PurePath
from typing import Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from .cache import ResultCache
from .collaborators import (
    FeedbackStore, FileStat, HttpSimilaritySearch, JsonFeedbackStore, LocalFileStat,
    SimilaritySearch
)
from .config import Config, RankingWeights
from .errors import QueryValidationError, SearchError
from .metrics import LatencyTimer, SearchMetrics
from .models import (
    CandidateResult, ExperimentResult, Feedback, RankedResult, RankingExplanation,
    SearchContext, SearchOptions, SearchStats, UserInteraction
)
from .preferences import UserPreferenceModel
from .query import QueryPreprocessor
from .ranking import DISABLED_EXPLANATION, RankingEngine, neutral_result
from .retry import RetryPolicy
from .search_orchestrator import SearchOrchestrator
from .structure import StructuralContextAnalyzer, infer_enclosing_function

WeightsLike = Union[RankingWeights, Dict[str, float]]


def context_snippet(candidate: CandidateResult) -> str:
    parts = []
    if candidate.function_name:
        parts.append(f"Function: {candidate.function_name}")
    if candidate.class_name:
        parts.append(f"Class: {candidate.class_name}")
    if candidate.namespace:
        parts.append(f"Namespace: {candidate.namespace}")
    suffix = f" ({', '.join(parts)})" if parts else ""
    return f"{candidate.file_path}:{candidate.start_line}{suffix}"


class CodeSearchService:
    """
    Ranks code search results for natural-language queries.

    Wires the query preprocessor, result cache, upstream orchestrator,
    structural analyzer, preference model and ranking engine. One instance
    is safe to share between concurrent ``search`` calls.
    """

    def __init__(self,
                 similarity_search: SimilaritySearch,
                 config: Optional[Config] = None,
                 file_stat: Optional[FileStat] = None,
                 feedback_store: Optional[FeedbackStore] = None,
                 clock: Callable[[], float] = time.time,
                 cache_clock: Callable[[], float] = time.monotonic):
        self.config = config or Config()
        self.similarity_search = similarity_search

        self.preprocessor = QueryPreprocessor()
        self.cache = ResultCache(
            max_size=self.config.cache.max_size,
            ttl_seconds=self.config.cache.ttl_seconds,
            clock=cache_clock
        ) if self.config.cache.enabled else None
        self.orchestrator = SearchOrchestrator(
            similarity_search,
            max_results=self.config.search.max_results
        )
        self.analyzer = StructuralContextAnalyzer()
        self.preferences = UserPreferenceModel(
            store=feedback_store,
            max_history=self.config.preferences.max_history,
            half_life_days=self.config.preferences.half_life_days,
            analyzer=self.analyzer,
            clock=clock
        )
        self.ranker = RankingEngine(
            config=self.config.ranking,
            analyzer=self.analyzer,
            preferences=self.preferences,
            file_stat=file_stat if file_stat is not None else LocalFileStat(),
            clock=clock
        )
        self.metrics = SearchMetrics()

        # Results handed out recently, so feedback can be tied to file/function/class
        self._returned: "OrderedDict[str, CandidateResult]" = OrderedDict()
        self._returned_limit = self.config.cache.max_size
        self._returned_lock = threading.Lock()

        logger.info("Code search service initialized")

    @classmethod
    def from_config(cls, config: Config,
                    similarity_search: Optional[SimilaritySearch] = None) -> "CodeSearchService":
        """Build a service with collaborators described by ``config``."""
        if similarity_search is None:
            upstream = config.upstream
            if not upstream.base_url:
                raise ValueError("No similarity search given and upstream.base_url is not set")
            similarity_search = HttpSimilaritySearch(
                upstream.base_url,
                max_concurrency=upstream.max_concurrency,
                retry_policy=RetryPolicy(
                    max_retries=upstream.max_retries,
                    base_delay=upstream.base_delay,
                    max_delay=upstream.max_delay
                ),
                timeout=upstream.request_timeout
            )

        store = None
        if config.preferences.feedback_path:
            store = JsonFeedbackStore(config.preferences.feedback_path)

        return cls(similarity_search, config=config, feedback_store=store)

    async def initialize(self) -> None:
        """Load persisted feedback history."""
        await self.preferences.load()

    async def close(self) -> None:
        close = getattr(self.similarity_search, 'close', None)
        if close is not None:
            await close()

    def resolve_options(self, options: Optional[SearchOptions] = None) -> SearchOptions:
        """Fill unset options from configuration defaults."""
        options = options or SearchOptions()
        defaults = self.config.search
        return dataclasses.replace(
            options,
            top_k=options.top_k if options.top_k is not None else defaults.default_top_k,
            similarity_threshold=(
                options.similarity_threshold
                if options.similarity_threshold is not None else defaults.default_threshold
            ),
            search_timeout_ms=(
                options.search_timeout_ms
                if options.search_timeout_ms is not None else defaults.search_timeout_ms
            ),
            enable_query_expansion=(
                options.enable_query_expansion
                if options.enable_query_expansion is not None else defaults.query_expansion
            ),
            include_context=(
                options.include_context
                if options.include_context is not None else defaults.context_snippets
            ),
            filters=tuple(options.filters)
        )

    @staticmethod
    def _validate(query: str, options: Optional[SearchOptions]) -> None:
        if not query or not query.strip():
            raise QueryValidationError("Query cannot be empty", query=query, options=options)

    async def search(self,
                     query: str,
                     options: Optional[SearchOptions] = None,
                     current_file: Optional[str] = None,
                     current_function: Optional[str] = None) -> List[RankedResult]:
        """
        Search and rank code snippets for a natural-language query.

        Args:
            query: Natural-language query
            options: Per-call options; unset fields come from config
            current_file: Hint used when options carry no search context
            current_function: Hint used when options carry no search context

        Raises:
            QueryValidationError: Empty query
            SearchTimeoutError: Upstream exceeded the timeout
            UpstreamError: Upstream failed
        """
        self._validate(query, options)
        start = time.perf_counter()
        options = self.resolve_options(options)
        self.metrics.record_query(query)

        use_cache = self.cache is not None and options.cache_results
        cache_key = ResultCache.make_key(query, options)

        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.metrics.record_cache(hit=True)
                self._remember(cached)
                self.metrics.record_search((time.perf_counter() - start) * 1000)
                logger.debug(f"Cache hit for query: {query!r}")
                return cached
            self.metrics.record_cache(hit=False)

        processed = self.preprocessor.process(query, options.enable_query_expansion)

        try:
            candidates = await self.orchestrator.search(processed, options)
        except SearchError as e:
            self.metrics.increment(type(e).__name__)
            logger.error(f"Search failed for {query!r}: {e}")
            raise

        context = options.search_context or self.build_default_context(
            query, current_file=current_file, current_function=current_function
        )
        results = await self._rank(candidates, query, context, options.enable_ranking)

        if options.include_context:
            for result in results:
                result.context_snippet = context_snippet(result.candidate)

        self._remember(results)
        if use_cache:
            self.cache.put(cache_key, results)

        latency_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_search(latency_ms)
        logger.info(f"Search completed in {latency_ms:.1f}ms, found {len(results)} results")
        return results

    async def search_with_context(self,
                                  query: str,
                                  context: SearchContext,
                                  options: Optional[SearchOptions] = None) -> List[RankedResult]:
        """Search with an explicit context; ranking is always enabled."""
        options = dataclasses.replace(
            options or SearchOptions(), search_context=context, enable_ranking=True
        )
        return await self.search(query, options)

    async def _rank(self,
                    candidates: List[CandidateResult],
                    query: str,
                    context: SearchContext,
                    enable_ranking: bool) -> List[RankedResult]:
        if not candidates:
            logger.info(f"No candidates found for {query!r}")
            return []

        if not enable_ranking:
            return [
                neutral_result(candidate, position, DISABLED_EXPLANATION)
                for position, candidate in enumerate(candidates, start=1)
            ]

        with LatencyTimer(self.metrics, "search.ranking"):
            return await self.ranker.rank(candidates, query, context)

    def _remember(self, results: Sequence[RankedResult]) -> None:
        with self._returned_lock:
            for result in results:
                self._returned[result.id] = result.candidate
                self._returned.move_to_end(result.id)
            while len(self._returned) > self._returned_limit:
                self._returned.popitem(last=False)

    async def record_feedback(self,
                              result_id: str,
                              feedback: Feedback,
                              query_text: str,
                              result: Optional[CandidateResult] = None) -> UserInteraction:
        """
        Record user feedback on a result.

        When ``result`` is omitted, the candidate is looked up among results
        this service returned recently.
        """
        if result is None:
            with self._returned_lock:
                result = self._returned.get(result_id)
            if result is None:
                logger.debug(f"Feedback for unknown result {result_id}; storing id only")
        return await self.preferences.record_feedback(result_id, feedback, query_text, result)

    def invalidate_cache(self, pattern: Optional[str] = None) -> int:
        if self.cache is None:
            return 0
        return self.cache.invalidate(pattern)

    def update_weights(self, partial: Dict[str, float]) -> RankingWeights:
        return self.ranker.update_weights(partial)

    def explain(self, result: RankedResult) -> RankingExplanation:
        return self.ranker.explain(result)

    def get_stats(self) -> SearchStats:
        user_stats = self.preferences.get_interaction_stats()
        total = self.metrics.histograms["search.total"]
        return SearchStats(
            total_searches=self.metrics.counters['searches'],
            ranked_searches=self.metrics.counters['ranked_searches'],
            cache_hit_rate=self.metrics.cache_hit_rate,
            average_latency_ms=self.metrics.average_latency_ms,
            average_ranking_latency_ms=self.metrics.average_ranking_latency_ms,
            p50_latency_ms=total.get_percentile(50),
            p95_latency_ms=total.get_percentile(95),
            user_interactions=int(user_stats['total_interactions']),
            average_user_rating=user_stats['average_rating'],
            top_queries=self.metrics.top_queries(10),
            top_file_types=user_stats['top_file_types'],
            top_namespaces=user_stats['top_namespaces'],
            top_structure_kinds=user_stats['top_structure_kinds']
        )

    async def run_experiment(self,
                             query: str,
                             control_weights: WeightsLike,
                             test_weights: WeightsLike,
                             options: Optional[SearchOptions] = None) -> ExperimentResult:
        """
        Rank one candidate set under two weight configurations.

        The live weights are left untouched. ``test`` is recommended only
        when its top result scores strictly higher.
        """
        self._validate(query, options)
        options = self.resolve_options(options)
        control = _as_weights(control_weights)
        test = _as_weights(test_weights)

        processed = self.preprocessor.process(query, options.enable_query_expansion)
        candidates = await self.orchestrator.search(processed, options)
        if not candidates:
            return ExperimentResult([], [], 'control')

        context = options.search_context or self.build_default_context(query)
        control_results = await self.ranker.rank(candidates, query, context, weights=control)
        test_results = await self.ranker.rank(candidates, query, context, weights=test)

        control_top = control_results[0].final_score
        test_top = test_results[0].final_score
        recommended = 'test' if test_top > control_top else 'control'

        logger.info(
            f"Experiment completed. Control: {control_top:.3f}, "
            f"Test: {test_top:.3f}, Recommended: {recommended}"
        )
        return ExperimentResult(
            control_results=control_results,
            test_results=test_results,
            recommended_approach=recommended,
            control_top_score=control_top,
            test_top_score=test_top
        )

    def build_default_context(self,
                              query: str,
                              current_file: Optional[str] = None,
                              current_function: Optional[str] = None,
                              cursor_line: Optional[int] = None,
                              source_text: Optional[str] = None) -> SearchContext:
        """
        Build a context from caller hints.

        Without an explicit function, the enclosing function is inferred
        from ``source_text`` around ``cursor_line``.
        """
        if current_function is None and source_text is not None and cursor_line is not None:
            current_function = infer_enclosing_function(source_text.splitlines(), cursor_line)

        return SearchContext(
            current_file=current_file,
            current_function=current_function,
            workspace_context=self.config.workspace,
            query=query
        )

    @staticmethod
    def suggest_queries(context: SearchContext) -> List[str]:
        """Query suggestions derived from the caller's editing context."""
        suggestions = []

        if context.current_file:
            extension = PurePath(context.current_file).suffix.lower()
            if extension in ('.cpp', '.cc', '.cxx'):
                suggestions += ['class implementation', 'function definition']
            elif extension in ('.h', '.hpp', '.hxx'):
                suggestions += ['class declaration', 'function prototype']

        if context.current_function:
            suggestions += [
                f"similar to {context.current_function}",
                f"calls to {context.current_function}"
            ]

        return suggestions[:5]


def _as_weights(weights: WeightsLike) -> RankingWeights:
    if isinstance(weights, RankingWeights):
        return weights
    return RankingWeights().merged(weights)
