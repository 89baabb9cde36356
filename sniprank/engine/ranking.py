"""Multi-factor ranking with similarity-aware diversity filtering.

Each candidate gets six factors in [0, 1]:

- semantic similarity: the upstream score
- structural relevance: see ``structure.StructuralContextAnalyzer``
- recency: ``exp(-age_days / 7)`` of the file's mtime, floored at 0.1
- user preference: see ``preferences.UserPreferenceModel``
- complexity: line count and keyword-weighted control flow
- diversity penalty: set by the diversity pass, subtracted

The final score is the weighted sum, clamped to [0, 1]. Factor
computation fans out per candidate; sorting, the diversity pass and rank
assignment run only after every candidate has its factors.
"""

import asyncio
import math
import re
import time
from pathlib import PurePath
from typing import Callable, List, Optional, Sequence, Tuple

from loguru import logger

from .collaborators import FileStat
from .config import RankingConfig, RankingWeights
from .models import (
    CandidateResult, FactorContribution, RankedResult, RankingExplanation,
    RankingFactors, SearchContext
)
from .preferences import UserPreferenceModel
from .structure import StructuralContextAnalyzer

SECONDS_PER_DAY = 86400.0

# (factor attribute, weight name, label)
FACTORS: Tuple[Tuple[str, str, str], ...] = (
    ('semantic_similarity', 'semantic', 'Semantic Similarity'),
    ('structural_relevance', 'structural', 'Structural Relevance'),
    ('recency_score', 'recency', 'Recency'),
    ('user_preference_score', 'user_preference', 'User Preference'),
    ('complexity_score', 'complexity', 'Complexity'),
)

COMPLEXITY_INDICATORS: Tuple[Tuple[re.Pattern, float], ...] = (
    (re.compile(r'\bif\b'), 0.1),
    (re.compile(r'\bfor\b'), 0.1),
    (re.compile(r'\bwhile\b'), 0.1),
    (re.compile(r'\bswitch\b'), 0.15),
    (re.compile(r'\btry\b'), 0.1),
    (re.compile(r'\bcatch\b'), 0.1),
    (re.compile(r'\bclass\b'), 0.2),
    (re.compile(r'\btemplate\b'), 0.15),
    (re.compile(r'\bvirtual\b'), 0.1),
)

DEGRADED_EXPLANATION = "Ranking degraded: ordered by similarity score only"
DISABLED_EXPLANATION = "Ranking disabled"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def code_complexity(content: str) -> float:
    """Keyword-weighted structural complexity in [0, 1]."""
    complexity = 0.0
    for pattern, weight in COMPLEXITY_INDICATORS:
        complexity += len(pattern.findall(content)) * weight
    return min(complexity, 1.0)


def complexity_score(content: str) -> float:
    """0.5 base, up to 0.2 for length (50 lines), up to 0.3 for control flow."""
    line_count = len(content.split('\n'))
    length_factor = min(line_count / 50, 1.0) * 0.2
    structure_factor = code_complexity(content) * 0.3
    return clamp(0.5 + length_factor + structure_factor, 0.1, 1.0)


def _tokens(content: str) -> set:
    return set(content.lower().split())


def result_similarity(first: CandidateResult, second: CandidateResult) -> float:
    """Pairwise similarity used by the diversity pass, in [0, 1]."""
    similarity = 0.0

    if first.file_path == second.file_path:
        similarity += 0.4
    elif PurePath(first.file_path).parent == PurePath(second.file_path).parent:
        similarity += 0.2

    if first.function_name and first.function_name == second.function_name:
        similarity += 0.3

    if first.class_name and first.class_name == second.class_name:
        similarity += 0.2

    first_tokens, second_tokens = _tokens(first.content), _tokens(second.content)
    union = first_tokens | second_tokens
    if union:
        similarity += len(first_tokens & second_tokens) / len(union) * 0.1

    return min(similarity, 1.0)


def neutral_result(candidate: CandidateResult, position: int, explanation: str) -> RankedResult:
    """Wrap a candidate with neutral factors and its semantic score."""
    semantic = clamp(candidate.score)
    return RankedResult(
        candidate=candidate,
        factors=RankingFactors(semantic_similarity=semantic),
        final_score=semantic,
        rank_position=position,
        confidence_score=0.5,
        explanation=explanation
    )


class RankingEngine:
    """Combines ranking factors into a single explainable score."""

    def __init__(self,
                 config: Optional[RankingConfig] = None,
                 analyzer: Optional[StructuralContextAnalyzer] = None,
                 preferences: Optional[UserPreferenceModel] = None,
                 file_stat: Optional[FileStat] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            config: Weights, diversity threshold and fan-out bounds
            analyzer: Structural relevance source
            preferences: User preference source
            file_stat: Modification-time source; recency is neutral without one
            clock: Wall-clock time source, in seconds
        """
        self.config = config or RankingConfig()
        self.analyzer = analyzer or StructuralContextAnalyzer()
        self.preferences = preferences or UserPreferenceModel(analyzer=self.analyzer, clock=clock)
        self.file_stat = file_stat
        self._clock = clock

        w = self.weights
        logger.info(
            f"Ranking engine initialized with weights: semantic={w.semantic}, "
            f"structural={w.structural}, recency={w.recency}, "
            f"user_preference={w.user_preference}, complexity={w.complexity}, "
            f"diversity={w.diversity}"
        )

    @property
    def weights(self) -> RankingWeights:
        return self.config.weights

    def update_weights(self, partial: dict) -> RankingWeights:
        """Apply a partial weight update. Invalid updates leave weights unchanged."""
        self.config.weights = self.weights.merged(partial)
        logger.info(f"Updated ranking weights: {self.config.weights.model_dump()}")
        return self.config.weights

    async def rank(self,
                   candidates: Sequence[CandidateResult],
                   query: str,
                   context: Optional[SearchContext] = None,
                   weights: Optional[RankingWeights] = None) -> List[RankedResult]:
        """
        Rank candidates. Never raises: any internal failure degrades to an
        ordering by upstream score.

        Args:
            candidates: Upstream candidates
            query: Original query text
            context: Caller's editing context
            weights: Override for this call only
        """
        if not candidates:
            return []

        weights = weights or self.weights
        context = context or SearchContext(query=query)
        start = time.perf_counter()

        try:
            to_rank = list(candidates[:self.config.max_results_to_rank])
            factors = await self._compute_all_factors(to_rank, context)

            results = []
            for candidate, candidate_factors in zip(to_rank, factors):
                results.append(RankedResult(
                    candidate=candidate,
                    factors=candidate_factors,
                    final_score=self.final_score(candidate_factors, weights),
                    confidence_score=self.confidence(candidate_factors)
                ))

            results.sort(key=lambda r: r.final_score, reverse=True)
            results = self.apply_diversity(results, weights)

            for position, result in enumerate(results, start=1):
                result.rank_position = position
                result.explanation = self.summarize(result, weights)

        except Exception as e:
            logger.exception(f"Ranking failed, falling back to similarity order: {e}")
            return self.degraded(candidates)

        elapsed_ms = (time.perf_counter() - start) * 1000
        top = results[0]
        logger.info(
            f"Ranked {len(results)} results for {query!r} in {elapsed_ms:.1f}ms. "
            f"Top result: {top.file_path} (score: {top.final_score:.3f})"
        )
        return results

    def degraded(self, candidates: Sequence[CandidateResult]) -> List[RankedResult]:
        ordered = sorted(
            candidates[:self.config.max_results_to_rank], key=lambda c: c.score, reverse=True
        )
        return [
            neutral_result(candidate, position, DEGRADED_EXPLANATION)
            for position, candidate in enumerate(ordered, start=1)
        ]

    async def _compute_all_factors(self,
                                   candidates: List[CandidateResult],
                                   context: SearchContext) -> List[RankingFactors]:
        semaphore = asyncio.Semaphore(self.config.max_workers)

        async def bounded(candidate: CandidateResult) -> RankingFactors:
            async with semaphore:
                return await self.compute_factors(candidate, context)

        return list(await asyncio.gather(*(bounded(c) for c in candidates)))

    async def compute_factors(self,
                              candidate: CandidateResult,
                              context: SearchContext) -> RankingFactors:
        return RankingFactors(
            semantic_similarity=clamp(candidate.score),
            structural_relevance=clamp(self.analyzer.score(candidate, context)),
            recency_score=await self.recency_score(candidate),
            user_preference_score=clamp(
                self.preferences.score(candidate, context.user_preferences)
            ),
            complexity_score=complexity_score(candidate.content),
            diversity_penalty=0.0
        )

    async def recency_score(self, candidate: CandidateResult) -> float:
        """Exponential decay of file age; 0.5 when the file cannot be stat'ed."""
        if self.file_stat is None:
            return 0.5

        try:
            mtime = await asyncio.wait_for(
                self.file_stat.mtime(candidate.file_path),
                timeout=self.config.stat_timeout_ms / 1000.0
            )
        except asyncio.TimeoutError:
            logger.debug(f"Stat timed out for {candidate.file_path}")
            return 0.5
        except Exception as e:
            logger.debug(f"Stat failed for {candidate.file_path}: {e}")
            return 0.5

        age_days = (self._clock() - mtime) / SECONDS_PER_DAY
        return clamp(math.exp(-age_days / 7), 0.1, 1.0)

    @staticmethod
    def final_score(factors: RankingFactors, weights: RankingWeights) -> float:
        score = (
            factors.semantic_similarity * weights.semantic
            + factors.structural_relevance * weights.structural
            + factors.recency_score * weights.recency
            + factors.user_preference_score * weights.user_preference
            + factors.complexity_score * weights.complexity
            - factors.diversity_penalty * weights.diversity
        )
        return clamp(score)

    @staticmethod
    def confidence(factors: RankingFactors) -> float:
        """0.5 plus up to 0.4 for the share of decisive (>0.7 or <0.3) factors."""
        values = factors.signal_values()
        strong = sum(1 for v in values if v > 0.7 or v < 0.3)
        return min(0.5 + strong / len(values) * 0.4, 1.0)

    def apply_diversity(self,
                        results: List[RankedResult],
                        weights: RankingWeights) -> List[RankedResult]:
        """
        Penalize near-duplicates of higher-ranked results, then re-sort.

        Each result is compared against the results before it; the first one
        above the threshold sets the penalty and ends the comparison.
        """
        if len(results) <= 1:
            return results

        threshold = self.config.diversity_threshold
        accepted = [results[0]]

        for result in results[1:]:
            for prior in accepted:
                similarity = result_similarity(result.candidate, prior.candidate)
                if similarity > threshold:
                    result.factors.diversity_penalty = (similarity - threshold) * 0.5
                    result.final_score = self.final_score(result.factors, weights)
                    logger.debug(
                        f"Diversity penalty {result.factors.diversity_penalty:.3f} for "
                        f"{result.id} (similar to {prior.id}: {similarity:.2f})"
                    )
                    break
            accepted.append(result)

        accepted.sort(key=lambda r: r.final_score, reverse=True)
        return accepted

    def breakdown(self,
                  factors: RankingFactors,
                  weights: Optional[RankingWeights] = None) -> List[FactorContribution]:
        weights = weights or self.weights
        contributions = []
        for attribute, weight_name, label in FACTORS:
            score = getattr(factors, attribute)
            weight = getattr(weights, weight_name)
            contributions.append(FactorContribution(label, score, weight, score * weight))

        contributions.append(FactorContribution(
            'Diversity Penalty',
            factors.diversity_penalty,
            weights.diversity,
            -factors.diversity_penalty * weights.diversity
        ))
        return contributions

    def summarize(self, result: RankedResult, weights: Optional[RankingWeights] = None) -> str:
        """One-line explanation naming up to three positively contributing factors."""
        top = sorted(
            (f for f in self.breakdown(result.factors, weights) if f.contribution > 0),
            key=lambda f: f.contribution,
            reverse=True
        )[:3]
        factors = ', '.join(f"{f.factor} ({f.contribution * 100:.1f}%)" for f in top) or "none"
        return (
            f"Ranked #{result.rank_position} (score: {result.final_score:.3f}) - "
            f"Key factors: {factors}"
        )

    def explain(self, result: RankedResult,
                weights: Optional[RankingWeights] = None) -> RankingExplanation:
        return RankingExplanation(
            final_score=result.final_score,
            factor_breakdown=self.breakdown(result.factors, weights),
            reasoning=self.summarize(result, weights) + '.'
        )
