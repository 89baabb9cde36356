"""User preference learning from result feedback.

The preference score blends three signals:

    preference = historical * 0.5 + explicit * 0.3 + temporal * 0.2

- historical: ratings of past interactions with similar results (same
  result, file, function or class), blended with an exponential recency
  weight ``exp(-age_days / half_life_days)``.
- explicit: caller-supplied preferred file types, namespaces and
  structure kinds.
- temporal: how typical the current hour of day is for helpful feedback.
"""

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import numpy as np
import ulid
from loguru import logger

from .collaborators import FeedbackStore
from .models import (
    CandidateResult, Feedback, UserInteraction, UserPreferences
)
from .structure import StructuralContextAnalyzer

SECONDS_PER_DAY = 86400.0
HELPFUL_RATING = 0.7


@dataclass
class PreferenceModel:
    """Aggregate counters derived from interaction history."""
    structure_kind_counts: Counter = field(default_factory=Counter)
    namespace_counts: Counter = field(default_factory=Counter)
    file_type_counts: Counter = field(default_factory=Counter)
    interaction_count: int = 0
    last_updated: Optional[datetime] = None

    def observe(self, interaction: UserInteraction) -> None:
        self.interaction_count += 1
        self.last_updated = interaction.timestamp

        if interaction.feedback.rating <= HELPFUL_RATING:
            return

        if interaction.structure_kind is not None:
            self.structure_kind_counts[interaction.structure_kind] += 1
        if interaction.namespace:
            self.namespace_counts[interaction.namespace] += 1
        if interaction.file_path:
            suffix = PurePath(interaction.file_path).suffix.lower()
            if suffix:
                self.file_type_counts[suffix] += 1

    def favorites(self, n: int = 3) -> Dict[str, List[Tuple[str, int]]]:
        """Most common positively rated file types, namespaces and structure kinds."""
        return {
            'top_file_types': self.file_type_counts.most_common(n),
            'top_namespaces': self.namespace_counts.most_common(n),
            'top_structure_kinds': [
                (kind.value, count) for kind, count in self.structure_kind_counts.most_common(n)
            ],
        }


def _is_similar(interaction: UserInteraction, candidate: CandidateResult) -> bool:
    if interaction.result_id == candidate.id:
        return True
    if interaction.file_path and interaction.file_path == candidate.file_path:
        return True
    if interaction.function_name and interaction.function_name == candidate.function_name:
        return True
    if interaction.class_name and interaction.class_name == candidate.class_name:
        return True
    return False


class UserPreferenceModel:
    """
    Bounded interaction history plus the scores learned from it.

    History mutations and reads hold an internal lock so one model can be
    shared by concurrent searches.
    """

    def __init__(self,
                 store: Optional[FeedbackStore] = None,
                 max_history: int = 1000,
                 half_life_days: float = 7.0,
                 analyzer: Optional[StructuralContextAnalyzer] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.max_history = max_history
        self.half_life_days = half_life_days
        self.analyzer = analyzer or StructuralContextAnalyzer()
        self._clock = clock
        self._history: Deque[UserInteraction] = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self.model = PreferenceModel()

    @property
    def history(self) -> List[UserInteraction]:
        with self._lock:
            return list(self._history)

    async def load(self) -> int:
        """Load persisted history. Failures are logged and leave history empty."""
        if self.store is None:
            return 0
        try:
            interactions = await self.store.load()
        except Exception as e:
            logger.error(f"Failed to load user feedback history: {e}")
            return 0

        with self._lock:
            self._history.clear()
            self.model = PreferenceModel()
            for interaction in interactions[-self.max_history:]:
                self._history.append(interaction)
                self.model.observe(interaction)
            loaded = len(self._history)

        logger.info(f"Loaded {loaded} user interactions")
        return loaded

    def score(self, candidate: CandidateResult,
              preferences: Optional[UserPreferences] = None) -> float:
        """Learned preference score in [0, 1]; 0.5 if analysis fails."""
        try:
            historical = self.historical_score(candidate)
            explicit = self.explicit_score(candidate, preferences)
            temporal = self.temporal_score()
        except Exception as e:
            logger.warning(f"User preference analysis failed for {candidate.id}: {e}")
            return 0.5

        combined = historical * 0.5 + explicit * 0.3 + temporal * 0.2
        logger.debug(
            f"User preference score for {candidate.file_path}:{candidate.start_line} - "
            f"{combined:.3f} (hist: {historical:.2f}, pref: {explicit:.2f}, temp: {temporal:.2f})"
        )
        return max(0.0, min(1.0, combined))

    def historical_score(self, candidate: CandidateResult) -> float:
        with self._lock:
            similar = [i for i in self._history if _is_similar(i, candidate)]

        if not similar:
            return 0.5

        now = self._clock()
        ratings = np.array([i.feedback.rating for i in similar], dtype=float)
        ages_days = np.array(
            [(now - i.timestamp.timestamp()) / SECONDS_PER_DAY for i in similar],
            dtype=float
        )
        recency_weight = float(np.exp(-ages_days / self.half_life_days).mean())

        return float(ratings.mean()) * 0.7 + recency_weight * 0.3

    def explicit_score(self, candidate: CandidateResult,
                       preferences: Optional[UserPreferences] = None) -> float:
        if preferences is None:
            return 0.5

        score = 0.5

        if preferences.preferred_file_types:
            extension = PurePath(candidate.file_path).suffix.lower()
            if extension in preferences.preferred_file_types:
                score += 0.2

        if preferences.preferred_namespaces and candidate.namespace:
            if candidate.namespace in preferences.preferred_namespaces:
                score += 0.15

        if preferences.preferred_structure_kinds:
            if self.analyzer.classify(candidate) in preferences.preferred_structure_kinds:
                score += 0.15

        return min(score, 1.0)

    def temporal_score(self) -> float:
        with self._lock:
            helpful = [
                i.timestamp for i in self._history
                if i.feedback.rating > HELPFUL_RATING
            ]

        if not helpful:
            return 0.5

        hours = np.array([ts.astimezone().hour for ts in helpful])
        hour_counts = np.bincount(hours, minlength=24)
        current_hour = datetime.fromtimestamp(self._clock()).hour

        busiest = hour_counts.max()
        return float(hour_counts[current_hour] / busiest) if busiest > 0 else 0.5

    async def record_feedback(self,
                              result_id: str,
                              feedback: Feedback,
                              query_text: str,
                              result: Optional[CandidateResult] = None) -> UserInteraction:
        """
        Append an interaction and persist the history.

        ``result`` is the rated candidate when known; its file, function and
        class let later candidates match this interaction.
        """
        interaction = UserInteraction(
            interaction_id=str(ulid.ULID()),
            result_id=result_id,
            feedback=feedback,
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            query_text=query_text,
            context=feedback.context,
            file_path=result.file_path if result else None,
            function_name=result.function_name if result else None,
            class_name=result.class_name if result else None,
            namespace=result.namespace if result else None,
            structure_kind=self.analyzer.classify(result) if result else None
        )

        with self._lock:
            self._history.append(interaction)
            self.model.observe(interaction)
            snapshot = list(self._history)

        logger.info(
            f"Recorded feedback for result {result_id}: "
            f"rating={feedback.rating}, helpful={feedback.was_helpful}"
        )

        await self._persist(snapshot)
        return interaction

    async def _persist(self, snapshot: List[UserInteraction]) -> None:
        if self.store is None:
            return
        try:
            await self.store.save(snapshot)
        except Exception as e:
            logger.error(f"Failed to persist user feedback history: {e}")

    def get_interaction_stats(self, top_n: int = 3) -> Dict[str, Any]:
        """
        Interaction count, average rating and the most frequently helpful
        file types, namespaces and structure kinds.
        """
        with self._lock:
            ratings = [i.feedback.rating for i in self._history]
            favorites = self.model.favorites(top_n)

        return {
            'total_interactions': len(ratings),
            'average_rating': sum(ratings) / len(ratings) if ratings else 0.0,
            **favorites
        }

