"""Data models for the search-and-rank pipeline."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple


class CodeStructureKind(Enum):
    """Structural kind of a code snippet."""
    CLASS = "class"
    STRUCT = "struct"
    ENUM = "enum"
    NAMESPACE = "namespace"
    INCLUDE = "include"
    FUNCTION = "function"
    VARIABLE = "variable"
    STATEMENT = "statement"


class FilterOperator(Enum):
    """Operators supported by structured search filters."""
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    REGEX = "regex"


@dataclass(frozen=True)
class SearchFilter:
    """Structured filter applied to upstream candidates.

    ``field`` is one of file, function, class, namespace or fileType.
    """
    field: str
    operator: FilterOperator
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'field': self.field,
            'operator': self.operator.value,
            'value': self.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchFilter":
        return cls(
            field=data['field'],
            operator=FilterOperator(data.get('operator', 'equals')),
            value=str(data['value'])
        )


@dataclass(frozen=True)
class CandidateResult:
    """A code snippet returned by the upstream similarity search."""
    id: str
    content: str
    file_path: str
    start_line: int
    end_line: int
    score: float  # Upstream similarity
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    namespace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateResult":
        return cls(
            id=str(data['id']),
            content=data.get('content', ''),
            file_path=data.get('file_path') or data.get('filePath', ''),
            start_line=int(data.get('start_line', data.get('startLine', 0))),
            end_line=int(data.get('end_line', data.get('endLine', 0))),
            score=float(data.get('score', 0.0)),
            function_name=data.get('function_name') or data.get('functionName'),
            class_name=data.get('class_name') or data.get('className'),
            namespace=data.get('namespace')
        )


@dataclass
class UserPreferences:
    """Explicit preferences supplied by the caller."""
    preferred_file_types: List[str] = field(default_factory=list)
    preferred_namespaces: List[str] = field(default_factory=list)
    preferred_structure_kinds: List[CodeStructureKind] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'preferred_file_types': list(self.preferred_file_types),
            'preferred_namespaces': list(self.preferred_namespaces),
            'preferred_structure_kinds': [k.value for k in self.preferred_structure_kinds]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        return cls(
            preferred_file_types=list(data.get('preferred_file_types', [])),
            preferred_namespaces=list(data.get('preferred_namespaces', [])),
            preferred_structure_kinds=[
                CodeStructureKind(k) for k in data.get('preferred_structure_kinds', [])
            ]
        )


@dataclass
class SearchContext:
    """Editing context of the caller. Never persisted by the engine."""
    current_file: Optional[str] = None
    current_function: Optional[str] = None
    workspace_context: Optional[str] = None
    query: Optional[str] = None
    user_preferences: Optional[UserPreferences] = None
    search_history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current_file': self.current_file,
            'current_function': self.current_function,
            'workspace_context': self.workspace_context,
            'query': self.query,
            'user_preferences': (
                self.user_preferences.to_dict() if self.user_preferences else None
            ),
            'search_history': list(self.search_history)
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchContext":
        if not data:
            return cls()
        prefs = data.get('user_preferences')
        return cls(
            current_file=data.get('current_file'),
            current_function=data.get('current_function'),
            workspace_context=data.get('workspace_context'),
            query=data.get('query'),
            user_preferences=UserPreferences.from_dict(prefs) if prefs else None,
            search_history=list(data.get('search_history', []))
        )


@dataclass(frozen=True)
class SearchOptions:
    """Per-call search options.

    Fields left as ``None`` are filled from the service configuration.
    """
    top_k: Optional[int] = None
    similarity_threshold: Optional[float] = None
    filters: Tuple[SearchFilter, ...] = ()
    cache_results: bool = True
    search_timeout_ms: Optional[int] = None
    enable_query_expansion: Optional[bool] = None
    enable_ranking: bool = True
    include_context: Optional[bool] = None
    search_context: Optional[SearchContext] = None


@dataclass
class Feedback:
    """User feedback on a single result."""
    rating: float  # 0-1 scale
    clicked: bool = False
    time_spent: float = 0.0  # seconds
    was_helpful: bool = False
    context: Optional[SearchContext] = None

    def __post_init__(self):
        if not 0.0 <= self.rating <= 1.0:
            raise ValueError(f"rating must be between 0 and 1, got {self.rating}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rating': self.rating,
            'clicked': self.clicked,
            'time_spent': self.time_spent,
            'was_helpful': self.was_helpful,
            'context': self.context.to_dict() if self.context else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feedback":
        return cls(
            rating=float(data['rating']),
            clicked=bool(data.get('clicked', False)),
            time_spent=float(data.get('time_spent', 0.0)),
            was_helpful=bool(data.get('was_helpful', False)),
            context=SearchContext.from_dict(data['context']) if data.get('context') else None
        )


@dataclass
class UserInteraction:
    """A recorded piece of feedback together with a snapshot of the rated result."""
    interaction_id: str
    result_id: str
    feedback: Feedback
    timestamp: datetime
    query_text: str
    context: Optional[SearchContext] = None
    file_path: Optional[str] = None
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    namespace: Optional[str] = None
    structure_kind: Optional[CodeStructureKind] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'interaction_id': self.interaction_id,
            'result_id': self.result_id,
            'feedback': self.feedback.to_dict(),
            'timestamp': self.timestamp.isoformat(),
            'query_text': self.query_text,
            'context': self.context.to_dict() if self.context else None,
            'file_path': self.file_path,
            'function_name': self.function_name,
            'class_name': self.class_name,
            'namespace': self.namespace,
            'structure_kind': self.structure_kind.value if self.structure_kind else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserInteraction":
        kind = data.get('structure_kind')
        return cls(
            interaction_id=data['interaction_id'],
            result_id=data['result_id'],
            feedback=Feedback.from_dict(data['feedback']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            query_text=data.get('query_text', ''),
            context=SearchContext.from_dict(data['context']) if data.get('context') else None,
            file_path=data.get('file_path'),
            function_name=data.get('function_name'),
            class_name=data.get('class_name'),
            namespace=data.get('namespace'),
            structure_kind=CodeStructureKind(kind) if kind else None
        )


@dataclass
class RankingFactors:
    """Per-candidate sub-scores, each in [0, 1]."""
    semantic_similarity: float
    structural_relevance: float = 0.5
    recency_score: float = 0.5
    user_preference_score: float = 0.5
    complexity_score: float = 0.5
    diversity_penalty: float = 0.0

    def signal_values(self) -> List[float]:
        """The five non-diversity factors."""
        return [
            self.semantic_similarity,
            self.structural_relevance,
            self.recency_score,
            self.user_preference_score,
            self.complexity_score
        ]

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class RankedResult:
    """A candidate after ranking."""
    candidate: CandidateResult
    factors: RankingFactors
    final_score: float
    rank_position: int = 0
    confidence_score: float = 0.5
    explanation: str = ""
    context_snippet: Optional[str] = None

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def file_path(self) -> str:
        return self.candidate.file_path

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.candidate.to_dict(),
            'final_score': self.final_score,
            'ranking_factors': self.factors.to_dict(),
            'rank_position': self.rank_position,
            'confidence_score': self.confidence_score,
            'explanation': self.explanation,
            'context_snippet': self.context_snippet
        }


@dataclass
class FactorContribution:
    factor: str
    score: float
    weight: float
    contribution: float


@dataclass
class RankingExplanation:
    """Detailed factor breakdown for one ranked result."""
    final_score: float
    factor_breakdown: List[FactorContribution]
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'final_score': self.final_score,
            'factor_breakdown': [asdict(f) for f in self.factor_breakdown],
            'reasoning': self.reasoning
        }


@dataclass
class CacheEntry:
    key: str
    results: Tuple[RankedResult, ...]
    timestamp: float


@dataclass
class ExperimentResult:
    """Outcome of ranking one candidate set under two weight configurations."""
    control_results: List[RankedResult]
    test_results: List[RankedResult]
    recommended_approach: str  # control|test
    control_top_score: float = 0.0
    test_top_score: float = 0.0


@dataclass
class SearchStats:
    total_searches: int
    ranked_searches: int
    cache_hit_rate: float
    average_latency_ms: float
    average_ranking_latency_ms: float
    p50_latency_ms: float
    p95_latency_ms: float
    user_interactions: int
    average_user_rating: float
    top_queries: List[Tuple[str, int]]
    top_file_types: List[Tuple[str, int]] = field(default_factory=list)
    top_namespaces: List[Tuple[str, int]] = field(default_factory=list)
    top_structure_kinds: List[Tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['top_queries'] = [
            {'query': query, 'count': count} for query, count in self.top_queries
        ]
        return data
