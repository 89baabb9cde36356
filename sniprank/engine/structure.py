"""Structural context analysis for code snippets.

Classification is a pure function over an ordered rule table; the first
matching rule wins. Scoring combines three sub-scores:

    structural = context_alignment * 0.4
               + hierarchy_importance * 0.35
               + scope_relevance * 0.25
"""

import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Callable, Optional, Sequence, Tuple

from loguru import logger

from .models import CandidateResult, CodeStructureKind, SearchContext

_FUNCTION_SIGNATURE = re.compile(r'\w+\s*\([^)]*\)\s*{')
_VARIABLE_DECLARATION = re.compile(r'\b(int|char|bool|float|double|string|auto)\s+\w+\s*[=;]')
_CALL_SITE = re.compile(r'\w+\s*\(')
_ENCLOSING_FUNCTION = re.compile(r'(\w+)\s*\([^)]*\)\s*{?')

# (kind, predicate(lowercased content, candidate)) in priority order
StructureRule = Tuple[CodeStructureKind, Callable[[str, CandidateResult], bool]]

STRUCTURE_RULES: Tuple[StructureRule, ...] = (
    (CodeStructureKind.CLASS, lambda text, _: 'class ' in text and '{' in text),
    (CodeStructureKind.STRUCT, lambda text, _: 'struct ' in text and '{' in text),
    (CodeStructureKind.ENUM, lambda text, _: 'enum ' in text and '{' in text),
    (CodeStructureKind.NAMESPACE, lambda text, _: 'namespace ' in text),
    (CodeStructureKind.INCLUDE, lambda text, _: '#include' in text),
    (CodeStructureKind.FUNCTION,
     lambda text, c: bool(_FUNCTION_SIGNATURE.search(text)) or bool(c.function_name)),
    (CodeStructureKind.VARIABLE, lambda text, _: bool(_VARIABLE_DECLARATION.search(text))),
)

HIERARCHY_IMPORTANCE = {
    CodeStructureKind.CLASS: 0.9,
    CodeStructureKind.NAMESPACE: 0.85,
    CodeStructureKind.FUNCTION: 0.8,
    CodeStructureKind.STRUCT: 0.75,
    CodeStructureKind.ENUM: 0.7,
    CodeStructureKind.INCLUDE: 0.6,
    CodeStructureKind.VARIABLE: 0.4,
    CodeStructureKind.STATEMENT: 0.3,
}

WELL_KNOWN_NAMESPACES = frozenset(['std', 'boost', 'cv'])

CONTROL_KEYWORDS = ('if ', 'else', 'for ', 'while ', 'switch ', 'case ', 'try ', 'catch', 'throw')


def classify(candidate: CandidateResult,
             rules: Sequence[StructureRule] = STRUCTURE_RULES) -> CodeStructureKind:
    """Return the kind of the first rule matching the candidate's content."""
    text = candidate.content.lower().strip()
    for kind, predicate in rules:
        if predicate(text, candidate):
            return kind
    return CodeStructureKind.STATEMENT


def estimate_function_complexity(content: str) -> float:
    """Keyword-counted complexity estimate in [0.1, 1.0]."""
    complexity = 0.1
    for keyword in CONTROL_KEYWORDS:
        complexity += content.count(keyword) * 0.1
    complexity += len(_CALL_SITE.findall(content)) * 0.05
    return min(complexity, 1.0)


def _same_directory(a: str, b: str) -> bool:
    return PurePath(a).parent == PurePath(b).parent


def infer_enclosing_function(lines: Sequence[str], cursor_line: int, lookback: int = 20) -> Optional[str]:
    """Scan backwards from ``cursor_line`` for the nearest ``name(...)`` signature."""
    if not lines:
        return None
    start = min(max(cursor_line, 0), len(lines) - 1)
    for index in range(start, max(-1, start - lookback - 1), -1):
        match = _ENCLOSING_FUNCTION.search(lines[index])
        if match:
            return match.group(1)
    return None


@dataclass
class StructuralScore:
    kind: CodeStructureKind
    context_alignment: float
    hierarchy_importance: float
    scope_relevance: float
    score: float


class StructuralContextAnalyzer:
    """Scores how well a candidate's structure fits the caller's context."""

    def __init__(self, rules: Sequence[StructureRule] = STRUCTURE_RULES):
        self.rules = tuple(rules)

    def classify(self, candidate: CandidateResult) -> CodeStructureKind:
        return classify(candidate, self.rules)

    def context_alignment(self, candidate: CandidateResult, context: SearchContext) -> float:
        alignment = 0.5

        if context.current_file and candidate.file_path == context.current_file:
            alignment += 0.3

        if context.current_function and candidate.function_name == context.current_function:
            alignment += 0.25

        if (candidate.namespace and context.workspace_context
                and candidate.namespace in context.workspace_context):
            alignment += 0.15

        if (context.current_file and candidate.file_path != context.current_file
                and _same_directory(candidate.file_path, context.current_file)):
            alignment += 0.1

        return min(alignment, 1.0)

    def hierarchy_importance(self, candidate: CandidateResult, kind: CodeStructureKind) -> float:
        score = HIERARCHY_IMPORTANCE.get(kind, 0.5)

        if 'public:' in candidate.content or 'public ' in candidate.content:
            score += 0.1

        if candidate.function_name == 'main' or 'main(' in candidate.content:
            score += 0.15

        return min(score, 1.0)

    def scope_relevance(self, candidate: CandidateResult) -> float:
        score = 0.5

        if candidate.class_name:
            score += 0.15

        if candidate.namespace:
            score += 0.1
            if candidate.namespace in WELL_KNOWN_NAMESPACES:
                score += 0.05

        if candidate.function_name:
            score += estimate_function_complexity(candidate.content) * 0.1

        return min(score, 1.0)

    def analyze(self, candidate: CandidateResult, context: SearchContext) -> StructuralScore:
        """Compute the full structural breakdown. May raise on malformed input."""
        kind = self.classify(candidate)
        alignment = self.context_alignment(candidate, context)
        hierarchy = self.hierarchy_importance(candidate, kind)
        scope = self.scope_relevance(candidate)

        combined = alignment * 0.4 + hierarchy * 0.35 + scope * 0.25
        return StructuralScore(
            kind=kind,
            context_alignment=alignment,
            hierarchy_importance=hierarchy,
            scope_relevance=scope,
            score=max(0.0, min(1.0, combined))
        )

    def score(self, candidate: CandidateResult, context: Optional[SearchContext] = None) -> float:
        """Structural relevance in [0, 1]; 0.5 if analysis fails."""
        try:
            result = self.analyze(candidate, context or SearchContext())
        except Exception as e:
            logger.warning(f"Structural analysis failed for {candidate.id}: {e}")
            return 0.5

        logger.debug(
            f"Structural analysis for {candidate.file_path}:{candidate.start_line} - "
            f"kind: {result.kind.value}, score: {result.score:.3f}"
        )
        return result.score

