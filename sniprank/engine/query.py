"""Query normalization and programming-synonym expansion."""

import re
from typing import Dict, List

from loguru import logger


class QueryPreprocessor:
    """Normalizes raw query text before it is sent upstream."""

    STOP_WORDS = frozenset([
        'where', 'what', 'how', 'when', 'why', 'is', 'are', 'the', 'a', 'an'
    ])

    EXPANSIONS: Dict[str, List[str]] = {
        'init': ['initialize', 'setup', 'create', 'construct'],
        'config': ['configuration', 'settings', 'options', 'parameters'],
        'handle': ['process', 'manage', 'deal', 'execute'],
        'error': ['exception', 'failure', 'bug', 'issue'],
        'function': ['method', 'procedure', 'routine'],
        'class': ['object', 'type', 'struct'],
        'variable': ['var', 'field', 'member', 'property'],
        'loop': ['iterate', 'for', 'while', 'foreach'],
        'condition': ['if', 'check', 'test', 'validate'],
    }

    _PUNCTUATION = re.compile(r'[^\w\s]')

    def normalize(self, query: str) -> str:
        """Lowercase, strip punctuation and stop words, collapse whitespace."""
        text = self._PUNCTUATION.sub(' ', query.lower())
        tokens = [t for t in text.split() if t not in self.STOP_WORDS]
        return ' '.join(tokens)

    def expand(self, normalized: str) -> str:
        """Append synonyms for every recognized token."""
        tokens = normalized.split()
        extra: List[str] = []
        for term, synonyms in self.EXPANSIONS.items():
            if term in tokens:
                extra.extend(synonyms)
        return ' '.join(tokens + extra)

    def process(self, query: str, expand: bool = False) -> str:
        processed = self.normalize(query)
        if expand and processed:
            processed = self.expand(processed)
        logger.debug(f"Query preprocessed: {query!r} -> {processed!r}")
        return processed
