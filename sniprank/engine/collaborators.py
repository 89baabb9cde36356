"""External collaborators consumed by the engine.

The engine never embeds text or performs nearest-neighbour search itself;
it talks to a similarity-search service, a file-stat source and a feedback
store through the protocols below.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import aiofiles
import aiofiles.os
import httpx
from loguru import logger

from .models import CandidateResult, UserInteraction
from .retry import RetryPolicy


class SimilaritySearch(Protocol):
    async def search_similar(self, query: str, k: int) -> List[CandidateResult]:
        """Return up to ``k`` candidates sorted by descending score."""
        ...


class FileStat(Protocol):
    async def mtime(self, path: str) -> float:
        """Modification time as a POSIX timestamp. Raises if unavailable."""
        ...


class FeedbackStore(Protocol):
    async def save(self, history: Sequence[UserInteraction]) -> None:
        ...

    async def load(self) -> List[UserInteraction]:
        ...


class StaticSimilaritySearch:
    """Replays a fixed, pre-scored candidate set."""

    def __init__(self, candidates: Sequence[CandidateResult]):
        self._candidates = sorted(candidates, key=lambda c: c.score, reverse=True)
        self.calls = 0

    @property
    def candidates(self) -> List[CandidateResult]:
        return list(self._candidates)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "StaticSimilaritySearch":
        """Load candidates from a JSON list (or ``{"results": [...]}``)."""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get('results', [])
        return cls([CandidateResult.from_dict(item) for item in data])

    async def search_similar(self, query: str, k: int) -> List[CandidateResult]:
        self.calls += 1
        return list(self._candidates[:k])


class HttpSimilaritySearch:
    """
    Similarity-search client for a remote vector index.

    Requests are bounded by a semaphore and retried with exponential
    backoff on transport errors and 5xx responses.
    """

    def __init__(self,
                 base_url: str,
                 client: Optional[httpx.AsyncClient] = None,
                 max_concurrency: int = 4,
                 retry_policy: Optional[RetryPolicy] = None,
                 timeout: float = 10.0):
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.retry_policy = retry_policy or RetryPolicy(
            retry_on=(httpx.TransportError, httpx.HTTPStatusError),
            should_retry=_is_transient
        )

    async def search_similar(self, query: str, k: int) -> List[CandidateResult]:
        async with self._semaphore:
            return await self.retry_policy.execute(self._request, query, k)

    async def _request(self, query: str, k: int) -> List[CandidateResult]:
        response = await self._client.post("/search", json={'query': query, 'k': k})
        response.raise_for_status()

        payload: Dict[str, Any] = response.json()
        candidates = [CandidateResult.from_dict(item) for item in payload.get('results', [])]
        candidates.sort(key=lambda c: c.score, reverse=True)

        logger.debug(f"Upstream returned {len(candidates)} candidates for {query!r}")
        return candidates[:k]

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return True


class LocalFileStat:
    """Reads modification times from the local filesystem."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else None

    async def mtime(self, path: str) -> float:
        target = Path(path)
        if self.root is not None and not target.is_absolute():
            target = self.root / target
        stat = await aiofiles.os.stat(target)
        return stat.st_mtime


class MemoryFeedbackStore:
    """Keeps the last saved history in memory."""

    def __init__(self, history: Optional[Sequence[UserInteraction]] = None):
        self.saved: List[UserInteraction] = list(history or [])
        self.save_count = 0

    async def save(self, history: Sequence[UserInteraction]) -> None:
        self.saved = list(history)
        self.save_count += 1

    async def load(self) -> List[UserInteraction]:
        return list(self.saved)


class JsonFeedbackStore:
    """Persists interaction history as a JSON document."""

    VERSION = 1

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def save(self, history: Sequence[UserInteraction]) -> None:
        document = {
            'version': self.VERSION,
            'interactions': [interaction.to_dict() for interaction in history]
        }
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
            async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(document, indent=2))
            await aiofiles.os.replace(tmp_path, self.path)

    async def load(self) -> List[UserInteraction]:
        if not await aiofiles.os.path.exists(self.path):
            return []

        async with aiofiles.open(self.path, 'r', encoding='utf-8') as f:
            document = json.loads(await f.read())

        interactions = []
        for record in document.get('interactions', []):
            try:
                interactions.append(UserInteraction.from_dict(record))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed interaction record: {e}")
        return interactions
