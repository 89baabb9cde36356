"""Shared fixtures for sniprank tests."""

import asyncio
from typing import Dict, List

import pytest

from sniprank.engine.collaborators import MemoryFeedbackStore, StaticSimilaritySearch
from sniprank.engine.config import Config
from sniprank.engine.models import CandidateResult
from sniprank.engine.service import CodeSearchService

NOW = 1_700_000_000.0
DAY = 86400.0


def make_candidate(id: str = "c1",
                   content: str = "int compute(int x) { return x * 2; }",
                   file_path: str = "src/compute.cpp",
                   score: float = 0.8,
                   start_line: int = 10,
                   end_line: int = 12,
                   function_name=None,
                   class_name=None,
                   namespace=None) -> CandidateResult:
    return CandidateResult(
        id=id,
        content=content,
        file_path=file_path,
        start_line=start_line,
        end_line=end_line,
        score=score,
        function_name=function_name,
        class_name=class_name,
        namespace=namespace
    )


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFileStat:
    """Returns configured modification times; unknown paths fail."""

    def __init__(self, mtimes: Dict[str, float] = None, delay: float = 0.0):
        self.mtimes = mtimes or {}
        self.delay = delay

    async def mtime(self, path: str) -> float:
        if self.delay:
            await asyncio.sleep(self.delay)
        if path not in self.mtimes:
            raise FileNotFoundError(path)
        return self.mtimes[path]


class SlowSimilaritySearch:
    """Upstream that answers only after ``delay`` seconds."""

    def __init__(self, candidates: List[CandidateResult], delay: float):
        self.candidates = candidates
        self.delay = delay
        self.calls = 0

    async def search_similar(self, query: str, k: int) -> List[CandidateResult]:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.candidates[:k]


class FailingSimilaritySearch:
    def __init__(self, error: Exception):
        self.error = error

    async def search_similar(self, query: str, k: int) -> List[CandidateResult]:
        raise self.error


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def candidates():
    """A small, varied candidate set."""
    return [
        make_candidate("main", "int main(int argc, char** argv) {\n  return run(argc);\n}",
                       "src/main.cpp", 0.9, function_name="main"),
        make_candidate("parser", "class Parser {\npublic:\n  void parse();\n};",
                       "src/parser.h", 0.82, class_name="Parser", namespace="app"),
        make_candidate("loop", "for (auto& item : items) {\n  if (item.ok) process(item);\n}",
                       "src/process.cpp", 0.7, function_name="process_all"),
        make_candidate("config", "void load_config(const std::string& path) {\n  read(path);\n}",
                       "src/config.cpp", 0.6, function_name="load_config", namespace="std"),
        make_candidate("weak", "int x = 0;", "src/util.cpp", 0.2),
    ]


@pytest.fixture
def upstream(candidates):
    return StaticSimilaritySearch(candidates)


@pytest.fixture
def feedback_store():
    return MemoryFeedbackStore()


@pytest.fixture
def service(upstream, clock, feedback_store):
    """Service with in-memory collaborators and a controllable clock."""
    return CodeSearchService(
        upstream,
        config=Config(workspace="app"),
        file_stat=FakeFileStat({"src/main.cpp": NOW, "src/parser.h": NOW - 3 * DAY}),
        feedback_store=feedback_store,
        clock=clock,
        cache_clock=clock
    )
