"""Tests for structural classification and scoring."""

from unittest.mock import patch

import pytest

from sniprank.engine.models import CodeStructureKind, SearchContext
from sniprank.engine.structure import (
    STRUCTURE_RULES, StructuralContextAnalyzer, classify, estimate_function_complexity,
    infer_enclosing_function
)
from sniprank.tests.conftest import make_candidate


@pytest.mark.parametrize("content,function_name,expected", [
    ("class Parser {\n};", None, CodeStructureKind.CLASS),
    ("struct Point { int x; };", None, CodeStructureKind.STRUCT),
    ("enum Color { RED, GREEN };", None, CodeStructureKind.ENUM),
    ("namespace app", None, CodeStructureKind.NAMESPACE),
    ("#include <vector>", None, CodeStructureKind.INCLUDE),
    ("void run(int n) {", None, CodeStructureKind.FUNCTION),
    ("return value;", "compute", CodeStructureKind.FUNCTION),
    ("int counter = 0;", None, CodeStructureKind.VARIABLE),
    ("x += 1;", None, CodeStructureKind.STATEMENT),
])
def test_classify(content, function_name, expected):
    """Test classification of each structure kind."""
    candidate = make_candidate(content=content, function_name=function_name)
    assert classify(candidate) is expected


def test_classify_priority_order():
    """Test that class wins over struct and function when several match."""
    candidate = make_candidate(content="class Node { struct Inner {}; void f() { } };")
    assert classify(candidate) is CodeStructureKind.CLASS


def test_classify_with_custom_rules():
    """Test that the rule table is replaceable."""
    rules = [(CodeStructureKind.ENUM, lambda text, _: "todo" in text)] + list(STRUCTURE_RULES)
    candidate = make_candidate(content="class A { // TODO\n};")
    assert classify(candidate, rules) is CodeStructureKind.ENUM


def test_estimate_function_complexity_bounds():
    """Test the complexity estimate range."""
    assert estimate_function_complexity("") == pytest.approx(0.1)
    busy = "if (a) { } else { } " * 10 + "call(x); " * 10
    assert estimate_function_complexity(busy) == 1.0


class TestInferEnclosingFunction:
    """Test recovery of the function around a cursor."""

    LINES = [
        "#include <string>",
        "",
        "int parse_header(const std::string& line) {",
        "  int total = 0;",
        "  total += 1;",
        "  return total;",
        "}",
    ]

    def test_finds_signature_above_cursor(self):
        """Test a signature a few lines above the cursor."""
        assert infer_enclosing_function(self.LINES, 4) == "parse_header"

    def test_lookback_limit(self):
        """Test that signatures beyond the lookback window are ignored."""
        lines = ["void far_away() {"] + ["  x = 1;"] * 30
        assert infer_enclosing_function(lines, 30, lookback=20) is None

    def test_empty_source(self):
        """Test inference without source lines."""
        assert infer_enclosing_function([], 0) is None


class TestStructuralContextAnalyzer:
    """Test structural sub-scores."""

    @pytest.fixture
    def analyzer(self):
        return StructuralContextAnalyzer()

    def test_context_alignment_same_file_and_function(self, analyzer):
        """Test file and function alignment bonuses."""
        candidate = make_candidate(file_path="src/a.cpp", function_name="run")
        context = SearchContext(current_file="src/a.cpp", current_function="run")

        assert analyzer.context_alignment(candidate, context) == pytest.approx(1.0)

    def test_context_alignment_same_directory(self, analyzer):
        """Test the sibling-file bonus."""
        candidate = make_candidate(file_path="src/b.cpp")
        context = SearchContext(current_file="src/a.cpp")

        assert analyzer.context_alignment(candidate, context) == pytest.approx(0.6)

    def test_context_alignment_namespace_in_workspace(self, analyzer):
        """Test the workspace namespace bonus."""
        candidate = make_candidate(namespace="app")
        context = SearchContext(workspace_context="app")

        assert analyzer.context_alignment(candidate, context) == pytest.approx(0.65)

    def test_context_alignment_no_context(self, analyzer):
        """Test the base alignment."""
        assert analyzer.context_alignment(make_candidate(), SearchContext()) == pytest.approx(0.5)

    def test_hierarchy_importance_bonuses(self, analyzer):
        """Test public and main bonuses on top of the kind table."""
        public_class = make_candidate(content="class A {\npublic:\n};")
        assert analyzer.hierarchy_importance(public_class, CodeStructureKind.CLASS) == pytest.approx(1.0)

        main = make_candidate(content="int main() {", function_name="main")
        assert analyzer.hierarchy_importance(main, CodeStructureKind.FUNCTION) == pytest.approx(0.95)

        statement = make_candidate(content="x = 1;")
        assert analyzer.hierarchy_importance(statement, CodeStructureKind.STATEMENT) == pytest.approx(0.3)

    def test_scope_relevance(self, analyzer):
        """Test class and namespace bonuses."""
        assert analyzer.scope_relevance(make_candidate()) == pytest.approx(0.5)
        assert analyzer.scope_relevance(make_candidate(class_name="A")) == pytest.approx(0.65)
        assert analyzer.scope_relevance(make_candidate(namespace="app")) == pytest.approx(0.6)
        assert analyzer.scope_relevance(make_candidate(namespace="std")) == pytest.approx(0.65)

    def test_score_in_bounds(self, analyzer, candidates):
        """Test that every structural score lies in [0, 1]."""
        context = SearchContext(current_file="src/main.cpp", current_function="main",
                                workspace_context="app std")
        for candidate in candidates:
            assert 0.0 <= analyzer.score(candidate, context) <= 1.0

    def test_score_prefers_current_file(self, analyzer):
        """Test that a candidate in the current file scores higher."""
        here = make_candidate(file_path="src/main.cpp")
        elsewhere = make_candidate(file_path="lib/other.cpp")
        context = SearchContext(current_file="src/main.cpp")

        assert analyzer.score(here, context) > analyzer.score(elsewhere, context)

    def test_score_falls_back_on_error(self, analyzer):
        """Test that analysis failures give a neutral score."""
        with patch.object(analyzer, "analyze", side_effect=RuntimeError("boom")):
            assert analyzer.score(make_candidate(), SearchContext()) == 0.5
