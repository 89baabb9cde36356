"""Tests for the command-line front end."""

import json
import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from sniprank.cli.rank import cli, parse_weights


@pytest.fixture
def candidates_file(tmp_path):
    path = tmp_path / "candidates.json"
    path.write_text(json.dumps({"results": [
        {"id": "main", "content": "int main() {\n  return run();\n}", "file_path": "src/main.cpp",
         "start_line": 1, "end_line": 3, "score": 0.9, "function_name": "main"},
        {"id": "helper", "content": "void helper() {\n  log();\n}", "file_path": "src/util.cpp",
         "start_line": 5, "end_line": 7, "score": 0.8, "function_name": "helper"},
    ]}))
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "sniprank.yaml"
    path.write_text("workspace: app\n")
    return path


@pytest.fixture
def runner():
    yield CliRunner()
    # The CLI replaces loguru sinks with the runner's stderr
    logger.remove()
    logger.add(sys.stderr)


def test_search_prints_ranked_table(runner, config_file, candidates_file):
    """Test a ranked search from a candidates file."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "search", "entry point",
        "--candidates", str(candidates_file), "--current-file", "src/main.cpp"
    ])

    assert result.exit_code == 0, result.output
    assert "main" in result.output
    assert "helper" in result.output


def test_search_json_output(runner, config_file, candidates_file):
    """Test machine-readable output."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "search", "entry point",
        "--candidates", str(candidates_file), "--json", "--no-ranking"
    ])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert [r["id"] for r in payload] == ["main", "helper"]
    assert payload[0]["explanation"] == "Ranking disabled"


def test_search_explain(runner, config_file, candidates_file):
    """Test the factor breakdown table."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "search", "entry point",
        "--candidates", str(candidates_file), "--explain"
    ])

    assert result.exit_code == 0, result.output
    assert "Semantic Similarity" in result.output


def test_search_empty_query_fails(runner, config_file, candidates_file):
    """Test that validation errors exit non-zero."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "search", " ", "--candidates", str(candidates_file)
    ])

    assert result.exit_code == 1
    assert "Search failed" in result.output


def test_search_requires_a_source(runner, config_file):
    """Test the usage error without candidates or upstream."""
    result = runner.invoke(cli, ["--config", str(config_file), "search", "q"])

    assert result.exit_code != 0
    assert "--candidates" in result.output


def test_feedback_appends_to_store(runner, config_file, candidates_file, tmp_path):
    """Test that feedback is persisted with the rated result's location."""
    store = tmp_path / "feedback.json"

    for rating in ("0.9", "0.4"):
        result = runner.invoke(cli, [
            "--config", str(config_file), "feedback", "main", "--rating", rating,
            "--query", "entry point", "--candidates", str(candidates_file), "--store", str(store)
        ])
        assert result.exit_code == 0, result.output

    assert "Most helpful file types: .cpp (1)" in result.output
    document = json.loads(store.read_text())
    assert len(document["interactions"]) == 2
    assert document["interactions"][0]["file_path"] == "src/main.cpp"


def test_feedback_rating_range(runner, config_file, tmp_path):
    """Test that out-of-range ratings are rejected."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "feedback", "main", "--rating", "2",
        "--store", str(tmp_path / "feedback.json")
    ])

    assert result.exit_code != 0


def test_experiment(runner, config_file, candidates_file):
    """Test comparing two weight sets."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "experiment", "entry point",
        "--candidates", str(candidates_file),
        "--control-weights", "semantic=0.1",
        "--test-weights", "semantic=0.9"
    ])

    assert result.exit_code == 0, result.output
    assert "Recommended: test" in result.output


def test_experiment_bad_weights(runner, config_file, candidates_file):
    """Test that unknown weight names are rejected."""
    result = runner.invoke(cli, [
        "--config", str(config_file), "experiment", "q",
        "--candidates", str(candidates_file), "--test-weights", "speed=1"
    ])

    assert result.exit_code != 0


def test_parse_weights():
    """Test weight override parsing."""
    assert parse_weights("semantic=0.5, recency=0.2") == {"semantic": 0.5, "recency": 0.2}
    assert parse_weights("") == {}
