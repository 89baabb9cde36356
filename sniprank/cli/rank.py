#!/usr/bin/env python3
"""
Command-line front end for sniprank.

Usage:
    sniprank search "query" --candidates results.json   - Rank candidates for a query
    sniprank feedback RESULT_ID --rating 0.9            - Record feedback on a result
    sniprank experiment "query" --test-weights k=v,...  - Compare two weight sets
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from ..engine.collaborators import SimilaritySearch, StaticSimilaritySearch
from ..engine.config import Config
from ..engine.errors import SearchError
from ..engine.models import CandidateResult, Feedback, RankedResult, SearchOptions
from ..engine.service import CodeSearchService

console = Console()


def configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
    )


def load_config(config_path: Optional[Path]) -> Config:
    if config_path is not None:
        return Config.load(config_path)
    try:
        return Config.load()
    except FileNotFoundError:
        return Config()


def parse_weights(text: str) -> Dict[str, float]:
    """Parse ``semantic=0.5,recency=0.2`` into a weight map."""
    weights = {}
    for item in filter(None, (part.strip() for part in text.split(','))):
        name, sep, value = item.partition('=')
        if not sep:
            raise click.BadParameter(f"expected name=value, got {item!r}")
        try:
            weights[name.strip()] = float(value)
        except ValueError:
            raise click.BadParameter(f"weight {name.strip()!r} is not a number: {value!r}")
    return weights


def build_service(config: Config,
                  candidates: Optional[Path],
                  upstream: Optional[str],
                  store: Optional[Path] = None,
                  similarity_search: Optional[SimilaritySearch] = None) -> CodeSearchService:
    if upstream:
        config.upstream.base_url = upstream
    if store is not None:
        config.preferences.feedback_path = store

    if similarity_search is not None:
        return CodeSearchService.from_config(config, similarity_search)
    if candidates is not None:
        return CodeSearchService.from_config(config, StaticSimilaritySearch.from_json(candidates))
    if config.upstream.base_url:
        return CodeSearchService.from_config(config)
    raise click.UsageError("Provide --candidates FILE or --upstream URL")


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True, path_type=Path),
              help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], verbose: bool):
    """sniprank - multi-factor ranking of code search results."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config_path)


@cli.command()
@click.argument("query")
@click.option("--candidates", type=click.Path(exists=True, path_type=Path),
              help="JSON file of pre-scored candidates")
@click.option("--upstream", help="Base URL of the similarity search service")
@click.option("--top-k", "-k", type=int, help="Max results")
@click.option("--threshold", type=float, help="Minimum similarity score")
@click.option("--current-file", help="File being edited")
@click.option("--current-function", help="Function being edited")
@click.option("--no-ranking", is_flag=True, help="Order by similarity only")
@click.option("--no-expansion", is_flag=True, help="Disable query expansion")
@click.option("--explain", is_flag=True, help="Show factor breakdown of the top result")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_context
def search(ctx, query: str, candidates: Optional[Path], upstream: Optional[str],
           top_k: Optional[int], threshold: Optional[float],
           current_file: Optional[str], current_function: Optional[str],
           no_ranking: bool, no_expansion: bool, explain: bool, as_json: bool):
    """Search and rank code snippets."""
    service = build_service(ctx.obj["config"], candidates, upstream)
    options = SearchOptions(
        top_k=top_k,
        similarity_threshold=threshold,
        enable_ranking=not no_ranking,
        enable_query_expansion=False if no_expansion else None
    )
    try:
        asyncio.run(run_search(service, query, options, current_file, current_function,
                               explain, as_json))
    except SearchError as e:
        console.print(f"[red]Search failed:[/red] {e}")
        sys.exit(1)


async def run_search(service: CodeSearchService,
                     query: str,
                     options: SearchOptions,
                     current_file: Optional[str],
                     current_function: Optional[str],
                     explain: bool,
                     as_json: bool):
    try:
        await service.initialize()
        results = await service.search(
            query, options,
            current_file=current_file,
            current_function=current_function
        )
    finally:
        await service.close()

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    display_results(query, results)
    if explain and results:
        display_explanation(service, results[0])


def display_results(query: str, results: List[RankedResult]):
    """Display ranked results in a table."""
    if not results:
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=f"Results for {query!r}")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Location", no_wrap=False)
    table.add_column("Score", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Explanation", no_wrap=False)

    for r in results:
        table.add_row(
            str(r.rank_position),
            r.id,
            r.context_snippet or f"{r.file_path}:{r.candidate.start_line}",
            f"{r.final_score:.3f}",
            f"{r.confidence_score:.2f}",
            r.explanation
        )

    console.print(table)


def display_explanation(service: CodeSearchService, result: RankedResult):
    explanation = service.explain(result)

    table = Table(title=f"Why {result.id} ranked #{result.rank_position}")
    table.add_column("Factor", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Contribution", justify="right")

    for f in explanation.factor_breakdown:
        table.add_row(f.factor, f"{f.score:.3f}", f"{f.weight:.2f}", f"{f.contribution:+.3f}")

    console.print(table)
    console.print(f"[dim]{explanation.reasoning}[/dim]")


@cli.command()
@click.argument("result_id")
@click.option("--rating", "-r", type=click.FloatRange(0.0, 1.0), required=True,
              help="Rating between 0 and 1")
@click.option("--helpful", is_flag=True, help="Mark the result as helpful")
@click.option("--query", "-q", "query_text", default="", help="Query that produced the result")
@click.option("--candidates", type=click.Path(exists=True, path_type=Path),
              help="JSON file containing the rated result")
@click.option("--store", type=click.Path(path_type=Path), help="Feedback history file")
@click.pass_context
def feedback(ctx, result_id: str, rating: float, helpful: bool, query_text: str,
             candidates: Optional[Path], store: Optional[Path]):
    """Record feedback on a result."""
    config: Config = ctx.obj["config"]
    if store is None and config.preferences.feedback_path is None:
        raise click.UsageError("Provide --store FILE or set preferences.feedback_path")

    source = StaticSimilaritySearch.from_json(candidates) if candidates else StaticSimilaritySearch([])
    service = build_service(config, None, None, store=store, similarity_search=source)

    result = next((c for c in source.candidates if c.id == result_id), None)
    if result is None:
        console.print(f"[yellow]Result {result_id} not found in candidates; storing id only[/yellow]")

    asyncio.run(record_feedback(service, result_id, rating, helpful, query_text, result))


async def record_feedback(service: CodeSearchService,
                          result_id: str,
                          rating: float,
                          helpful: bool,
                          query_text: str,
                          result: Optional[CandidateResult]):
    await service.initialize()
    interaction = await service.record_feedback(
        result_id,
        Feedback(rating=rating, clicked=True, was_helpful=helpful),
        query_text,
        result=result
    )
    stats = service.preferences.get_interaction_stats()
    console.print(f"[green]✓[/green] Recorded feedback: {interaction.interaction_id}")
    console.print(
        f"[dim]{stats['total_interactions']} interactions, "
        f"average rating {stats['average_rating']:.2f}[/dim]"
    )
    if stats['top_file_types']:
        favorites = ', '.join(f"{ext} ({count})" for ext, count in stats['top_file_types'])
        console.print(f"[dim]Most helpful file types: {favorites}[/dim]")


@cli.command()
@click.argument("query")
@click.option("--candidates", type=click.Path(exists=True, path_type=Path),
              help="JSON file of pre-scored candidates")
@click.option("--upstream", help="Base URL of the similarity search service")
@click.option("--control-weights", default="", help="Overrides for the control weights (name=value,...)")
@click.option("--test-weights", required=True, help="Overrides for the test weights (name=value,...)")
@click.option("--current-file", help="File being edited")
@click.pass_context
def experiment(ctx, query: str, candidates: Optional[Path], upstream: Optional[str],
               control_weights: str, test_weights: str, current_file: Optional[str]):
    """Compare rankings under two weight configurations."""
    service = build_service(ctx.obj["config"], candidates, upstream)
    try:
        control = service.ranker.weights.merged(parse_weights(control_weights))
        test = service.ranker.weights.merged(parse_weights(test_weights))
    except ValueError as e:
        raise click.BadParameter(str(e))

    context = service.build_default_context(query, current_file=current_file)
    options = SearchOptions(search_context=context)
    try:
        asyncio.run(run_experiment(service, query, control, test, options))
    except SearchError as e:
        console.print(f"[red]Experiment failed:[/red] {e}")
        sys.exit(1)


async def run_experiment(service: CodeSearchService, query: str, control, test,
                         options: SearchOptions):
    try:
        await service.initialize()
        result = await service.run_experiment(query, control, test, options)
    finally:
        await service.close()

    table = Table(title=f"Experiment for {query!r}")
    table.add_column("#", justify="right")
    table.add_column("Control", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Test", style="magenta")
    table.add_column("Score", justify="right")

    rows = max(len(result.control_results), len(result.test_results))
    for i in range(rows):
        c = result.control_results[i] if i < len(result.control_results) else None
        t = result.test_results[i] if i < len(result.test_results) else None
        table.add_row(
            str(i + 1),
            c.id if c else "",
            f"{c.final_score:.3f}" if c else "",
            t.id if t else "",
            f"{t.final_score:.3f}" if t else ""
        )

    console.print(table)
    console.print(f"[bold]Recommended:[/bold] {result.recommended_approach}")


if __name__ == "__main__":
    cli()
