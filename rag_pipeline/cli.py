"""CLI for pipeline rules, stages and the running server."""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import httpx

from .chunking import SentenceChunker
from .config import RAGConfig
from .embeddings import EmbeddingClient
from .errors import RAGPipelineError
from .rules import PipelineSelector, RuleCache, RuleRepository
from .stages import StageDependencies, build_default_factory
from .vector_db import InMemoryVectorStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _selector(config: RAGConfig) -> PipelineSelector:
    repository = RuleRepository(config.rules_file)
    return PipelineSelector(
        repository,
        RuleCache(repository, ttl=config.rule_cache_ttl),
        default_pipeline=config.default_pipeline,
    )


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--rules-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Pipelines/rules JSON file (overrides RAG_RULES_FILE)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, rules_file: Optional[Path]):
    """RAG Pipeline CLI - inspect URL routing and drive the pipeline server."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = RAGConfig.from_env()
    if rules_file:
        config.rules_file = rules_file
    ctx.obj = config


@cli.command("select")
@click.argument("url")
@click.pass_obj
def select(config: RAGConfig, url: str):
    """Show which pipeline a URL would be routed to."""
    try:
        report = _selector(config).test_selection(url)
    except RAGPipelineError as e:
        _fail(e.message)

    click.echo(f"URL: {report.url}")
    click.echo(f"Selected: {report.selected.name} ({' -> '.join(report.selected.stage_names())})")
    click.echo(f"Reason: {report.reason}")

    if report.matches:
        click.echo("\nMatching rules:")
        for match in report.matches:
            click.echo(f"  [{match.priority:>3}] {match.pipeline_id:<12} {match.pattern}  ({match.match_type})")


@cli.command("pipelines")
@click.pass_obj
def pipelines(config: RAGConfig):
    """List active pipelines and their URL patterns."""
    try:
        infos = _selector(config).list_pipelines()
    except RAGPipelineError as e:
        _fail(e.message)

    if not infos:
        click.echo("No active pipelines found.")
        return

    for info in infos:
        click.echo(f"\n{info.name}: {info.description or ''}")
        click.echo(f"  Stages: {' -> '.join(step.name for step in info.stages)}")
        for pattern in info.url_patterns:
            click.echo(f"  [{pattern.priority:>3}] {pattern.pattern}")


@cli.command("add-rule")
@click.option("--pipeline", "-p", "pipeline_id", required=True, help="Target pipeline name")
@click.option("--pattern", required=True, help="URL regular expression (case-insensitive)")
@click.option("--priority", type=int, default=1, show_default=True, help="Higher priority wins")
@click.option("--inactive", is_flag=True, help="Store the rule disabled")
@click.pass_obj
def add_rule(config: RAGConfig, pipeline_id: str, pattern: str, priority: int, inactive: bool):
    """Add or update a URL rule."""
    if config.rules_file is None:
        _fail("Set --rules-file or RAG_RULES_FILE to persist rules")

    try:
        rule = _selector(config).add_or_update_rule(pipeline_id, pattern, priority, active=not inactive)
    except RAGPipelineError as e:
        _fail(e.message)

    state = "active" if rule.active else "inactive"
    click.echo(f"✓ Rule {rule.pattern} -> {rule.pipeline_id} (priority {rule.priority}, {state})")


@cli.command("stages")
@click.pass_obj
def stages(config: RAGConfig):
    """List built-in stages."""
    deps = StageDependencies.from_config(
        config, InMemoryVectorStore(), EmbeddingClient.from_config(config)
    )
    factory = build_default_factory(deps)

    for info in factory.info():
        click.echo(f"  {info.name:<10} [{info.category}] {info.description or ''}")


@cli.command("check")
@click.pass_obj
def check(config: RAGConfig):
    """Validate pipelines and rules the way server startup does."""
    deps = StageDependencies.from_config(
        config, InMemoryVectorStore(), EmbeddingClient.from_config(config)
    )
    factory = build_default_factory(deps)
    selector = _selector(config)

    try:
        selector.validate()
        for pipeline in selector.repository.list_pipelines():
            if pipeline.active:
                factory.validate_pipeline(pipeline)
    except RAGPipelineError as e:
        for detail in e.errors:
            click.echo(f"  {detail}", err=True)
        _fail(e.message)

    click.echo("✓ Configuration is valid")


@cli.command("chunk")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--size", type=int, help="Chunk size (default from config)")
@click.option("--overlap", type=int, help="Chunk overlap (default from config)")
@click.pass_obj
def chunk(config: RAGConfig, file: Path, size: Optional[int], overlap: Optional[int]):
    """Preview how a text file would be chunked."""
    chunker = SentenceChunker(config.min_chunk_size, config.max_chunk_size)
    size = size or config.chunk_size
    overlap = config.chunk_overlap if overlap is None else overlap

    try:
        chunker.validate(size, overlap)
    except RAGPipelineError as e:
        for detail in e.errors:
            click.echo(f"  {detail}", err=True)
        _fail(e.message)

    chunks = chunker.chunk(file.read_text(encoding="utf-8"), size, overlap)
    for item in chunks:
        preview = item.text[:70].replace("\n", " ")
        click.echo(f"  #{item.index:<3} {len(item.text):>5} chars  ~{item.token_count} tokens  {preview}...")
    click.echo(f"\n{len(chunks)} chunks")


def _post(server_url: str, path: str, payload: dict, timeout: float) -> httpx.Response:
    async def run():
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(f"{server_url.rstrip('/')}{path}", json=payload)

    try:
        return asyncio.run(run())
    except httpx.HTTPError as e:
        _fail(f"Request to {server_url} failed: {e}")


@cli.command("ingest")
@click.argument("url")
@click.option("--chunk-size", type=int, help="Chunk size override")
@click.option("--chunk-overlap", type=int, help="Chunk overlap override")
@click.option("--server", "server_url", default="http://127.0.0.1:8002", help="RAG pipeline server URL")
def ingest(url: str, chunk_size: Optional[int], chunk_overlap: Optional[int], server_url: str):
    """Ingest a URL through the running server."""
    payload = {"url": url, "chunk_size": chunk_size, "chunk_overlap": chunk_overlap}
    response = _post(server_url, "/v1/rag/ingest", payload, timeout=300.0)
    data = response.json()

    if response.status_code != 200:
        detail = data.get("detail", data)
        if isinstance(detail, dict):
            click.echo(f"✗ Run {detail.get('run_id')} failed at stage '{detail.get('failed_stage')}'", err=True)
            for error in detail.get("errors", []):
                click.echo(f"    {error}", err=True)
            _fail(detail.get("message", "ingestion failed"))
        _fail(str(detail))

    click.echo(f"✓ {data['message']}")
    click.echo(f"  Run: {data['run_id']} ({data['pipeline']})")
    click.echo(f"  Document: {data['document_id']}")
    click.echo(f"  Chunks: {data['chunks_stored']} stored / {data['chunks_processed']} processed")
    for stage in data.get("stages", []):
        click.echo(f"    {stage['stage']:<10} {stage['duration_ms']:>8.1f}ms  {stage['message']}")


@cli.command("search")
@click.argument("query")
@click.option("--top-k", "-k", type=int, help="Number of results")
@click.option("--min-score", type=float, help="Minimum similarity score")
@click.option("--server", "server_url", default="http://127.0.0.1:8002", help="RAG pipeline server URL")
def search(query: str, top_k: Optional[int], min_score: Optional[float], server_url: str):
    """Search ingested content through the running server."""
    payload = {"query": query, "top_k": top_k, "min_score": min_score}
    response = _post(server_url, "/v1/rag/search", payload, timeout=60.0)

    if response.status_code != 200:
        _fail(str(response.json().get("detail")))

    results = response.json()["results"]
    if not results:
        click.echo("No results above the score threshold.")
        return

    for idx, result in enumerate(results, 1):
        click.echo(f"\n{idx}. [{result['score']:.3f}] {result['document_title'] or result['source_url']}")
        click.echo(f"   {result['content'][:200]}")


def main():
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
