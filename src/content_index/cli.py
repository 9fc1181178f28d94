"""Command-line interface for the content index.

Usage:
    content-index index data/pages --chunk-size 50
    content-index retrieve "how do I start a blog?" --top-k 5
    content-index query "machine learning" --field interests
    content-index report data/pages --ignore-field links
    content-index label-context data/pages --field interests --prompt-file prompt.txt
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from loguru import logger

from content_index.config import load_config
from content_index.documents import DirectoryDocumentStore, DirectoryPageStore
from content_index.engine import ContentEngine, build_context, format_hits
from content_index.errors import ConfigurationError, ContentIndexError

T = TypeVar("T")


def configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )


def require_persistent_point_store(engine: ContentEngine) -> None:
    """Label points must outlive the command that writes or reads them."""
    if engine.config.point_store.backend == "memory":
        raise ConfigurationError(
            "The memory point store is discarded when the command exits; "
            "use --config-name qdrant or --override point_store.backend=qdrant"
        )


def run_engine(ctx: click.Context, operation: Callable[[ContentEngine], Awaitable[T]]) -> T:
    """Build an engine from the group options, run one operation, close clients."""
    options = ctx.obj

    async def main() -> T:
        config = load_config(
            options["config_name"], options["config_dir"], list(options["overrides"])
        )
        engine = ContentEngine(build_context(config, data_dir=options["data_dir"]))
        try:
            return await operation(engine)
        finally:
            await engine.aclose()

    try:
        return asyncio.run(main())
    except (ContentIndexError, FileNotFoundError) as e:
        logger.error(str(e))
        sys.exit(1)


@click.group()
@click.option("--config-name", default="default", help="Config file in the config directory")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Config directory (defaults to conf/content_index/)",
)
@click.option(
    "--override", "overrides", multiple=True, help="Hydra override, e.g. chunking.chunk_size=80"
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Index snapshot directory (overrides index.data_dir)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    config_name: str,
    config_dir: Path | None,
    overrides: tuple[str, ...],
    data_dir: Path | None,
    verbose: bool,
) -> None:
    """Semantic indexing, retrieval and label analytics for scraped content."""
    configure_logging(verbose)
    ctx.obj = {
        "config_name": config_name,
        "config_dir": config_dir,
        "overrides": overrides,
        "data_dir": data_dir,
    }


@cli.command()
@click.argument("source_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--chunk-size", type=int, default=None, help="Words per chunk")
@click.option("--append", is_flag=True, help="Extend the existing snapshot")
@click.pass_context
def index(ctx: click.Context, source_dir: Path, chunk_size: int | None, append: bool) -> None:
    """Chunk, embed and index every document in SOURCE_DIR."""
    store = DirectoryDocumentStore(source_dir)
    report = run_engine(ctx, lambda engine: engine.index(store, chunk_size, append))
    click.echo(report.model_dump_json(indent=2))


@cli.command()
@click.argument("question", type=str)
@click.option("--top-k", default=5, help="Number of results to return")
@click.option(
    "--source-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Documents to recompute chunk text from (defaults to the indexed directories)",
)
@click.option(
    "--chunk-size", type=int, default=None, help="Override the chunk size recorded at index time"
)
@click.pass_context
def retrieve(
    ctx: click.Context,
    question: str,
    top_k: int,
    source_dir: Path | None,
    chunk_size: int | None,
) -> None:
    """Find the indexed chunks nearest to QUESTION."""
    store = DirectoryDocumentStore(source_dir) if source_dir else None
    response = run_engine(
        ctx, lambda engine: engine.retrieve(question, top_k, store, chunk_size)
    )

    if response.is_empty:
        logger.warning("No results found!")
        return

    for i, result in enumerate(response.results, start=1):
        click.echo(
            f"Result {i} (distance {result.distance:.4f}) "
            f"{result.source_id} [{result.chunk_index}/{result.total_chunks}]"
        )
        click.echo(result.text)
        click.echo("")


@cli.command()
@click.argument("question", type=str)
@click.option("--field", required=True, help="Label field, e.g. interests")
@click.option("--top-k", default=5, help="Number of results to return")
@click.pass_context
def query(ctx: click.Context, question: str, field: str, top_k: int) -> None:
    """Search the label collection of FIELD for points similar to QUESTION."""

    async def operation(engine: ContentEngine) -> str:
        require_persistent_point_store(engine)
        hits = await engine.query(question, field, top_k)
        return format_hits(hits, question, engine.config.point_store.collection_name(field))

    click.echo(run_engine(ctx, operation))


@cli.command()
@click.argument("pages_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--ignore-field", "ignore_fields", multiple=True, help="Page field to leave out")
@click.pass_context
def report(ctx: click.Context, pages_dir: Path, ignore_fields: tuple[str, ...]) -> None:
    """Aggregate label analytics over the pages in PAGES_DIR."""
    pages = DirectoryPageStore(pages_dir).pages()

    async def operation(engine: ContentEngine) -> Any:
        return engine.report(pages, ignore_fields)

    click.echo(run_engine(ctx, operation).model_dump_json(indent=2))


@cli.command("label-context")
@click.argument("pages_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--field", required=True, help="Label field, e.g. interests")
@click.option(
    "--prompt-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Prompt template with {page.<field>} tokens",
)
@click.pass_context
def label_context(ctx: click.Context, pages_dir: Path, field: str, prompt_file: Path) -> None:
    """Generate label evidence for each page and merge it into label points."""
    pages = DirectoryPageStore(pages_dir).pages()
    prompt = prompt_file.read_text(encoding="utf-8")

    async def operation(engine: ContentEngine) -> Any:
        require_persistent_point_store(engine)
        return await engine.build_label_context(pages, field, prompt)

    result = run_engine(ctx, operation)
    click.echo(result.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
