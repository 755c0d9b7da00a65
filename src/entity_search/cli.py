"""Command-line driver for a persistent semantic search store.

Usage:
    entity-search index records.jsonl
    entity-search search "red shoes" --type products --limit 3
    entity-search remove products p1
    entity-search stats
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
from loguru import logger
from pydantic import ValidationError

from entity_search.config import SemanticSearchConfig, load_config
from entity_search.engine import SemanticSearchEngine
from entity_search.exceptions import SemanticSearchError
from entity_search.models import EntityChange


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format="<level>{message}</level>")


async def _started_engine(config: SemanticSearchConfig) -> SemanticSearchEngine:
    engine = SemanticSearchEngine.from_config(config, base_dir=Path.cwd())
    await engine.start()
    return engine


def _read_changes(path: Path) -> list[EntityChange]:
    """Parse a JSONL file of {entity_type, entity_id, record[, action]} objects."""
    changes: list[EntityChange] = []
    for line_no, line in enumerate(path.read_text().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            payload: dict[str, Any] = json.loads(line)
            payload.setdefault("action", "upsert")
            changes.append(EntityChange.model_validate(payload))
        except (json.JSONDecodeError, ValidationError) as e:
            raise click.ClickException(f"{path}:{line_no}: invalid change record: {e}") from e
    return changes


@click.group()
@click.option("--config-name", default="default", help="Config file name in the config directory")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Config directory (defaults to conf/entity_search/)",
)
@click.option("--override", "overrides", multiple=True, help="Hydra override, e.g. store.path=/tmp/x")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    config_name: str,
    config_dir: Path | None,
    overrides: tuple[str, ...],
    verbose: bool,
) -> None:
    """Semantic search over entity records."""
    _configure_logging(verbose)
    ctx.obj = load_config(config_name, config_path=config_dir, overrides=list(overrides))


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def index(config: SemanticSearchConfig, path: Path) -> None:
    """Apply entity changes from a JSONL file (upserts by default)."""
    changes = _read_changes(path)

    async def run() -> int:
        engine = await _started_engine(config)
        failures = 0
        for change in changes:
            try:
                await engine.apply_change(change)
            except SemanticSearchError as e:
                failures += 1
                logger.error(f"Failed to apply {change.entity_type}:{change.entity_id}: {e}")
        return failures

    failures = asyncio.run(run())
    click.echo(f"Applied {len(changes) - failures}/{len(changes)} changes")
    if failures:
        sys.exit(1)


@cli.command()
@click.argument("entity_type")
@click.argument("entity_id")
@click.pass_obj
def remove(config: SemanticSearchConfig, entity_type: str, entity_id: str) -> None:
    """Remove an entity from the index."""

    async def run() -> int:
        engine = await _started_engine(config)
        return await engine.remove_entity(entity_type, entity_id)

    removed = asyncio.run(run())
    click.echo(f"Removed {removed} chunks of {entity_type}:{entity_id}")


@cli.command()
@click.argument("query")
@click.option("--type", "entity_type", default=None, help="Only return this entity type")
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Number of results")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_obj
def search(
    config: SemanticSearchConfig,
    query: str,
    entity_type: str | None,
    limit: int | None,
    as_json: bool,
) -> None:
    """Search indexed entities."""

    async def run() -> list[Any]:
        engine = await _started_engine(config)
        return await engine.search(query, entity_type=entity_type, limit=limit)

    try:
        results = asyncio.run(run())
    except SemanticSearchError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps([r.model_dump() for r in results], indent=2))
        return
    if not results:
        click.echo("No results found")
        return
    for i, result in enumerate(results, start=1):
        click.echo(f"{i}. {result.entity_type}:{result.entity_id}  ({result.similarity:.4f})")


@cli.command()
@click.pass_obj
def stats(config: SemanticSearchConfig) -> None:
    """Show store statistics."""

    async def run() -> Any:
        engine = SemanticSearchEngine.from_config(config, base_dir=Path.cwd())
        await engine.store.initialize()
        return await engine.stats()

    click.echo(asyncio.run(run()).model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
