"""Entry point for replaying a reading journey through the transformation core.

Usage:
    python main.py --journey arch-discovery,algo-awakening,arch-discovery
    python main.py --journey arch-discovery --engage memory-fragment --engage memory-fragment
    python main.py --journey arch-discovery,human-shelter --show-transformations --verbose
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from corpus.loader import ContentFetcher, load_node_table
from narramorph.config import load_config
from narramorph.core import TransformationEngine
from narramorph.session import LOAD_FAILED, ReadingSession


def _setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=fmt, handlers=handlers)


async def _replay(session: ReadingSession, journey: list[str], engage: tuple[str, ...]):
    state = None
    for node_id in journey:
        state = await session.visit(node_id)
    for attractor in engage:
        session.engage_attractor(attractor)
    return state


@click.command()
@click.option("--journey", required=True, help="Comma-separated node ids, in visit order")
@click.option("--engage", multiple=True, help="Attractor engaged on the last node (repeatable)")
@click.option("--show-transformations", is_flag=True, help="List the transformations applied")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
def cli(
    journey: str,
    engage: tuple[str, ...],
    show_transformations: bool,
    verbose: bool,
    config_dir: str | None,
) -> None:
    """Render the last node of a journey as the reader would see it."""
    cfg = load_config(config_dir)
    _setup_logging(verbose=verbose, log_file=cfg.get("logging", {}).get("file"))

    content = cfg.get("content", {})
    nodes = load_node_table(content["node_table"])
    path = [node_id.strip() for node_id in journey.split(",") if node_id.strip()]
    unknown = [node_id for node_id in path if node_id not in nodes]
    if unknown:
        click.echo(f"Unknown node(s): {', '.join(unknown)}", err=True)
        sys.exit(1)

    session = ReadingSession(
        nodes,
        TransformationEngine(cfg),
        ContentFetcher(content["content_dir"]),
    )
    state = asyncio.run(_replay(session, path, engage))

    if state.phase == LOAD_FAILED:
        click.echo(f"{state.current_content}\n({state.error})", err=True)
        sys.exit(2)

    title = state.definition.title or state.id
    click.echo(f"\n  {title}  [{state.variant_key}, visit {state.visit_count}]\n")
    click.echo(state.current_content)
    if state.notice:
        click.echo(f"\n  ({state.notice})")

    if show_transformations:
        click.echo("\n  Transformations:")
        for t in state.transformations:
            mark = "+" if t.id in state.applied_transformation_ids else "-"
            click.echo(f"  {mark} {t.priority:<6} {t.type:<11} {t.selector[:50]!r}")


if __name__ == "__main__":
    cli()
