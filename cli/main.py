#!/usr/bin/env python3
"""
DocGraph CLI.

Usage:
    docgraph ingest /path/to/pdfs
    docgraph link --limit 20
    docgraph graph --view knowledge
    docgraph documents
    docgraph describe entity entity:bob Bob --info Person
    docgraph config
"""

import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager

import click

from docgraph import __version__
from docgraph.config import GRAPH_BACKENDS, Config


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@contextmanager
def cancel_on_interrupt():
    """Yield an Event that Ctrl-C sets; the current unit still finishes."""
    cancel_event = threading.Event()

    def handler(signum, frame):
        click.echo("\nCancelling after the current unit...", err=True)
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


def open_context(cfg: Config):
    from docgraph.context import build_context
    from docgraph.exceptions import DocGraphError

    try:
        return build_context(cfg)
    except DocGraphError as e:
        click.echo(click.style(f"✗ {e}", fg="red"), err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--backend", type=click.Choice(GRAPH_BACKENDS), help="Graph store backend")
@click.option("--store-path", type=click.Path(dir_okay=False), help="JSON snapshot path")
@click.option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)")
@click.pass_context
def cli(ctx, backend: str, store_path: str, log_level: str):
    """DocGraph - documents to knowledge graph."""
    cfg = Config(
        overrides={
            "GRAPH_BACKEND": backend,
            "GRAPH_STORE_PATH": store_path,
            "LOG_LEVEL": log_level,
        }
    )
    setup_logging(cfg.LOG_LEVEL)
    ctx.obj = cfg


# ============================================================================
# Pipeline Commands
# ============================================================================

@cli.command()
@click.argument("directory", type=click.Path(file_okay=False))
@click.pass_obj
def ingest(cfg: Config, directory: str):
    """Import every PDF in DIRECTORY (Stage 1)."""
    from docgraph import commands

    with open_context(cfg) as pipeline_ctx, cancel_on_interrupt() as cancel_event:
        message = commands.ingest(pipeline_ctx, directory, cancel_event=cancel_event)

    if message.startswith("Ingest failed"):
        click.echo(click.style(f"✗ {message}", fg="red"))
        sys.exit(1)
    click.echo(click.style(f"✓ {message}", fg="green"))


@cli.command()
@click.option("-n", "--limit", type=int, help="Chunks per batch (default LINK_BATCH_SIZE)")
@click.pass_obj
def link(cfg: Config, limit: int):
    """Link unprocessed chunks into the knowledge graph (Stage 2)."""
    from docgraph import commands

    with open_context(cfg) as pipeline_ctx, cancel_on_interrupt() as cancel_event:
        message = commands.construct_graph(pipeline_ctx, limit=limit, cancel_event=cancel_event)

    if message.startswith("Graph construction failed"):
        click.echo(click.style(f"✗ {message}", fg="red"))
        sys.exit(1)
    click.echo(message)


# ============================================================================
# Query Commands
# ============================================================================

@cli.command()
@click.option("--view", type=click.Choice(["all", "knowledge"]), default="all", help="Node set")
@click.pass_obj
def graph(cfg: Config, view: str):
    """Print the visualization graph as JSON."""
    from docgraph import commands

    with open_context(cfg) as pipeline_ctx:
        data = commands.fetch_graph(pipeline_ctx, view_mode=view)

    click.echo(json.dumps(data.to_dict(), indent=2, ensure_ascii=False))


@cli.command()
@click.pass_obj
def documents(cfg: Config):
    """Print documents and their chunks as JSON."""
    from docgraph import commands

    with open_context(cfg) as pipeline_ctx:
        docs = commands.list_documents(pipeline_ctx)

    click.echo(json.dumps(docs, indent=2, ensure_ascii=False, default=str))


@cli.command()
@click.argument("group")
@click.argument("node_id")
@click.argument("label")
@click.option("--info", help="Extra info (entity category)")
def describe(group: str, node_id: str, label: str, info: str):
    """Describe a clicked graph node."""
    from docgraph import commands

    click.echo(commands.describe_node(group, node_id, label, info))


@cli.command("config")
@click.pass_obj
def show_config(cfg: Config):
    """Show effective configuration."""
    click.echo("\nDocGraph Configuration")
    click.echo("=" * 40)
    errors = cfg.validate()
    try:
        settings = cfg.as_dict()
    except ValueError:
        # A non-numeric value; validate() already names it
        settings = {}
    for key, value in settings.items():
        click.echo(f"{key:<24} {value}")

    if errors:
        click.echo()
        for error in errors:
            click.echo(click.style(f"✗ {error}", fg="red"))
        sys.exit(1)


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
