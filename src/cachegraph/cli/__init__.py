"""CLI commands for cachegraph.

Provides command-line interface using Typer:
- cachegraph tag-stats: TTL and access figures per tag
- cachegraph clear-tag: Delete every entry of one or more tags
- cachegraph invalidate: Cascade invalidation along dependency edges
- cachegraph versions: Registered versions of a base key

All commands work against the backend selected by CACHEGRAPH_STORE_BACKEND.

Usage:
    cachegraph --help
    cachegraph tag-stats products featured
    cachegraph clear-tag products
    cachegraph invalidate user:1 --dependents-only
    cachegraph versions report
"""

import typer

from cachegraph.cli.invalidate_cmd import app as invalidate_app
from cachegraph.cli.tags_cmd import clear_app, stats_app
from cachegraph.cli.versions_cmd import app as versions_app
from cachegraph.config import settings
from cachegraph.observability.logging import configure_logging

# Main CLI application
app = typer.Typer(
    name="cachegraph",
    help="cachegraph: graph-aware cache invalidation and analytics",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(stats_app, name="tag-stats")
app.add_typer(clear_app, name="clear-tag")
app.add_typer(invalidate_app, name="invalidate")
app.add_typer(versions_app, name="versions")


@app.callback()
def callback() -> None:
    """cachegraph: graph-aware cache invalidation and analytics."""
    configure_logging(json_format=settings.log_json, level=settings.log_level)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
