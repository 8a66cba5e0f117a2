"""CLI commands for inspecting and clearing tags.

Usage:
    cachegraph tag-stats products featured
    cachegraph tag-stats products --format json
    cachegraph clear-tag products
    cachegraph clear-tag products --below 60
"""

from __future__ import annotations

import asyncio

import typer

stats_app = typer.Typer(help="Show TTL and access statistics per tag")
clear_app = typer.Typer(help="Delete every entry of the given tags")


@stats_app.callback(invoke_without_command=True)
def tag_stats(
    tags: list[str] = typer.Argument(..., help="Tag names"),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: text, json",
    ),
) -> None:
    """Show member count, TTL and access figures for each tag."""
    asyncio.run(_tag_stats(tags, output_format))


async def _tag_stats(tags: list[str], output_format: str) -> None:
    """Async implementation of tag-stats command."""
    import orjson
    from rich.console import Console
    from rich.table import Table

    from cachegraph.factory import create_cache

    console = Console()
    cache = await create_cache()
    try:
        stats = await cache.analytics.cross_tag_analytics(tags)
    finally:
        await cache.close()

    if output_format == "json":
        payload = {tag: entry.to_dict() for tag, entry in stats.items()}
        console.print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())
        return

    table = Table(title="Tag statistics")
    table.add_column("Tag", style="cyan")
    table.add_column("Keys", justify="right")
    table.add_column("TTL sum", justify="right")
    table.add_column("Avg TTL", justify="right")
    table.add_column("Access", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Weighted", justify="right")

    for tag, entry in stats.items():
        table.add_row(
            tag,
            str(entry.count),
            str(entry.ttl_sum),
            f"{entry.average_ttl:.1f}",
            str(entry.total_access),
            f"{entry.priority_score:.4f}",
            f"{entry.weighted_score:.4f}",
        )

    console.print(table)


@clear_app.callback(invoke_without_command=True)
def clear_tag(
    tags: list[str] = typer.Argument(..., help="Tag names"),
    below: int | None = typer.Option(
        None,
        "--below",
        "-b",
        help="Only delete members that expire within this many seconds",
    ),
) -> None:
    """Delete every member entry of the tags, then the tag records."""
    asyncio.run(_clear_tag(tags, below))


async def _clear_tag(tags: list[str], below: int | None) -> None:
    """Async implementation of clear-tag command."""
    from rich.console import Console

    from cachegraph.factory import create_cache

    console = Console()
    cache = await create_cache()
    try:
        if below is None:
            removed = await cache.tags.clear_tags(tags)
        else:
            removed = len(await cache.tags.clear_tags_if_ttl_below(tags, below))
    finally:
        await cache.close()

    console.print(f"[green]Cleared[/green] {removed} key(s) from {len(tags)} tag(s)")
