"""CLI command for listing key versions.

Usage:
    cachegraph versions report
    cachegraph versions report --archive 2
"""

from __future__ import annotations

import asyncio

import typer

app = typer.Typer(help="Show the registered versions of a base key")


@app.callback(invoke_without_command=True)
def versions(
    base: str = typer.Argument(..., help="Base key"),
    archive: int | None = typer.Option(
        None,
        "--archive",
        "-a",
        help="Delete all but the newest N versions before listing",
    ),
) -> None:
    """List every version of a base key with its remaining TTL."""
    asyncio.run(_versions(base, archive))


async def _versions(base: str, archive: int | None) -> None:
    """Async implementation of versions command."""
    from rich.console import Console
    from rich.table import Table

    from cachegraph.factory import create_cache

    console = Console()
    cache = await create_cache()
    try:
        if archive is not None:
            archived = await cache.versions.archive_old_versions(base, archive)
            console.print(f"[yellow]Archived[/yellow] {len(archived)} version(s)")

        latest = await cache.versions.latest_version(base)
        rows = []
        for version in await cache.versions.versions(base):
            ttl = await cache.versions.time_to_live_version(base, version)
            rows.append((version, ttl))
    finally:
        await cache.close()

    if not rows:
        console.print(f"[yellow]No versions registered for[/yellow] {base}")
        raise typer.Exit(code=1)

    table = Table(title=f"Versions of {base}")
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("TTL", justify="right")
    table.add_column("Latest")

    for version, ttl in rows:
        table.add_row(
            str(version),
            "-" if ttl is None else str(ttl),
            "[green]yes[/green]" if version == latest else "",
        )

    console.print(table)
