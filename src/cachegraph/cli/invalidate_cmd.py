"""CLI command for cascading invalidation.

Usage:
    cachegraph invalidate user:1
    cachegraph invalidate user:1 --dependents-only
    cachegraph invalidate user:1 --dry-run
"""

from __future__ import annotations

import asyncio

import typer

app = typer.Typer(help="Invalidate a key and everything depending on it")


@app.callback(invoke_without_command=True)
def invalidate(
    key: str = typer.Argument(..., help="Cache key to invalidate"),
    dependents_only: bool = typer.Option(
        False,
        "--dependents-only",
        "-d",
        help="Keep the key itself, only remove its dependents",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="List the affected keys without deleting them",
    ),
) -> None:
    """Delete a key and its transitive dependents."""
    asyncio.run(_invalidate(key, dependents_only, dry_run))


async def _invalidate(key: str, dependents_only: bool, dry_run: bool) -> None:
    """Async implementation of invalidate command."""
    from rich.console import Console

    from cachegraph.errors import CacheGraphError
    from cachegraph.factory import create_cache

    console = Console()
    cache = await create_cache()
    try:
        if dry_run:
            affected = await cache.dependencies.closure(key)
            if dependents_only:
                affected = affected[1:]
        elif dependents_only:
            affected = await cache.dependencies.invalidate_dependents(key)
        else:
            affected = await cache.dependencies.invalidate_with_dependencies(key)
    except CacheGraphError as e:
        console.print(f"[red]Invalidation failed:[/red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        await cache.close()

    verb = "Would remove" if dry_run else "Removed"
    console.print(f"[green]{verb}[/green] {len(affected)} key(s)")
    for affected_key in affected:
        console.print(f"  {affected_key}")
