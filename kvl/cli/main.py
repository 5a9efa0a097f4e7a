"""
KVL CLI entry point.

Commands:
    kvl set KEY VALUE       Upsert a key
    kvl get KEY             Print a value
    kvl push LIST VALUE     Append to a list, print the generated key
    kvl pop | shift LIST    Remove newest or oldest list member
    kvl all LIST            Show every member of a list
    kvl tags KEY [TAGS]     Read or overwrite labels
    kvl page LIST           Filtered, paginated list view
    kvl expire | wal-clean  Maintenance passes
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

import typer
from rich.console import Console
from rich.table import Table

from kvl.core.client import KVL
from kvl.core.config import KvlConfig
from kvl.core.errors import KvlError, NotFoundError
from kvl.core.logging import setup_logging
from kvl.core.types import Record

app = typer.Typer(
    name="kvl",
    help="KVL — embedded key/value store with lists, tags and expiry.",
    add_completion=False,
)

console = Console()

DB_OPTION = typer.Option(None, "--db", "-d", help="Database file (default from config)")


def _open(db: Path | None, expire_time_ms: int | None = None) -> KVL:
    config = KvlConfig.load()
    setup_logging(level=config.logging.level, log_dir=config.get_log_dir())
    overrides: dict[str, Any] = {}
    if db is not None:
        overrides["path"] = str(db)
    if expire_time_ms is not None:
        overrides["expire_time_ms"] = expire_time_ms
    if overrides:
        config.store = config.store.model_copy(update=overrides)
    return KVL.from_config(config)


def _run(db: Path | None, action: Callable[[KVL], Awaitable[Any]], **kwargs: Any) -> Any:
    """Open the store, run one action, always close."""

    async def runner() -> Any:
        # One-shot commands run without the background sweeper
        kvl = await _open(db, **kwargs).initialize(sweep=False)
        try:
            return await action(kvl)
        finally:
            await kvl.close()

    try:
        return asyncio.run(runner())
    except NotFoundError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(1)
    except KvlError as e:
        logging.getLogger("kvl").debug("Command failed", exc_info=True)
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(2)


def _print_value(value: str | None, missing: str) -> None:
    if value is None:
        console.print(f"[dim]{missing}[/dim]")
        raise typer.Exit(1)
    console.print(value, markup=False, highlight=False)


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _records_table(records: list[Record], title: str) -> Table:
    table = Table(title=title, title_style="bold cyan", border_style="dim")
    table.add_column("key", style="cyan", overflow="fold")
    table.add_column("value", overflow="fold")
    table.add_column("labels", style="yellow")
    table.add_column("created", style="dim")
    table.add_column("updated", style="dim")
    for r in records:
        table.add_row(
            r.key,
            r.value,
            r.labels or "",
            _format_ms(r.create_time),
            _format_ms(r.update_time),
        )
    return table


# ━━━ Key/Value ━━━


@app.command("set")
def set_(key: str, value: str, db: Path = DB_OPTION) -> None:
    """Set KEY to VALUE."""
    _run(db, lambda kvl: kvl.set(key, value))
    console.print(f"[green]✓[/green] {key}", highlight=False)


@app.command()
def get(key: str, db: Path = DB_OPTION) -> None:
    """Print the value stored at KEY."""
    _print_value(_run(db, lambda kvl: kvl.get(key)), f"No value for '{key}'")


@app.command()
def delete(key: str, db: Path = DB_OPTION) -> None:
    """Delete KEY."""
    if not _run(db, lambda kvl: kvl.delete(key)):
        console.print(f"[dim]No value for '{key}'[/dim]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] deleted {key}", highlight=False)


# ━━━ Lists ━━━


@app.command()
def push(name: str, value: str, db: Path = DB_OPTION) -> None:
    """Append VALUE to list NAME and print the generated key."""
    key = _run(db, lambda kvl: kvl.push(name, value))
    console.print(key, markup=False, highlight=False)


@app.command()
def pop(name: str, db: Path = DB_OPTION) -> None:
    """Remove and print the newest member of list NAME."""
    _print_value(_run(db, lambda kvl: kvl.pop(name)), f"List '{name}' is empty")


@app.command()
def shift(name: str, db: Path = DB_OPTION) -> None:
    """Remove and print the oldest member of list NAME."""
    _print_value(_run(db, lambda kvl: kvl.shift(name)), f"List '{name}' is empty")


@app.command("all")
def all_(name: str, db: Path = DB_OPTION) -> None:
    """Show every member of list NAME, newest first."""
    records = _run(db, lambda kvl: kvl.all(name))
    if not records:
        console.print(f"[dim]List '{name}' is empty[/dim]")
        return
    console.print(_records_table(records, f"{name} ({len(records)})"))


# ━━━ Tags & pages ━━━


@app.command()
def tags(
    key: str,
    labels: str = typer.Argument(None, help="New labels; omit to read"),
    db: Path = DB_OPTION,
) -> None:
    """Read or overwrite the labels of KEY."""
    if labels is None:
        current = _run(db, lambda kvl: kvl.get_tags(key))
        console.print(current or "", markup=False, highlight=False)
        return
    _run(db, lambda kvl: kvl.set_tags(key, labels))
    console.print(f"[green]✓[/green] {key} → {labels}", highlight=False)


@app.command()
def page(
    name: str,
    page_num: int = typer.Option(1, "--page", "-p", help="Page number (1-based)"),
    size: int = typer.Option(10, "--size", "-s", help="Items per page"),
    tag: list[str] = typer.Option(None, "--tag", "-t", help="Label substring (repeatable)"),
    any_tag: bool = typer.Option(False, "--or", help="Match any tag instead of all"),
    order_by: str = typer.Option("createTime", "--order-by", help="createTime or updateTime"),
    asc: bool = typer.Option(False, "--asc", help="Oldest first"),
    db: Path = DB_OPTION,
) -> None:
    """Show one page of list NAME, optionally filtered by labels."""
    result = _run(
        db,
        lambda kvl: kvl.page(
            name,
            page_num=page_num,
            page_size=size,
            tags=tag or None,
            tags_operator="OR" if any_tag else "AND",
            order_by=order_by,
            order_dir="ASC" if asc else "DESC",
        ),
    )
    title = f"{name}: page {result.page_num}/{result.pages} ({result.total} total)"
    console.print(_records_table(result.items, title))


# ━━━ Maintenance ━━━


@app.command()
def expire(
    ttl: int = typer.Option(None, "--ttl", help="Expire records older than this many ms"),
    db: Path = DB_OPTION,
) -> None:
    """Delete expired records now."""
    deleted = _run(db, lambda kvl: kvl.expire(), expire_time_ms=ttl)
    console.print(f"Expired {deleted} record(s)")


@app.command("wal-clean")
def wal_clean(db: Path = DB_OPTION) -> None:
    """Checkpoint the write-ahead log if it has grown too large."""
    cleaned = _run(db, lambda kvl: kvl.wal_clean())
    console.print("WAL checkpointed" if cleaned else "[dim]Nothing to do[/dim]")


@app.command()
def version() -> None:
    """Show KVL version."""
    from kvl import __version__
    console.print(f"KVL v{__version__}")


if __name__ == "__main__":
    app()
