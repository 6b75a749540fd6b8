"""
Command-line interface for the shared grocery list.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from groceries.client import GroceryClient
from groceries.config import ClientConfig
from groceries.errors import GroceryError
from groceries.schema.models import EntityKind, RecordId, RecordState
from groceries.store.app_state import GroceryStore

app = typer.Typer(
    name="groceries",
    help="Shared grocery list - works offline, syncs when connected",
)
console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _parse_id(value: str) -> RecordId:
    """Server ids are integers; anything else is a temporary id."""
    return int(value) if value.isdigit() else value


def _run(action: Callable[[GroceryClient], Awaitable[None]], live_updates: bool = False) -> None:
    """Run one client session around action."""

    async def _main():
        config = ClientConfig.from_env()
        _configure_logging(config.log_level)
        async with GroceryClient(config, live_updates=live_updates) as client:
            await action(client)
            await client.wait_idle()
            if not client.store.is_online:
                console.print(
                    f"[yellow]Offline - {client.store.pending_syncs} change(s) queued[/yellow]"
                )

    try:
        asyncio.run(_main())
    except (GroceryError, KeyError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


def _print_list(store: GroceryStore) -> None:
    groups = store.items_by_category()
    checked = store.checked_items
    if not groups and not checked:
        console.print("\n[yellow]The list is empty.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Item")
    table.add_column("Amount")
    table.add_column("Category")
    table.add_column("State", style="dim")

    for category, items in groups:
        for item in items:
            state = store.record_state(EntityKind.ITEMS, item.id)
            table.add_row(
                str(item.id),
                item.name if not item.description else f"{item.name} [dim]({item.description})[/dim]",
                item.amount or "",
                category.name if category else "-",
                "" if state in (None, RecordState.SYNCED) else state.value,
            )
    for item in checked:
        table.add_row(str(item.id), f"[strike]{item.name}[/strike]", item.amount or "", "done", "")

    console.print(table)


def _find_category(store: GroceryStore, value: str) -> RecordId:
    for category in store.categories:
        if category.name.lower() == value.lower() or str(category.id) == value:
            return category.id
    raise KeyError(f"Unknown category: {value}")


@app.command("list")
def list_items():
    """Show the grocery list grouped by category."""

    async def _list(client: GroceryClient):
        _print_list(client.store)

    _run(_list)


@app.command()
def add(
    name: str = typer.Argument(..., help="Item name"),
    amount: str = typer.Option(None, "--amount", "-a", help="Amount, e.g. '2 l'"),
    description: str = typer.Option(None, "--description", "-d", help="Free-text note"),
    category: str = typer.Option(None, "--category", "-c", help="Category name or id"),
):
    """Add an item to the list."""

    async def _add(client: GroceryClient):
        category_id = _find_category(client.store, category) if category else None
        item = await client.store.create_item(
            name, description=description, amount=amount, category_id=category_id
        )
        console.print(f"[green]Added[/green] {item.name} [dim]({item.id})[/dim]")

    _run(_add)


@app.command()
def check(item_id: str = typer.Argument(..., help="Item id")):
    """Mark an item as done."""

    async def _check(client: GroceryClient):
        await client.store.toggle_item_check(_parse_id(item_id), True)
        if client.store.error:
            console.print(f"[red]{client.store.error}[/red]")

    _run(_check)


@app.command()
def uncheck(item_id: str = typer.Argument(..., help="Item id")):
    """Put an item back on the list."""

    async def _uncheck(client: GroceryClient):
        await client.store.toggle_item_check(_parse_id(item_id), False)
        if client.store.error:
            console.print(f"[red]{client.store.error}[/red]")

    _run(_uncheck)


@app.command()
def remove(item_id: str = typer.Argument(..., help="Item id")):
    """Delete an item."""

    async def _remove(client: GroceryClient):
        await client.store.delete_item(_parse_id(item_id))
        console.print("[green]Removed[/green]")

    _run(_remove)


@app.command("clear-checked")
def clear_checked():
    """Delete every checked item."""

    async def _clear(client: GroceryClient):
        count = await client.store.delete_checked_items()
        console.print(f"[green]Cleared {count} checked item(s)[/green]")

    _run(_clear)


@app.command()
def categories():
    """List categories in display order."""

    async def _categories(client: GroceryClient):
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Order")
        table.add_column("ID", style="dim")
        table.add_column("Name")
        for category in client.store.categories:
            table.add_row(str(category.sort_order), str(category.id), category.name)
        console.print(table)

    _run(_categories)


@app.command("add-category")
def add_category(name: str = typer.Argument(..., help="Category name")):
    """Create a category at the end of the order."""

    async def _add(client: GroceryClient):
        category = await client.store.create_category(name)
        console.print(f"[green]Created[/green] {category.name} [dim]({category.id})[/dim]")

    _run(_add)


@app.command()
def recipes():
    """List saved recipes."""

    async def _recipes(client: GroceryClient):
        if not client.store.recipes:
            console.print("\n[yellow]No recipes saved.[/yellow]")
            return
        for recipe in client.store.recipes:
            console.print(f"[bold cyan]{recipe.id}.[/bold cyan] {recipe.name}")

    _run(_recipes)


@app.command("add-recipe")
def add_recipe(recipe_id: str = typer.Argument(..., help="Recipe id")):
    """Add a recipe's ingredients to the list."""

    async def _add(client: GroceryClient):
        await client.store.fetch_recipe(_parse_id(recipe_id))
        items = await client.store.add_recipe_to_list(_parse_id(recipe_id))
        console.print(f"[green]Added {len(items)} item(s) from recipe[/green]")

    _run(_add)


@app.command()
def status():
    """Show connectivity and pending changes."""

    async def _status(client: GroceryClient):
        info = client.get_status()

        console.print("\n[bold]Grocery List Status[/bold]\n")
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Server", info["server_url"])
        table.add_row("Online", "[green]yes[/green]" if info["online"] else "[red]no[/red]")
        table.add_row("Pending changes", str(info["pending_syncs"]))
        table.add_row("Categories", str(info["categories"]))
        table.add_row("Items", str(info["items"]))
        table.add_row("Recipes", str(info["recipes"]))
        console.print(table)

    _run(_status)


@app.command()
def sync():
    """Push queued changes to the server now."""

    async def _sync(client: GroceryClient):
        result = await client.sync_now()
        if result.skipped:
            console.print("[yellow]Server unreachable, nothing synced[/yellow]")
            return
        console.print(
            f"[green]Synced {result.processed} change(s)[/green], "
            f"{result.discarded} discarded, {result.remaining} remaining"
        )

    _run(_sync)


@app.command()
def watch():
    """Show the list and follow live changes until interrupted."""

    async def _watch(client: GroceryClient):
        _print_list(client.store)
        client.store.subscribe(
            lambda store: console.print(
                f"[dim]{len(store.items)} items, "
                f"{'online' if store.is_online else 'offline'}, "
                f"{store.pending_syncs} pending[/dim]"
            )
        )
        await asyncio.Event().wait()

    _run(_watch, live_updates=True)


if __name__ == "__main__":
    app()
