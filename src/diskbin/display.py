"""Rich terminal display for diskbin."""

from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from diskbin.models import (
    DiskNode,
    NodeCategory,
    TrashItem,
    TrashResult,
    TrashSource,
    format_size,
)

console = Console()

CATEGORY_STYLES = {
    NodeCategory.CODE: "cyan",
    NodeCategory.MEDIA: "magenta",
    NodeCategory.DOCS: "green",
    NodeCategory.SYSTEM: "red",
    NodeCategory.FOLDER: "bold blue",
    NodeCategory.OTHER: "dim",
}


def format_timestamp(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M")


def category_style(category: NodeCategory) -> str:
    """Get rich style for a node category."""
    return CATEGORY_STYLES.get(category, "white")


def node_label(node: DiskNode, parent_value: int = 0) -> str:
    """One line for a node: name, size and share of its parent."""
    style = category_style(node.category)
    name = escape(node.id)
    if node.is_bucket:
        name = f"[italic]{name}[/italic]"
    label = f"[{style}]{name}[/{style}]  {node.size_human}"
    if parent_value > 0:
        label += f" [dim]({node.value / parent_value * 100:.0f}%)[/dim]"
    return label


def build_rich_tree(node: DiskNode) -> Tree:
    """Convert a DiskNode tree into a rich Tree, largest children first."""
    root = Tree(node_label(node))

    def _add(branch: Tree, parent: DiskNode) -> None:
        for child in sorted(parent.children or [], key=lambda c: c.value, reverse=True):
            sub = branch.add(node_label(child, parent.value))
            if child.children:
                _add(sub, child)

    _add(root, node)
    return root


def show_tree(node: DiskNode) -> None:
    """Display a scanned tree."""
    console.print(build_rich_tree(node))
    console.print()
    console.print(f"[bold]Total:[/bold] {format_size(node.value)}")


def show_trash_items(items: list[TrashItem]) -> None:
    """Display the unified trash listing."""
    if not items:
        console.print("[green]Trash is empty.[/green]")
        return

    table = Table(title="Trash", show_header=True, header_style="bold")
    table.add_column("Id", no_wrap=True)
    table.add_column("Name")
    table.add_column("Original Path")
    table.add_column("Size", justify="right")
    table.add_column("Trashed", justify="right")
    table.add_column("Source")

    for item in items:
        source = "[cyan]app[/cyan]" if item.source == TrashSource.APP else "[dim]system[/dim]"
        name = f"{item.name}/" if item.is_directory else item.name
        table.add_row(
            item.id,
            name,
            item.original_path,
            format_size(item.size),
            format_timestamp(item.trashed_at),
            source,
        )

    console.print(table)
    total = sum(i.size for i in items)
    console.print(f"[bold]{len(items)} items, {format_size(total)}[/bold]")


def show_trash_result(action: str, target: str, result: TrashResult) -> None:
    """Display the outcome of a single trash operation."""
    if result:
        console.print(f"  [green]✓[/green] {action}: {target}")
        if result.message:
            console.print(f"    [yellow]{result.message}[/yellow]")
    else:
        kind = result.error.value if result.error else "error"
        console.print(f"  [red]✗[/red] {action} failed for {target} [dim]({kind})[/dim]")
        if result.message:
            console.print(f"    {result.message}")


def show_settings(settings: dict) -> None:
    """Display effective settings."""
    table = Table(show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in settings.items():
        table.add_row(key, str(value))
    console.print(Panel(table, title="diskbin settings", border_style="blue"))


def confirm_action(message: str) -> bool:
    """Ask for confirmation."""
    from rich.prompt import Confirm

    return Confirm.ask(message)
