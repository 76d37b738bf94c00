"""
Terminal output helpers shared by every pkgrecovery module.

Messages are plain text; markup in them is escaped before rich renders it.
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

console = Console()

_STATUS_STYLES = {
    "info": ("ℹ", "cyan"),
    "success": ("✓", "green"),
    "warning": ("⚠", "yellow"),
    "error": ("✗", "red"),
    "step": ("→", "blue"),
    "dim": ("·", "dim"),
}


def print_status(message: str, status: str = "info") -> None:
    """Print one status line with an icon for ``status``."""
    icon, style = _STATUS_STYLES.get(status, _STATUS_STYLES["info"])
    console.print(f"[{style}]{icon}[/{style}] {escape(message)}", highlight=False)


def print_header(title: str) -> None:
    console.print()
    console.print(Panel(f"[bold]{escape(title)}[/bold]", border_style="cyan", expand=False))
