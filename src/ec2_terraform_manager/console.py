"""Console output helpers shared by every module"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

CONSOLE: Console = Console()

_debug_enabled: bool = False


def set_debug(enabled: bool) -> None:
    """Toggle [DEBUG] output"""
    global _debug_enabled
    _debug_enabled = enabled


def print_status(message: str) -> None:
    """Print status message"""
    CONSOLE.print(f"[blue][INFO][/blue] {escape(message)}")


def print_success(message: str) -> None:
    """Print success message"""
    CONSOLE.print(f"[green][SUCCESS][/green] {escape(message)}")


def print_warning(message: str) -> None:
    """Print warning message"""
    CONSOLE.print(f"[yellow][WARNING][/yellow] {escape(message)}")


def print_error(message: str) -> None:
    """Print error message"""
    CONSOLE.print(f"[red][ERROR][/red] {escape(message)}")


def print_debug(message: str) -> None:
    """Print debug message"""
    if _debug_enabled:
        CONSOLE.print(f"[cyan][DEBUG][/cyan] {escape(message)}")


def print_header(title: str) -> None:
    """Print header"""
    CONSOLE.print()
    CONSOLE.print(Panel(title, style="bold magenta", expand=False))
    CONSOLE.print()


def print_subheader(title: str) -> None:
    """Print subheader"""
    CONSOLE.print()
    CONSOLE.print(f"[bold cyan]── {title} ──[/bold cyan]")
    CONSOLE.print()
