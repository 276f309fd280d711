"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..jobs.schemas import ProgressUpdate

console = Console()


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_progress(update: ProgressUpdate) -> str:
    """One-line rendering of a progress update"""
    parts = []
    if update.status is not None:
        parts.append(f"[magenta]{update.status.value}[/magenta]")
    if update.progress is not None:
        parts.append(f"[cyan]{update.progress:>3}%[/cyan]")
    if update.message:
        parts.append(update.message)
    return " ".join(parts) or "[dim]waiting…[/dim]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for registered jobs"""
    table = Table(title="Tracked Jobs", box=box.ROUNDED)

    table.add_column("Job ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Kind", justify="center", style="magenta")
    table.add_column("Last Status", justify="center", style="yellow")
    table.add_column("Created", justify="left", style="white")

    for job in jobs:
        table.add_row(
            job.get("job_id", ""),
            job.get("kind", "—"),
            job.get("status", "—"),
            job.get("created_at", "—"),
        )

    return table


def create_session_panel(
    anon_id: str, payload: dict[str, Any] | None, gate_resource_id: str | None
) -> Panel:
    """Create formatted panel describing the local session"""
    content = (
        f"• Anonymous ID: [cyan]{anon_id}[/cyan]\n"
        f"• Gate resource: [yellow]{gate_resource_id or '—'}[/yellow]\n"
        f"• Session keys: [green]{', '.join(sorted(payload)) if payload else '—'}[/green]"
    )
    return Panel(content, title="Session", border_style="blue")


def render_result(result: Any) -> str:
    if isinstance(result, (dict, list)):
        return json.dumps(result, indent=2, ensure_ascii=False)
    return str(result)
