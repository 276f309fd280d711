"""Kogno Jobs CLI - Main Entry Point"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import KognoClient
from .commands import jobs, session
from .config.logging import setup_logging
from .config.settings import get_settings
from .core.exceptions import KognoClientError
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="kogno",
    help="🎓 Kogno - background job client",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(session.app, name="session")


@app.command()
def status():
    """📊 Check API connectivity"""
    settings = get_settings()
    print_info(f"Checking connection to: {settings.api_base_url}")

    async def check():
        async with KognoClient(settings) as client:
            return await client.health_check()

    try:
        health = asyncio.run(check())
    except KognoClientError as e:
        print_error(f"Failed to connect: {e.message}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Kogno API is running at:\n"
            f"[blue]{settings.api_base_url}[/blue]\n\n"
            f"You can point the client elsewhere with:\n"
            f"[cyan]KOGNO_API_BASE_URL=<url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None

    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• API URL: [blue]{settings.api_base_url}[/blue]",
        title="System Status",
        border_style="green"
    ))


@app.command()
def version():
    """📎 Show client version information"""
    from . import __version__

    console.print(Panel(
        f"🎓 [bold cyan]Kogno Jobs Client[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]",
        title="Version Info",
        border_style="cyan"
    ))


def version_callback(value: Optional[bool]):
    if value:
        from . import __version__
        console.print(f"Kogno Jobs Client v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """
    🎓 Kogno Jobs Client

    Submit long-running jobs and follow them to completion over the push
    channel, falling back to polling when it is unavailable.
    """
    setup_logging(get_settings())


if __name__ == "__main__":
    app()
