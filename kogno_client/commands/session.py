"""Session Commands - anonymous identity and onboarding session management"""

import asyncio

import typer
from rich.console import Console
from rich.prompt import Confirm

from ..config.settings import get_settings
from ..jobs.factory import open_job_context
from ..utils.formatting import create_session_panel, print_error, print_success
from .jobs import parse_params

console = Console()
app = typer.Typer(name="session", help="Anonymous identity and session management")


@app.command("show")
def show_session():
    """👤 Show the anonymous identity and stored session"""

    async def run():
        async with open_job_context(get_settings()) as ctx:
            return (
                ctx.identity.get_or_create_id(),
                ctx.sessions.load(),
                ctx.sessions.get_gate_resource_id(),
            )

    anon_id, payload, gate_id = asyncio.run(run())
    console.print(create_session_panel(anon_id, payload, gate_id))


@app.command("reset")
def reset_session(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🔄 Start a new session with a fresh anonymous identity"""
    if not yes and not Confirm.ask("Discard the current session and identity?"):
        raise typer.Exit()

    async def run():
        async with open_job_context(get_settings()) as ctx:
            old_id, new_id = ctx.sessions.start_new_session()
            # Jobs registered under the old identity can no longer be polled
            ctx.registry.clear(old_id)
            return old_id, new_id

    old_id, new_id = asyncio.run(run())
    print_success(f"New session started: {new_id}")
    console.print(f"[dim]Previous identity {old_id} discarded[/dim]")


@app.command("save")
def save_session(
    entries: list[str] = typer.Argument(..., help="Session fields as key=value"),
):
    """💾 Replace the stored session payload"""
    payload = parse_params(entries)

    async def run():
        async with open_job_context(get_settings()) as ctx:
            ctx.sessions.save(payload)

    asyncio.run(run())
    print_success(f"Session saved ({', '.join(sorted(payload))})")


@app.command("gate")
def gate_resource(
    action: str = typer.Argument("show", help="show, set or clear"),
    resource_id: str | None = typer.Argument(None, help="Resource id for 'set'"),
):
    """🚪 Show, set or clear the gate resource id"""
    if action not in ("show", "set", "clear"):
        print_error("Action must be one of: show, set, clear")
        raise typer.Exit(1)
    if action == "set" and not resource_id:
        print_error("A resource id is required for 'set'")
        raise typer.Exit(1)

    async def run():
        async with open_job_context(get_settings()) as ctx:
            if action == "set":
                return ctx.sessions.set_gate_resource_id(resource_id)
            if action == "clear":
                ctx.sessions.clear_gate_resource_id()
                return True
            return ctx.sessions.get_gate_resource_id()

    outcome = asyncio.run(run())
    if action == "set":
        if not outcome:
            print_error("Resource id must be a version-4 UUID")
            raise typer.Exit(1)
        print_success(f"Gate resource set to {resource_id}")
    elif action == "clear":
        print_success("Gate resource cleared")
    else:
        console.print(f"[cyan]gate resource[/cyan] = [yellow]{outcome or '—'}[/yellow]")
