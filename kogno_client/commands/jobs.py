"""Job Commands - submit and follow background jobs"""

import asyncio
from typing import Any

import typer
from rich.console import Console

from ..config.settings import get_settings
from ..core.exceptions import JobCancelled, JobFailed, KognoClientError
from ..jobs.factory import open_job_context
from ..jobs.schemas import ProgressUpdate
from ..utils.formatting import (
    create_jobs_table,
    format_progress,
    print_error,
    print_info,
    print_success,
    print_warning,
    render_result,
)

console = Console()
app = typer.Typer(name="jobs", help="Submit and track background jobs")


def parse_params(raw: list[str]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into a request body"""
    params: dict[str, Any] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{item}'")
        params[key.strip()] = value
    return params


def _print_progress(update: ProgressUpdate) -> None:
    console.print(f"  {format_progress(update)}")


def _run(coro) -> Any:
    try:
        return asyncio.run(coro)
    except JobFailed as e:
        print_error(f"Job failed: {e.message}")
        raise typer.Exit(1) from None
    except JobCancelled:
        print_warning("Tracking cancelled; resume later with: kogno jobs resume")
        raise typer.Exit(130) from None
    except KognoClientError as e:
        print_error(e.message)
        raise typer.Exit(1) from None


@app.command("submit")
def submit_job(
    kind: str = typer.Argument(..., help="Job kind, e.g. topics or course"),
    param: list[str] = typer.Option(
        [], "--param", "-p", help="Request parameter as key=value (repeatable)"
    ),
):
    """🚀 Submit a job and wait for its result"""
    params = parse_params(param)

    async def run() -> Any:
        async with open_job_context(get_settings()) as ctx:
            print_info(f"Submitting {kind} job...")
            return await ctx.submitter.run(kind, params, on_progress=_print_progress)

    result = _run(run())
    print_success("Job completed")
    console.print(render_result(result))


@app.command("resume")
def resume_job(
    job_id: str | None = typer.Argument(
        None, help="Job to resume (defaults to every registered job)"
    ),
    kind: str | None = typer.Option(None, "--kind", "-k", help="Job kind"),
):
    """⏯️ Resume tracking of previously submitted jobs"""

    async def run() -> list[tuple[str, Any]]:
        async with open_job_context(get_settings()) as ctx:
            anon_id = ctx.identity.get_or_create_id()
            entries = ctx.registry.list_jobs(anon_id)
            if job_id:
                entries = [e for e in entries if e["job_id"] == job_id] or [
                    {"job_id": job_id, "kind": kind or ""}
                ]

            results = []
            for entry in entries:
                entry_kind = kind or entry.get("kind")
                if not entry_kind:
                    print_error(f"Unknown kind for job {entry['job_id']}; pass --kind")
                    raise typer.Exit(1)
                print_info(f"Resuming {entry['job_id']} ({entry_kind})...")
                result = await ctx.submitter.resume(
                    entry["job_id"], entry_kind, on_progress=_print_progress
                )
                results.append((entry["job_id"], result))
            return results

    results = _run(run())
    if not results:
        print_info("No jobs to resume")
        return
    for resumed_id, result in results:
        print_success(f"Job {resumed_id} completed")
        console.print(render_result(result))


@app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job identifier"),
    kind: str = typer.Option(..., "--kind", "-k", help="Job kind"),
):
    """📋 Fetch the current status of a job once"""

    async def run():
        async with open_job_context(get_settings()) as ctx:
            anon_id = ctx.identity.get_or_create_id()
            return await ctx.client.get_job_status(kind, job_id, anon_id)

    state = _run(run())
    console.print(f"[cyan]{job_id}[/cyan] {format_progress(state.to_progress())}")
    if state.error:
        print_error(state.error)
    elif state.result is not None:
        console.print(render_result(state.result))


@app.command("list")
def list_jobs():
    """📚 List jobs registered for the current identity"""

    async def run():
        async with open_job_context(get_settings()) as ctx:
            return ctx.registry.list_jobs(ctx.identity.get_or_create_id())

    jobs = _run(run())
    if not jobs:
        print_info("No tracked jobs")
        return
    console.print(create_jobs_table(jobs))
