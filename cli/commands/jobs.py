"""Jobs Commands - Inspect and operate on the job queue"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import TaskQueueClient, TaskQueueError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Job queue inspection and operator actions")


@app.command("list")
def list_jobs(
    state: list[str] | None = typer.Option(
        None, "--state", "-s", help="Filter by state (repeatable)"
    ),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs, newest first"""
    limit = limit or config.get("display.jobs_per_page", 20)

    try:
        with TaskQueueClient() as client:
            data = client.list_jobs(state=state, type=type, limit=limit, offset=offset)
    except TaskQueueError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    total = data.get("total", len(jobs))

    if not jobs:
        console.print(Panel(
            "📭 [yellow]No jobs found![/yellow]\n\n"
            f"• State: {', '.join(state) if state else 'any'}\n"
            f"• Type: {type or 'any'}",
            title="Empty Results",
            border_style="yellow",
        ))
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")

    if offset + limit < total:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID to show")):
    """🔍 Show one job with its payload and result"""
    try:
        with TaskQueueClient() as client:
            job = client.get_job(job_id)
    except TaskQueueError as e:
        print_error(f"Failed to fetch job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))


@app.command("stats")
def stats():
    """📊 Show queue depth and job counts"""
    try:
        with TaskQueueClient() as client:
            data = client.stats()
    except TaskQueueError as e:
        print_error(f"Failed to fetch stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(data))


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="Failed job to requeue")):
    """🔁 Requeue a failed job with a fresh attempt budget"""
    try:
        with TaskQueueClient() as client:
            client.retry_job(job_id)
    except TaskQueueError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} requeued")


@app.command("cancel")
def cancel_job(job_id: str = typer.Argument(..., help="Running job to cancel")):
    """🛑 Ask a running job to stop at its next safe point"""
    try:
        with TaskQueueClient() as client:
            client.cancel_job(job_id)
    except TaskQueueError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Cancellation requested for job {job_id}")
