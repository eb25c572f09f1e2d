"""Worker Commands - Run the job worker pool in this process"""

import asyncio

import typer
from rich.console import Console

from taskqueue.config.logging import setup_logging
from taskqueue.config.settings import get_settings
from taskqueue.infra.database import Database
from taskqueue.jobs.worker import build_worker_pool

from ..utils.formatting import print_info, print_success

console = Console()
app = typer.Typer(name="worker", help="Run the background worker pool")


async def _run(once: bool) -> int:
    settings = get_settings()
    setup_logging(settings)
    database = Database(settings)
    pool = build_worker_pool(settings, database)

    try:
        if once:
            return await pool.run_until_idle()

        await pool.start()
        try:
            # Runs until interrupted
            await asyncio.Event().wait()
        finally:
            await pool.stop()
        return 0
    finally:
        await database.close()


@app.command("run")
def run_worker(
    once: bool = typer.Option(
        False, "--once", help="Drain claimable jobs, then exit"
    ),
):
    """⚙️ Start the worker pool against the configured database"""
    settings = get_settings()
    if once:
        print_info("Draining claimable jobs")
    else:
        print_info(
            f"Starting {settings.job_concurrency} executors "
            f"(rate limit {settings.job_rate_limit_per_s}/s). Press Ctrl+C to stop."
        )

    try:
        processed = asyncio.run(_run(once))
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped[/yellow]")
        return

    if once:
        print_success(f"Processed {processed} jobs")
