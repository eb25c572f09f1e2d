"""Task Queue CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from taskqueue.config.settings import settings

from .commands import config, jobs, worker

console = Console()

app = typer.Typer(
    name="taskqueue-cli",
    help="Task Queue operator CLI",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


@app.command()
def version():
    """📎 Show version information"""
    console.print(Panel(
        f"[bold cyan]{settings.app_name} CLI[/bold cyan]\n\n"
        f"• Version: [green]{settings.version}[/green]\n"
        f"• Environment: [yellow]{settings.environment}[/yellow]",
        title="Version Info",
        border_style="cyan",
    ))


if __name__ == "__main__":
    app()
