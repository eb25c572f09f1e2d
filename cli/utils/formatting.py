"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATE_STYLES = {
    "pending": "yellow",
    "active": "cyan",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    console.print(f"[blue]ℹ {message}[/blue]")


def _state_label(state: str) -> str:
    style = STATE_STYLES.get(state, "white")
    return f"[{style}]{state}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("State", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Enqueued", justify="left", style="white")
    table.add_column("Last Error", justify="left", style="red")

    for job in jobs:
        table.add_row(
            job.get("id", "")[:8],  # Short ID
            job.get("type", ""),
            _state_label(job.get("state", "")),
            f"{job.get('attempt', 0)}/{job.get('max_attempts', 0)}",
            job.get("enqueued_at", "—"),
            (job.get("last_error") or "—")[:60],
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create a detail panel for one job"""
    lines = [
        f"• Type: [magenta]{job.get('type', '')}[/magenta]",
        f"• State: {_state_label(job.get('state', ''))}",
        f"• Attempts: [yellow]{job.get('attempt', 0)}/{job.get('max_attempts', 0)}[/yellow]",
        f"• Enqueued: {job.get('enqueued_at', '—')}",
        f"• Visible at: {job.get('visible_at', '—')}",
    ]
    if job.get("locked_by"):
        lines.append(f"• Locked by: [cyan]{job['locked_by']}[/cyan] at {job.get('locked_at')}")
    if job.get("finished_at"):
        lines.append(f"• Finished: {job['finished_at']}")
    if job.get("last_error"):
        lines.append(f"• Last error: [red]{job['last_error']}[/red]")

    lines.append("\n[bold]Payload[/bold]")
    lines.append(json.dumps(job.get("payload", {}), indent=2))
    if job.get("result") is not None:
        lines.append("\n[bold]Result[/bold]")
        lines.append(json.dumps(job["result"], indent=2))

    return Panel("\n".join(lines), title=f"Job {job.get('id', '')}", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    by_state = stats.get("by_state", {})
    by_type = stats.get("by_type", {})

    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Total Jobs: [blue]{stats.get("total_jobs", 0)}[/blue]
• Queue Depth: [cyan]{stats.get("queue_depth", 0)}[/cyan]
• Scheduled Retries: [yellow]{stats.get("retry_scheduled", 0)}[/yellow]
"""
    if by_state:
        content += "\n[bold]By state[/bold]\n"
        content += "\n".join(
            f"• {_state_label(state)}: {count}" for state, count in sorted(by_state.items())
        )
    if by_type:
        content += "\n\n[bold]By type[/bold]\n"
        content += "\n".join(
            f"• [magenta]{job_type}[/magenta]: {count}"
            for job_type, count in sorted(by_type.items())
        )

    return Panel(content, title="Job Queue", border_style="green")
