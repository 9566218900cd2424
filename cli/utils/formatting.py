"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "queued": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


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


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def progress_bar(progress: int, width: int = 20) -> str:
    filled = max(0, min(width, round(progress / 100 * width)))
    return f"{'█' * filled}{'░' * (width - filled)} {progress}%"


def create_jobs_table(jobs: list[dict[str, Any]], title: str = "Jobs") -> Table:
    """Create a formatted table for a jobs list"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Progress", justify="right")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Priority", justify="center")
    table.add_column("Created", justify="left", style="dim")

    for job in jobs:
        table.add_row(
            job.get("id", ""),
            job.get("type", ""),
            format_status(job.get("status", "")),
            f"{job.get('progress', 0)}%",
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            str(job.get("priority", "-")),
            str(job.get("created_at", "-"))[:19],
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create formatted panel for a single job"""
    lines = [
        f"• Type: [magenta]{job.get('type', '')}[/magenta]",
        f"• Status: {format_status(job.get('status', ''))}",
        f"• Progress: {progress_bar(job.get('progress', 0))}",
        f"• Attempts: [yellow]{job.get('attempts', 0)}/{job.get('max_attempts', 0)}[/yellow]",
        f"• Priority: {job.get('priority', '-')}",
        f"• Created: [dim]{job.get('created_at', '-')}[/dim]",
    ]
    if job.get("started_at"):
        lines.append(f"• Started: [dim]{job['started_at']}[/dim]")
    if job.get("completed_at"):
        lines.append(f"• Completed: [dim]{job['completed_at']}[/dim]")
    if job.get("error"):
        lines.append(f"• Error: [red]{job['error']}[/red]")
    elif job.get("last_error"):
        lines.append(f"• Last error: [yellow]{job['last_error']}[/yellow]")

    border = STATUS_STYLES.get(job.get("status", ""), "blue")
    if border == "dim":
        border = "white"
    return Panel("\n".join(lines), title=f"Job {job.get('id', '')}", border_style=border)


def create_stats_table(stats: dict[str, Any]) -> Table:
    """Create formatted table for queue statistics"""
    table = Table(title="Queue Statistics", box=box.ROUNDED)

    table.add_column("State", justify="left", style="bold")
    table.add_column("Jobs", justify="right", style="cyan")

    for key in ("waiting", "active", "delayed", "completed", "failed"):
        table.add_row(key.capitalize(), str(stats.get(key, 0)))

    return table


def create_metrics_table(metrics: dict[str, Any]) -> Table:
    """Create formatted table for per-type processing metrics"""
    table = Table(title="Job Metrics", box=box.ROUNDED)

    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Total", justify="right")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Success", justify="right", style="cyan")
    table.add_column("Avg ms", justify="right", style="yellow")

    for job_type, data in metrics.get("job_type_breakdown", {}).items():
        table.add_row(
            job_type,
            str(data.get("total_jobs", 0)),
            str(data.get("completed_jobs", 0)),
            str(data.get("failed_jobs", 0)),
            f"{data.get('success_rate', 0):.1%}",
            f"{data.get('average_processing_time_ms', 0):.0f}",
        )

    return table
