"""Job Queue CLI - Main Entry Point"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

# Import command modules
from .commands import config, jobs
from .utils.formatting import print_error, print_info, print_success
from .utils.config_manager import config as config_manager
from .client.endpoints import JobServiceClient

console = Console()

# Create main Typer app
app = typer.Typer(
    name="jobq",
    help="⚙️ Job Queue - background job processing CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check service health and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobServiceClient(base_url) as client:
            health = client.health_check()
    except Exception as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Job Queue API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]jobq config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1)

    queue = health.get("queue", {})
    database = health.get("database", {})
    healthy = health.get("ok", False)
    console.print(Panel(
        f"{'🚀 [green]Healthy[/green]' if healthy else '⚠️ [yellow]Degraded[/yellow]'}\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Database: {'[green]connected[/green]' if database.get('connected') else '[red]unreachable[/red]'}\n"
        f"• Worker: {'[green]running[/green]' if queue.get('worker_running') else '[dim]not running[/dim]'}"
        f" ({queue.get('active_jobs', 0)}/{queue.get('concurrency', 0)} slots busy)\n"
        f"• Waiting: [cyan]{queue.get('waiting', 0)}[/cyan]  Delayed: [cyan]{queue.get('delayed', 0)}[/cyan]\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green" if healthy else "yellow"
    ))


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"⚙️ [bold cyan]Job Queue CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]\n"
        f"• Type: [yellow]Command Line Interface[/yellow]",
        title="Version Info",
        border_style="cyan"
    ))


@app.command()
def worker(
    once: bool = typer.Option(False, "--once", help="Process due jobs and exit"),
):
    """🛠️ Run a job worker against the configured database"""
    from api.config.logging import setup_logging
    from api.config.settings import settings
    from api.v1.infra.jobs.worker import run_worker

    setup_logging(settings)
    print_info(f"Starting worker (database: {settings.database_url})")
    processed = asyncio.run(run_worker(settings, once=once))
    if once:
        print_success(f"Processed {processed} jobs")


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    ⚙️ Job Queue CLI

    Submit background jobs, follow their progress, cancel them and inspect
    queue statistics and processing metrics.
    """
    if version:
        from . import __version__
        console.print(f"Job Queue CLI v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
