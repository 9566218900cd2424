"""Job Commands - Submit, inspect and cancel background jobs"""

import json
import time
from pathlib import Path

import typer
from rich.console import Console

from ..client.endpoints import JobServiceClient, JobServiceError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_metrics_table,
    create_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job commands")

TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


def _load_payload(payload: str | None, payload_file: Path | None) -> dict:
    if payload and payload_file:
        print_error("Use either --payload or --payload-file, not both")
        raise typer.Exit(1)

    raw = payload_file.read_text() if payload_file else payload
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)
    return data


@app.command("submit")
def submit_job(
    job_type: str = typer.Argument(..., help="Job type (e.g., 'export')"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="JSON payload"),
    payload_file: Path | None = typer.Option(
        None, "--payload-file", "-f", exists=True, dir_okay=False, help="File with JSON payload"
    ),
    priority: int | None = typer.Option(
        None, "--priority", min=1, max=10, help="1 (highest) to 10 (lowest)"
    ),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1),
    delay_ms: int | None = typer.Option(None, "--delay-ms", min=0),
    timeout_ms: int | None = typer.Option(None, "--timeout-ms", min=1),
    watch: bool = typer.Option(False, "--watch", "-w", help="Follow the job until it finishes"),
):
    """📤 Submit a new job"""
    data = _load_payload(payload, payload_file)

    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            job = client.submit_job(
                job_type,
                data,
                priority=priority,
                max_attempts=max_attempts,
                delay_ms=delay_ms,
                timeout_ms=timeout_ms,
            )
            print_success(f"Job queued: {job['id']}")

            if watch:
                _watch(client, job["id"], float(config.get("watch.interval_s", 2.0)))

    except JobServiceError as e:
        print_error(f"Failed to submit job: {e}")
        raise typer.Exit(1) from None


@app.command("get")
def get_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🔎 Show a job's current state"""
    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            job = client.get_job(job_id)
            console.print(create_job_panel(job))
            if job.get("status") == "completed" and job.get("result") is not None:
                console.print_json(json.dumps(job["result"]))

    except JobServiceError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", min=1, max=1000),
    offset: int = typer.Option(0, "--offset", min=0),
):
    """📋 List recent jobs"""
    limit = limit or int(config.get("display.jobs_per_page", 20))

    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            data = client.list_jobs(status=status, type=job_type, limit=limit, offset=offset)

            jobs = data.get("jobs", [])
            if not jobs:
                print_info("No jobs found")
                return

            console.print(create_jobs_table(jobs))
            console.print(
                f"[dim]Showing {len(jobs)} of {data.get('total', len(jobs))} jobs[/dim]"
            )

    except JobServiceError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("cancel")
def cancel_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🛑 Cancel a queued or processing job"""
    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            job = client.cancel_job(job_id)
            print_success(f"Job {job_id} cancelled")
            if job.get("started_at"):
                print_warning("The job had started; its running attempt finishes but its result is discarded")

    except JobServiceError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None


@app.command("stats")
def show_stats():
    """📊 Show queue statistics"""
    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            console.print(create_stats_table(client.get_stats()))

    except JobServiceError as e:
        print_error(f"Failed to get queue statistics: {e}")
        raise typer.Exit(1) from None


@app.command("metrics")
def show_metrics(
    job_type: str | None = typer.Option(None, "--type", "-t", help="Percentiles for one job type"),
):
    """📈 Show processing metrics of the API process"""
    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            metrics = client.get_metrics(type=job_type)

            if not metrics.get("job_type_breakdown"):
                print_info("No jobs processed by this server yet")
                return

            console.print(create_metrics_table(metrics))
            console.print(
                f"Overall success rate: [cyan]{metrics.get('overall_success_rate', 0):.1%}[/cyan]"
            )
            percentiles = metrics.get("processing_time_percentiles") or {}
            if percentiles:
                console.print(
                    "Processing time: "
                    + ", ".join(f"{k}={v:.0f}ms" for k, v in percentiles.items())
                )

    except JobServiceError as e:
        print_error(f"Failed to get metrics: {e}")
        raise typer.Exit(1) from None


@app.command("cleanup")
def cleanup_jobs(
    older_than_ms: int = typer.Option(
        24 * 60 * 60 * 1000, "--older-than-ms", min=0, help="Minimum age of purged jobs"
    ),
):
    """🧹 Purge finished jobs older than the given age"""
    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            data = client.cleanup(older_than_ms)
            print_success(f"Deleted {data.get('deleted_count', 0)} jobs")

    except JobServiceError as e:
        print_error(f"Failed to clean up jobs: {e}")
        raise typer.Exit(1) from None


@app.command("watch")
def watch_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    interval: float | None = typer.Option(None, "--interval", "-i", help="Poll interval in seconds"),
):
    """👀 Follow a job until it reaches a terminal state"""
    interval = interval or float(config.get("watch.interval_s", 2.0))

    try:
        with JobServiceClient(config.get("api.base_url")) as client:
            job = _watch(client, job_id, interval)

    except JobServiceError as e:
        print_error(f"Failed to watch job: {e}")
        raise typer.Exit(1) from None

    if job.get("status") != "completed":
        raise typer.Exit(1)


def _watch(client: JobServiceClient, job_id: str, interval: float) -> dict:
    last_seen = None
    while True:
        job = client.get_job(job_id)
        seen = (job.get("status"), job.get("progress"), job.get("attempts"))
        if seen != last_seen:
            console.print(
                f"[cyan]{job_id}[/cyan] {job.get('status')} "
                f"{job.get('progress', 0)}% (attempt {job.get('attempts', 0)}/{job.get('max_attempts', 0)})"
            )
            last_seen = seen

        if job.get("status") in TERMINAL_STATUSES:
            console.print(create_job_panel(job))
            return job
        time.sleep(interval)
