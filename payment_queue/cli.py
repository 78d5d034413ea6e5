"""Payment queue admin CLI"""

import asyncio
import json
from typing import List

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from payment_queue.config import settings
from payment_queue.dead_letter import DeadLetterRouter
from payment_queue.exceptions import PaymentQueueError
from payment_queue.models import Job
from payment_queue.queue import RedisQueue
from payment_queue.status import QueueName, StatusReader
from payment_queue.store import RedisStore, create_redis_client

console = Console()

app = typer.Typer(
    name="payment-queue",
    help="Inspect and operate the payment-to-blockchain job queue.",
    rich_markup_mode="rich",
)


def _store() -> RedisStore:
    return RedisStore(create_redis_client(settings))


def _jobs_table(title: str, jobs: List[Job]) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center", style="magenta")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Created", style="green")
    table.add_column("Error", style="red")

    for job in jobs:
        table.add_row(
            job.id,
            job.status.value,
            f"{job.attempts}/{job.max_attempts}",
            job.created_at.isoformat(),
            job.error or "-",
        )
    return table


@app.command()
def status(sample: int = typer.Option(5, help="Jobs to sample from each queue")):
    """📊 Show queue depths and sample jobs"""
    reader = StatusReader(_store(), settings)
    overview = reader.queue_overview()

    console.print(Panel(
        f"• Pending: [cyan]{overview['pending']}[/cyan]\n"
        f"• Delayed retries: [yellow]{overview['delayed']}[/yellow]\n"
        f"• Dead letter: [red]{overview['dead_letter']}[/red]",
        title="Queue Status",
        border_style="green" if overview["dead_letter"] == 0 else "red",
    ))

    if overview["pending"]:
        console.print(_jobs_table("Pending", reader.sample_jobs(QueueName.PENDING, sample)))
    if overview["dead_letter"]:
        console.print(_jobs_table("Dead letter", reader.sample_jobs(QueueName.DEAD_LETTER, sample)))


@app.command()
def job(job_id: str):
    """🔎 Show one job record"""
    record = StatusReader(_store(), settings).job_status(job_id)
    if record is None:
        console.print(f"[red]✗ Job {job_id} not found[/red]")
        raise typer.Exit(1)
    console.print_json(json.dumps(record.to_dict()))


@app.command()
def recent(limit: int = typer.Option(10, help="Number of jobs to show")):
    """🕒 Show the most recently created jobs"""
    jobs = StatusReader(_store(), settings).recent_jobs(limit)
    console.print(_jobs_table("Recent jobs", jobs))


@app.command("dead-letter")
def dead_letter(limit: int = typer.Option(20, help="Number of jobs to show")):
    """💀 List dead letter jobs and their errors"""
    reader = StatusReader(_store(), settings)
    summary = reader.dead_letter_summary()
    console.print(_jobs_table(
        f"Dead letter ({summary['total_jobs']} total)",
        reader.sample_jobs(QueueName.DEAD_LETTER, limit),
    ))


@app.command()
def reprocess(job_id: str):
    """♻️  Re-submit a dead letter job as a new job"""
    queue = RedisQueue(_store(), settings)
    try:
        new_job = DeadLetterRouter(queue, settings).reprocess(job_id)
    except PaymentQueueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Job {job_id} re-submitted as {new_job.id}[/green]")


@app.command()
def worker(pool_size: int = typer.Option(0, help="Workers to run (0 uses settings)")):
    """⚙️  Run a worker pool"""
    from payment_queue.workers import worker_pool

    worker_settings = settings.model_copy(update={"worker_pool_size": pool_size}) if pool_size else settings
    asyncio.run(worker_pool.main(worker_settings))


@app.command()
def api():
    """🌐 Serve the admin REST API"""
    import uvicorn
    from payment_queue.api.rest import create_app
    from payment_queue.main import configure_logging

    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    app()
