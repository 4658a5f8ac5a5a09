"""
Alert Relay CLI - Command line interface for running jobs.

Usage:
    alert-relay --help                Show all commands
    alert-relay digest weekly         Enqueue due weekly digests
    alert-relay process-queue         Run one delivery batch
    alert-relay cleanup               Apply queue and ledger retention
    alert-relay stats                 Show queue counts
    alert-relay cancel <id>           Cancel a queued email
    alert-relay requeue <id>          Retry a failed email
    alert-relay send-test <email>     Queue a test email
"""

import asyncio
import uuid

import typer

app = typer.Typer(
    name="alert-relay",
    help="Alert Relay CLI - digest scheduling and email queue operations",
    no_args_is_help=True,
)

TRIGGER = "cli"

CADENCE_ALIASES = {
    "immediate": "immediate",
    "hourly": "hourly_digest",
    "daily": "daily_digest",
    "weekly": "weekly_digest",
}


# --- Printer helpers ---


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _parse_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        _print_error(f"Not a valid queue item id: {value}")
        raise typer.Exit(1) from None


@app.command()
def digest(
    cadence: str = typer.Argument(..., help="immediate, hourly, daily or weekly"),
):
    """Enqueue digests for subscriptions of a cadence that are due now."""
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.core.logging import setup_logging
    from alert_relay.models.subscription import Cadence
    from alert_relay.services.digest_scheduler import run_digests
    from alert_relay.services.job_runs import track_job

    if cadence not in CADENCE_ALIASES:
        _print_error(f"Unknown cadence '{cadence}'. Use one of: {', '.join(CADENCE_ALIASES)}")
        raise typer.Exit(1)

    setup_logging()
    cadence_enum = Cadence(CADENCE_ALIASES[cadence])

    async def run():
        async with AsyncSessionLocal() as db:
            async with track_job(db, f"digest_{cadence_enum.value}", trigger=TRIGGER) as stats:
                result = await run_digests(db, cadence_enum)
                stats.update(result.to_dict())
            return result

    result = asyncio.run(run())
    _print_success(
        f"{cadence} digests: {result.processed} processed, {result.queued} queued, "
        f"{result.empty} empty, {result.skipped} not due"
    )
    if result.errors:
        _print_warning(f"{result.errors} subscriptions failed (see logs)")


@app.command()
def process_queue(
    batch_size: int | None = typer.Option(
        None, "--batch-size", "-b", help="Maximum emails to claim (defaults to config)"
    ),
):
    """Run one delivery batch: claim due emails and send them."""
    from alert_relay.config import get_settings
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.core.errors import ConfigurationError
    from alert_relay.core.logging import setup_logging
    from alert_relay.core.security import generate_worker_id
    from alert_relay.services.delivery import process_queue as run_batch
    from alert_relay.services.email_service import get_transport
    from alert_relay.services.job_runs import track_job

    setup_logging()
    settings = get_settings()

    try:
        transport = get_transport(settings)
    except ConfigurationError as e:
        _print_error(str(e))
        raise typer.Exit(1) from None

    worker_id = settings.worker_id or generate_worker_id("cli")

    async def run():
        async with AsyncSessionLocal() as db:
            async with track_job(db, "queue_process", trigger=TRIGGER) as stats:
                result = await run_batch(db, transport, worker_id=worker_id, batch_size=batch_size)
                stats.update(result.to_dict())
            return result

    result = asyncio.run(run())
    _print_success(
        f"Processed {result.processed}: {result.sent} sent, {result.requeued} requeued, "
        f"{result.failed} failed, {result.released} stale claims released"
    )


@app.command()
def cleanup():
    """Delete finished queue rows past retention and prune the dedup ledger."""
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.core.logging import setup_logging
    from alert_relay.services.job_runs import run_retention, track_job

    setup_logging()

    async def run():
        async with AsyncSessionLocal() as db:
            async with track_job(db, "queue_cleanup", trigger=TRIGGER) as stats:
                stats.update(await run_retention(db))
            return stats

    result = asyncio.run(run())
    _print_success(
        f"Deleted {result['deleted']} queue items, pruned {result['ledger_pruned']} ledger entries"
    )


@app.command()
def stats():
    """Show email queue counts per status."""
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.services.queue_store import queue_stats

    async def run():
        async with AsyncSessionLocal() as db:
            return await queue_stats(db)

    result = asyncio.run(run())

    typer.echo("\n📬 Email queue")
    for key, value in result.items():
        typer.echo(f"  {key:>15}: {value if value is not None else '-'}")
    typer.echo("")


@app.command()
def cancel(item_id: str = typer.Argument(..., help="Queue item id")):
    """Cancel a queued email. Emails already being sent cannot be cancelled."""
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.services.queue_store import cancel as cancel_item

    queue_item_id = _parse_id(item_id)

    async def run():
        async with AsyncSessionLocal() as db:
            cancelled = await cancel_item(db, queue_item_id)
            await db.commit()
            return cancelled

    if not asyncio.run(run()):
        _print_error("Item not found or not in queued state")
        raise typer.Exit(1)
    _print_success(f"Cancelled {queue_item_id}")


@app.command()
def requeue(item_id: str = typer.Argument(..., help="Queue item id")):
    """Put a failed email with attempts left back in the queue."""
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.services.queue_store import requeue as requeue_item

    queue_item_id = _parse_id(item_id)

    async def run():
        async with AsyncSessionLocal() as db:
            requeued = await requeue_item(db, queue_item_id)
            await db.commit()
            return requeued

    if not asyncio.run(run()):
        _print_error("Item not found, not failed, or out of attempts")
        raise typer.Exit(1)
    _print_success(f"Requeued {queue_item_id}")


@app.command()
def send_test(email: str = typer.Argument(..., help="Recipient address")):
    """Queue a test email at the highest priority."""
    from alert_relay.core.database import AsyncSessionLocal
    from alert_relay.core.logging import setup_logging
    from alert_relay.services.digest_scheduler import enqueue_test_email

    setup_logging()

    async def run():
        async with AsyncSessionLocal() as db:
            item = await enqueue_test_email(db, email)
            await db.commit()
            return item.id

    queue_item_id = asyncio.run(run())
    _print_success(f"Test email queued ({queue_item_id}); run process-queue to send it")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "alert_relay.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
