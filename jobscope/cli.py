"""
jobscope CLI - Command line interface for operating the recorder.

Usage:
    jobscope --help              Show all commands
    jobscope init-db             Create the job_runs table (dev/test databases)
    jobscope migrate             Run database migrations
    jobscope depth               Print pending jobs per queue
    jobscope prune --days 14     Delete old terminal job runs
    jobscope serve               Start the API server
"""

import asyncio

import typer

app = typer.Typer(
    name="jobscope",
    help="jobscope CLI - Job lifecycle recording and monitoring",
    no_args_is_help=True,
)

STATUS_ICONS = {"normal": "✅", "healthy": "✅", "warning": "⚠️", "critical": "❌"}


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command("init-db")
def init_db():
    """Create tables directly from the models (use `migrate` in production)."""
    from jobscope.core.database import engine
    from jobscope.core.logging import setup_logging
    from jobscope.models import Base

    setup_logging()

    async def run() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(run())
    _print_success("Tables created")


@app.command()
def depth(
    queue: str | None = typer.Option(None, "--queue", "-q", help="Only this queue"),
):
    """Print pending jobs per queue with health status."""
    from jobscope.core.logging import setup_logging
    from jobscope.services.queue_depth import get_queue_depth_probe

    setup_logging()
    probe = get_queue_depth_probe()

    async def run() -> None:
        if queue:
            typer.echo(f"{queue}: {await probe.depth_of(queue)}")
            return

        depths = await probe.depth_with_metadata_always()
        typer.echo(f"\nQueue depth ({probe.driver})")
        for name, info in depths.items():
            icon = STATUS_ICONS.get(info.status, "•")
            typer.echo(f"  {icon} {name}: {info.depth} ({info.status})")
        typer.echo("")

    try:
        asyncio.run(run())
    except Exception as e:
        _print_error(f"Depth probe failed: {e}")
        raise typer.Exit(1) from e


@app.command()
def prune(
    days: int | None = typer.Option(
        None, "--days", "-d", help="Retention in days (default: retention.days from config.yml)"
    ),
):
    """Delete terminal job runs older than the retention window."""
    from jobscope.core.logging import setup_logging
    from jobscope.core.scheduler import prune_job

    setup_logging()
    deleted = asyncio.run(prune_job(days))
    _print_success(f"Deleted {deleted} job runs")


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

    cmd = ["uvicorn", "jobscope.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
