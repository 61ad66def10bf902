"""
Parish Notify CLI - Command line interface for running jobs.

Usage:
    parish-notify --help              Show all commands
    parish-notify greetings           Run one greeting dispatcher pass
    parish-notify migrate             Apply database migrations
    parish-notify serve               Start the API server (with scheduler)
"""

import asyncio

import typer

app = typer.Typer(
    name="parish-notify",
    help="Parish Notify CLI - notification and greeting jobs for the parish portal",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


@app.command()
def greetings(
    request_id: str | None = typer.Option(
        None, "--request-id", help="Correlation id attached to every log line"
    ),
):
    """Run the greeting dispatcher once (parishes outside their send window are skipped)."""
    from parish_notify.core.logging import setup_logging
    from parish_notify.jobs.greetings import main

    setup_logging()
    summary = asyncio.run(main(request_id=request_id))

    typer.echo(f"\n🎉 Greetings run {summary.run_id}")
    _print_success(
        f"{summary.sent} sent, {summary.skipped} skipped, {summary.failed} failed "
        f"across {summary.matched_parishes} parish(es) in their send window"
    )
    if summary.missing_env:
        _print_warning(f"Missing email config: {', '.join(summary.missing_env)}")

    if summary.failed:
        raise typer.Exit(1)


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

    cmd = ["uvicorn", "parish_notify.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
