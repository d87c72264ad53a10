"""
Root Typer application for the filerelay CLI.

``filerelay serve`` runs the API under uvicorn; ``filerelay config``
prints the resolved settings (secrets masked).
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from filerelay import __version__
from filerelay.core.settings import RelaySettings

app = typer.Typer(
    name="filerelay",
    help="filerelay — file transfers for monday.com integration recipes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

_SECRET_FIELDS = {"client_secret", "signing_secret"}


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"filerelay {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """filerelay CLI — run and inspect the transfer service."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default from settings)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default from settings)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the filerelay API server."""
    import uvicorn

    settings = RelaySettings()
    host = host or settings.host
    port = port or settings.port

    console.print(f"[bold green]Starting filerelay API[/bold green] on {host}:{port}")
    uvicorn.run(
        "filerelay.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


@app.command("config")
def show_config() -> None:
    """Print the resolved settings."""
    settings = RelaySettings()

    table = Table(title="filerelay settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, value in settings.model_dump(exclude={"profiles"}).items():
        if name in _SECRET_FIELDS and value:
            value = "********"
        table.add_row(name, str(value))
    console.print(table)

    profiles = Table(title="pipeline profiles")
    profiles.add_column("Scenario", style="cyan")
    profiles.add_column("Max concurrent")
    profiles.add_column("Max retries")
    profiles.add_column("Inter-task delay")
    for scenario, profile in settings.profiles.items():
        profiles.add_row(
            scenario,
            str(profile.max_concurrent),
            str(profile.max_task_retries),
            f"{profile.inter_task_delay}s",
        )
    console.print(profiles)


@app.command("version")
def show_version() -> None:
    """Print the installed version."""
    typer.echo(f"filerelay {__version__}")
