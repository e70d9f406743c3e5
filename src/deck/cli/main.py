"""Main CLI implementation using Typer."""

import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from deck.cli.commands import (
    build_image,
    check_ports,
    clean_resources,
    create_custom,
    doctor,
    init_project,
    list_layer,
    list_resources,
    open_shell,
    restart_image,
    show_logs,
    start_image,
    stop_image,
    update_templates,
)
from deck.core.config import ConfigManager
from deck.core.workspace import Workspace
from deck.exceptions import DeckError
from deck.models.resource import ResourceLayer
from deck.utils.logging import setup_logging


# Create Typer app
app = typer.Typer(
    name="deck",
    help="Deck - three-layer development environments on Podman or Docker",
    add_completion=False,
)

# Console for rich output
console = Console()


@app.callback()
def main_callback(
    ctx: typer.Context,
    project: Path = typer.Option(
        Path("."), "--project", "-C", help="Project root containing .deck/"
    ),
    engine: Optional[str] = typer.Option(
        None, "--engine", "-e", help="Container engine (podman, docker, fixture)"
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", help="Logging level"
    ),
):
    """Global options."""
    setup_logging(log_level)
    ctx.obj = {"project": project, "engine": engine}


def _run_cli_command(
    ctx: typer.Context,
    handler: Callable[..., Any],
    needs_engine: bool = True,
    **kwargs: Any,
):
    """Helper to run a CLI command against the project with error handling."""
    options = ctx.obj or {}
    project = options.get("project", Path("."))
    try:
        if needs_engine:
            target = asyncio.run(Workspace.open(project, options.get("engine")))
        else:
            target = asyncio.run(ConfigManager(project).load())
        handler(target, **kwargs)
    except (DeckError, ValidationError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command("init")
def init_command(ctx: typer.Context):
    """Create .deck/ with its layers and default config."""
    _run_cli_command(ctx, init_project, needs_engine=False)


@app.command("build")
def build_command(
    ctx: typer.Context,
    custom: str = typer.Argument(..., help="Custom configuration to build"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept substitute ports"),
):
    """Snapshot a Custom configuration into Images, then build and start it."""
    _run_cli_command(ctx, build_image, custom=custom, yes=yes)


@app.command("start")
def start_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Images entry name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept substitute ports"),
):
    """Attach, restart, create or rebuild as needed."""
    _run_cli_command(ctx, start_image, name=name, yes=yes)


@app.command("stop")
def stop_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Images entry name"),
):
    """Stop a running container."""
    _run_cli_command(ctx, stop_image, name=name)


@app.command("restart")
def restart_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Images entry name"),
):
    """Restart a container."""
    _run_cli_command(ctx, restart_image, name=name)


@app.command("logs")
def logs_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Images entry name"),
    tail: Optional[int] = typer.Option(None, "--tail", "-n", help="Number of lines"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow output"),
):
    """Show container logs."""
    _run_cli_command(ctx, show_logs, name=name, tail=tail, follow=follow)


@app.command("shell")
def shell_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Images entry name"),
    shell: str = typer.Option("/bin/bash", "--shell", help="Shell to run"),
):
    """Open interactive shell in container."""
    _run_cli_command(ctx, open_shell, name=name, shell=shell)


@app.command("ps")
def ps_command(
    ctx: typer.Context,
    env: Optional[str] = typer.Option(None, "--env", help="Only names starting with ENV-"),
):
    """List Images, Custom and Templates with their engine state."""
    _run_cli_command(ctx, list_resources, env=env)


@app.command("images")
def images_command(ctx: typer.Context):
    """List Images entries."""
    _run_cli_command(ctx, list_layer, needs_engine=False, layer=ResourceLayer.IMAGES)


@app.command("clean")
def clean_command(
    ctx: typer.Context,
    layer: ResourceLayer = typer.Argument(..., help="Layer to clean"),
    name: Optional[str] = typer.Argument(None, help="Resource name (omit for keep-latest on images)"),
    option: Optional[int] = typer.Option(None, "--option", "-o", help="Option number to run"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Delete a resource together with what depends on it."""
    _run_cli_command(
        ctx, clean_resources, layer=layer, name=name, choice=option, dry_run=dry_run, yes=yes
    )


@app.command("doctor")
def doctor_command(ctx: typer.Context):
    """Show engine and directory information."""
    _run_cli_command(ctx, doctor)


# Template subcommands
templates_app = typer.Typer(help="Template commands")
app.add_typer(templates_app, name="templates")


@templates_app.command("update")
def templates_update_command(ctx: typer.Context):
    """Sync templates from the remote repository."""
    _run_cli_command(ctx, update_templates, needs_engine=False)


@templates_app.command("list")
def templates_list_command(ctx: typer.Context):
    """List available templates."""
    _run_cli_command(ctx, list_layer, needs_engine=False, layer=ResourceLayer.TEMPLATES)


# Custom subcommands
custom_app = typer.Typer(help="Custom configuration commands")
app.add_typer(custom_app, name="custom")


@custom_app.command("create")
def custom_create_command(
    ctx: typer.Context,
    template: str = typer.Argument(..., help="Template to copy"),
    name: Optional[str] = typer.Option(None, "--name", help="Name of the new configuration"),
):
    """Create a Custom configuration from a template."""
    _run_cli_command(ctx, create_custom, needs_engine=False, template=template, name=name)


@custom_app.command("list")
def custom_list_command(ctx: typer.Context):
    """List Custom configurations."""
    _run_cli_command(ctx, list_layer, needs_engine=False, layer=ResourceLayer.CUSTOM)


# Port subcommands
ports_app = typer.Typer(help="Port commands")
app.add_typer(ports_app, name="ports")


@ports_app.command("check")
def ports_check_command(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Images entry whose .env to check"),
    port: List[str] = typer.Option([], "--port", "-p", help="NAME=PORT to check"),
):
    """Check declared ports for conflicts."""
    _run_cli_command(ctx, check_ports, name=name, ports=port)


def main():
    """Main entry point for CLI."""
    app()
