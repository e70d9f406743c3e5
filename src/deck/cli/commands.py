"""Command implementations for CLI."""

import asyncio
import os
from contextlib import contextmanager
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from deck.core.collaborators import GitTemplateSyncClient
from deck.core.config import ConfigManager
from deck.core.directories import ResourceDirectoryManager
from deck.core.permissions import ImagePermissionGuard
from deck.core.workflow import ThreeLayerWorkflow
from deck.core.workspace import Workspace
from deck.engines.base import CliContainerEngine
from deck.models.catalog import ResourceStatus, UnifiedResource
from deck.models.config import DeckConfig
from deck.models.resource import ResourceLayer
from deck.models.results import CleaningOption, CleaningResult, OperationResult, ProgressEvent, StartResult
from deck.utils.envfile import read_ports


console = Console()
stderr_console = Console(stderr=True)

STATUS_STYLES = {
    ResourceStatus.RUNNING: "green",
    ResourceStatus.STOPPED: "yellow",
    ResourceStatus.BUILDING: "cyan",
    ResourceStatus.READY: "white",
    ResourceStatus.UNAVAILABLE: "red",
}


@contextmanager
def _spinner(description: str, quiet: bool = False):
    """Show a spinner; yields a progress callback and a pausing confirm."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=quiet,
    ) as progress:
        task = progress.add_task(description, total=None)

        def on_progress(event: ProgressEvent):
            progress.update(task, description=str(event))

        def confirm(message: str) -> bool:
            progress.stop()
            try:
                return typer.confirm(message, default=False)
            finally:
                progress.start()

        yield on_progress, confirm
        progress.update(task, completed=True)


def _print_result(result: OperationResult):
    """Print a result with its follow-up hints."""
    if result.success:
        console.print(f"[green]✓[/green] {result.message}")
    else:
        console.print(f"[red]✗[/red] {result.message}")
    for hint in result.hints:
        console.print(f"  [dim]→ {hint}[/dim]")


def _require_success(result: OperationResult):
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


def init_project(config: DeckConfig):
    """Create the .deck tree, default config and .gitignore rules."""
    directories = ResourceDirectoryManager(config)
    created = asyncio.run(directories.initialize())
    if not config.config_file.exists():
        asyncio.run(ConfigManager(config.project_root).save(config))
        created.append(config.config_file)
    for path in created:
        console.print(f"[green]✓[/green] Created {path}")
    console.print(f"Deck initialized in {config.deck_dir}")


def _offline_workflow(config: DeckConfig) -> ThreeLayerWorkflow:
    return ThreeLayerWorkflow(
        config,
        ResourceDirectoryManager(config),
        ImagePermissionGuard(config),
        None,
        GitTemplateSyncClient(),
    )


def update_templates(config: DeckConfig):
    """Sync templates from the remote repository."""
    workflow = _offline_workflow(config)
    with _spinner(f"Syncing templates from {config.templates.repository_url}..."):
        result = asyncio.run(workflow.sync_templates())
    _require_success(result)
    for name in result.templates:
        console.print(f"  {name}")


def list_layer(config: DeckConfig, layer: ResourceLayer):
    """List directory entries of one layer."""
    entries = asyncio.run(ResourceDirectoryManager(config).list_entries(layer))
    table = Table(title=layer.value.capitalize())
    table.add_column("Name", style="cyan")
    table.add_column("Complete")
    table.add_column("Missing", style="red")
    for entry in entries:
        table.add_row(
            entry.name,
            "[green]✓[/green]" if entry.is_complete else "[red]✗[/red]",
            ", ".join(entry.missing_files),
        )
    console.print(table)


def create_custom(config: DeckConfig, template: str, name: Optional[str] = None):
    """Copy a template into the Custom layer."""
    result = asyncio.run(_offline_workflow(config).create_custom_from_template(template, name))
    _require_success(result)


def _print_start(result: StartResult):
    _print_result(result)
    for allocation in result.allocations:
        if allocation.changed:
            console.print(
                f"  {allocation.port_type}: {allocation.requested_port} → {allocation.resolved_port}"
            )
    if result.engine_diagnostic:
        stderr_console.print(f"[dim]{result.engine_diagnostic}[/dim]")
    if not result.success:
        raise typer.Exit(1)


def build_image(workspace: Workspace, custom: str, yes: bool = False):
    """Promote a Custom configuration and start it."""
    with _spinner(f"Building {custom}...") as (on_progress, confirm):
        result = asyncio.run(workspace.workflow.build_from_custom(
            custom,
            progress=on_progress,
            confirm=(lambda message: True) if yes else confirm,
        ))
    _print_start(result)


def start_image(workspace: Workspace, name: str, yes: bool = False):
    """Smart-start an Images entry."""
    with _spinner(f"Starting {name}...") as (on_progress, confirm):
        result = asyncio.run(workspace.lifecycle.smart_start(
            name,
            progress=on_progress,
            confirm=(lambda message: True) if yes else confirm,
        ))
    _print_start(result)


def stop_image(workspace: Workspace, name: str):
    """Stop an Images entry's container."""
    with _spinner(f"Stopping {name}..."):
        result = asyncio.run(workspace.lifecycle.stop(name))
    _require_success(result)


def restart_image(workspace: Workspace, name: str):
    """Restart an Images entry's container."""
    with _spinner(f"Restarting {name}..."):
        result = asyncio.run(workspace.lifecycle.restart(name))
    _require_success(result)


def show_logs(workspace: Workspace, name: str, tail: Optional[int] = None, follow: bool = False):
    """Print or follow container logs."""
    async def _logs():
        record = await workspace.lifecycle.find_container(name)
        if record is None:
            return None
        if follow:
            async for line in workspace.engine.stream_logs(record.name, tail):
                console.print(line, markup=False, highlight=False)
            return ""
        return await workspace.engine.logs(record.name, tail)

    try:
        output = asyncio.run(_logs())
    except KeyboardInterrupt:
        return
    if output is None:
        console.print(f"[red]Error:[/red] No container found for {name}")
        raise typer.Exit(1)
    if output:
        console.print(output, markup=False, highlight=False)


def open_shell(workspace: Workspace, name: str, shell: str = "/bin/bash"):
    """Replace this process with an interactive shell in the container."""
    record = asyncio.run(workspace.lifecycle.find_container(name))
    if record is None or not record.is_running:
        console.print(f"[red]Error:[/red] No running container for {name}; run 'deck start {name}'")
        raise typer.Exit(1)
    if not isinstance(workspace.engine, CliContainerEngine):
        result = asyncio.run(workspace.engine.exec(record.name, [shell]))
        console.print(result.stdout or result.stderr)
        return
    binary = workspace.engine.binary
    # Exec directly to keep the TTY
    os.execvp(binary, [binary, "exec", "-it", record.name, shell])


def _status_cell(row: UnifiedResource) -> str:
    style = STATUS_STYLES.get(row.status, "white")
    return f"[{style}]{row.status.value}[/{style}]"


def list_resources(workspace: Workspace, env: Optional[str] = None):
    """Show the three-layer catalog."""
    catalog = asyncio.run(workspace.catalog.build_catalog(env))

    table = Table(title="Images")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Engine image", style="magenta")
    table.add_column("Containers")
    table.add_column("Notes", style="dim", max_width=50)
    for row in catalog.images:
        table.add_row(
            row.name,
            _status_cell(row),
            row.related_image_ref or "-",
            ", ".join(row.related_container_names) or "-",
            row.unavailable_reason or "",
        )
    console.print(table)
    console.print()

    for title, rows in (("Custom", catalog.custom), ("Templates", catalog.templates)):
        table = Table(title=title)
        table.add_column("Name", style="cyan")
        table.add_column("Status")
        table.add_column("Notes", style="dim", max_width=50)
        for row in rows:
            table.add_row(row.name, _status_cell(row), row.unavailable_reason or "")
        console.print(table)
        console.print()


def _parse_port_args(ports: List[str]) -> Dict[str, int]:
    declared = {}
    for item in ports:
        name, sep, value = item.partition("=")
        if not sep or not value.isdigit():
            raise typer.BadParameter(f"Expected NAME=PORT, got {item!r}")
        declared[name] = int(value)
    return declared


def check_ports(workspace: Workspace, name: Optional[str] = None, ports: Optional[List[str]] = None):
    """Report occupied ports of an entry or explicit NAME=PORT pairs."""
    declared = _parse_port_args(ports or [])
    if name:
        env_path = workspace.directories.entry_path(ResourceLayer.IMAGES, name) / workspace.config.files.env_file
        declared = {**read_ports(env_path), **declared}
    if not declared:
        console.print("No ports declared")
        return

    results = asyncio.run(workspace.ports.check_ports(declared))
    table = Table(title="Ports")
    table.add_column("Variable", style="cyan")
    table.add_column("Port")
    table.add_column("State")
    table.add_column("Process")
    table.add_column("Suggestion")
    table.add_column("Stop command", style="dim")
    for result in results:
        process = result.process
        table.add_row(
            result.port_name,
            str(result.port),
            "[green]free[/green]" if result.is_available else "[red]in use[/red]",
            str(process) if process else "",
            str(result.suggested_port or ""),
            (process.stop_command or "system process") if process else "",
        )
    console.print(table)


def _print_options(options: List[CleaningOption]):
    table = Table(title="Cleaning options")
    table.add_column("#", style="cyan")
    table.add_column("Option")
    table.add_column("Deletes", style="dim", max_width=60)
    for index, option in enumerate(options, start=1):
        label = option.description
        if not option.recommended:
            label += " [yellow](not recommended)[/yellow]"
        table.add_row(str(index), label, "\n".join(option.targets))
    console.print(table)


def _print_cleaning(result: CleaningResult):
    for step in result.steps:
        mark = "[green]✓[/green]" if step.success else "[red]✗[/red]"
        suffix = f" ({step.error})" if step.error else ""
        console.print(f"  {mark} {step.kind} {step.target}{suffix}")
    _print_result(result)
    if not result.success and not result.dry_run:
        raise typer.Exit(1)


def clean_resources(
    workspace: Workspace,
    layer: ResourceLayer,
    name: Optional[str] = None,
    choice: Optional[int] = None,
    dry_run: bool = False,
    yes: bool = False,
):
    """Compute cleaning options, let the user pick one and execute it."""
    options = asyncio.run(workspace.cleanup.compute_cleaning_options(layer, name))
    if len(options) == 1 and options[0].is_refusal:
        refusal = asyncio.run(workspace.cleanup.execute(options[0], confirm=lambda message: False))
        _print_cleaning(refusal)
        return

    _print_options(options)
    if choice is None:
        choice = typer.prompt("Select an option (0 to cancel)", type=int, default=1)
    if choice == 0:
        console.print("Cancelled")
        return
    if not 1 <= choice <= len(options):
        raise typer.BadParameter(f"Option must be between 1 and {len(options)}")

    option = options[choice - 1]
    with _spinner("Cleaning...", quiet=dry_run) as (on_progress, confirm):
        result = asyncio.run(workspace.cleanup.execute(
            option,
            confirm=(lambda message: True) if yes else confirm,
            progress=on_progress,
            dry_run=dry_run,
        ))
    _print_cleaning(result)


def doctor(workspace: Workspace):
    """Show engine and directory information."""
    version = asyncio.run(workspace.engine.version())
    console.print(f"Engine:    {workspace.engine.name} ({version})")
    console.print(f"Config:    {workspace.config.config_file}"
                  + ("" if workspace.config.config_file.exists() else " [yellow](defaults)[/yellow]"))
    for layer in ResourceLayer:
        path = workspace.directories.layer_dir(layer)
        mark = "[green]✓[/green]" if path.is_dir() else "[red]✗[/red]"
        console.print(f"{mark} {path}")
