"""Smart start and container lifecycle for Images entries."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from deck.core.collaborators import BuildPipeline, ConfirmCallback, ask
from deck.core.compose import read_compose_ports
from deck.core.directories import ResourceDirectoryManager
from deck.core.permissions import ImagePermissionGuard
from deck.core.ports import PortConflictResolver
from deck.engines.base import ContainerEngine
from deck.exceptions import EngineError, FileSystemError, PermissionViolation, PortConflictError
from deck.models.config import DeckConfig
from deck.models.container import ContainerRecord, ContainerStatus, PortMapping
from deck.models.ports import PortAllocation
from deck.models.resource import BuildStatus, ResourceLayer
from deck.models.results import OperationResult, ProgressEvent, StartMode, StartResult
from deck.utils.envfile import read_env, read_ports
from deck.utils.process import CommandCancelled


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

TOTAL_STEPS = 4

RESTARTABLE = {ContainerStatus.STOPPED, ContainerStatus.CREATED, ContainerStatus.PAUSED}


class _StartFailed(Exception):
    """Internal signal carrying the failure result of a start attempt."""

    def __init__(self, result: StartResult):
        self.result = result
        super().__init__(result.message)


class ContainerLifecycleStateMachine:
    """Decides between attach, restart, create and rebuild for an Images entry."""

    def __init__(
        self,
        config: DeckConfig,
        engine: ContainerEngine,
        directories: ResourceDirectoryManager,
        ports: PortConflictResolver,
        build_pipeline: BuildPipeline,
        guard: Optional[ImagePermissionGuard] = None,
    ):
        """Initialize lifecycle state machine."""
        self.config = config
        self.engine = engine
        self.directories = directories
        self.ports = ports
        self.build_pipeline = build_pipeline
        self.guard = guard or ImagePermissionGuard(config)

    def container_candidates(self, image_name: str) -> List[str]:
        """Container names tried for an entry: exact, then the default suffix."""
        return [image_name, f"{image_name}-{self.config.environments.default_suffix}"]

    async def find_container(self, image_name: str) -> Optional[ContainerRecord]:
        """Query the engine for the entry's container."""
        containers = {record.name: record for record in await self.engine.list_containers()}
        for candidate in self.container_candidates(image_name):
            if candidate in containers:
                return containers[candidate]
        return None

    async def smart_start(
        self,
        image_name: str,
        progress: Optional[ProgressCallback] = None,
        confirm: Optional[ConfirmCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StartResult:
        """Bring an Images entry's container to Running.

        Running containers are attached to without changes. Stopped or
        created containers are restarted after port checks. When only the
        image exists a new container is created from it. When neither
        exists the build pipeline rebuilds from the entry's compose file.
        Failures are returned as a result and never retried.
        """
        emit = _Emitter(progress)
        entry_path = self.directories.entry_path(ResourceLayer.IMAGES, image_name)
        if not entry_path.is_dir():
            return StartResult(
                success=False,
                image_name=image_name,
                message=f"Image configuration not found: {entry_path}",
                hints=["deck ps"],
            )

        try:
            return await self._start(image_name, entry_path, emit, confirm, cancel_event, rebuilt=False)
        except _StartFailed as e:
            return e.result
        except CommandCancelled:
            logger.warning(f"Start of {image_name} cancelled")
            return StartResult(success=False, image_name=image_name, message="Start cancelled")
        except EngineError as e:
            logger.error(f"Start of {image_name} failed: {e}")
            hints = [e.command_line] if e.command else []
            return StartResult(
                success=False,
                image_name=image_name,
                message=str(e),
                engine_diagnostic=e.stderr or None,
                hints=hints,
            )
        except (FileSystemError, PermissionViolation, PortConflictError) as e:
            logger.error(f"Start of {image_name} failed: {e}")
            return StartResult(success=False, image_name=image_name, message=str(e))

    async def _start(self, image_name, entry_path, emit, confirm, cancel_event, rebuilt):
        emit(1, f"Inspecting containers for {image_name}")
        record = await self.find_container(image_name)
        status = record.status if record else ContainerStatus.NOT_EXISTS
        logger.debug(f"{image_name}: container state {status.value}")

        if status == ContainerStatus.RUNNING:
            emit(TOTAL_STEPS, f"{record.name} is already running")
            await self._mark_started(image_name, rebuilt)
            return StartResult(
                success=True,
                image_name=image_name,
                container_name=record.name,
                mode=StartMode.REBUILT if rebuilt else StartMode.ATTACHED,
                status=status,
                message=f"Container {record.name} is running",
                hints=[self.engine.command_hint("exec", "-it", record.name, "/bin/bash")],
            )

        if status in RESTARTABLE:
            return await self._restart(image_name, entry_path, record, emit, confirm, rebuilt)

        if status == ContainerStatus.NOT_EXISTS:
            if await self.engine.image_exists(image_name):
                return await self._create(image_name, entry_path, image_name, emit, confirm, rebuilt=rebuilt)
            if rebuilt:
                raise _StartFailed(StartResult(
                    success=False,
                    image_name=image_name,
                    message=f"Build finished but no container for {image_name} was found",
                    hints=[self.engine.command_hint("ps", "-a")],
                ))
            return await self._rebuild(image_name, entry_path, emit, confirm, cancel_event)

        # Dead, Removing, Restarting or Unknown need the user to intervene
        raise _StartFailed(StartResult(
            success=False,
            image_name=image_name,
            container_name=record.name,
            status=status,
            message=f"Container {record.name} is {status.value}; it cannot be started automatically",
            hints=[
                self.engine.command_hint("logs", record.name),
                self.engine.command_hint("rm", "-f", record.name),
            ],
        ))

    async def _restart(self, image_name, entry_path, record, emit, confirm, rebuilt):
        emit(2, f"Checking ports for {record.name}")
        allocations = await self._resolve_ports(image_name, entry_path, confirm)

        if any(allocation.changed for allocation in allocations):
            # Published ports are fixed when a container is created
            emit(3, f"Recreating {record.name} with new ports")
            await self.engine.remove_container(record.name, force=True)
            logger.info(f"Removed {record.name} to publish new ports")
            try:
                result = await self._create(
                    image_name, entry_path, record.image_ref or image_name, emit, None,
                    allocations=allocations, container_name=record.name, rebuilt=rebuilt,
                )
            except (EngineError, FileSystemError) as e:
                logger.error(f"Recreating {record.name} failed: {e}")
                diagnostic = e.stderr if isinstance(e, EngineError) else ""
                command = e.command_line if isinstance(e, EngineError) and e.command else None
                raise _StartFailed(StartResult(
                    success=False,
                    image_name=image_name,
                    container_name=record.name,
                    status=ContainerStatus.NOT_EXISTS,
                    allocations=allocations,
                    removed_container=record.name,
                    message=(
                        f"Removed {record.name} to change its ports, but creating it again failed: {e}"
                    ),
                    engine_diagnostic=diagnostic or None,
                    hints=[f"deck start {image_name}", *([command] if command else [])],
                ))
            except _StartFailed as e:
                e.result.removed_container = record.name
                e.result.message = f"Removed {record.name} to change its ports; {e.result.message}"
                e.result.hints.append(f"deck start {image_name}")
                raise
            result.removed_container = record.name
            return result

        emit(3, f"Restarting {record.name}")
        await self.engine.restart(record.name)
        emit(4, f"Verifying {record.name}")
        refreshed = await self.engine.inspect_container(record.name)
        status = refreshed.status if refreshed else ContainerStatus.NOT_EXISTS
        if status != ContainerStatus.RUNNING:
            raise _StartFailed(StartResult(
                success=False,
                image_name=image_name,
                container_name=record.name,
                status=status,
                allocations=allocations,
                message=f"Container {record.name} did not reach Running (now {status.value})",
                hints=[self.engine.command_hint("logs", record.name)],
            ))
        await self._mark_started(image_name, rebuilt)
        return StartResult(
            success=True,
            image_name=image_name,
            container_name=record.name,
            mode=StartMode.REBUILT if rebuilt else StartMode.RESTARTED,
            status=status,
            allocations=allocations,
            message=f"Restarted {record.name}",
            hints=[self.engine.command_hint("restart", record.name)],
        )

    async def _create(
        self, image_name, entry_path, image_ref, emit, confirm,
        allocations: Optional[List[PortAllocation]] = None,
        container_name: Optional[str] = None,
        rebuilt: bool = False,
    ):
        if allocations is None:
            emit(2, f"Checking ports for {image_name}")
            allocations = await self._resolve_ports(image_name, entry_path, confirm)
        container_name = container_name or self.container_candidates(image_name)[1]
        mappings = self._port_mappings(entry_path, allocations)

        emit(3, f"Creating {container_name} from image {image_ref}")
        env_file = entry_path / self.config.files.env_file
        await self.engine.run_container(container_name, image_ref, ports=mappings, env_file=env_file)

        emit(4, f"Verifying {container_name}")
        record = await self.engine.inspect_container(container_name)
        status = record.status if record else ContainerStatus.NOT_EXISTS
        if status != ContainerStatus.RUNNING:
            raise _StartFailed(StartResult(
                success=False,
                image_name=image_name,
                container_name=container_name,
                status=status,
                allocations=allocations,
                message=f"Container {container_name} was created but is {status.value}",
                hints=[self.engine.command_hint("logs", container_name)],
            ))
        await self._mark_started(image_name, rebuilt)
        port_args = [f"-p {m.host_port}:{m.container_port}" for m in mappings]
        return StartResult(
            success=True,
            image_name=image_name,
            container_name=container_name,
            mode=StartMode.REBUILT if rebuilt else StartMode.CREATED,
            status=status,
            allocations=allocations,
            message=f"Created and started {container_name}",
            hints=[self.engine.command_hint("run", "-d", "--name", container_name, *port_args, image_ref)],
        )

    async def _rebuild(self, image_name, entry_path, emit, confirm, cancel_event):
        completeness = await self.directories.validate_completeness(entry_path)
        if not completeness.is_complete:
            raise _StartFailed(StartResult(
                success=False,
                image_name=image_name,
                message=(
                    f"Cannot rebuild {image_name}: missing "
                    f"{', '.join(completeness.missing_files)} in {entry_path}"
                ),
            ))

        emit(2, f"Checking ports for {image_name}")
        allocations = await self._resolve_ports(image_name, entry_path, confirm)

        emit(3, f"Building {image_name}")
        await self.directories.update_metadata(image_name, build_status=BuildStatus.BUILDING)
        compose_path = entry_path / self.config.files.compose_file
        try:
            build = await self.build_pipeline.build(compose_path, image_name, cancel_event=cancel_event)
        except CommandCancelled:
            await self.directories.update_metadata(image_name, build_status=BuildStatus.FAILED)
            raise
        if not build.success:
            await self.directories.update_metadata(image_name, build_status=BuildStatus.FAILED)
            raise _StartFailed(StartResult(
                success=False,
                image_name=image_name,
                allocations=allocations,
                message=f"Build of {image_name} failed: {build.message}",
                engine_diagnostic=build.output or None,
                hints=build.hints,
            ))
        await self.directories.update_metadata(image_name, build_status=BuildStatus.BUILT)

        result = await self._start(image_name, entry_path, emit, confirm, cancel_event, rebuilt=True)
        result.allocations = result.allocations or allocations
        return result

    async def _resolve_ports(self, image_name, entry_path, confirm) -> List[PortAllocation]:
        env_path = entry_path / self.config.files.env_file
        declared = await asyncio.to_thread(read_ports, env_path)
        if not declared:
            return []
        allocations = await self.ports.resolve(declared)
        changed = [a for a in allocations if a.changed]
        if not changed:
            return allocations

        lines = []
        for allocation in changed:
            holder = str(allocation.occupying_process) if allocation.occupying_process else "another process"
            lines.append(
                f"{allocation.port_type} {allocation.requested_port} is used by {holder}, "
                f"use {allocation.resolved_port} instead"
            )
        message = "Port conflicts detected:\n  " + "\n  ".join(lines) + f"\nUpdate {env_path.name}?"
        accepted = bool(await ask(confirm, message)) if confirm is not None else False
        if not accepted:
            hints = [
                a.occupying_process.stop_command
                for a in changed
                if a.occupying_process and a.occupying_process.stop_command
            ]
            raise _StartFailed(StartResult(
                success=False,
                image_name=image_name,
                allocations=allocations,
                message="; ".join(lines),
                hints=hints + ["deck ports check " + image_name],
            ))

        await self.guard.update_env(
            image_name, {a.port_type: str(a.resolved_port) for a in changed}
        )
        return allocations

    def _port_mappings(self, entry_path: Path, allocations: List[PortAllocation]) -> List[PortMapping]:
        resolved: Dict[str, int] = {a.port_type: a.resolved_port for a in allocations}
        env = read_env(entry_path / self.config.files.env_file)
        env.update({name: str(port) for name, port in resolved.items()})
        compose_ports = read_compose_ports(entry_path / self.config.files.compose_file, env)
        if compose_ports:
            return [
                PortMapping(
                    host_port=port.host_port,
                    container_port=port.container_port,
                    protocol=port.protocol,
                )
                for port in compose_ports
            ]
        return [
            PortMapping(host_port=a.resolved_port, container_port=a.requested_port)
            for a in allocations
        ]

    async def _mark_started(self, image_name: str, rebuilt: bool):
        changes = {"last_started": self.directories.clock()}
        if rebuilt:
            changes["build_status"] = BuildStatus.BUILT
        await self.directories.update_metadata(image_name, **changes)

    async def stop(self, image_name: str) -> OperationResult:
        """Stop the entry's container."""
        record = await self.find_container(image_name)
        if record is None:
            return OperationResult(
                success=False,
                message=f"No container found for {image_name}",
                hints=[self.engine.command_hint("ps", "-a")],
            )
        if record.status != ContainerStatus.RUNNING:
            return OperationResult(success=True, message=f"{record.name} is already {record.status.value}")
        try:
            await self.engine.stop(record.name)
        except EngineError as e:
            return OperationResult(success=False, message=str(e), hints=[e.command_line])
        return OperationResult(
            success=True,
            message=f"Stopped {record.name}",
            hints=[self.engine.command_hint("stop", record.name)],
        )

    async def restart(self, image_name: str) -> OperationResult:
        """Restart the entry's container in place."""
        record = await self.find_container(image_name)
        if record is None:
            return OperationResult(
                success=False,
                message=f"No container found for {image_name}; use 'deck start {image_name}'",
            )
        try:
            await self.engine.restart(record.name)
        except EngineError as e:
            return OperationResult(success=False, message=str(e), hints=[e.command_line])
        await self._mark_started(image_name, False)
        return OperationResult(
            success=True,
            message=f"Restarted {record.name}",
            hints=[self.engine.command_hint("restart", record.name)],
        )


class _Emitter:
    """Forwards progress steps to an optional callback."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback

    def __call__(self, step: int, description: str):
        logger.debug(f"[{step}/{TOTAL_STEPS}] {description}")
        if self.callback is not None:
            self.callback(ProgressEvent(step=step, total=TOTAL_STEPS, description=description))
