"""In-memory engine used for tests and offline runs."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from deck.engines.base import ContainerEngine
from deck.exceptions import EngineError
from deck.models.container import ContainerRecord, ContainerStatus, EngineImage, PortMapping
from deck.utils.process import CommandResult


logger = logging.getLogger(__name__)


class FixtureEngine(ContainerEngine):
    """Engine that keeps images and containers in dictionaries.

    Every call is appended to ``calls`` as ``(operation, target)``. Failures
    can be injected per call through ``failures``; ``before_call`` runs
    before each operation and may mutate state or set a cancel event.
    """

    name = "fixture"

    def __init__(self, default_suffix: str = "dev"):
        """Initialize fixture engine."""
        self.default_suffix = default_suffix
        self.containers: Dict[str, ContainerRecord] = {}
        self.images: Dict[str, EngineImage] = {}
        self.container_logs: Dict[str, List[str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], str] = {}
        self.before_call: Optional[Callable[[str, str], None]] = None

    def add_image(self, name: str) -> EngineImage:
        """Register an image."""
        image = EngineImage(id=uuid.uuid4().hex, names=[f"localhost/{name}:latest"])
        self.images[name] = image
        return image

    def add_container(
        self,
        name: str,
        image: str,
        status: ContainerStatus = ContainerStatus.RUNNING,
        ports: Optional[List[PortMapping]] = None,
    ) -> ContainerRecord:
        """Register a container."""
        record = ContainerRecord(
            id=uuid.uuid4().hex,
            name=name,
            status=status,
            image_ref=image,
            ports=ports or [],
        )
        self.containers[name] = record
        return record

    def _record(self, operation: str, target: str):
        self.calls.append((operation, target))
        if self.before_call is not None:
            self.before_call(operation, target)
        message = self.failures.get((operation, target))
        if message is not None:
            raise EngineError(
                f"fixture {operation} failed",
                command=["fixture", operation, target],
                returncode=125,
                stderr=message,
            )

    def _require(self, name: str) -> ContainerRecord:
        record = self.containers.get(name)
        if record is None:
            raise EngineError(
                f"fixture container {name} not found",
                command=["fixture", "inspect", name],
                returncode=125,
                stderr=f"no such container: {name}",
            )
        return record

    async def version(self) -> str:
        return "fixture 1.0"

    async def list_containers(self) -> List[ContainerRecord]:
        return [record.copy(deep=True) for record in self.containers.values()]

    async def list_images(self) -> List[EngineImage]:
        return [image.copy(deep=True) for image in self.images.values()]

    async def start(self, name: str) -> None:
        self._record("start", name)
        self._require(name).status = ContainerStatus.RUNNING

    async def stop(self, name: str) -> None:
        self._record("stop", name)
        self._require(name).status = ContainerStatus.STOPPED

    async def restart(self, name: str) -> None:
        self._record("restart", name)
        self._require(name).status = ContainerStatus.RUNNING

    async def run_container(
        self,
        name: str,
        image: str,
        ports: Optional[List[PortMapping]] = None,
        env_file: Optional[Path] = None,
    ) -> str:
        self._record("run", name)
        if image not in self.images:
            raise EngineError(
                "fixture run failed",
                command=["fixture", "run", name],
                returncode=125,
                stderr=f"image not known: {image}",
            )
        if name in self.containers:
            raise EngineError(
                "fixture run failed",
                command=["fixture", "run", name],
                returncode=125,
                stderr=f"container name {name} is already in use",
            )
        return self.add_container(name, image, ports=ports).id

    async def remove_container(
        self, name: str, force: bool = True, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self._record("rm", name)
        record = self._require(name)
        if record.is_running and not force:
            raise EngineError(
                "fixture rm failed",
                command=["fixture", "rm", name],
                returncode=2,
                stderr=f"container {name} is running",
            )
        del self.containers[name]

    async def remove_image(
        self, ref: str, force: bool = False, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self._record("rmi", ref)
        if ref not in self.images:
            raise EngineError(
                "fixture rmi failed",
                command=["fixture", "rmi", ref],
                returncode=1,
                stderr=f"image not known: {ref}",
            )
        users = [c.name for c in self.containers.values() if c.image_ref == ref]
        if users and not force:
            raise EngineError(
                "fixture rmi failed",
                command=["fixture", "rmi", ref],
                returncode=2,
                stderr=f"image is in use by container {users[0]}",
            )
        del self.images[ref]

    async def prune_build_cache(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        self._record("prune", "build-cache")

    async def exec(self, name: str, command: List[str]) -> CommandResult:
        self._record("exec", name)
        if not self._require(name).is_running:
            return CommandResult(returncode=125, stderr=f"container {name} is not running")
        return CommandResult(returncode=0, stdout=" ".join(command))

    async def logs(self, name: str, tail: Optional[int] = None) -> str:
        self._record("logs", name)
        self._require(name)
        lines = self.container_logs.get(name, [])
        if tail is not None:
            lines = lines[-tail:] if tail else []
        return "\n".join(lines)

    async def stream_logs(self, name: str, tail: Optional[int] = None) -> AsyncIterator[str]:
        for line in (await self.logs(name, tail)).splitlines():
            yield line

    async def compose_up(
        self,
        project_dir: Path,
        project_name: str,
        compose_file: str = "compose.yaml",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CommandResult:
        self._record("compose-up", project_name)
        if not (Path(project_dir) / compose_file).exists():
            raise EngineError(
                "fixture compose failed",
                command=["fixture", "compose", "up", project_name],
                returncode=14,
                stderr=f"no such file: {compose_file}",
            )
        self.add_image(project_name)
        container_name = f"{project_name}-{self.default_suffix}"
        if container_name in self.containers:
            self.containers[container_name].status = ContainerStatus.RUNNING
        else:
            self.add_container(container_name, project_name)
        return CommandResult(returncode=0, stdout=f"Container {container_name} Started")
