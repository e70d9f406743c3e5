"""Container engine interface and the shared CLI-backed implementation."""

import asyncio
import json
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from deck.exceptions import EngineError, EngineNotFoundError
from deck.models.container import ContainerRecord, EngineImage, PortMapping
from deck.utils.process import CommandResult, run_command


logger = logging.getLogger(__name__)


class ContainerEngine(ABC):
    """Uniform interface over the installed container engine."""

    name: str = "engine"

    @abstractmethod
    async def version(self) -> str:
        """Return the engine version string."""
        pass

    @abstractmethod
    async def list_containers(self) -> List[ContainerRecord]:
        """List all containers, running or not."""
        pass

    @abstractmethod
    async def list_images(self) -> List[EngineImage]:
        """List all local images."""
        pass

    @abstractmethod
    async def start(self, name: str) -> None:
        """Start an existing container."""
        pass

    @abstractmethod
    async def stop(self, name: str) -> None:
        """Stop a running container."""
        pass

    @abstractmethod
    async def restart(self, name: str) -> None:
        """Restart a container."""
        pass

    @abstractmethod
    async def run_container(
        self,
        name: str,
        image: str,
        ports: Optional[List[PortMapping]] = None,
        env_file: Optional[Path] = None,
    ) -> str:
        """Create and start a container from an image, returning its id."""
        pass

    @abstractmethod
    async def remove_container(
        self, name: str, force: bool = True, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Remove a container."""
        pass

    @abstractmethod
    async def remove_image(
        self, ref: str, force: bool = False, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Remove an image."""
        pass

    @abstractmethod
    async def prune_build_cache(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        """Drop the engine's build cache."""
        pass

    @abstractmethod
    async def exec(self, name: str, command: List[str]) -> CommandResult:
        """Execute a command inside a running container."""
        pass

    @abstractmethod
    async def logs(self, name: str, tail: Optional[int] = None) -> str:
        """Fetch container logs."""
        pass

    @abstractmethod
    def stream_logs(self, name: str, tail: Optional[int] = None) -> AsyncIterator[str]:
        """Follow container logs line by line."""
        pass

    @abstractmethod
    async def compose_up(
        self,
        project_dir: Path,
        project_name: str,
        compose_file: str = "compose.yaml",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CommandResult:
        """Build and start the services of a compose project."""
        pass

    async def inspect_container(self, name: str) -> Optional[ContainerRecord]:
        """Find a container by exact name."""
        for record in await self.list_containers():
            if record.name == name:
                return record
        return None

    async def image_exists(self, name: str) -> bool:
        """Check whether an image with this repository name exists."""
        return any(image.matches(name) for image in await self.list_images())

    def command_hint(self, *args: str) -> str:
        """Render the engine CLI equivalent of an operation."""
        return " ".join([self.name, *args])


class CliContainerEngine(ContainerEngine):
    """Engine driven through its command-line interface and JSON output."""

    binary: str = ""

    def __init__(self, timeout: int = 120, build_timeout: int = 1800):
        """Initialize CLI engine."""
        self.timeout = timeout
        self.build_timeout = build_timeout

    @property
    def name(self) -> str:
        return self.binary

    async def _run(
        self,
        *args: str,
        timeout: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CommandResult:
        cmd = [self.binary, *args]
        try:
            return await run_command(
                cmd, timeout=timeout or self.timeout, cancel_event=cancel_event
            )
        except FileNotFoundError as e:
            raise EngineNotFoundError(f"{self.binary} is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise EngineError(
                f"{self.binary} {args[0]} timed out after {e.timeout}s", command=cmd
            ) from e
        except subprocess.CalledProcessError as e:
            logger.error(f"Engine command failed: {' '.join(cmd)}: {e.stderr}")
            raise EngineError(
                f"{self.binary} {args[0]} failed with exit code {e.returncode}",
                command=cmd,
                returncode=e.returncode,
                stderr=e.stderr or "",
            ) from e

    @staticmethod
    def _load_json(output: str, cmd: List[str]) -> List[Dict[str, Any]]:
        """Parse a JSON array or one JSON object per line."""
        text = output.strip()
        if not text:
            return []
        try:
            if text.startswith("["):
                data = json.loads(text)
                return [item for item in data if isinstance(item, dict)]
            return [json.loads(line) for line in text.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise EngineError(
                f"Malformed JSON from {' '.join(cmd)}: {e}", command=cmd, stderr=text[:200]
            ) from e

    @abstractmethod
    def _parse_container(self, item: Dict[str, Any]) -> ContainerRecord:
        """Convert one engine ps row."""
        pass

    @abstractmethod
    def _parse_image(self, item: Dict[str, Any]) -> EngineImage:
        """Convert one engine images row."""
        pass

    @property
    def _ps_args(self) -> List[str]:
        return ["ps", "-a", "--format", "json"]

    @property
    def _images_args(self) -> List[str]:
        return ["images", "--format", "json"]

    async def version(self) -> str:
        result = await self._run("--version")
        return result.stdout.strip()

    async def list_containers(self) -> List[ContainerRecord]:
        result = await self._run(*self._ps_args)
        items = self._load_json(result.stdout, [self.binary, *self._ps_args])
        return [self._parse_container(item) for item in items]

    async def list_images(self) -> List[EngineImage]:
        result = await self._run(*self._images_args)
        items = self._load_json(result.stdout, [self.binary, *self._images_args])
        return [self._parse_image(item) for item in items]

    async def start(self, name: str) -> None:
        logger.info(f"Starting container {name}")
        await self._run("start", name)

    async def stop(self, name: str) -> None:
        logger.info(f"Stopping container {name}")
        await self._run("stop", name)

    async def restart(self, name: str) -> None:
        logger.info(f"Restarting container {name}")
        await self._run("restart", name)

    async def run_container(
        self,
        name: str,
        image: str,
        ports: Optional[List[PortMapping]] = None,
        env_file: Optional[Path] = None,
    ) -> str:
        args = ["run", "-d", "--name", name]
        for mapping in ports or []:
            args += ["-p", f"{mapping.host_port}:{mapping.container_port}/{mapping.protocol}"]
        if env_file is not None and env_file.exists():
            args += ["--env-file", str(env_file)]
        args.append(image)
        logger.info(f"Creating container {name} from image {image}")
        result = await self._run(*args)
        return result.stdout.strip()

    async def remove_container(
        self, name: str, force: bool = True, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        args = ["rm", name]
        if force:
            args.insert(1, "-f")
        logger.info(f"Removing container {name}")
        await self._run(*args, cancel_event=cancel_event)

    async def remove_image(
        self, ref: str, force: bool = False, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        args = ["rmi", ref]
        if force:
            args.insert(1, "-f")
        logger.info(f"Removing image {ref}")
        await self._run(*args, cancel_event=cancel_event)

    async def exec(self, name: str, command: List[str]) -> CommandResult:
        return await self._run("exec", name, *command)

    async def logs(self, name: str, tail: Optional[int] = None) -> str:
        args = ["logs"]
        if tail is not None:
            args += ["--tail", str(tail)]
        result = await self._run(*args, name)
        # Container output is split across both streams
        return result.stdout + result.stderr

    async def stream_logs(self, name: str, tail: Optional[int] = None) -> AsyncIterator[str]:
        cmd = [self.binary, "logs", "-f"]
        if tail is not None:
            cmd += ["--tail", str(tail)]
        cmd.append(name)
        logger.debug(f"Running command: {' '.join(cmd)}")
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            async for line in process.stdout:
                yield line.decode(errors="replace").rstrip("\n")
        finally:
            if process.returncode is None:
                process.terminate()
            await process.wait()

    def compose_base(self) -> List[str]:
        """Command prefix for compose operations."""
        return [self.binary, "compose"]

    async def compose_up(
        self,
        project_dir: Path,
        project_name: str,
        compose_file: str = "compose.yaml",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CommandResult:
        cmd = [
            *self.compose_base(),
            "-f", str(Path(project_dir) / compose_file),
            "-p", project_name,
            "up", "-d", "--build",
        ]
        logger.info(f"Building {project_name} with {' '.join(cmd[:2])}")
        try:
            return await run_command(
                cmd, timeout=self.build_timeout, cancel_event=cancel_event, cwd=str(project_dir)
            )
        except FileNotFoundError as e:
            raise EngineNotFoundError(f"{cmd[0]} is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise EngineError(f"Build timed out after {e.timeout}s", command=cmd) from e
        except subprocess.CalledProcessError as e:
            raise EngineError(
                f"Build of {project_name} failed with exit code {e.returncode}",
                command=cmd,
                returncode=e.returncode,
                stderr=e.stderr or "",
            ) from e
