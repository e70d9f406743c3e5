"""Contracts for external collaborators and their default implementations."""

import asyncio
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar, Union

from deck.engines.base import ContainerEngine
from deck.exceptions import EngineError
from deck.models.results import BuildResult, SyncResult
from deck.utils.process import run_command


logger = logging.getLogger(__name__)

T = TypeVar("T")

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]
SelectCallback = Callable[[Sequence[T]], Union[Optional[T], Awaitable[Optional[T]]]]


async def ask(callback: Callable, *args):
    """Call a sync or async prompt callback and return its answer."""
    answer = callback(*args)
    if asyncio.iscoroutine(answer) or isinstance(answer, asyncio.Future):
        answer = await answer
    return answer


class TemplateSyncClient(Protocol):
    """Fetches templates into a directory."""

    async def sync_templates(
        self,
        repo_url: str,
        branch: str,
        target_dir: Path,
        fallback_url: Optional[str] = None,
    ) -> SyncResult:
        ...


class BuildPipeline(Protocol):
    """Builds and starts an Images entry from its compose file."""

    async def build(
        self,
        compose_path: Path,
        project_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BuildResult:
        ...


class ComposeBuildPipeline:
    """Build pipeline running ``<engine> compose up -d --build``."""

    def __init__(self, engine: ContainerEngine):
        """Initialize build pipeline."""
        self.engine = engine

    async def build(
        self,
        compose_path: Path,
        project_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BuildResult:
        compose_path = Path(compose_path)
        project_name = project_name or compose_path.parent.name
        hint = " ".join([
            self.engine.name, "compose", "-f", str(compose_path), "-p", project_name, "up", "-d", "--build"
        ])
        try:
            result = await self.engine.compose_up(
                compose_path.parent, project_name, compose_path.name, cancel_event=cancel_event
            )
        except EngineError as e:
            logger.error(f"Build of {project_name} failed: {e}")
            return BuildResult(
                success=False,
                message=str(e),
                image_name=project_name,
                output=e.stderr,
                hints=[hint],
            )
        return BuildResult(
            success=True,
            message=f"Built {project_name}",
            image_name=project_name,
            output=result.stdout + result.stderr,
            hints=[hint],
        )


class GitTemplateSyncClient:
    """Template sync through a shallow ``git clone``."""

    def __init__(self, timeout: int = 300):
        """Initialize git sync client."""
        self.timeout = timeout

    async def sync_templates(
        self,
        repo_url: str,
        branch: str,
        target_dir: Path,
        fallback_url: Optional[str] = None,
    ) -> SyncResult:
        target_dir = Path(target_dir)
        urls = [url for url in (repo_url, fallback_url) if url]
        errors: List[str] = []

        with tempfile.TemporaryDirectory(prefix="deck-templates-") as tmp:
            for url in urls:
                checkout = Path(tmp) / f"clone-{len(errors)}"
                cmd = ["git", "clone", "--depth", "1", "--branch", branch, url, str(checkout)]
                try:
                    await run_command(cmd, timeout=self.timeout)
                except FileNotFoundError:
                    return SyncResult(success=False, message="git is not installed", hints=["install git"])
                except subprocess.TimeoutExpired:
                    errors.append(f"{url}: timed out after {self.timeout}s")
                    continue
                except subprocess.CalledProcessError as e:
                    errors.append(f"{url}: {(e.stderr or '').strip()}")
                    continue

                names = await asyncio.to_thread(self._install, checkout, target_dir)
                logger.info(f"Synced {len(names)} templates from {url}")
                return SyncResult(
                    success=True,
                    message=f"Synced {len(names)} templates from {url}",
                    templates=names,
                    source_url=url,
                )

        return SyncResult(
            success=False,
            message="Template sync failed: " + "; ".join(errors),
            hints=[f"git clone --depth 1 --branch {branch} {urls[0]}"] if urls else [],
        )

    @staticmethod
    def _install(checkout: Path, target_dir: Path) -> List[str]:
        source = checkout / "templates"
        if not source.is_dir():
            source = checkout
        target_dir.mkdir(parents=True, exist_ok=True)
        names = []
        for template in sorted(source.iterdir()):
            if not template.is_dir() or template.name.startswith("."):
                continue
            destination = target_dir / template.name
            # Templates are always overwritten on sync
            if destination.exists():
                shutil.rmtree(destination)
            shutil.copytree(template, destination, symlinks=True)
            names.append(template.name)
        return names
