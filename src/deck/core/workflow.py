"""Template to Custom to Images flows."""

import asyncio
import getpass
import logging
from typing import Optional

from deck.core.collaborators import ConfirmCallback, TemplateSyncClient
from deck.core.directories import ResourceDirectoryManager
from deck.core.lifecycle import ContainerLifecycleStateMachine, ProgressCallback
from deck.core.permissions import ImagePermissionGuard
from deck.exceptions import FileSystemError, PermissionViolation
from deck.models.config import DeckConfig
from deck.models.resource import BuildStatus, ImageMetadata, ResourceLayer
from deck.models.results import OperationResult, StartResult, SyncResult
from deck.utils.envfile import update_env


logger = logging.getLogger(__name__)


class ThreeLayerWorkflow:
    """Moves configurations between layers and starts the result."""

    def __init__(
        self,
        config: DeckConfig,
        directories: ResourceDirectoryManager,
        guard: ImagePermissionGuard,
        lifecycle: Optional[ContainerLifecycleStateMachine],
        sync_client: TemplateSyncClient,
    ):
        """Initialize workflow."""
        self.config = config
        self.directories = directories
        self.guard = guard
        self.lifecycle = lifecycle
        self.sync_client = sync_client

    async def sync_templates(self) -> SyncResult:
        """Refresh ``.deck/templates`` from the configured repository."""
        repo = self.config.templates
        logger.info(f"Syncing templates from {repo.repository_url} ({repo.branch})")
        return await self.sync_client.sync_templates(
            repo.repository_url,
            repo.branch,
            self.config.templates_dir,
            fallback_url=repo.fallback_url,
        )

    async def create_custom_from_template(
        self, template: str, name: Optional[str] = None
    ) -> OperationResult:
        """Copy a template into Custom and point PROJECT_NAME at the copy."""
        try:
            custom_name = await self.directories.promote(
                ResourceLayer.TEMPLATES, template, ResourceLayer.CUSTOM, target_name=name
            )
            env_path = self.directories.entry_path(ResourceLayer.CUSTOM, custom_name) / self.config.files.env_file
            await asyncio.to_thread(update_env, env_path, {"PROJECT_NAME": custom_name}, False)
        except FileSystemError as e:
            return OperationResult(success=False, message=str(e))

        path = self.directories.entry_path(ResourceLayer.CUSTOM, custom_name)
        return OperationResult(
            success=True,
            message=f"Created custom configuration {custom_name}",
            hints=[f"edit {path}", f"deck build {custom_name}"],
        )

    async def build_from_custom(
        self,
        custom_name: str,
        progress: Optional[ProgressCallback] = None,
        confirm: Optional[ConfirmCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StartResult:
        """Promote a Custom configuration to a new Images entry and start it."""
        if self.lifecycle is None:
            raise RuntimeError("Building requires a container engine")
        source = self.directories.entry_path(ResourceLayer.CUSTOM, custom_name)
        completeness = await self.directories.validate_completeness(source)
        if not completeness.is_complete:
            return StartResult(
                success=False,
                message=f"{custom_name} is missing {', '.join(completeness.missing_files)} in {source}",
            )

        try:
            image_name = await self.directories.promote(
                ResourceLayer.CUSTOM, custom_name, ResourceLayer.IMAGES
            )
            await self.guard.update_env(image_name, {"PROJECT_NAME": image_name})
            await self.directories.write_metadata(ImageMetadata(
                image_name=image_name,
                created_at=self.directories.clock(),
                created_by=_current_user(),
                source_config=str(source),
                build_status=BuildStatus.PREPARED,
            ))
        except (FileSystemError, PermissionViolation) as e:
            return StartResult(success=False, message=str(e))

        logger.info(f"Prepared image configuration {image_name} from {custom_name}")
        return await self.lifecycle.smart_start(
            image_name, progress=progress, confirm=confirm, cancel_event=cancel_event
        )


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "deck"
