"""Wiring of the core components for one project."""

import logging
from pathlib import Path
from typing import Optional

from deck.core.catalog import UnifiedResourceCatalog
from deck.core.cleanup import CascadingCleanupEngine
from deck.core.collaborators import BuildPipeline, ComposeBuildPipeline, GitTemplateSyncClient, TemplateSyncClient
from deck.core.config import ConfigManager
from deck.core.directories import ResourceDirectoryManager
from deck.core.lifecycle import ContainerLifecycleStateMachine
from deck.core.permissions import ImagePermissionGuard
from deck.core.ports import PortConflictResolver
from deck.core.workflow import ThreeLayerWorkflow
from deck.engines.base import ContainerEngine
from deck.engines.registry import EngineRegistry
from deck.models.config import DeckConfig


logger = logging.getLogger(__name__)


class Workspace:
    """All components of a project, built from one configuration value."""

    def __init__(
        self,
        config: DeckConfig,
        engine: ContainerEngine,
        build_pipeline: Optional[BuildPipeline] = None,
        sync_client: Optional[TemplateSyncClient] = None,
        ports: Optional[PortConflictResolver] = None,
    ):
        """Initialize workspace."""
        self.config = config
        self.engine = engine
        self.directories = ResourceDirectoryManager(config)
        self.guard = ImagePermissionGuard(config)
        self.ports = ports or PortConflictResolver(config)
        self.build_pipeline = build_pipeline or ComposeBuildPipeline(engine)
        self.lifecycle = ContainerLifecycleStateMachine(
            config, engine, self.directories, self.ports, self.build_pipeline, self.guard
        )
        self.catalog = UnifiedResourceCatalog(config, engine, self.directories)
        self.cleanup = CascadingCleanupEngine(config, engine, self.directories, self.catalog)
        self.workflow = ThreeLayerWorkflow(
            config,
            self.directories,
            self.guard,
            self.lifecycle,
            sync_client or GitTemplateSyncClient(),
        )

    @classmethod
    async def open(cls, project_root: Path, engine: Optional[str] = None) -> "Workspace":
        """Load configuration for a project root and select the engine."""
        config = await ConfigManager(project_root).load()
        if engine:
            config.engine.engine = engine.lower()
        selected = await EngineRegistry().initialize(config)
        return cls(config, selected)
