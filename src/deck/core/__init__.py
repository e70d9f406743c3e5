"""Resource lifecycle orchestration."""

from deck.core.catalog import UnifiedResourceCatalog
from deck.core.cleanup import CascadingCleanupEngine
from deck.core.config import ConfigManager
from deck.core.directories import ResourceDirectoryManager
from deck.core.lifecycle import ContainerLifecycleStateMachine
from deck.core.permissions import ImagePermissionGuard
from deck.core.ports import PortConflictResolver
from deck.core.workflow import ThreeLayerWorkflow
from deck.core.workspace import Workspace

__all__ = [
    "UnifiedResourceCatalog",
    "CascadingCleanupEngine",
    "ConfigManager",
    "ResourceDirectoryManager",
    "ContainerLifecycleStateMachine",
    "ImagePermissionGuard",
    "PortConflictResolver",
    "ThreeLayerWorkflow",
    "Workspace",
]
