"""Pydantic models for configuration, resources and results."""

from deck.models.config import DeckConfig, EngineConfig, TemplateRepositoryConfig
from deck.models.resource import (
    BuildStatus,
    CompletenessResult,
    ImageMetadata,
    ResourceEntry,
    ResourceLayer,
)
from deck.models.container import ContainerRecord, ContainerStatus, EngineImage, PortMapping
from deck.models.ports import PortAllocation, PortCheckResult, ProcessInfo
from deck.models.catalog import (
    ResourceRelationship,
    ResourceStatus,
    UnifiedResource,
    UnifiedResourceList,
)
from deck.models.results import (
    BuildResult,
    CleaningOption,
    CleaningResult,
    CleaningStep,
    CleaningStrategy,
    OperationResult,
    ProgressEvent,
    StartMode,
    StartResult,
    SyncResult,
)

__all__ = [
    "DeckConfig",
    "EngineConfig",
    "TemplateRepositoryConfig",
    "BuildStatus",
    "CompletenessResult",
    "ImageMetadata",
    "ResourceEntry",
    "ResourceLayer",
    "ContainerRecord",
    "ContainerStatus",
    "EngineImage",
    "PortMapping",
    "PortAllocation",
    "PortCheckResult",
    "ProcessInfo",
    "ResourceRelationship",
    "ResourceStatus",
    "UnifiedResource",
    "UnifiedResourceList",
    "BuildResult",
    "CleaningOption",
    "CleaningResult",
    "CleaningStep",
    "CleaningStrategy",
    "OperationResult",
    "ProgressEvent",
    "StartMode",
    "StartResult",
    "SyncResult",
]
