"""Result objects returned by core operations."""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from deck.models.container import ContainerStatus
from deck.models.ports import PortAllocation
from deck.models.resource import ResourceLayer


class OperationResult(BaseModel):
    """Outcome of a core operation with advisory follow-up commands."""
    success: bool
    message: str = Field(default="")
    hints: List[str] = Field(default_factory=list)


class ProgressEvent(BaseModel):
    """One step of a multi-step operation, for the CLI to render."""
    step: int
    total: int
    description: str

    def __str__(self) -> str:
        return f"[{self.step}/{self.total}] {self.description}"


class StartMode(str, Enum):
    """Which branch of smart start was taken."""
    ATTACHED = "attached"
    RESTARTED = "restarted"
    CREATED = "created"
    REBUILT = "rebuilt"
    FAILED = "failed"


class StartResult(OperationResult):
    """Outcome of a smart start."""
    image_name: str = Field(default="")
    container_name: Optional[str] = None
    mode: StartMode = Field(default=StartMode.FAILED)
    status: ContainerStatus = Field(default=ContainerStatus.UNKNOWN)
    allocations: List[PortAllocation] = Field(default_factory=list)
    engine_diagnostic: Optional[str] = None
    # Set when a container was removed to republish its ports
    removed_container: Optional[str] = None


class BuildResult(OperationResult):
    """Outcome of the build pipeline."""
    image_name: str = Field(default="")
    output: str = Field(default="")


class SyncResult(OperationResult):
    """Outcome of a template sync."""
    templates: List[str] = Field(default_factory=list)
    source_url: Optional[str] = None


class CleaningStrategy(str, Enum):
    """Kinds of cleanup the engine can execute."""
    REFUSED = "refused"
    DIRECTORY_ONLY = "directory_only"
    DIRECTORY_AND_CONTAINERS = "directory_and_containers"
    STANDARD = "standard"
    STANDARD_WITH_BUILD_CACHE = "standard_with_build_cache"
    KEEP_LATEST = "keep_latest"


class CleaningOption(BaseModel):
    """A cleanup choice offered for a resource."""
    strategy: CleaningStrategy
    layer: ResourceLayer
    resource_id: Optional[str] = None
    description: str
    recommended: bool = Field(default=True)
    warning: Optional[str] = None
    keep_count: Optional[int] = None
    # Everything the option would delete, filled in at computation time
    targets: List[str] = Field(default_factory=list)
    hints: List[str] = Field(default_factory=list)

    @property
    def is_refusal(self) -> bool:
        return self.strategy == CleaningStrategy.REFUSED


class CleaningStep(BaseModel):
    """One attempted deletion."""
    kind: str
    target: str
    success: bool
    error: Optional[str] = None


class CleaningResult(OperationResult):
    """Outcome of a cleanup, step by step."""
    cleaned_resources: List[str] = Field(default_factory=list)
    skipped_resources: List[str] = Field(default_factory=list)
    steps: List[CleaningStep] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    refused: bool = Field(default=False)
    blocked_by: Optional[str] = None
    cancelled: bool = Field(default=False)
    dry_run: bool = Field(default=False)
