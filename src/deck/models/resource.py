"""Directory-backed resource models."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field


class ResourceLayer(str, Enum):
    """The three configuration layers."""
    TEMPLATES = "templates"
    CUSTOM = "custom"
    IMAGES = "images"


class BuildStatus(str, Enum):
    """Build state of an Images entry."""
    PREPARED = "Prepared"
    BUILDING = "Building"
    BUILT = "Built"
    FAILED = "Failed"


class CompletenessResult(BaseModel):
    """Outcome of checking a directory for its required files."""
    is_complete: bool
    missing_files: List[str] = Field(default_factory=list)


class ResourceEntry(BaseModel):
    """One directory under templates, custom or images."""
    name: str = Field(..., description="Directory name")
    layer: ResourceLayer
    path: Path
    created_at: Optional[datetime] = None
    required_files: List[str] = Field(default_factory=list)
    missing_files: List[str] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_files


class ImageMetadata(BaseModel):
    """Metadata persisted alongside an Images entry."""
    image_name: str
    created_at: datetime
    created_by: str = Field(default="deck")
    source_config: Optional[str] = None
    build_status: BuildStatus = Field(default=BuildStatus.PREPARED)
    last_started: Optional[datetime] = None
