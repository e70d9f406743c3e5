"""Unified resource catalog models."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from deck.models.resource import ResourceLayer


class ResourceStatus(str, Enum):
    """Merged status of a catalog row."""
    READY = "Ready"
    BUILDING = "Building"
    RUNNING = "Running"
    STOPPED = "Stopped"
    UNAVAILABLE = "Unavailable"


class ResourceRelationship(BaseModel):
    """Name-based edges from a directory entry to engine objects."""
    entry_name: str
    image_ref: Optional[str] = None
    container_names: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.image_ref is None and not self.container_names


class UnifiedResource(BaseModel):
    """One row of the merged view."""
    name: str
    layer: ResourceLayer
    status: ResourceStatus = Field(default=ResourceStatus.READY)
    related_image_ref: Optional[str] = None
    related_container_names: List[str] = Field(default_factory=list)
    is_available: bool = Field(default=True)
    unavailable_reason: Optional[str] = None


class UnifiedResourceList(BaseModel):
    """Catalog result grouped by layer."""
    images: List[UnifiedResource] = Field(default_factory=list)
    custom: List[UnifiedResource] = Field(default_factory=list)
    templates: List[UnifiedResource] = Field(default_factory=list)
    relationships: List[ResourceRelationship] = Field(default_factory=list)

    def all(self) -> List[UnifiedResource]:
        """All rows, images first."""
        return [*self.images, *self.custom, *self.templates]

    def find(self, layer: ResourceLayer, name: str) -> Optional[UnifiedResource]:
        """Find a row by layer and directory name."""
        rows = {
            ResourceLayer.IMAGES: self.images,
            ResourceLayer.CUSTOM: self.custom,
            ResourceLayer.TEMPLATES: self.templates,
        }[layer]
        for row in rows:
            if row.name == name:
                return row
        return None

    def relationship_for(self, name: str) -> Optional[ResourceRelationship]:
        """Relationship recorded for an Images entry."""
        for relationship in self.relationships:
            if relationship.entry_name == name:
                return relationship
        return None
