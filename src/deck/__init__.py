"""
Deck - development environment orchestration for Podman and Docker.

Maintains a three-layer configuration model (Templates, Custom, Images)
under ``.deck/`` and drives the matching engine images and containers
through smart start and cascading cleanup.
"""

__version__ = "1.0.0"
__author__ = "Deck Development Team"

# Re-export key components for easier access
from deck.models.config import DeckConfig
from deck.models.resource import ResourceEntry, ResourceLayer, ImageMetadata
from deck.models.container import ContainerRecord, ContainerStatus
from deck.models.catalog import UnifiedResource, UnifiedResourceList

__all__ = [
    "DeckConfig",
    "ResourceEntry",
    "ResourceLayer",
    "ImageMetadata",
    "ContainerRecord",
    "ContainerStatus",
    "UnifiedResource",
    "UnifiedResourceList",
]
