"""Merged view of directory entries and engine objects."""

import asyncio
import logging
from typing import List, Optional, Tuple

from deck.core.directories import ResourceDirectoryManager
from deck.engines.base import ContainerEngine
from deck.models.catalog import (
    ResourceRelationship,
    ResourceStatus,
    UnifiedResource,
    UnifiedResourceList,
)
from deck.models.config import DeckConfig
from deck.models.container import ContainerRecord, EngineImage
from deck.models.resource import BuildStatus, ResourceEntry, ResourceLayer


logger = logging.getLogger(__name__)


class UnifiedResourceCatalog:
    """Correlates Deck directories with engine images and containers by name.

    Building the catalog only reads; it never touches the engine's or the
    filesystem's state and may be called as often as the caller likes.
    """

    def __init__(
        self,
        config: DeckConfig,
        engine: ContainerEngine,
        directories: ResourceDirectoryManager,
    ):
        """Initialize resource catalog."""
        self.config = config
        self.engine = engine
        self.directories = directories

    @property
    def suffixes(self) -> List[str]:
        """Environment suffixes in matching order, without duplicates."""
        ordered = []
        for suffix in [*self.config.environments.suffixes, *self.config.environments.production_suffixes]:
            if suffix not in ordered:
                ordered.append(suffix)
        return ordered

    async def build_catalog(self, env_filter: Optional[str] = None) -> UnifiedResourceList:
        """Assemble the three-layer view, optionally filtered by name prefix."""
        images_entries, custom_entries, template_entries, engine_images, containers = (
            await asyncio.gather(
                self.directories.list_entries(ResourceLayer.IMAGES),
                self.directories.list_entries(ResourceLayer.CUSTOM),
                self.directories.list_entries(ResourceLayer.TEMPLATES),
                self.engine.list_images(),
                self.engine.list_containers(),
            )
        )

        prefix = None
        if env_filter and env_filter.strip().lower() != "unknown":
            prefix = f"{env_filter.strip()}-"

        def _keep(entry: ResourceEntry) -> bool:
            return prefix is None or entry.name.startswith(prefix)

        result = UnifiedResourceList()
        for entry in images_entries:
            if not _keep(entry):
                continue
            relationship = self.correlate(entry.name, engine_images, containers)
            result.relationships.append(relationship)
            result.images.append(await self._image_row(entry, relationship, containers))

        result.custom = [self._plain_row(entry) for entry in custom_entries if _keep(entry)]
        result.templates = [self._plain_row(entry) for entry in template_entries if _keep(entry)]

        logger.debug(
            f"Catalog: {len(result.images)} images, {len(result.custom)} custom, "
            f"{len(result.templates)} templates"
        )
        return result

    def match_containers(self, name: str, containers: List[ContainerRecord]) -> List[ContainerRecord]:
        """Containers named exactly ``name`` or ``{name}-{suffix}``, exact first."""
        by_name = {record.name: record for record in containers}
        matched = []
        if name in by_name:
            matched.append(by_name[name])
        for suffix in self.suffixes:
            candidate = by_name.get(f"{name}-{suffix}")
            if candidate is not None:
                matched.append(candidate)
        return matched

    def match_image(
        self,
        name: str,
        images: List[EngineImage],
        related: List[ContainerRecord],
    ) -> Optional[str]:
        """First exact image match, else first suffix match, else the containers' image."""
        for image in images:
            if image.matches(name):
                return name
        for suffix in self.suffixes:
            candidate = f"{name}-{suffix}"
            for image in images:
                if image.matches(candidate):
                    return candidate
        for record in related:
            if record.image_ref:
                return record.image_ref
        return None

    def correlate(
        self,
        name: str,
        images: List[EngineImage],
        containers: List[ContainerRecord],
    ) -> ResourceRelationship:
        """Build the relationship edges for one Images entry."""
        related = self.match_containers(name, containers)
        return ResourceRelationship(
            entry_name=name,
            image_ref=self.match_image(name, images, related),
            container_names=[record.name for record in related],
        )

    async def _image_row(
        self,
        entry: ResourceEntry,
        relationship: ResourceRelationship,
        containers: List[ContainerRecord],
    ) -> UnifiedResource:
        row = self._plain_row(entry)
        row.related_image_ref = relationship.image_ref
        row.related_container_names = list(relationship.container_names)
        if not row.is_available:
            return row

        related = [c for c in containers if c.name in relationship.container_names]
        if any(record.is_running for record in related):
            row.status = ResourceStatus.RUNNING
        elif related:
            row.status = ResourceStatus.STOPPED
        else:
            metadata = await self.directories.read_metadata(entry.name)
            if metadata is not None and metadata.build_status == BuildStatus.BUILDING:
                row.status = ResourceStatus.BUILDING
        return row

    @staticmethod
    def _plain_row(entry: ResourceEntry) -> UnifiedResource:
        if entry.missing_files:
            return UnifiedResource(
                name=entry.name,
                layer=entry.layer,
                status=ResourceStatus.UNAVAILABLE,
                is_available=False,
                unavailable_reason=f"Missing files: {', '.join(entry.missing_files)}",
            )
        return UnifiedResource(name=entry.name, layer=entry.layer)

    async def locate(self, name: str) -> Optional[Tuple[ResourceLayer, UnifiedResource]]:
        """Find a resource by name, checking Images, then Custom, then Templates."""
        catalog = await self.build_catalog()
        for layer in (ResourceLayer.IMAGES, ResourceLayer.CUSTOM, ResourceLayer.TEMPLATES):
            row = catalog.find(layer, name)
            if row is not None:
                return layer, row
        return None
