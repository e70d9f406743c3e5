"""On-disk three-layer resource tree."""

import asyncio
import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from deck.exceptions import FileSystemError
from deck.models.config import DeckConfig
from deck.models.resource import (
    BuildStatus,
    CompletenessResult,
    ImageMetadata,
    ResourceEntry,
    ResourceLayer,
)


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M"
TIMESTAMPED_NAME = re.compile(r"^(?P<base>.+)-(?P<stamp>\d{8}-\d{4})(?:-(?P<seq>\d+))?$")

GITIGNORE_RULES = [
    "# Deck development environments",
    ".deck/templates/",
    ".deck/images/",
    "# .deck/custom/ stays under version control",
]

METADATA_KEYS = {
    "IMAGE_NAME": "image_name",
    "CREATED_AT": "created_at",
    "CREATED_BY": "created_by",
    "SOURCE_CONFIG": "source_config",
    "BUILD_STATUS": "build_status",
    "LAST_STARTED": "last_started",
}


def split_timestamped_name(name: str) -> Optional[tuple]:
    """Split ``base-yyyyMMdd-HHmm[-n]`` into ``(base, datetime)``."""
    match = TIMESTAMPED_NAME.match(name)
    if not match:
        return None
    try:
        stamp = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return match.group("base"), stamp


class ResourceDirectoryManager:
    """Owns the ``.deck/{templates,custom,images}`` tree and image metadata."""

    def __init__(self, config: DeckConfig, clock: Callable[[], datetime] = datetime.now):
        """Initialize directory manager."""
        self.config = config
        self.clock = clock
        self.files = config.files

    def layer_dir(self, layer: ResourceLayer) -> Path:
        """Directory holding every entry of a layer."""
        return {
            ResourceLayer.TEMPLATES: self.config.templates_dir,
            ResourceLayer.CUSTOM: self.config.custom_dir,
            ResourceLayer.IMAGES: self.config.images_dir,
        }[ResourceLayer(layer)]

    def entry_path(self, layer: ResourceLayer, name: str) -> Path:
        """Path of a named entry."""
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Invalid resource name: {name!r}")
        return self.layer_dir(layer) / name

    async def initialize(self) -> List[Path]:
        """Create the layer directories and add Deck rules to .gitignore."""
        return await asyncio.to_thread(self._initialize)

    def _initialize(self) -> List[Path]:
        created = []
        for layer in ResourceLayer:
            path = self.layer_dir(layer)
            if not path.exists():
                self._guard(path, lambda p=path: p.mkdir(parents=True, exist_ok=True))
                created.append(path)
                logger.info(f"Created {path}")
        self._update_gitignore()
        return created

    def _update_gitignore(self):
        path = Path(self.config.project_root) / ".gitignore"
        existing = self._guard(path, path.read_text) if path.exists() else ""
        if ".deck/templates/" in existing:
            return
        content = existing
        if content and not content.endswith("\n"):
            content += "\n"
        if content:
            content += "\n"
        content += "\n".join(GITIGNORE_RULES) + "\n"
        self._guard(path, lambda: path.write_text(content))
        logger.info(f"Updated {path}")

    async def list_entries(self, layer: ResourceLayer) -> List[ResourceEntry]:
        """List every entry of a layer with its completeness."""
        return await asyncio.to_thread(self._list_entries, ResourceLayer(layer))

    def _list_entries(self, layer: ResourceLayer) -> List[ResourceEntry]:
        root = self.layer_dir(layer)
        if not root.exists():
            return []
        try:
            children = sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith("."))
        except OSError as e:
            raise FileSystemError(root, e.strerror or str(e)) from e

        entries = []
        for path in children:
            completeness = self._check_completeness(path)
            entries.append(ResourceEntry(
                name=path.name,
                layer=layer,
                path=path,
                created_at=self._created_at(path),
                required_files=list(self.files.required),
                missing_files=completeness.missing_files,
            ))
        return entries

    def _created_at(self, path: Path) -> Optional[datetime]:
        parsed = split_timestamped_name(path.name)
        if parsed:
            return parsed[1]
        try:
            return datetime.fromtimestamp(path.stat().st_mtime)
        except OSError:
            return None

    async def validate_completeness(self, path: Path) -> CompletenessResult:
        """Check a directory for the env, compose and build files."""
        return await asyncio.to_thread(self._check_completeness, Path(path))

    def _check_completeness(self, path: Path) -> CompletenessResult:
        missing = [name for name in self.files.required if not (path / name).is_file()]
        return CompletenessResult(is_complete=not missing, missing_files=missing)

    def generate_image_name(self, base_name: str, now: Optional[datetime] = None) -> str:
        """Name an Images entry ``{base}-{yyyyMMdd-HHmm}``."""
        stamp = (now or self.clock()).strftime(TIMESTAMP_FORMAT)
        return f"{base_name}-{stamp}"

    def _unique_image_name(self, base_name: str) -> str:
        candidate = self.generate_image_name(base_name)
        images_dir = self.layer_dir(ResourceLayer.IMAGES)
        if not (images_dir / candidate).exists():
            return candidate
        counter = 1
        while (images_dir / f"{candidate}-{counter}").exists():
            counter += 1
        return f"{candidate}-{counter}"

    def _unique_custom_name(self, template_name: str) -> str:
        custom_dir = self.layer_dir(ResourceLayer.CUSTOM)
        base_name = f"{template_name}-custom"
        name = base_name
        counter = 1
        while (custom_dir / name).exists():
            name = f"{base_name}-{counter:02d}"
            counter += 1
        return name

    async def promote(
        self,
        source_layer: ResourceLayer,
        name: str,
        target_layer: ResourceLayer,
        target_name: Optional[str] = None,
    ) -> str:
        """Copy an entry into the next layer and return the new name.

        Templates become Custom entries named ``{name}-custom`` (then
        ``-01``, ``-02``...), Custom entries become timestamped Images
        entries. The source directory is never moved or deleted.
        """
        source_layer = ResourceLayer(source_layer)
        target_layer = ResourceLayer(target_layer)
        allowed = {
            (ResourceLayer.TEMPLATES, ResourceLayer.CUSTOM),
            (ResourceLayer.CUSTOM, ResourceLayer.IMAGES),
        }
        if (source_layer, target_layer) not in allowed:
            raise ValueError(
                f"Cannot promote from {source_layer.value} to {target_layer.value}"
            )
        return await asyncio.to_thread(
            self._promote, source_layer, name, target_layer, target_name
        )

    def _promote(self, source_layer, name, target_layer, target_name):
        source = self.entry_path(source_layer, name)
        if not source.is_dir():
            raise FileSystemError(source, "Resource directory not found")

        if target_name:
            new_name = target_name
        elif target_layer == ResourceLayer.IMAGES:
            new_name = self._unique_image_name(name)
        else:
            new_name = self._unique_custom_name(name)

        target = self.entry_path(target_layer, new_name)
        if target.exists():
            raise FileSystemError(target, "Resource directory already exists")

        self._guard(target.parent, lambda: target.parent.mkdir(parents=True, exist_ok=True))
        try:
            shutil.copytree(source, target, symlinks=True)
        except shutil.Error as e:
            raise FileSystemError(target, f"Copy incomplete: {e}") from e
        except OSError as e:
            raise FileSystemError(e.filename or target, e.strerror or str(e)) from e

        logger.info(f"Promoted {source_layer.value}/{name} to {target_layer.value}/{new_name}")
        return new_name

    async def delete_entry(self, layer: ResourceLayer, name: str) -> Path:
        """Remove an entry directory."""
        path = self.entry_path(layer, name)

        def _delete():
            if not path.exists():
                raise FileSystemError(path, "Resource directory not found")
            self._guard(path, lambda: shutil.rmtree(path))

        await asyncio.to_thread(_delete)
        logger.info(f"Deleted {path}")
        return path

    def metadata_path(self, image_name: str) -> Path:
        return self.entry_path(ResourceLayer.IMAGES, image_name) / self.files.metadata_file

    async def read_metadata(self, image_name: str) -> Optional[ImageMetadata]:
        """Read ``.deck-metadata`` of an Images entry, None when absent."""
        path = self.metadata_path(image_name)
        return await asyncio.to_thread(self._read_metadata, path, image_name)

    def _read_metadata(self, path: Path, image_name: str) -> Optional[ImageMetadata]:
        if not path.exists():
            return None
        try:
            text = path.read_text()
        except OSError as e:
            raise FileSystemError(path, e.strerror or str(e)) from e

        values: Dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            field = METADATA_KEYS.get(key.strip())
            if field and value.strip():
                values[field] = value.strip()

        values.setdefault("image_name", image_name)
        if "created_at" not in values:
            parsed = split_timestamped_name(image_name)
            values["created_at"] = parsed[1] if parsed else datetime.fromtimestamp(path.stat().st_mtime)
        try:
            return ImageMetadata(**values)
        except ValueError as e:
            logger.warning(f"Ignoring malformed metadata in {path}: {e}")
            return None

    async def write_metadata(self, metadata: ImageMetadata) -> Path:
        """Persist metadata as flat ``KEY=value`` lines."""
        path = self.metadata_path(metadata.image_name)
        lines = []
        for key, field in METADATA_KEYS.items():
            value = getattr(metadata, field)
            if value is None:
                value = ""
            elif isinstance(value, datetime):
                value = value.isoformat(timespec="seconds")
            elif isinstance(value, BuildStatus):
                value = value.value
            lines.append(f"{key}={value}")

        def _write():
            if not path.parent.is_dir():
                raise FileSystemError(path.parent, "Resource directory not found")
            tmp = path.with_name(path.name + ".tmp")
            self._guard(path, lambda: tmp.write_text("\n".join(lines) + "\n"))
            self._guard(path, lambda: os.replace(tmp, path))

        await asyncio.to_thread(_write)
        logger.debug(f"Wrote metadata for {metadata.image_name}")
        return path

    async def update_metadata(self, image_name: str, **changes) -> ImageMetadata:
        """Read, change and write back an entry's metadata."""
        metadata = await self.read_metadata(image_name)
        if metadata is None:
            metadata = ImageMetadata(image_name=image_name, created_at=self.clock())
        data = metadata.dict()
        data.update(changes)
        metadata = ImageMetadata(**data)
        await self.write_metadata(metadata)
        return metadata

    @staticmethod
    def _guard(path: Path, operation: Callable[[], object]):
        """Run a filesystem call, converting OSError into FileSystemError."""
        try:
            return operation()
        except OSError as e:
            raise FileSystemError(e.filename or path, e.strerror or str(e)) from e
