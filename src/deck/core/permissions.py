"""Write protection for Images-layer entries."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from deck.exceptions import PermissionViolation
from deck.models.config import DeckConfig
from deck.models.resource import ResourceLayer
from deck.utils.envfile import update_env


logger = logging.getLogger(__name__)

PROTECTED_FILES = {
    "compose.yaml",
    "compose.yml",
    "docker-compose.yaml",
    "docker-compose.yml",
    "Dockerfile",
    "Dockerfile.dev",
    "Dockerfile.prod",
    ".dockerignore",
    "metadata.json",
}

RUNTIME_VARIABLES = {
    "DEV_PORT",
    "DEBUG_PORT",
    "WEB_PORT",
    "HTTPS_PORT",
    "ANDROID_DEBUG_PORT",
    "PROJECT_NAME",
    "WORKSPACE_PATH",
    "CONTAINER_NAME",
    "NETWORK_NAME",
    "VOLUME_PREFIX",
}


class ImagePermissionGuard:
    """Rejects edits that would break an Images entry's build record."""

    def __init__(self, config: DeckConfig):
        """Initialize permission guard."""
        self.config = config
        self.protected = set(PROTECTED_FILES) | {
            config.files.compose_file,
            config.files.build_file,
            config.files.metadata_file,
        }

    def _image_relative(self, path: Path) -> Optional[Path]:
        images_dir = self.config.images_dir.resolve()
        try:
            return Path(path).resolve().relative_to(images_dir)
        except ValueError:
            return None

    def is_protected(self, path: Path) -> bool:
        """Whether ``path`` is a protected file inside an Images entry."""
        relative = self._image_relative(path)
        if relative is None or len(relative.parts) < 2:
            return False
        return relative.parts[-1] in self.protected

    def check_modification(self, path: Path):
        """Raise if ``path`` may not be modified."""
        if self.is_protected(path):
            raise PermissionViolation(
                path,
                "Build files of an image are read-only",
                hint="edit the Custom configuration and rebuild instead",
            )

    def check_env_update(self, image_name: str, values: Dict[str, str]):
        """Raise if any key is not a runtime variable."""
        env_path = self.config.images_dir / image_name / self.config.files.env_file
        blocked = sorted(key for key in values if key not in RUNTIME_VARIABLES)
        if blocked:
            raise PermissionViolation(
                env_path,
                f"Only runtime variables may change in an image ({', '.join(blocked)} refused)",
                hint=f"allowed: {', '.join(sorted(RUNTIME_VARIABLES))}",
            )

    def check_rename(self, layer: ResourceLayer, name: str):
        """Raise when renaming an Images entry."""
        if ResourceLayer(layer) == ResourceLayer.IMAGES:
            raise PermissionViolation(
                self.config.images_dir / name,
                "Image directories cannot be renamed; the name links them to engine images and containers",
                hint="use 'deck clean' to remove it",
            )

    async def update_env(self, image_name: str, values: Dict[str, str]) -> Path:
        """Change runtime variables in an image's env file after a backup."""
        self.check_env_update(image_name, values)
        env_path = self.config.images_dir / image_name / self.config.files.env_file
        await asyncio.to_thread(update_env, env_path, values, True)
        logger.info(f"Updated {', '.join(values)} in {env_path}")
        return env_path
