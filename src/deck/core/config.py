"""Project configuration loading."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ruamel.yaml import YAML
from pydantic import ValidationError

from deck.models.config import DeckConfig


logger = logging.getLogger(__name__)


class ConfigManager:
    """Loads ``.deck/config.json`` for a project root."""

    def __init__(self, project_root: Path):
        """Initialize configuration manager."""
        self.project_root = Path(project_root)
        self.config_file = self.project_root / ".deck" / "config.json"
        self.yaml = YAML(typ="safe")
        self.config: Optional[DeckConfig] = None

    async def load(self) -> DeckConfig:
        """Load configuration, falling back to defaults when absent."""
        data: Dict[str, Any] = {}
        if self.config_file.exists():
            data = await self._read_config(self.config_file) or {}
            logger.debug(f"Loaded config: {self.config_file}")
        else:
            logger.debug(f"No config at {self.config_file}, using defaults")

        data["project_root"] = self.project_root
        try:
            self.config = DeckConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid config {self.config_file}: {e}")
            raise
        return self.config

    async def save(self, config: Optional[DeckConfig] = None) -> Path:
        """Write the configuration as JSON."""
        config = config or self.config or DeckConfig(project_root=self.project_root)
        data = json.loads(config.json(exclude={"project_root"}))
        await asyncio.to_thread(self._write_json, self.config_file, data)
        logger.info(f"Wrote config: {self.config_file}")
        return self.config_file

    async def _read_config(self, path: Path) -> Dict[str, Any]:
        """Read a JSON/YAML file without blocking the event loop."""
        def _read():
            with open(path) as f:
                return self.yaml.load(f)

        return await asyncio.to_thread(_read)

    @staticmethod
    def _write_json(path: Path, data: Dict[str, Any]):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2) + "\n")
