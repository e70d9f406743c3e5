"""Engine detection and selection."""

import logging
from typing import Dict, Optional, Type

from deck.engines.base import ContainerEngine
from deck.engines.docker import DockerEngine
from deck.engines.fixture import FixtureEngine
from deck.engines.podman import PodmanEngine
from deck.exceptions import EngineNotFoundError
from deck.models.config import DeckConfig
from deck.utils.process import command_exists


logger = logging.getLogger(__name__)


class EngineRegistry:
    """Registry for selecting the container engine once at startup."""

    # Probe order for "auto": Podman preferred, Docker fallback
    DETECTION_ORDER = ("podman", "docker")

    def __init__(self):
        """Initialize engine registry."""
        self._engine_classes: Dict[str, Type[ContainerEngine]] = {
            "podman": PodmanEngine,
            "docker": DockerEngine,
            "fixture": FixtureEngine,
        }
        self._engine: Optional[ContainerEngine] = None

    async def detect(self) -> str:
        """Return the name of the first installed engine."""
        for name in self.DETECTION_ORDER:
            if await command_exists(name):
                logger.debug(f"Detected container engine: {name}")
                return name
        raise EngineNotFoundError()

    async def initialize(self, config: DeckConfig) -> ContainerEngine:
        """Select and instantiate the configured engine."""
        name = config.engine.engine
        if name == "auto":
            name = await self.detect()
        if name not in self._engine_classes:
            raise ValueError(f"Unknown container engine: {name}")

        engine_class = self._engine_classes[name]
        if engine_class is FixtureEngine:
            self._engine = FixtureEngine(default_suffix=config.environments.default_suffix)
        else:
            self._engine = engine_class(
                timeout=config.engine.command_timeout,
                build_timeout=config.engine.build_timeout,
            )
        logger.info(f"Using container engine: {name}")
        return self._engine

    def get_engine(self) -> Optional[ContainerEngine]:
        """Get the selected engine."""
        return self._engine

    def list_engines(self) -> list[str]:
        """List known engine names."""
        return list(self._engine_classes.keys())
