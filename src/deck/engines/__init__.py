"""Container engine adapters."""

from deck.engines.base import CliContainerEngine, ContainerEngine
from deck.engines.docker import DockerEngine
from deck.engines.fixture import FixtureEngine
from deck.engines.podman import PodmanEngine
from deck.engines.registry import EngineRegistry

__all__ = [
    "ContainerEngine",
    "CliContainerEngine",
    "PodmanEngine",
    "DockerEngine",
    "FixtureEngine",
    "EngineRegistry",
]
