"""Engine-reported container and image models."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class ContainerStatus(str, Enum):
    """Container state as reported by the engine."""
    NOT_EXISTS = "NotExists"
    CREATED = "Created"
    RUNNING = "Running"
    STOPPED = "Stopped"
    PAUSED = "Paused"
    RESTARTING = "Restarting"
    REMOVING = "Removing"
    DEAD = "Dead"
    UNKNOWN = "Unknown"

    @classmethod
    def from_engine(cls, state: Optional[str]) -> "ContainerStatus":
        """Map an engine state string onto a status."""
        if not state:
            return cls.UNKNOWN
        value = state.strip().lower()
        # Docker reports "Up 3 minutes" / "Exited (0) 2 hours ago" in Status
        if value.startswith("up"):
            return cls.RUNNING
        if value.startswith("exited"):
            return cls.STOPPED
        return _ENGINE_STATES.get(value, cls.UNKNOWN)


_ENGINE_STATES = {
    "running": ContainerStatus.RUNNING,
    "exited": ContainerStatus.STOPPED,
    "stopped": ContainerStatus.STOPPED,
    "created": ContainerStatus.CREATED,
    "configured": ContainerStatus.CREATED,
    "initialized": ContainerStatus.CREATED,
    "paused": ContainerStatus.PAUSED,
    "restarting": ContainerStatus.RESTARTING,
    "removing": ContainerStatus.REMOVING,
    "stopping": ContainerStatus.REMOVING,
    "dead": ContainerStatus.DEAD,
}


class PortMapping(BaseModel):
    """A published container port."""
    host_port: int
    container_port: int
    protocol: str = Field(default="tcp")
    host_ip: str = Field(default="")

    def __str__(self) -> str:
        return f"{self.host_port}->{self.container_port}/{self.protocol}"


class ContainerRecord(BaseModel):
    """A container as reported by the engine."""
    id: str
    name: str
    status: ContainerStatus = Field(default=ContainerStatus.UNKNOWN)
    image_ref: str = Field(default="")
    ports: List[PortMapping] = Field(default_factory=list)
    created: str = Field(default="")

    @property
    def is_running(self) -> bool:
        return self.status == ContainerStatus.RUNNING


class EngineImage(BaseModel):
    """An image as reported by the engine."""
    id: str
    names: List[str] = Field(default_factory=list)
    created: str = Field(default="")
    size: int = Field(default=0)

    def matches(self, name: str) -> bool:
        """Check whether any repository name of this image equals ``name``."""
        return name in self.short_names

    @property
    def short_names(self) -> List[str]:
        """Repository names stripped of registry host and tag."""
        result = []
        for ref in self.names:
            repo = ref.rsplit("/", 1)[-1]
            if ":" in repo:
                repo = repo.split(":", 1)[0]
            result.append(repo)
        return result
