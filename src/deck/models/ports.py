"""Port conflict models."""

from typing import Optional
from pydantic import BaseModel, Field


class ProcessInfo(BaseModel):
    """A process holding a TCP port."""
    pid: int
    name: str = Field(default="unknown")
    command_line: str = Field(default="")
    stop_command: Optional[str] = None
    is_system_process: bool = Field(default=False)

    def __str__(self) -> str:
        return f"PID {self.pid} ({self.name})"


class PortCheckResult(BaseModel):
    """Result of probing one declared port."""
    port_name: str
    port: int
    is_available: bool
    process: Optional[ProcessInfo] = None
    suggested_port: Optional[int] = None

    @property
    def message(self) -> str:
        if self.is_available:
            return f"{self.port_name}={self.port} is free"
        holder = str(self.process) if self.process else "an unknown process"
        text = f"{self.port_name}={self.port} is in use by {holder}"
        if self.suggested_port:
            text += f"; suggested alternative {self.suggested_port}"
        return text


class PortAllocation(BaseModel):
    """How one declared port was resolved for a start attempt."""
    port_type: str
    requested_port: int
    resolved_port: int
    occupying_process: Optional[ProcessInfo] = None

    @property
    def changed(self) -> bool:
        return self.requested_port != self.resolved_port
