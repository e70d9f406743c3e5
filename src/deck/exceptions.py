"""Error types raised by the Deck core."""

from pathlib import Path
from typing import List, Optional, Union


class DeckError(Exception):
    """Base class for all Deck errors."""


class FileSystemError(DeckError):
    """A filesystem operation on the .deck tree failed."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{reason}: {self.path}")


class EngineError(DeckError):
    """A container engine command failed or returned unusable output."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr.strip()
        text = message
        if self.stderr:
            text = f"{message}: {self.stderr}"
        super().__init__(text)

    @property
    def command_line(self) -> str:
        return " ".join(self.command)


class EngineNotFoundError(EngineError):
    """Neither Podman nor Docker is installed."""

    def __init__(self, message: str = "No container engine found (install podman or docker)"):
        super().__init__(message)


class PortConflictError(DeckError):
    """No free port could be found in the requested range."""

    def __init__(self, start: int, end: int, message: Optional[str] = None):
        self.start = start
        self.end = end
        super().__init__(message or f"No available port in range {start}-{end}")


class PermissionViolation(DeckError):
    """Attempted modification of a protected Images-layer file."""

    def __init__(self, path: Union[str, Path], reason: str, hint: Optional[str] = None):
        self.path = Path(path)
        self.reason = reason
        self.hint = hint
        text = f"{reason}: {self.path}"
        if hint:
            text = f"{text} ({hint})"
        super().__init__(text)


class ProductionGuardTriggered(DeckError):
    """Cleanup blocked because a production container is related to the resource."""

    def __init__(self, container_name: str, hint: str):
        self.container_name = container_name
        self.hint = hint
        super().__init__(
            f"Production container '{container_name}' is related to this resource; "
            f"cleanup refused. Handle it manually: {hint}"
        )
