"""Docker engine adapter."""

import asyncio
import re
from typing import Any, Dict, List, Optional

from deck.engines.base import CliContainerEngine
from deck.models.container import ContainerRecord, ContainerStatus, EngineImage, PortMapping


_PORT = re.compile(r"^(?P<ip>.*):(?P<host>\d+)->(?P<container>\d+)/(?P<proto>\w+)$")


def parse_port_string(value: str) -> List[PortMapping]:
    """Parse Docker's ``0.0.0.0:5000->5000/tcp, ...`` port column."""
    mappings = []
    seen = set()
    for part in (value or "").split(","):
        match = _PORT.match(part.strip())
        if not match:
            continue
        key = (int(match.group("host")), int(match.group("container")), match.group("proto"))
        # IPv4 and IPv6 bindings of the same port are listed separately
        if key in seen:
            continue
        seen.add(key)
        mappings.append(PortMapping(
            host_port=key[0],
            container_port=key[1],
            protocol=key[2],
            host_ip=match.group("ip"),
        ))
    return mappings


class DockerEngine(CliContainerEngine):
    """Docker via its CLI (one JSON object per line)."""

    binary = "docker"

    @property
    def _ps_args(self) -> List[str]:
        return ["ps", "-a", "--no-trunc", "--format", "{{json .}}"]

    @property
    def _images_args(self) -> List[str]:
        return ["images", "--no-trunc", "--format", "{{json .}}"]

    def _parse_container(self, item: Dict[str, Any]) -> ContainerRecord:
        names = item.get("Names") or ""
        if isinstance(names, list):
            names = ",".join(names)
        state = item.get("State") or item.get("Status")
        return ContainerRecord(
            id=item.get("ID") or item.get("Id") or "",
            name=names.split(",")[0].lstrip("/"),
            status=ContainerStatus.from_engine(state),
            image_ref=item.get("Image") or "",
            ports=parse_port_string(item.get("Ports") or ""),
            created=str(item.get("CreatedAt") or ""),
        )

    def _parse_image(self, item: Dict[str, Any]) -> EngineImage:
        repository = item.get("Repository") or ""
        tag = item.get("Tag") or "latest"
        names = [] if repository in ("", "<none>") else [f"{repository}:{tag}"]
        return EngineImage(
            id=item.get("ID") or item.get("Id") or "",
            names=names,
            created=str(item.get("CreatedAt") or ""),
        )

    async def prune_build_cache(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        await self._run("builder", "prune", "-f", cancel_event=cancel_event)
