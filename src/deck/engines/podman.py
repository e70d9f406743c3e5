"""Podman engine adapter."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from deck.engines.base import CliContainerEngine
from deck.models.container import ContainerRecord, ContainerStatus, EngineImage, PortMapping


class PodmanEngine(CliContainerEngine):
    """Podman via its CLI (``ps`` and ``images`` emit a JSON array)."""

    binary = "podman"

    def _parse_container(self, item: Dict[str, Any]) -> ContainerRecord:
        names = item.get("Names") or []
        if isinstance(names, str):
            names = [names]
        ports = []
        for port in item.get("Ports") or []:
            host_port = port.get("host_port") or port.get("hostPort")
            if not host_port:
                continue
            ports.append(PortMapping(
                host_port=int(host_port),
                container_port=int(port.get("container_port") or port.get("containerPort") or 0),
                protocol=port.get("protocol") or "tcp",
                host_ip=port.get("host_ip") or port.get("hostIP") or "",
            ))
        created = item.get("CreatedAt") or ""
        if not created and isinstance(item.get("Created"), (int, float)):
            created = datetime.fromtimestamp(item["Created"], tz=timezone.utc).isoformat()
        return ContainerRecord(
            id=item.get("Id") or item.get("ID") or "",
            name=names[0] if names else "",
            status=ContainerStatus.from_engine(item.get("State")),
            image_ref=item.get("Image") or "",
            ports=ports,
            created=str(created),
        )

    def _parse_image(self, item: Dict[str, Any]) -> EngineImage:
        created = item.get("Created")
        if isinstance(created, (int, float)):
            created = datetime.fromtimestamp(created, tz=timezone.utc).isoformat()
        return EngineImage(
            id=item.get("Id") or item.get("ID") or "",
            names=list(item.get("Names") or []),
            created=str(created or item.get("CreatedAt") or ""),
            size=int(item.get("Size") or 0),
        )

    async def prune_build_cache(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        # Podman keeps build layers as dangling images
        await self._run("image", "prune", "-f", cancel_event=cancel_event)
