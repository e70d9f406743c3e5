"""Port conflict detection and substitute port allocation."""

import asyncio
import logging
import socket
from typing import Dict, Iterable, List, Optional, Set

from deck.exceptions import PortConflictError
from deck.models.config import DeckConfig
from deck.models.ports import PortAllocation, PortCheckResult, ProcessInfo
from deck.utils.netstat import ConnectionTable, describe_process, select_connection_table


logger = logging.getLogger(__name__)

MIN_PORT = 1


class PortConflictResolver:
    """Checks declared ports and finds free replacements."""

    def __init__(
        self,
        config: DeckConfig,
        connection_table: Optional[ConnectionTable] = None,
        host: str = "0.0.0.0",
    ):
        """Initialize port resolver."""
        self.config = config
        self.connection_table = connection_table or select_connection_table()
        self.host = host
        self.max_port = config.ports.max_port

    def _bind_probe(self, port: int) -> bool:
        """Try to bind a TCP listener on the port."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.host, port))
            except (OSError, OverflowError):
                return False
        return True

    async def is_port_available(self, port: int) -> bool:
        """Check whether a port can be bound right now."""
        return await asyncio.to_thread(self._bind_probe, port)

    async def check_ports(self, declared_ports: Dict[str, int]) -> List[PortCheckResult]:
        """Probe all declared ports concurrently and describe conflicts."""
        for name, port in declared_ports.items():
            if not MIN_PORT <= port <= self.max_port:
                raise PortConflictError(
                    MIN_PORT,
                    self.max_port,
                    f"{name}={port} is outside the valid port range {MIN_PORT}-{self.max_port}",
                )
        names = list(declared_ports)
        available = await asyncio.gather(
            *(self.is_port_available(declared_ports[name]) for name in names)
        )

        results = []
        reserved: Set[int] = set(declared_ports.values())
        for name, is_free in zip(names, available):
            port = declared_ports[name]
            if is_free:
                results.append(PortCheckResult(port_name=name, port=port, is_available=True))
                continue

            process = await self.find_occupying_process(port)
            suggested = None
            try:
                suggested = await self.find_available_port(port + 1, self.max_port, exclude=reserved)
                reserved.add(suggested)
            except (PortConflictError, ValueError) as e:
                logger.warning(f"No alternative for {name}={port}: {e}")
            result = PortCheckResult(
                port_name=name,
                port=port,
                is_available=False,
                process=process,
                suggested_port=suggested,
            )
            logger.info(result.message)
            results.append(result)
        return results

    async def find_occupying_process(self, port: int) -> Optional[ProcessInfo]:
        """Identify the process listening on a port."""
        pid = await self.connection_table.find_pid(port)
        if pid is None:
            logger.debug(f"No process found listening on {port}")
            return None
        return await asyncio.to_thread(describe_process, pid, self.connection_table)

    async def find_available_port(
        self, start: int, end: int, exclude: Iterable[int] = ()
    ) -> int:
        """Return the first free port in ``[start, end]``."""
        if start < MIN_PORT or end > self.max_port or start > end:
            raise ValueError(f"Invalid port range {start}-{end}")
        skip = set(exclude)
        for port in range(start, end + 1):
            if port in skip:
                continue
            if await self.is_port_available(port):
                return port
        raise PortConflictError(start, end)

    async def auto_allocate(self, port_types: List[str]) -> Dict[str, int]:
        """Pick a distinct free port per type, scanning up from its base."""
        allocated: Dict[str, int] = {}
        for port_type in port_types:
            base = self.config.ports.base_ports.get(port_type)
            if base is None:
                raise ValueError(f"Unknown port type: {port_type}")
            allocated[port_type] = await self.find_available_port(
                base, self.max_port, exclude=allocated.values()
            )
        return allocated

    async def resolve(self, declared_ports: Dict[str, int]) -> List[PortAllocation]:
        """Map declared ports to usable ones, substituting where occupied.

        Raises PortConflictError when an occupied port has no free
        replacement below the upper bound.
        """
        allocations = []
        for result in await self.check_ports(declared_ports):
            if result.is_available:
                resolved = result.port
            elif result.suggested_port is not None:
                resolved = result.suggested_port
            else:
                raise PortConflictError(
                    result.port + 1,
                    self.max_port,
                    f"{result.message}; no free port above it",
                )
            allocations.append(PortAllocation(
                port_type=result.port_name,
                requested_port=result.port,
                resolved_port=resolved,
                occupying_process=result.process,
            ))
        return allocations
