"""Reading published ports out of a compose file."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError


logger = logging.getLogger(__name__)

_VARIABLE = re.compile(r"\$\{(?P<name>\w+)(?::?-(?P<default>[^}]*))?\}|\$(?P<bare>\w+)")


@dataclass
class ComposePort:
    """One published port of a compose service."""
    host_port: int
    container_port: int
    protocol: str = "tcp"
    variable: Optional[str] = None


def substitute(value: str, env: Dict[str, str]) -> str:
    """Expand ``${VAR}``, ``${VAR:-default}`` and ``$VAR``."""
    def _replace(match):
        name = match.group("name") or match.group("bare")
        if name in env and env[name] != "":
            return env[name]
        return match.group("default") or ""

    return _VARIABLE.sub(_replace, value)


def _parse_short(entry: str, env: Dict[str, str]) -> Optional[ComposePort]:
    entry, _, protocol = entry.partition("/")
    # Mask variables so the ":-" inside them does not split the entry
    expressions = []

    def _mask(match):
        expressions.append(match.group(0))
        return f"\x00{len(expressions) - 1}\x00"

    masked = _VARIABLE.sub(_mask, entry)
    parts = [
        re.sub(r"\x00(\d+)\x00", lambda m: expressions[int(m.group(1))], part)
        for part in masked.split(":")
    ]
    if len(parts) < 2:
        return None
    host_raw, container_raw = parts[-2], parts[-1]
    variable = None
    match = _VARIABLE.fullmatch(host_raw.strip())
    if match:
        variable = match.group("name") or match.group("bare")
    try:
        return ComposePort(
            host_port=int(substitute(host_raw, env)),
            container_port=int(substitute(container_raw, env)),
            protocol=protocol or "tcp",
            variable=variable,
        )
    except ValueError:
        logger.debug(f"Skipping unparseable port mapping {entry!r}")
        return None


def _parse_long(entry: Dict[str, Any], env: Dict[str, str]) -> Optional[ComposePort]:
    published = str(entry.get("published", ""))
    variable = None
    match = _VARIABLE.fullmatch(published.strip())
    if match:
        variable = match.group("name") or match.group("bare")
    try:
        return ComposePort(
            host_port=int(substitute(published, env)),
            container_port=int(substitute(str(entry.get("target", "")), env)),
            protocol=str(entry.get("protocol") or "tcp"),
            variable=variable,
        )
    except ValueError:
        return None


def read_compose_ports(compose_path: Path, env: Dict[str, str]) -> List[ComposePort]:
    """Collect published ports of every service."""
    if not compose_path.exists():
        return []
    try:
        with open(compose_path) as f:
            data = YAML(typ="safe").load(f) or {}
    except YAMLError as e:
        logger.warning(f"Cannot parse {compose_path}: {e}")
        return []

    ports = []
    for service in (data.get("services") or {}).values():
        for entry in (service or {}).get("ports") or []:
            if isinstance(entry, dict):
                port = _parse_long(entry, env)
            else:
                port = _parse_short(str(entry), env)
            if port is not None:
                ports.append(port)
    return ports
