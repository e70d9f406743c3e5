"""Helpers for reading and updating environment files."""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

from deck.exceptions import FileSystemError


logger = logging.getLogger(__name__)


def read_env(path: Path) -> Dict[str, str]:
    """Read an env file into a dict, dropping keys without a value.

    Unreadable or undecodable files raise FileSystemError.
    """
    if not path.exists():
        return {}
    try:
        values = dotenv_values(path)
    except UnicodeDecodeError as e:
        raise FileSystemError(path, f"Env file is not valid UTF-8 ({e.reason})") from e
    except OSError as e:
        raise FileSystemError(e.filename or path, e.strerror or str(e)) from e
    return {k: v for k, v in values.items() if v is not None}


def read_ports(path: Path) -> Dict[str, int]:
    """Extract ``*_PORT`` variables with integer values."""
    ports = {}
    for key, value in read_env(path).items():
        if not key.endswith("_PORT"):
            continue
        try:
            ports[key] = int(value)
        except ValueError:
            logger.warning(f"Ignoring non-numeric port {key}={value} in {path}")
    return ports


def backup_env(path: Path, now: Optional[datetime] = None) -> Optional[Path]:
    """Copy an env file to ``backups/<name>.<timestamp>.bak`` beside it."""
    if not path.exists():
        return None
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    backup_dir = path.parent / "backups"
    target = backup_dir / f"{path.name}.{stamp}.bak"
    try:
        backup_dir.mkdir(exist_ok=True)
        shutil.copy2(path, target)
    except OSError as e:
        raise FileSystemError(e.filename or backup_dir, f"Cannot back up {path.name}: {e.strerror or e}") from e
    logger.debug(f"Backed up {path} to {target}")
    return target


def update_env(path: Path, values: Dict[str, str], backup: bool = True) -> None:
    """Set keys in an env file, keeping the rest of it untouched."""
    if backup:
        backup_env(path)
    try:
        if not path.exists():
            path.touch()
        for key, value in values.items():
            set_key(str(path), key, str(value), quote_mode="never")
    except OSError as e:
        raise FileSystemError(e.filename or path, e.strerror or str(e)) from e
