"""OS connection-table lookups for ports held by other processes."""

import logging
import platform
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Optional

import psutil

from deck.models.ports import ProcessInfo
from deck.utils.process import run_command


logger = logging.getLogger(__name__)

SYSTEM_PROCESS_NAMES = {
    "system",
    "svchost",
    "winlogon",
    "csrss",
    "lsass",
    "services",
    "init",
    "systemd",
    "launchd",
    "kernel_task",
}


class ConnectionTable(ABC):
    """Resolves the PID listening on a TCP port."""

    @abstractmethod
    async def find_pid(self, port: int) -> Optional[int]:
        """Return the PID listening on ``port`` or None."""
        pass

    @abstractmethod
    def stop_command(self, pid: int) -> str:
        """Shell command a user can run to stop ``pid``."""
        pass

    async def _query(self, cmd) -> str:
        try:
            result = await run_command(cmd, check=False, timeout=10)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Connection table query {cmd[0]} unavailable: {e}")
            return ""
        return result.stdout


class LinuxConnectionTable(ConnectionTable):
    """Uses ``ss`` and falls back to ``lsof``."""

    _SS_PID = re.compile(r"pid=(\d+)")

    async def find_pid(self, port: int) -> Optional[int]:
        output = await self._query(["ss", "-ltnpH", f"sport = :{port}"])
        pid = self.parse_ss(output, port)
        if pid is None:
            pid = MacConnectionTable.parse_lsof(
                await self._query(["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN"])
            )
        return pid

    @classmethod
    def parse_ss(cls, output: str, port: int) -> Optional[int]:
        for line in output.splitlines():
            fields = line.split()
            if len(fields) < 4 or not fields[3].endswith(f":{port}"):
                continue
            match = cls._SS_PID.search(line)
            if match:
                return int(match.group(1))
        return None

    def stop_command(self, pid: int) -> str:
        return f"kill {pid}"


class MacConnectionTable(ConnectionTable):
    """Uses ``lsof``."""

    async def find_pid(self, port: int) -> Optional[int]:
        return self.parse_lsof(
            await self._query(["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN"])
        )

    @staticmethod
    def parse_lsof(output: str) -> Optional[int]:
        # COMMAND  PID USER   FD   TYPE ... NAME
        for line in output.splitlines()[1:]:
            fields = line.split()
            if len(fields) > 1 and fields[1].isdigit():
                return int(fields[1])
        return None

    def stop_command(self, pid: int) -> str:
        return f"kill {pid}"


class WindowsConnectionTable(ConnectionTable):
    """Uses ``netstat -ano``."""

    _LINE = re.compile(r"^\s*TCP\s+(\S+):(\d+)\s+\S+\s+LISTENING\s+(\d+)", re.IGNORECASE)

    async def find_pid(self, port: int) -> Optional[int]:
        return self.parse_netstat(await self._query(["netstat", "-ano", "-p", "TCP"]), port)

    @classmethod
    def parse_netstat(cls, output: str, port: int) -> Optional[int]:
        for line in output.splitlines():
            match = cls._LINE.match(line)
            if match and int(match.group(2)) == port:
                return int(match.group(3))
        return None

    def stop_command(self, pid: int) -> str:
        return f"taskkill /PID {pid} /F"


def select_connection_table(system: Optional[str] = None) -> ConnectionTable:
    """Pick the backend for the running OS."""
    system = (system or platform.system()).lower()
    if system == "windows":
        return WindowsConnectionTable()
    if system == "darwin":
        return MacConnectionTable()
    return LinuxConnectionTable()


def describe_process(pid: int, table: ConnectionTable) -> ProcessInfo:
    """Build a ProcessInfo for ``pid`` using psutil where permitted."""
    name = "unknown"
    command_line = ""
    try:
        proc = psutil.Process(pid)
        name = proc.name()
        command_line = " ".join(proc.cmdline())
    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} exited before it could be inspected")
    except psutil.AccessDenied:
        logger.debug(f"Access denied inspecting process {pid}")

    base_name = name.lower()
    if base_name.endswith(".exe"):
        base_name = base_name[:-4]
    is_system = pid <= 1 or base_name in SYSTEM_PROCESS_NAMES

    return ProcessInfo(
        pid=pid,
        name=name,
        command_line=command_line,
        stop_command=None if is_system else table.stop_command(pid),
        is_system_process=is_system,
    )
