"""Asynchronous subprocess execution."""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandCancelled(Exception):
    """The command was killed because cancellation was requested."""

    def __init__(self, cmd: List[str]):
        self.cmd = cmd
        super().__init__(f"Cancelled: {' '.join(cmd)}")


async def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
    **kwargs
) -> CommandResult:
    """Run a command asynchronously.

    When ``cancel_event`` is given the process is killed as soon as the
    event is set and :class:`CommandCancelled` is raised.
    """
    logger.debug(f"Running command: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
        **kwargs
    )

    communicate = asyncio.ensure_future(process.communicate())
    waiters = {communicate}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        if cancel_waiter is not None and not cancel_waiter.done():
            cancel_waiter.cancel()

    if communicate not in done:
        process.kill()
        await process.wait()
        communicate.cancel()
        if cancel_waiter is not None and cancel_waiter in done:
            raise CommandCancelled(cmd)
        raise subprocess.TimeoutExpired(cmd, timeout)

    stdout, stderr = communicate.result()
    result = CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )

    if check and process.returncode != 0:
        error = subprocess.CalledProcessError(
            process.returncode, cmd
        )
        error.stdout = result.stdout
        error.stderr = result.stderr
        raise error

    return result


async def command_exists(name: str) -> bool:
    """Check whether ``name --version`` runs successfully."""
    try:
        result = await run_command([name, "--version"], check=False, timeout=10)
    except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0
