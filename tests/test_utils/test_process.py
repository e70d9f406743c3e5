"""Tests for the subprocess runner."""

import asyncio
import subprocess
import sys

import pytest

from deck.utils.process import CommandCancelled, command_exists, run_command


@pytest.mark.asyncio
class TestRunCommand:
    """Test run_command."""

    async def test_captures_output(self):
        """Test stdout is captured and decoded."""
        result = await run_command([sys.executable, "-c", "print('hello')"])

        assert result.returncode == 0
        assert result.stdout.strip() == "hello"

    async def test_check_raises_with_stderr(self):
        """Test non-zero exit raises CalledProcessError carrying stderr."""
        with pytest.raises(subprocess.CalledProcessError) as exc_info:
            await run_command(
                [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
            )

        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "boom"

    async def test_timeout(self):
        """Test the process is killed on timeout."""
        with pytest.raises(subprocess.TimeoutExpired):
            await run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)

    async def test_cancel_event_kills_process(self):
        """Test setting the cancel event stops a long command."""
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)

        with pytest.raises(CommandCancelled):
            await run_command(
                [sys.executable, "-c", "import time; time.sleep(5)"], cancel_event=cancel
            )

    async def test_command_exists(self):
        """Test probing for installed binaries."""
        assert await command_exists(sys.executable)
        assert not await command_exists("definitely-not-a-real-binary-xyz")
