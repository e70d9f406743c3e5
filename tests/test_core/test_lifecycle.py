"""Tests for the container lifecycle state machine."""

from datetime import datetime

import pytest
from unittest.mock import AsyncMock, MagicMock

from deck.core.collaborators import ComposeBuildPipeline
from deck.core.directories import ResourceDirectoryManager
from deck.core.lifecycle import ContainerLifecycleStateMachine
from deck.core.ports import PortConflictResolver
from deck.engines.fixture import FixtureEngine
from deck.models.config import DeckConfig
from deck.models.container import ContainerStatus
from deck.models.ports import ProcessInfo
from deck.models.resource import BuildStatus
from deck.models.results import BuildResult, StartMode
from deck.utils.envfile import read_env


IMAGE = "nodejs-app-20250121-1430"
FIXED_NOW = datetime(2025, 1, 21, 15, 0)

COMPOSE = """services:
  app:
    build: .
    container_name: ${PROJECT_NAME}-dev
    ports:
      - "${DEV_PORT:-1420}:1420"
"""


@pytest.fixture
def config(tmp_path):
    """Create a project with one complete Images entry."""
    config = DeckConfig(project_root=tmp_path, engine={"engine": "fixture"})
    entry = config.images_dir / IMAGE
    entry.mkdir(parents=True)
    (entry / ".env").write_text(f"PROJECT_NAME={IMAGE}\nDEV_PORT=5000\n")
    (entry / "compose.yaml").write_text(COMPOSE)
    (entry / "Dockerfile").write_text("FROM node:20\n")
    return config


@pytest.fixture
def engine():
    """Create an empty fixture engine."""
    return FixtureEngine()


def make_machine(config, engine, busy=(), process=None):
    """Build a state machine whose port probe treats ``busy`` as taken."""
    table = MagicMock()
    table.find_pid = AsyncMock(return_value=process.pid if process else None)
    ports = PortConflictResolver(config, connection_table=table)
    ports._bind_probe = lambda port: port not in busy
    if process is not None:
        ports.find_occupying_process = AsyncMock(return_value=process)
    directories = ResourceDirectoryManager(config, clock=lambda: FIXED_NOW)
    return ContainerLifecycleStateMachine(
        config, engine, directories, ports, ComposeBuildPipeline(engine)
    )


@pytest.mark.asyncio
class TestSmartStart:
    """Test the smart start decision procedure."""

    async def test_rebuild_when_nothing_exists(self, config, engine):
        """Test a missing image and container trigger a rebuild."""
        machine = make_machine(config, engine)
        events = []

        result = await machine.smart_start(IMAGE, progress=events.append)

        assert result.success, result.message
        assert result.mode == StartMode.REBUILT
        assert result.container_name == f"{IMAGE}-dev"
        assert engine.containers[f"{IMAGE}-dev"].status == ContainerStatus.RUNNING
        assert ("compose-up", IMAGE) in engine.calls
        metadata = await machine.directories.read_metadata(IMAGE)
        assert metadata.build_status == BuildStatus.BUILT
        assert metadata.last_started == FIXED_NOW
        assert events and all(event.total == 4 for event in events)

    async def test_running_container_is_attached(self, config, engine):
        """Test a running container is used without mutation."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE)
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert result.success
        assert result.mode == StartMode.ATTACHED
        assert engine.calls == []

    async def test_exact_name_preferred(self, config, engine):
        """Test an exactly named container wins over the -dev one."""
        engine.add_image(IMAGE)
        engine.add_container(IMAGE, IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert result.container_name == IMAGE
        assert result.mode == StartMode.ATTACHED

    async def test_stopped_container_is_restarted(self, config, engine):
        """Test a stopped container is restarted after the port check."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert result.success
        assert result.mode == StartMode.RESTARTED
        assert engine.calls == [("restart", f"{IMAGE}-dev")]
        assert result.allocations[0].resolved_port == 5000

    async def test_image_without_container_creates_one(self, config, engine):
        """Test a container is created from an existing image."""
        engine.add_image(IMAGE)
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert result.success
        assert result.mode == StartMode.CREATED
        record = engine.containers[f"{IMAGE}-dev"]
        assert record.image_ref == IMAGE
        assert [(p.host_port, p.container_port) for p in record.ports] == [(5000, 1420)]
        assert ("compose-up", IMAGE) not in engine.calls

    async def test_declined_port_conflict_fails_without_start(self, config, engine):
        """Test a declined substitution leaves the container untouched."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        node = ProcessInfo(pid=1234, name="node", stop_command="kill 1234")
        machine = make_machine(config, engine, busy={5000}, process=node)
        confirm = MagicMock(return_value=False)

        result = await machine.smart_start(IMAGE, confirm=confirm)

        assert not result.success
        assert "PID 1234 (node)" in result.message
        assert "kill 1234" in result.hints
        assert engine.calls == []
        confirm.assert_called_once()
        assert read_env(config.images_dir / IMAGE / ".env")["DEV_PORT"] == "5000"

    async def test_accepted_port_conflict_recreates_container(self, config, engine):
        """Test accepted substitutes are written and the container recreated."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        machine = make_machine(config, engine, busy={5000})

        async def confirm(message):
            return True

        result = await machine.smart_start(IMAGE, confirm=confirm)

        assert result.success, result.message
        assert engine.calls == [("rm", f"{IMAGE}-dev"), ("run", f"{IMAGE}-dev")]
        assert read_env(config.images_dir / IMAGE / ".env")["DEV_PORT"] == "5001"
        assert engine.containers[f"{IMAGE}-dev"].ports[0].host_port == 5001

    async def test_failed_recreate_reports_removal(self, config, engine):
        """Test a failed recreate says the old container is gone."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        engine.failures[("run", f"{IMAGE}-dev")] = "port bind failed"
        machine = make_machine(config, engine, busy={5000})

        result = await machine.smart_start(IMAGE, confirm=lambda message: True)

        assert not result.success
        assert result.removed_container == f"{IMAGE}-dev"
        assert f"Removed {IMAGE}-dev" in result.message
        assert result.engine_diagnostic == "port bind failed"
        assert f"deck start {IMAGE}" in result.hints
        assert engine.calls == [("rm", f"{IMAGE}-dev"), ("run", f"{IMAGE}-dev")]

    async def test_successful_recreate_reports_removal(self, config, engine):
        """Test a recreated container is reported as replaced."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        machine = make_machine(config, engine, busy={5000})

        result = await machine.smart_start(IMAGE, confirm=lambda message: True)

        assert result.success
        assert result.removed_container == f"{IMAGE}-dev"

    async def test_unwritable_backup_is_reported(self, config, engine):
        """Test env backup failures come back as a failed result."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        (config.images_dir / IMAGE / "backups").write_text("not a directory")
        machine = make_machine(config, engine, busy={5000})

        result = await machine.smart_start(IMAGE, confirm=lambda message: True)

        assert not result.success
        assert "backups" in result.message
        assert engine.calls == []
        assert engine.containers[f"{IMAGE}-dev"].status == ContainerStatus.STOPPED

    async def test_out_of_range_port_is_reported(self, config, engine):
        """Test an invalid declared port fails the start without probing."""
        (config.images_dir / IMAGE / ".env").write_text(f"PROJECT_NAME={IMAGE}\nDEV_PORT=70000\n")
        engine.add_image(IMAGE)
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert not result.success
        assert "DEV_PORT=70000" in result.message
        assert engine.calls == []

    async def test_rebuild_producing_only_an_image(self, config, engine):
        """Test a build that leaves no container creates one and records Built."""
        machine = make_machine(config, engine)

        async def build(compose_path, project_name=None, cancel_event=None):
            engine.add_image(IMAGE)
            return BuildResult(success=True, message="built", image_name=IMAGE)

        machine.build_pipeline = MagicMock()
        machine.build_pipeline.build = build

        result = await machine.smart_start(IMAGE)

        assert result.success, result.message
        assert result.mode == StartMode.REBUILT
        assert engine.calls == [("run", f"{IMAGE}-dev")]
        metadata = await machine.directories.read_metadata(IMAGE)
        assert metadata.build_status == BuildStatus.BUILT
        assert metadata.last_started == FIXED_NOW

    async def test_conflict_without_confirm_callback_fails(self, config, engine):
        """Test substitutes are never applied without consent."""
        engine.add_image(IMAGE)
        machine = make_machine(config, engine, busy={5000})

        result = await machine.smart_start(IMAGE)

        assert not result.success
        assert f"{IMAGE}-dev" not in engine.containers

    async def test_dead_container_is_reported(self, config, engine):
        """Test unrecoverable states are not retried."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.DEAD)
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert not result.success
        assert result.status == ContainerStatus.DEAD
        assert any("rm -f" in hint for hint in result.hints)
        assert engine.calls == []

    async def test_engine_failure_carries_diagnostic(self, config, engine):
        """Test a failed restart reports the engine's stderr once."""
        engine.add_image(IMAGE)
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        engine.failures[("restart", f"{IMAGE}-dev")] = "cannot allocate port"
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert not result.success
        assert result.engine_diagnostic == "cannot allocate port"
        assert engine.calls.count(("restart", f"{IMAGE}-dev")) == 1

    async def test_build_failure_marks_metadata(self, config, engine):
        """Test a failed build is recorded as Failed."""
        engine.failures[("compose-up", IMAGE)] = "npm ERR! network"
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert not result.success
        assert result.engine_diagnostic == "npm ERR! network"
        metadata = await machine.directories.read_metadata(IMAGE)
        assert metadata.build_status == BuildStatus.FAILED

    async def test_incomplete_entry_cannot_rebuild(self, config, engine):
        """Test missing build files are named in the failure."""
        (config.images_dir / IMAGE / "Dockerfile").unlink()
        machine = make_machine(config, engine)

        result = await machine.smart_start(IMAGE)

        assert not result.success
        assert "Dockerfile" in result.message
        assert engine.calls == []

    async def test_unknown_entry(self, config, engine):
        """Test starting an entry that does not exist."""
        machine = make_machine(config, engine)

        result = await machine.smart_start("ghost-20250101-0000")

        assert not result.success
        assert "not found" in result.message


@pytest.mark.asyncio
class TestStopRestart:
    """Test stop and restart helpers."""

    async def test_stop_running(self, config, engine):
        """Test stopping a running container."""
        engine.add_container(f"{IMAGE}-dev", IMAGE)
        machine = make_machine(config, engine)

        result = await machine.stop(IMAGE)

        assert result.success
        assert engine.containers[f"{IMAGE}-dev"].status == ContainerStatus.STOPPED

    async def test_stop_missing(self, config, engine):
        """Test stopping without a container."""
        result = await make_machine(config, engine).stop(IMAGE)

        assert not result.success

    async def test_restart(self, config, engine):
        """Test restart records LAST_STARTED."""
        engine.add_container(f"{IMAGE}-dev", IMAGE, status=ContainerStatus.STOPPED)
        machine = make_machine(config, engine)

        result = await machine.restart(IMAGE)

        assert result.success
        assert (await machine.directories.read_metadata(IMAGE)).last_started == FIXED_NOW
