"""Tests for deck models."""

import pytest
from pydantic import ValidationError

from deck.models.config import DeckConfig
from deck.models.container import ContainerStatus, EngineImage
from deck.models.ports import PortAllocation, PortCheckResult, ProcessInfo


class TestDeckConfig:
    """Test configuration model."""

    def test_defaults(self, tmp_path):
        """Test default layout and conventions."""
        config = DeckConfig(project_root=tmp_path)

        assert config.images_dir == tmp_path / ".deck" / "images"
        assert config.files.required == [".env", "compose.yaml", "Dockerfile"]
        assert config.environments.default_suffix == "dev"
        assert config.ports.base_ports["DEBUG_PORT"] == 9229
        assert config.engine.engine == "auto"

    def test_engine_validation(self):
        """Test that unknown engines are rejected."""
        assert DeckConfig(engine={"engine": "Docker"}).engine.engine == "docker"
        with pytest.raises(ValidationError):
            DeckConfig(engine={"engine": "lxc"})

    def test_log_level_validation(self):
        """Test log level normalisation."""
        assert DeckConfig(logging={"level": "debug"}).logging.level == "DEBUG"
        with pytest.raises(ValidationError):
            DeckConfig(logging={"level": "chatty"})


class TestContainerStatus:
    """Test engine state mapping."""

    @pytest.mark.parametrize("state,expected", [
        ("running", ContainerStatus.RUNNING),
        ("exited", ContainerStatus.STOPPED),
        ("Exited (0) 2 hours ago", ContainerStatus.STOPPED),
        ("Up 3 minutes", ContainerStatus.RUNNING),
        ("created", ContainerStatus.CREATED),
        ("dead", ContainerStatus.DEAD),
        ("", ContainerStatus.UNKNOWN),
        ("weird", ContainerStatus.UNKNOWN),
    ])
    def test_from_engine(self, state, expected):
        """Test mapping of engine state strings."""
        assert ContainerStatus.from_engine(state) == expected


def test_engine_image_short_names():
    """Test registry and tag are stripped for matching."""
    image = EngineImage(id="abc", names=["localhost/nodejs-app-20250121-1430:latest"])

    assert image.matches("nodejs-app-20250121-1430")
    assert not image.matches("nodejs-app")


def test_port_check_message_names_process():
    """Test conflict message carries PID and name."""
    result = PortCheckResult(
        port_name="DEV_PORT",
        port=5000,
        is_available=False,
        process=ProcessInfo(pid=1234, name="node"),
        suggested_port=5001,
    )

    assert "PID 1234 (node)" in result.message
    assert "5001" in result.message


def test_port_allocation_changed():
    """Test allocation change detection."""
    assert PortAllocation(port_type="DEV_PORT", requested_port=5000, resolved_port=5001).changed
    assert not PortAllocation(port_type="DEV_PORT", requested_port=5000, resolved_port=5000).changed
