"""Tests for the Images-layer permission guard."""

import pytest

from deck.core.permissions import ImagePermissionGuard
from deck.exceptions import PermissionViolation
from deck.models.config import DeckConfig
from deck.models.resource import ResourceLayer
from deck.utils.envfile import read_env


@pytest.fixture
def config(tmp_path):
    """Create a project with one Images entry."""
    config = DeckConfig(project_root=tmp_path)
    entry = config.images_dir / "app-20250121-1430"
    entry.mkdir(parents=True)
    (entry / ".env").write_text("PROJECT_NAME=app\nDEV_PORT=5000\nNODE_VERSION=20\n")
    (entry / "compose.yaml").write_text("services: {}\n")
    return config


class TestImagePermissionGuard:
    """Test protected file and variable rules."""

    def test_build_files_protected(self, config):
        """Test compose and build files inside an image are read-only."""
        guard = ImagePermissionGuard(config)
        entry = config.images_dir / "app-20250121-1430"

        assert guard.is_protected(entry / "compose.yaml")
        assert guard.is_protected(entry / "Dockerfile.dev")
        assert not guard.is_protected(entry / ".env")
        assert not guard.is_protected(config.custom_dir / "app" / "compose.yaml")
        with pytest.raises(PermissionViolation):
            guard.check_modification(entry / "compose.yaml")

    def test_only_runtime_variables(self, config):
        """Test build variables are refused with the allowed list."""
        guard = ImagePermissionGuard(config)

        guard.check_env_update("app-20250121-1430", {"DEV_PORT": "5001"})
        with pytest.raises(PermissionViolation) as exc_info:
            guard.check_env_update("app-20250121-1430", {"NODE_VERSION": "22"})

        assert "NODE_VERSION" in str(exc_info.value)
        assert "DEV_PORT" in exc_info.value.hint

    def test_rename_refused(self, config):
        """Test Images entries cannot be renamed."""
        guard = ImagePermissionGuard(config)

        guard.check_rename(ResourceLayer.CUSTOM, "app")
        with pytest.raises(PermissionViolation) as exc_info:
            guard.check_rename(ResourceLayer.IMAGES, "app-20250121-1430")
        assert "deck clean" in exc_info.value.hint


@pytest.mark.asyncio
async def test_update_env_backs_up(config):
    """Test runtime updates keep a backup of the previous file."""
    guard = ImagePermissionGuard(config)

    env_path = await guard.update_env("app-20250121-1430", {"DEV_PORT": "5001"})

    assert read_env(env_path)["DEV_PORT"] == "5001"
    backups = list((env_path.parent / "backups").iterdir())
    assert len(backups) == 1
    assert "DEV_PORT=5000" in backups[0].read_text()
