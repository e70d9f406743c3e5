"""Tests for the in-memory engine."""

import pytest

from deck.engines.fixture import FixtureEngine
from deck.exceptions import EngineError
from deck.models.container import ContainerStatus


@pytest.mark.asyncio
class TestFixtureEngine:
    """Test fixture engine behaviour."""

    async def test_image_in_use_cannot_be_removed(self):
        """Test image removal fails while a container uses it."""
        engine = FixtureEngine()
        engine.add_image("app")
        engine.add_container("app-dev", "app")

        with pytest.raises(EngineError) as exc_info:
            await engine.remove_image("app")
        assert "in use" in exc_info.value.stderr

        await engine.remove_container("app-dev")
        await engine.remove_image("app")
        assert engine.images == {}

    async def test_injected_failure(self):
        """Test failures can be injected per call."""
        engine = FixtureEngine()
        engine.add_container("app-dev", "app", status=ContainerStatus.STOPPED)
        engine.failures[("start", "app-dev")] = "port already allocated"

        with pytest.raises(EngineError) as exc_info:
            await engine.start("app-dev")

        assert exc_info.value.stderr == "port already allocated"
        assert engine.calls == [("start", "app-dev")]

    async def test_compose_up_creates_dev_container(self, tmp_path):
        """Test compose simulation creates image and running container."""
        (tmp_path / "compose.yaml").write_text("services: {}\n")
        engine = FixtureEngine()

        await engine.compose_up(tmp_path, "app")

        assert "app" in engine.images
        assert engine.containers["app-dev"].status == ContainerStatus.RUNNING

    async def test_list_returns_copies(self):
        """Test listed records are snapshots."""
        engine = FixtureEngine()
        engine.add_container("app-dev", "app")

        records = await engine.list_containers()
        records[0].status = ContainerStatus.DEAD

        assert engine.containers["app-dev"].status == ContainerStatus.RUNNING
