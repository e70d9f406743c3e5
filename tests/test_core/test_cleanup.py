"""Tests for cascading cleanup."""

import asyncio

import pytest
from unittest.mock import MagicMock

from deck.core.catalog import UnifiedResourceCatalog
from deck.core.cleanup import CascadingCleanupEngine
from deck.core.directories import ResourceDirectoryManager
from deck.engines.fixture import FixtureEngine
from deck.models.config import DeckConfig
from deck.models.container import ContainerStatus
from deck.models.resource import ResourceLayer
from deck.models.results import CleaningStrategy


NAME = "app-20250121-1430"


def make_entry(root, name):
    """Create a complete resource directory."""
    path = root / name
    path.mkdir(parents=True)
    for file_name in (".env", "compose.yaml", "Dockerfile"):
        (path / file_name).write_text("x\n")
    return path


@pytest.fixture
def config(tmp_path):
    """Create a project config."""
    return DeckConfig(project_root=tmp_path)


@pytest.fixture
def engine():
    """Create an empty fixture engine."""
    return FixtureEngine()


@pytest.fixture
def cleaner(config, engine):
    """Create a cleanup engine over the fixture engine."""
    directories = ResourceDirectoryManager(config)
    catalog = UnifiedResourceCatalog(config, engine, directories)
    return CascadingCleanupEngine(config, engine, directories, catalog)


@pytest.fixture
def standard_setup(config, engine):
    """One Images entry with its image and two containers."""
    path = make_entry(config.images_dir, NAME)
    engine.add_image(NAME)
    engine.add_container(f"{NAME}-dev", NAME)
    engine.add_container(f"{NAME}-test", NAME, status=ContainerStatus.STOPPED)
    return path


async def standard_option(cleaner):
    options = await cleaner.compute_cleaning_options(ResourceLayer.IMAGES, NAME)
    return next(o for o in options if o.strategy == CleaningStrategy.STANDARD)


@pytest.mark.asyncio
class TestCleaningOptions:
    """Test option computation."""

    async def test_templates_are_refused(self, cleaner):
        """Test templates are never deletable."""
        options = await cleaner.compute_cleaning_options(ResourceLayer.TEMPLATES, "node")

        assert len(options) == 1
        assert options[0].is_refusal
        assert options[0].hints == ["deck templates update"]

    async def test_refusal_executes_nothing(self, cleaner, engine):
        """Test executing a refusal deletes nothing."""
        options = await cleaner.compute_cleaning_options("templates", "node")
        confirm = MagicMock(return_value=True)

        result = await cleaner.execute(options[0], confirm=confirm)

        assert result.refused
        assert not result.success
        confirm.assert_not_called()
        assert engine.calls == []

    async def test_image_options(self, cleaner, standard_setup):
        """Test standard and build cache options."""
        options = await cleaner.compute_cleaning_options(ResourceLayer.IMAGES, NAME)

        assert [o.strategy for o in options] == [
            CleaningStrategy.STANDARD,
            CleaningStrategy.STANDARD_WITH_BUILD_CACHE,
        ]
        assert options[0].recommended
        assert not options[1].recommended
        assert options[1].warning
        assert options[0].targets[:3] == [
            f"container {NAME}-dev",
            f"container {NAME}-test",
            f"image {NAME}",
        ]

    async def test_custom_requires_name(self, cleaner):
        """Test Custom cleanup needs a resource."""
        with pytest.raises(ValueError):
            await cleaner.compute_cleaning_options(ResourceLayer.CUSTOM)

    async def test_custom_options(self, config, engine, cleaner):
        """Test Custom offers directory only and directory plus containers."""
        make_entry(config.custom_dir, "web")
        engine.add_container("web-dev", "web")

        options = await cleaner.compute_cleaning_options(ResourceLayer.CUSTOM, "web")

        assert [o.strategy for o in options] == [
            CleaningStrategy.DIRECTORY_ONLY,
            CleaningStrategy.DIRECTORY_AND_CONTAINERS,
        ]
        assert options[1].recommended
        assert "container web-dev" in options[1].targets


@pytest.mark.asyncio
class TestProductionGuard:
    """Test production containers block image cleanup."""

    @pytest.mark.parametrize("status", [ContainerStatus.RUNNING, ContainerStatus.STOPPED])
    async def test_production_container_refuses(self, config, engine, cleaner, status):
        """Test a -prod container in any state blocks everything."""
        path = make_entry(config.images_dir, NAME)
        engine.add_image(NAME)
        engine.add_container(f"{NAME}-dev", NAME)
        engine.add_container(f"{NAME}-prod", NAME, status=status)

        options = await cleaner.compute_cleaning_options(ResourceLayer.IMAGES, NAME)

        assert len(options) == 1
        assert options[0].is_refusal
        assert f"{NAME}-prod" in options[0].description
        assert any("stop" in hint for hint in options[0].hints)

        result = await cleaner.execute(options[0], confirm=lambda message: True)

        assert result.refused
        assert not any(op in ("rm", "rmi") for op, _ in engine.calls)
        assert path.is_dir()

    async def test_guard_applies_at_execution(self, config, engine, cleaner, standard_setup):
        """Test a production container created after option listing still blocks."""
        option = await standard_option(cleaner)
        engine.add_container(f"{NAME}-production", NAME)

        result = await cleaner.execute(option, confirm=lambda message: True)

        assert result.refused
        assert result.blocked_by == f"{NAME}-production"
        assert engine.calls == []
        assert standard_setup.is_dir()


@pytest.mark.asyncio
class TestExecute:
    """Test executing cleanup options."""

    async def test_standard_cleanup_order(self, engine, cleaner, standard_setup):
        """Test containers go before the image and the image before the directory."""
        option = await standard_option(cleaner)
        events = []

        result = await cleaner.execute(option, confirm=lambda message: True, progress=events.append)

        assert result.success, result.message
        assert engine.calls == [
            ("rm", f"{NAME}-dev"),
            ("rm", f"{NAME}-test"),
            ("rmi", NAME),
        ]
        assert not standard_setup.exists()
        assert result.cleaned_resources == [
            f"container {NAME}-dev",
            f"container {NAME}-test",
            f"image {NAME}",
            f"directory {standard_setup}",
        ]
        assert [event.step for event in events] == [1, 2, 3, 4]

    async def test_container_failure_skips_dependents(self, engine, cleaner, standard_setup):
        """Test a failed container removal keeps the image and directory."""
        engine.failures[("rm", f"{NAME}-dev")] = "device busy"
        option = await standard_option(cleaner)

        result = await cleaner.execute(option, confirm=lambda message: True)

        assert not result.success
        assert ("rmi", NAME) not in engine.calls
        assert standard_setup.is_dir()
        assert result.cleaned_resources == [f"container {NAME}-test"]
        assert f"image {NAME}" in result.skipped_resources
        assert f"directory {standard_setup}" in result.skipped_resources
        assert "device busy" in result.errors[f"container {NAME}-dev"]

    async def test_image_failure_keeps_directory(self, engine, cleaner, standard_setup):
        """Test removed containers are reported when the image removal fails."""
        engine.failures[("rmi", NAME)] = "image is being used"
        option = await standard_option(cleaner)

        result = await cleaner.execute(option, confirm=lambda message: True)

        assert not result.success
        assert result.cleaned_resources == [
            f"container {NAME}-dev",
            f"container {NAME}-test",
        ]
        assert result.skipped_resources == [
            f"image {NAME}",
            f"directory {standard_setup}",
        ]
        assert "image is being used" in result.errors[f"image {NAME}"]
        assert standard_setup.is_dir()

    async def test_missing_confirm_callback_declines(self, engine, cleaner, standard_setup):
        """Test no deletions happen without a confirm callback."""
        option = await standard_option(cleaner)

        result = await cleaner.execute(option)

        assert result.cancelled
        assert engine.calls == []
        assert standard_setup.is_dir()

    async def test_declined_confirmation(self, engine, cleaner, standard_setup):
        """Test nothing is removed when the summary is declined."""
        option = await standard_option(cleaner)
        confirm = MagicMock(return_value=False)

        result = await cleaner.execute(option, confirm=confirm)

        assert result.cancelled
        assert "image" in confirm.call_args[0][0]
        assert engine.calls == []
        assert standard_setup.is_dir()

    async def test_dry_run(self, engine, cleaner, standard_setup):
        """Test dry runs only report."""
        option = await standard_option(cleaner)
        confirm = MagicMock(return_value=True)

        result = await cleaner.execute(option, confirm=confirm, dry_run=True)

        assert result.dry_run
        assert f"container {NAME}-dev" in result.message
        confirm.assert_not_called()
        assert engine.calls == []

    async def test_cancellation_between_steps(self, engine, cleaner, standard_setup):
        """Test a cancel request stops before the next step."""
        option = await standard_option(cleaner)
        cancel = asyncio.Event()

        def cancel_after_first(operation, target):
            cancel.set()

        engine.before_call = cancel_after_first

        result = await cleaner.execute(option, confirm=lambda message: True, cancel_event=cancel)

        assert result.cancelled
        assert not result.success
        assert engine.calls == [("rm", f"{NAME}-dev")]
        assert result.cleaned_resources == [f"container {NAME}-dev"]
        assert f"image {NAME}" in result.skipped_resources
        assert standard_setup.is_dir()

    async def test_build_cache_option(self, engine, cleaner, standard_setup):
        """Test the build cache is pruned last."""
        options = await cleaner.compute_cleaning_options(ResourceLayer.IMAGES, NAME)

        result = await cleaner.execute(options[1], confirm=lambda message: True)

        assert result.success
        assert engine.calls[-1] == ("prune", "build-cache")

    async def test_custom_directory_and_containers(self, config, engine, cleaner):
        """Test Custom cleanup removes matching containers then the directory."""
        path = make_entry(config.custom_dir, "web")
        engine.add_container("web-dev", "web")
        options = await cleaner.compute_cleaning_options(ResourceLayer.CUSTOM, "web")

        result = await cleaner.execute(options[1], confirm=lambda message: True)

        assert result.success
        assert engine.calls == [("rm", "web-dev")]
        assert not path.exists()

    async def test_custom_directory_only(self, config, engine, cleaner):
        """Test directory-only cleanup leaves containers."""
        path = make_entry(config.custom_dir, "web")
        engine.add_container("web-dev", "web")
        options = await cleaner.compute_cleaning_options(ResourceLayer.CUSTOM, "web")

        result = await cleaner.execute(options[0], confirm=lambda message: True)

        assert result.success
        assert engine.calls == []
        assert not path.exists()
        assert "web-dev" in engine.containers


@pytest.mark.asyncio
class TestKeepLatest:
    """Test keep-latest cleanup across timestamped entries."""

    async def test_keep_latest_three(self, config, engine, cleaner):
        """Test the oldest entries beyond the count are removed."""
        names = [f"app-2025012{day}-1000" for day in range(1, 6)]
        for name in names:
            make_entry(config.images_dir, name)
        make_entry(config.images_dir, "untimestamped")

        options = await cleaner.compute_cleaning_options(ResourceLayer.IMAGES)
        assert [o.keep_count for o in options] == [3, 5]
        assert options[0].targets == [f"image {names[1]}", f"image {names[0]}"]

        result = await cleaner.execute(options[0], confirm=lambda message: True)

        assert result.success, result.message
        remaining = sorted(p.name for p in config.images_dir.iterdir() if p.is_dir())
        assert remaining == sorted([*names[2:], "untimestamped"])

    async def test_keep_latest_skips_production(self, config, engine, cleaner):
        """Test guarded entries are reported, not removed."""
        names = [f"app-2025012{day}-1000" for day in range(1, 5)]
        for name in names:
            make_entry(config.images_dir, name)
        engine.add_container(f"{names[0]}-prod", names[0], status=ContainerStatus.STOPPED)

        options = await cleaner.compute_cleaning_options(ResourceLayer.IMAGES)
        result = await cleaner.execute(options[0], confirm=lambda message: True)

        assert (config.images_dir / names[0]).is_dir()
        assert names[0] in result.skipped_resources
        assert "prod" in result.errors[names[0]]
        assert not result.success
