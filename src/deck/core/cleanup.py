"""Cascading deletion across the three layers and the engine."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from deck.core.catalog import UnifiedResourceCatalog
from deck.core.collaborators import ConfirmCallback, ask
from deck.core.directories import ResourceDirectoryManager, split_timestamped_name
from deck.engines.base import ContainerEngine
from deck.exceptions import EngineError, FileSystemError, ProductionGuardTriggered
from deck.models.config import DeckConfig
from deck.models.resource import ResourceLayer
from deck.models.results import (
    CleaningOption,
    CleaningResult,
    CleaningStep,
    CleaningStrategy,
    ProgressEvent,
)
from deck.utils.process import CommandCancelled


logger = logging.getLogger(__name__)

KEEP_LATEST_COUNTS = (3, 5)

CONTAINER = "container"
IMAGE = "image"
DIRECTORY = "directory"
BUILD_CACHE = "build-cache"


@dataclass
class _Step:
    kind: str
    target: str
    # Label of the step that must have succeeded first
    requires: List[str] = field(default_factory=list)
    layer: Optional[ResourceLayer] = None
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.kind} {self.target}"


@dataclass
class _Plan:
    steps: List[_Step] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)


class CascadingCleanupEngine:
    """Computes and executes cleanup options under the safety policies."""

    def __init__(
        self,
        config: DeckConfig,
        engine: ContainerEngine,
        directories: ResourceDirectoryManager,
        catalog: UnifiedResourceCatalog,
    ):
        """Initialize cleanup engine."""
        self.config = config
        self.engine = engine
        self.directories = directories
        self.catalog = catalog

    async def compute_cleaning_options(
        self, layer: ResourceLayer, resource_id: Optional[str] = None
    ) -> List[CleaningOption]:
        """List what can be cleaned for a resource, most recommended first."""
        layer = ResourceLayer(layer)
        if layer == ResourceLayer.TEMPLATES:
            return [self._template_refusal(resource_id)]
        if layer == ResourceLayer.CUSTOM:
            if not resource_id:
                raise ValueError("A Custom configuration name is required")
            return await self._custom_options(resource_id)
        if resource_id is None:
            return await self._keep_latest_options()
        return await self._image_options(resource_id)

    def _template_refusal(self, resource_id: Optional[str]) -> CleaningOption:
        return CleaningOption(
            strategy=CleaningStrategy.REFUSED,
            layer=ResourceLayer.TEMPLATES,
            resource_id=resource_id,
            description="Templates cannot be cleaned; they are overwritten on every sync",
            recommended=False,
            hints=["deck templates update"],
        )

    async def _custom_options(self, name: str) -> List[CleaningOption]:
        path = self.directories.entry_path(ResourceLayer.CUSTOM, name)
        if not path.is_dir():
            raise FileSystemError(path, "Resource directory not found")
        containers = self.catalog.match_containers(name, await self.engine.list_containers())
        container_targets = [f"{CONTAINER} {record.name}" for record in containers]
        return [
            CleaningOption(
                strategy=CleaningStrategy.DIRECTORY_ONLY,
                layer=ResourceLayer.CUSTOM,
                resource_id=name,
                description="Delete the configuration directory only",
                targets=[f"{DIRECTORY} {path}"],
            ),
            CleaningOption(
                strategy=CleaningStrategy.DIRECTORY_AND_CONTAINERS,
                layer=ResourceLayer.CUSTOM,
                resource_id=name,
                description="Delete the configuration directory and containers still using its name",
                recommended=bool(containers),
                targets=[*container_targets, f"{DIRECTORY} {path}"],
            ),
        ]

    async def _image_options(self, name: str) -> List[CleaningOption]:
        try:
            plan = await self._image_plan(name)
        except ProductionGuardTriggered as e:
            return [self._guard_refusal(name, e)]
        targets = [step.label for step in plan.steps]
        return [
            CleaningOption(
                strategy=CleaningStrategy.STANDARD,
                layer=ResourceLayer.IMAGES,
                resource_id=name,
                description="Delete image, related containers and configuration directory",
                targets=targets,
            ),
            CleaningOption(
                strategy=CleaningStrategy.STANDARD_WITH_BUILD_CACHE,
                layer=ResourceLayer.IMAGES,
                resource_id=name,
                description="Delete image, related containers, configuration directory and build cache",
                recommended=False,
                warning="Later builds will have to download all dependencies again",
                targets=[*targets, BUILD_CACHE],
            ),
        ]

    async def _keep_latest_options(self) -> List[CleaningOption]:
        options = []
        for count in KEEP_LATEST_COUNTS:
            surplus = await self._surplus_images(count)
            options.append(CleaningOption(
                strategy=CleaningStrategy.KEEP_LATEST,
                layer=ResourceLayer.IMAGES,
                description=f"Keep the latest {count} images of each configuration ({len(surplus)} to delete)",
                keep_count=count,
                targets=[f"{IMAGE} {name}" for name in surplus],
            ))
        return options

    def _guard_refusal(self, name: str, error: ProductionGuardTriggered) -> CleaningOption:
        return CleaningOption(
            strategy=CleaningStrategy.REFUSED,
            layer=ResourceLayer.IMAGES,
            resource_id=name,
            description=str(error),
            recommended=False,
            targets=[],
            hints=[error.hint],
        )

    def _production_container(self, names: List[str], entry_name: str) -> Optional[str]:
        for suffix in self.config.environments.production_suffixes:
            candidate = f"{entry_name}-{suffix}"
            if candidate in names:
                return candidate
        return None

    async def _image_plan(self, name: str) -> _Plan:
        """Ordered steps for one Images entry; raises when production is involved."""
        path = self.directories.entry_path(ResourceLayer.IMAGES, name)
        containers = await self.engine.list_containers()
        images = await self.engine.list_images()
        relationship = self.catalog.correlate(name, images, containers)

        # Any status counts, a stopped production container still blocks
        blocked = self._production_container([c.name for c in containers], name)
        if blocked:
            hint = self.engine.command_hint("stop", blocked)
            logger.warning(f"Cleanup of {name} refused: production container {blocked}")
            raise ProductionGuardTriggered(blocked, hint)

        plan = _Plan()
        container_labels = []
        for container_name in relationship.container_names:
            step = _Step(CONTAINER, container_name)
            plan.steps.append(step)
            container_labels.append(step.label)

        image_label = None
        if relationship.image_ref:
            image_step = _Step(IMAGE, relationship.image_ref, requires=list(container_labels))
            plan.steps.append(image_step)
            image_label = image_step.label

        if path.is_dir():
            requires = [image_label] if image_label else list(container_labels)
            plan.steps.append(_Step(
                DIRECTORY, str(path), requires=requires, layer=ResourceLayer.IMAGES, name=name
            ))
        elif not plan.steps:
            raise FileSystemError(path, "Resource directory not found")
        return plan

    async def _surplus_images(self, keep: int) -> List[str]:
        groups: Dict[str, List[tuple]] = {}
        for entry in await self.directories.list_entries(ResourceLayer.IMAGES):
            parsed = split_timestamped_name(entry.name)
            if parsed is None:
                continue
            base, stamp = parsed
            groups.setdefault(base, []).append((stamp, entry.name))
        surplus = []
        for base in sorted(groups):
            ordered = sorted(groups[base], reverse=True)
            surplus.extend(name for _, name in ordered[keep:])
        return surplus

    async def _build_plan(self, option: CleaningOption) -> _Plan:
        if option.strategy in (CleaningStrategy.STANDARD, CleaningStrategy.STANDARD_WITH_BUILD_CACHE):
            plan = await self._image_plan(option.resource_id)
            if option.strategy == CleaningStrategy.STANDARD_WITH_BUILD_CACHE:
                plan.steps.append(_Step(BUILD_CACHE, "engine"))
            return plan

        if option.strategy == CleaningStrategy.KEEP_LATEST:
            plan = _Plan()
            for name in await self._surplus_images(option.keep_count or KEEP_LATEST_COUNTS[0]):
                try:
                    sub_plan = await self._image_plan(name)
                except ProductionGuardTriggered as e:
                    plan.skipped[name] = str(e)
                    continue
                plan.steps.extend(sub_plan.steps)
            return plan

        name = option.resource_id
        path = self.directories.entry_path(ResourceLayer.CUSTOM, name)
        if not path.is_dir():
            raise FileSystemError(path, "Resource directory not found")
        plan = _Plan()
        labels = []
        if option.strategy == CleaningStrategy.DIRECTORY_AND_CONTAINERS:
            for record in self.catalog.match_containers(name, await self.engine.list_containers()):
                step = _Step(CONTAINER, record.name)
                plan.steps.append(step)
                labels.append(step.label)
        plan.steps.append(_Step(
            DIRECTORY, str(path), requires=labels, layer=ResourceLayer.CUSTOM, name=name
        ))
        return plan

    async def execute(
        self,
        option: CleaningOption,
        confirm: Optional[ConfirmCallback] = None,
        progress: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        dry_run: bool = False,
    ) -> CleaningResult:
        """Run a cleanup option after the caller confirms the full summary.

        Containers are always removed before their image, and the image
        before its directory; a step whose prerequisite failed is skipped.
        The result lists every step with its outcome.
        """
        if option.is_refusal:
            return CleaningResult(
                success=False,
                refused=True,
                message=option.description,
                hints=option.hints,
            )

        try:
            plan = await self._build_plan(option)
        except ProductionGuardTriggered as e:
            return CleaningResult(
                success=False,
                refused=True,
                blocked_by=e.container_name,
                message=str(e),
                hints=[e.hint],
            )
        except (EngineError, FileSystemError) as e:
            return CleaningResult(success=False, message=str(e))

        summary = self._summary(option, plan)
        if dry_run:
            return CleaningResult(
                success=True,
                dry_run=True,
                message=summary,
                skipped_resources=[step.label for step in plan.steps] + list(plan.skipped),
            )
        if not plan.steps:
            return CleaningResult(
                success=not plan.skipped,
                message="Nothing to clean",
                skipped_resources=list(plan.skipped),
                errors=dict(plan.skipped),
            )

        accepted = bool(await ask(confirm, summary)) if confirm is not None else False
        if not accepted:
            logger.info("Cleanup declined")
            return CleaningResult(
                success=False,
                cancelled=True,
                message="Cleanup cancelled; nothing was deleted",
                skipped_resources=[step.label for step in plan.steps],
            )

        return await self._run(plan, progress, cancel_event)

    def _summary(self, option: CleaningOption, plan: _Plan) -> str:
        lines = [f"{option.description}. The following will be deleted:"]
        lines.extend(f"  - {step.label}" for step in plan.steps)
        for name, reason in plan.skipped.items():
            lines.append(f"  (skipped {name}: {reason})")
        if option.warning:
            lines.append(f"Warning: {option.warning}")
        return "\n".join(lines)

    async def _run(self, plan: _Plan, progress, cancel_event) -> CleaningResult:
        result = CleaningResult(success=False)
        for name, reason in plan.skipped.items():
            result.skipped_resources.append(name)
            result.errors[name] = reason

        succeeded = set()
        total = len(plan.steps)
        for index, step in enumerate(plan.steps, start=1):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.skipped_resources.extend(s.label for s in plan.steps[index - 1:])
                logger.warning(f"Cleanup cancelled before {step.label}")
                break

            missing = [label for label in step.requires if label not in succeeded]
            if missing:
                reason = f"skipped because {missing[0]} was not removed"
                result.skipped_resources.append(step.label)
                result.errors[step.label] = reason
                result.steps.append(CleaningStep(kind=step.kind, target=step.target, success=False, error=reason))
                continue

            if progress is not None:
                progress(ProgressEvent(step=index, total=total, description=f"Removing {step.label}"))
            try:
                await self._perform(step, cancel_event)
            except CommandCancelled:
                result.cancelled = True
                result.errors[step.label] = "cancelled"
                result.steps.append(CleaningStep(kind=step.kind, target=step.target, success=False, error="cancelled"))
                result.skipped_resources.extend(s.label for s in plan.steps[index - 1:])
                break
            except (EngineError, FileSystemError) as e:
                logger.error(f"Failed to remove {step.label}: {e}")
                result.errors[step.label] = str(e)
                result.skipped_resources.append(step.label)
                result.steps.append(CleaningStep(kind=step.kind, target=step.target, success=False, error=str(e)))
                continue

            succeeded.add(step.label)
            result.cleaned_resources.append(step.label)
            result.steps.append(CleaningStep(kind=step.kind, target=step.target, success=True))

        result.success = not result.cancelled and not result.errors
        if result.cancelled:
            result.message = f"Cleanup cancelled after {len(result.cleaned_resources)} of {total} steps"
        elif result.success:
            result.message = f"Removed {len(result.cleaned_resources)} resources"
        else:
            result.message = (
                f"Cleanup partially failed: {len(result.cleaned_resources)} removed, "
                f"{len(result.skipped_resources)} not removed"
            )
        return result

    async def _perform(self, step: _Step, cancel_event: Optional[asyncio.Event]):
        if step.kind == CONTAINER:
            await self.engine.remove_container(step.target, force=True, cancel_event=cancel_event)
        elif step.kind == IMAGE:
            await self.engine.remove_image(step.target, cancel_event=cancel_event)
        elif step.kind == DIRECTORY:
            await self.directories.delete_entry(step.layer, step.name)
        elif step.kind == BUILD_CACHE:
            await self.engine.prune_build_cache(cancel_event=cancel_event)
