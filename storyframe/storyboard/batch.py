"""
Batch Controller

Runs generation over every eligible scene in storyboard order, one at a time,
with a cooperative stop flag checked between scenes.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from storyframe.core.logging_config import get_logger
from storyframe.core.models import Scene
from storyframe.core.reference_store import ReferenceStore
from storyframe.storyboard.orchestrator import GenerationOrchestrator

logger = get_logger("storyboard.batch")


@dataclass
class BatchReport:
    """Outcome of a batch run."""
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    not_started: List[str] = field(default_factory=list)
    # Scenes left alone because another request was already generating them
    skipped: List[str] = field(default_factory=list)
    stopped: bool = False

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.failed) + len(self.not_started) + len(self.skipped)

    def summary(self) -> str:
        state = "stopped" if self.stopped else "finished"
        text = (
            f"Batch {state}: {len(self.completed)} completed, {len(self.failed)} failed, "
            f"{len(self.not_started)} not started"
        )
        if self.skipped:
            text += f", {len(self.skipped)} already generating"
        return text


def is_eligible(scene: Scene) -> bool:
    """A scene is generated in a batch when it has a description and no image yet."""
    return bool(scene.description and scene.description.strip()) and not scene.generated_image


class BatchController:
    """
    Sequential "generate all" driver.

    Usage:
        controller = BatchController(orchestrator, reference_store)
        report = await controller.run_all()
        # from another task:
        controller.stop()
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        reference_store: Optional[ReferenceStore] = None,
        delay: float = 0.5,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """
        Initialize the controller.

        Args:
            orchestrator: Generates individual scenes
            reference_store: Pre-warmed with every known image before the run
            delay: Seconds awaited between scenes
            sleep: Awaitable sleep (injectable for tests)
        """
        self.orchestrator = orchestrator
        self.reference_store = reference_store
        self.delay = delay
        self._sleep = sleep or asyncio.sleep
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_stopping(self) -> bool:
        return self._running and self._stop_requested

    def stop(self) -> bool:
        """Request a stop at the next checkpoint. Returns False when no batch is running."""
        if not self._running:
            return False
        if not self._stop_requested:
            logger.info("Stop requested; finishing current scene")
        self._stop_requested = True
        return True

    def eligible_scenes(self, scenes: Optional[List[Scene]] = None) -> List[Scene]:
        pool = scenes if scenes is not None else self.orchestrator.storyboard.scenes
        return [s for s in sorted(pool, key=lambda s: s.sequence_number) if is_eligible(s)]

    async def run_all(self, scenes: Optional[List[Scene]] = None) -> BatchReport:
        """
        Generate every eligible scene in order.

        Args:
            scenes: Restrict the run to these scenes (defaults to the whole storyboard)

        Returns:
            BatchReport (empty when a batch is already running)
        """
        if self._running:
            logger.warning("Batch already running; ignoring second request")
            return BatchReport()

        self._running = True
        self._stop_requested = False
        report = BatchReport()
        queue = self.eligible_scenes(scenes)

        try:
            logger.info(f"Starting batch: {len(queue)} scene(s)")
            self.orchestrator.start_batch(len(queue))

            if self.reference_store is not None and queue:
                warmed = await self.reference_store.pre_warm(self.orchestrator.storyboard.all_image_refs())
                logger.debug(f"Pre-warmed {warmed} reference(s)")

            for index, scene in enumerate(queue):
                if self._stop_requested:
                    report.stopped = True
                    report.not_started.extend(s.id for s in queue[index:])
                    break

                if self.orchestrator.lock.is_locked(scene.id):
                    logger.info(f"Scene {scene.id} is already generating; leaving it to that request")
                    report.skipped.append(scene.id)
                    continue

                ok = await self.orchestrator.generate_for_scene(scene.id)
                (report.completed if ok else report.failed).append(scene.id)

                if index < len(queue) - 1 and not self._stop_requested:
                    await self._sleep(self.delay)

            logger.info(report.summary())
            self.orchestrator.end_batch(len(report.completed), stopped=report.stopped)
            return report

        finally:
            self._running = False
            self._stop_requested = False
