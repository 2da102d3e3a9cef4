"""
Generation Orchestrator

Drives one scene through the full pipeline:

    lock -> continuity anchors -> prompt assembly -> provider router
         -> store image -> continuity validation -> (retry with correction)

A scene's image is only ever replaced by a successful generation for that
scene; failures are recorded as human-readable errors and leave the previous
image in place. At most one generation per scene id is in flight.
"""

import uuid
from typing import Callable, Dict, List, Optional

from storyframe.core.constants import DOP_SKIP_PREFIX
from storyframe.core.exceptions import GenerationError, describe_error
from storyframe.core.logging_config import get_logger
from storyframe.core.models import (
    ContinuityAction,
    ContinuityDecision,
    GenerationRequest,
    GenerationResult,
    Scene,
    SceneStatus,
    Storyboard,
)
from storyframe.providers.router import ProviderRouter
from storyframe.quality.raccord_validator import ContinuityValidator, format_decision
from storyframe.storyboard.continuity import ContinuityAnchors, ContinuityResolver
from storyframe.storyboard.learning import PromptLearningSink
from storyframe.storyboard.prompt_assembler import PromptAssembler

logger = get_logger("storyboard.orchestrator")

DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"

DEFAULT_CORRECTION = (
    "Fix continuity: match the reference shot's character identity, outfit, "
    "lighting direction and background exactly."
)


class GenerationLock:
    """Ownership map of scene id -> token for in-flight generations."""

    def __init__(self):
        self._owners: Dict[str, str] = {}

    def acquire(self, scene_id: str) -> Optional[str]:
        """Take the lock for a scene. Returns a token, or None if already held."""
        if scene_id in self._owners:
            return None
        token = uuid.uuid4().hex
        self._owners[scene_id] = token
        return token

    def release(self, scene_id: str, token: str) -> bool:
        """Release a lock; only the holder's token releases it."""
        if self._owners.get(scene_id) != token:
            return False
        del self._owners[scene_id]
        return True

    def is_locked(self, scene_id: str) -> bool:
        return scene_id in self._owners

    @property
    def active(self) -> List[str]:
        return list(self._owners)


class GenerationOrchestrator:
    """
    Generates images for storyboard scenes.

    Usage:
        orchestrator = GenerationOrchestrator(storyboard, router, assembler, validator=validator)
        orchestrator.register_callback(on_event)
        ok = await orchestrator.generate_for_scene("scene-3")
    """

    def __init__(
        self,
        storyboard: Storyboard,
        router: ProviderRouter,
        assembler: PromptAssembler,
        resolver: Optional[ContinuityResolver] = None,
        validator: Optional[ContinuityValidator] = None,
        lock: Optional[GenerationLock] = None,
        learning_sink: Optional[PromptLearningSink] = None,
        default_model: str = DEFAULT_IMAGE_MODEL,
        max_continuity_retries: int = 1
    ):
        """
        Initialize the orchestrator.

        Args:
            storyboard: Project snapshot; scenes are updated in place
            router: Provider router for image generation
            assembler: Prompt assembler (shares the reference store)
            resolver: Continuity resolver (default two shot anchors)
            validator: Optional continuity validator; None skips validation
            lock: Per-scene generation lock (a fresh one if omitted)
            learning_sink: Optional prompt outcome recorder
            default_model: Model used when the storyboard does not select one
            max_continuity_retries: Regenerations allowed after a retry verdict
        """
        self.storyboard = storyboard
        self.router = router
        self.assembler = assembler
        self.resolver = resolver or ContinuityResolver()
        self.validator = validator
        self.lock = lock or GenerationLock()
        self.learning_sink = learning_sink
        self.default_model = default_model
        self.max_continuity_retries = max_continuity_retries
        self._callbacks: List[Callable] = []
        self._generation_count = 0
        self._generation_total = 0

    @property
    def model_id(self) -> str:
        return self.storyboard.style.image_model or self.default_model

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def register_callback(self, callback: Callable) -> None:
        """Register a callback for generation events.

        Callback signature: callback(event_type: str, data: dict)
        Event types: 'generating', 'complete', 'error', 'ask_user', 'batch_start', 'batch_end'
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)
            logger.debug(f"Registered generation callback: {callback}")

    def unregister_callback(self, callback: Callable) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, event_type: str, data: dict) -> None:
        for callback in self._callbacks:
            try:
                callback(event_type, data)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    def start_batch(self, total: int) -> None:
        self._generation_count = 0
        self._generation_total = total
        self._notify_callbacks('batch_start', {'total': total})

    def end_batch(self, completed: int, stopped: bool = False) -> None:
        self._notify_callbacks('batch_end', {
            'completed': completed,
            'total': self._generation_total,
            'stopped': stopped
        })
        self._generation_count = 0
        self._generation_total = 0

    # -------------------------------------------------------------------------
    # Scene generation
    # -------------------------------------------------------------------------

    async def generate_for_scene(
        self,
        scene_id: str,
        refinement: Optional[str] = None,
        is_end_frame: bool = False
    ) -> bool:
        """
        Generate (or regenerate) the image for one scene.

        Args:
            scene_id: Target scene
            refinement: Optional extra instruction appended to the prompt
            is_end_frame: Store the result as the scene's end frame

        Returns:
            True if an image was stored, False on failure or when the scene
            is already generating
        """
        scene = self.storyboard.get_scene(scene_id)
        if scene is None:
            logger.warning(f"Unknown scene: {scene_id}")
            return False

        token = self.lock.acquire(scene_id)
        if token is None:
            logger.info(f"Scene {scene_id} is already generating; ignoring request")
            return False

        self._generation_count += 1
        try:
            scene.status = SceneStatus.GENERATING
            scene.error = None
            self._notify_callbacks('generating', {
                'scene_id': scene_id,
                'model': self.model_id,
                'end_frame': is_end_frame,
                'index': self._generation_count,
                'total': self._generation_total or self._generation_count
            })

            await self._run(scene, refinement, is_end_frame)

            scene.status = SceneStatus.IDLE
            self._notify_callbacks('complete', {
                'scene_id': scene_id,
                'image': scene.end_frame_image if is_end_frame else scene.generated_image,
                'end_frame': is_end_frame,
                'skipped_validation': bool(scene.error),
                'index': self._generation_count,
                'total': self._generation_total or self._generation_count
            })
            return True

        except Exception as e:
            message = describe_error(e)
            logger.error(f"Image generation failed for scene {scene_id}: {message}")
            scene.status = SceneStatus.ERROR
            scene.error = message
            self._notify_callbacks('error', {
                'scene_id': scene_id,
                'error': message,
                'index': self._generation_count,
                'total': self._generation_total or self._generation_count
            })
            return False

        finally:
            self.lock.release(scene_id, token)

    async def _run(self, scene: Scene, refinement: Optional[str], is_end_frame: bool) -> None:
        if not (scene.description or "").strip() and not refinement:
            raise GenerationError(scene.id, "no description to generate from")

        model_id = self.model_id
        capabilities = self.router.capabilities_for(model_id)
        self.router.check_credentials(model_id)

        anchors = self.resolver.resolve(self.storyboard, scene, for_end_frame=is_end_frame)
        attempt_refinement = refinement
        decision: Optional[ContinuityDecision] = None

        for attempt in range(self.max_continuity_retries + 1):
            assembled = await self.assembler.assemble(
                self.storyboard, scene, anchors, capabilities, attempt_refinement
            )
            request = GenerationRequest(
                prompt=assembled.prompt,
                model_id=model_id,
                parts=assembled.parts,
                aspect_ratio=self.storyboard.style.aspect_ratio,
                resolution=self.storyboard.style.resolution,
            )
            result = await self.router.generate(request)
            image_ref = self._store_result(scene, result, is_end_frame)

            decision = await self._validate(anchors, image_ref)
            scene.continuity_decision = decision
            if decision is None or decision.action == ContinuityAction.CONTINUE:
                break

            if decision.action == ContinuityAction.ASK_USER:
                logger.info(f"Scene {scene.id}: continuity needs review ({format_decision(decision)})")
                self._notify_callbacks('ask_user', {
                    'scene_id': scene.id,
                    'score': decision.score,
                    'errors': [e.description for e in decision.errors],
                    'correction_prompt': decision.correction_prompt
                })
                break

            if attempt < self.max_continuity_retries:
                logger.info(f"Scene {scene.id}: continuity retry {attempt + 1}/{self.max_continuity_retries}")
                correction = decision.correction_prompt or DEFAULT_CORRECTION
                attempt_refinement = f"{refinement}. {correction}" if refinement else correction
                continue

            scene.error = (
                f"{DOP_SKIP_PREFIX}: continuity score {decision.score:.2f} after {attempt + 1} attempt(s)"
            )
            logger.warning(f"Scene {scene.id}: {scene.error}")

        await self._record_outcome(scene, request.prompt, model_id, decision)

    def _store_result(self, scene: Scene, result: GenerationResult, is_end_frame: bool) -> str:
        image_ref = result.to_reference()
        if is_end_frame:
            scene.end_frame_image = image_ref
        else:
            scene.generated_image = image_ref
            if result.job_id:
                scene.provider_job_id = result.job_id
        scene.error = None
        logger.info(f"Scene {scene.id}: stored {'end frame' if is_end_frame else 'image'} from {result.provider}")
        return image_ref

    async def _validate(self, anchors: ContinuityAnchors, image_ref: str) -> Optional[ContinuityDecision]:
        if self.validator is None:
            return None
        reference = anchors.validation_reference()
        if reference is None:
            return None
        return await self.validator.validate(reference.image_ref, image_ref)

    async def _record_outcome(self, scene: Scene, prompt: str, model_id: str,
                              decision: Optional[ContinuityDecision]) -> None:
        if self.learning_sink is None:
            return
        approved = decision is None or decision.action == ContinuityAction.CONTINUE
        await self.learning_sink.record_outcome(
            scene.id, prompt, model_id, approved, decision.score if decision else None
        )

    # -------------------------------------------------------------------------
    # Group concepts
    # -------------------------------------------------------------------------

    async def generate_group_concept(self, group_id: str) -> Optional[str]:
        """
        Generate a people-free concept image for a scene group and store it
        as the group's moodboard reference.

        Returns:
            The stored image reference, or None on failure
        """
        group = self.storyboard.get_group(group_id)
        if group is None:
            logger.warning(f"Unknown scene group: {group_id}")
            return None

        request = GenerationRequest(
            prompt=self.assembler.build_concept_prompt(self.storyboard, group),
            model_id=self.model_id,
            aspect_ratio=self.storyboard.style.aspect_ratio,
            resolution=self.storyboard.style.resolution,
        )
        try:
            result = await self.router.generate(request)
        except Exception as e:
            message = describe_error(e)
            logger.error(f"Concept generation failed for group {group_id}: {message}")
            self._notify_callbacks('error', {'group_id': group_id, 'error': message})
            return None

        group.concept_image = result.to_reference()
        self._notify_callbacks('complete', {'group_id': group_id, 'image': group.concept_image})
        return group.concept_image
