"""
Pipeline Factory

Wires the reference store, provider adapters, router, continuity components,
orchestrator and batch controller from StoryframeSettings.
"""

from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

import httpx

from storyframe.core.config import StoryframeSettings, get_settings
from storyframe.core.logging_config import get_logger
from storyframe.core.models import Storyboard
from storyframe.core.reference_store import ReferenceStore
from storyframe.core.retry import IMAGE_GENERATION_RETRY_CONFIG, PollConfig
from storyframe.llm.vision_clients import FallbackVisionClient, GeminiVisionClient, GroqVisionClient
from storyframe.providers.base import ProviderKind
from storyframe.providers.fal import FalImageProvider
from storyframe.providers.gemini import GeminiImageProvider
from storyframe.providers.gommo import GommoImageProvider
from storyframe.providers.imperial import ImperialImageProvider
from storyframe.providers.router import ProviderRouter
from storyframe.quality.raccord_validator import ContinuityValidator, ValidationOptions
from storyframe.storyboard.batch import BatchController
from storyframe.storyboard.continuity import ContinuityResolver
from storyframe.storyboard.learning import PromptLearningStore
from storyframe.storyboard.orchestrator import GenerationOrchestrator
from storyframe.storyboard.prompt_assembler import PromptAssembler

logger = get_logger("factory")


@dataclass
class Pipeline:
    """Every component of a wired pipeline, sharing one storyboard."""
    storyboard: Storyboard
    settings: StoryframeSettings
    reference_store: ReferenceStore
    router: ProviderRouter
    assembler: PromptAssembler
    resolver: ContinuityResolver
    validator: Optional[ContinuityValidator]
    vision_client: Optional[FallbackVisionClient]
    learning_store: PromptLearningStore
    orchestrator: GenerationOrchestrator
    batch: BatchController

    async def aclose(self) -> None:
        """Close every HTTP client the pipeline created."""
        for provider in self.router.providers.values():
            await provider.aclose()
        if self.vision_client is not None:
            await self.vision_client.aclose()
        await self.reference_store.aclose()

    async def __aenter__(self) -> "Pipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def build_pipeline(
    storyboard: Storyboard,
    settings: Optional[StoryframeSettings] = None,
    client: Optional[httpx.AsyncClient] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None
) -> Pipeline:
    """
    Build a ready-to-run pipeline.

    Args:
        storyboard: Project snapshot to operate on
        settings: Settings (defaults to get_settings())
        client: Shared HTTP client; each component creates its own if omitted
        sleep: Awaitable sleep for retries, polling and batch delays

    Returns:
        Pipeline
    """
    settings = settings or get_settings()
    timeout = settings.request_timeout

    reference_store = ReferenceStore(
        client=client,
        timeout=settings.reference_timeout,
        max_size=settings.reference_cache_size,
        ttl_minutes=settings.reference_cache_ttl_minutes,
    )

    providers = {
        ProviderKind.GEMINI: GeminiImageProvider(
            api_key=settings.gemini_api_key, client=client, timeout=timeout
        ),
        ProviderKind.IMPERIAL: ImperialImageProvider(
            api_key=settings.imperial_api_key, base_url=settings.imperial_base_url,
            client=client, timeout=timeout
        ),
        ProviderKind.FAL: FalImageProvider(api_key=settings.fal_key, client=client, timeout=timeout),
        ProviderKind.GOMMO: GommoImageProvider(
            domain=settings.gommo_domain,
            access_token=settings.gommo_access_token,
            base_url=settings.gommo_base_url,
            client=client,
            timeout=timeout,
            poll_config=PollConfig(interval=settings.poll_interval, max_attempts=settings.poll_max_attempts),
            sleep=sleep,
        ),
    }
    router = ProviderRouter(
        providers,
        retry_config=replace(
            IMAGE_GENERATION_RETRY_CONFIG,
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
        ),
        fallback_model=settings.fallback_image_model,
        sleep=sleep,
    )

    learning_store = PromptLearningStore()
    assembler = PromptAssembler(reference_store, learning_sink=learning_store)
    resolver = ContinuityResolver()

    validator = None
    vision_client = None
    if settings.validation_enabled:
        vision_client = FallbackVisionClient([
            GeminiVisionClient(settings.gemini_api_key, model=settings.gemini_vision_model,
                               client=client, timeout=timeout),
            GroqVisionClient(settings.groq_api_key, model=settings.groq_vision_model,
                             client=client, timeout=timeout),
        ])
        if not vision_client.is_configured():
            logger.warning("No vision backend configured; continuity checks will pass through")
        validator = ContinuityValidator(
            reference_store,
            vision_client,
            ValidationOptions(
                strict_mode=settings.validation_strict_mode,
                auto_retry_threshold=settings.validation_auto_retry_threshold,
                ask_user_threshold=settings.validation_ask_user_threshold,
            ),
        )

    orchestrator = GenerationOrchestrator(
        storyboard,
        router,
        assembler,
        resolver=resolver,
        validator=validator,
        learning_sink=learning_store,
        default_model=settings.image_model,
        max_continuity_retries=settings.max_continuity_retries,
    )
    batch = BatchController(orchestrator, reference_store, delay=settings.batch_delay, sleep=sleep)

    logger.debug(f"Pipeline built for {len(storyboard.scenes)} scene(s), model {orchestrator.model_id}")
    return Pipeline(
        storyboard=storyboard,
        settings=settings,
        reference_store=reference_store,
        router=router,
        assembler=assembler,
        resolver=resolver,
        validator=validator,
        vision_client=vision_client,
        learning_store=learning_store,
        orchestrator=orchestrator,
        batch=batch,
    )
