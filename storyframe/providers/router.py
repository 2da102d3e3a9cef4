"""
Provider Router

Dispatches generation requests to backend adapters through a model catalog
lookup, retries transient failures with bounded backoff, and optionally
falls back to a secondary model.
"""

from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from storyframe.core.exceptions import (
    ConfigurationError,
    ContentPolicyError,
    MissingCredentialsError,
    ProviderError,
    TransientProviderError,
    UnknownModelError,
)
from storyframe.core.logging_config import get_logger
from storyframe.core.models import GenerationRequest, GenerationResult
from storyframe.core.retry import IMAGE_GENERATION_RETRY_CONFIG, RetryConfig, retry_async_call
from storyframe.providers.base import ImageProvider, ProviderCapabilities, ProviderKind

logger = get_logger("providers.router")


@dataclass(frozen=True)
class ModelSpec:
    """Catalog entry for one selectable image model."""
    kind: ProviderKind
    label: str
    capabilities: Optional[ProviderCapabilities] = None


NO_REFERENCES = ProviderCapabilities(supports_edit=False, supports_references=False, max_references=0)


def _subjects(count: int) -> ProviderCapabilities:
    return ProviderCapabilities(supports_edit=True, supports_references=True, max_references=count)


MODEL_CATALOG: Dict[str, ModelSpec] = {
    # Imperial gateway
    "gemini-3-pro-image": ModelSpec(ProviderKind.IMPERIAL, "Imperial Pro Image"),
    # Gemini direct
    "gemini-3-pro-image-preview": ModelSpec(ProviderKind.GEMINI, "Nano Banana Pro"),
    "gemini-2.5-flash-image": ModelSpec(ProviderKind.GEMINI, "Nano Banana", _subjects(3)),
    # Fal.ai Flux
    "fal-ai/flux-general": ModelSpec(ProviderKind.FAL, "Flux.1 [Dev] Consistency"),
    "fal-ai/flux-pro/v1.1-ultra": ModelSpec(ProviderKind.FAL, "Flux.1.1 Ultra"),
    "fal-ai/flux-pro/v1.1": ModelSpec(ProviderKind.FAL, "Flux.1.1 Pro"),
    "fal-ai/flux/schnell": ModelSpec(ProviderKind.FAL, "Flux Schnell"),
    # Gommo hub
    "google_image_gen_banana_pro": ModelSpec(ProviderKind.GOMMO, "Nano Banana Pro (4K)", _subjects(6)),
    "google_image_gen_banana_pro_reason": ModelSpec(ProviderKind.GOMMO, "Nano Banana Pro Reason", _subjects(8)),
    "google_image_gen_banana": ModelSpec(ProviderKind.GOMMO, "Nano Banana (Edit)", _subjects(9)),
    "google_image_gen_4_5": ModelSpec(ProviderKind.GOMMO, "Imagen 4.5", _subjects(3)),
    "seedream_4_5": ModelSpec(ProviderKind.GOMMO, "Seedream 4.5", _subjects(6)),
    "seedream_4_0": ModelSpec(ProviderKind.GOMMO, "Seedream 4.0 (Edit)", _subjects(9)),
    "o1": ModelSpec(ProviderKind.GOMMO, "IMAGE O1 - Kling", _subjects(6)),
    "dreamina_3_1": ModelSpec(
        ProviderKind.GOMMO, "Dreamina 3.1",
        ProviderCapabilities(supports_edit=True, supports_references=False, max_references=0)
    ),
    "midjourney_7_0": ModelSpec(ProviderKind.GOMMO, "Midjourney 7.0", NO_REFERENCES),
    "ideogram_v3": ModelSpec(ProviderKind.GOMMO, "Ideogram V3", NO_REFERENCES),
    "flux_1_1_pro": ModelSpec(ProviderKind.GOMMO, "FLUX 1.1 Pro (Gommo)", NO_REFERENCES),
    "flux_schnell": ModelSpec(ProviderKind.GOMMO, "FLUX Schnell (Gommo)", NO_REFERENCES),
    "dalle_3": ModelSpec(ProviderKind.GOMMO, "DALL-E 3", NO_REFERENCES),
}


class ProviderRouter:
    """
    Routes a GenerationRequest to the adapter serving its model.

    Usage:
        router = ProviderRouter({ProviderKind.GEMINI: GeminiImageProvider(api_key)})
        result = await router.generate(request)
    """

    def __init__(
        self,
        providers: Mapping[ProviderKind, ImageProvider],
        catalog: Optional[Mapping[str, ModelSpec]] = None,
        retry_config: RetryConfig = IMAGE_GENERATION_RETRY_CONFIG,
        fallback_model: Optional[str] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        """
        Initialize the router.

        Args:
            providers: Adapter instance per backend kind
            catalog: Model id lookup table (MODEL_CATALOG by default)
            retry_config: Backoff schedule; only transient errors are retried
            fallback_model: Model tried once when the primary fails for non-policy reasons
            sleep: Awaitable sleep used between retries
        """
        self.providers = dict(providers)
        self.catalog = dict(catalog if catalog is not None else MODEL_CATALOG)
        self.retry_config = replace(retry_config, retryable_exceptions=(TransientProviderError,))
        self.fallback_model = fallback_model
        self._sleep = sleep

    def resolve(self, model_id: str) -> Tuple[ModelSpec, ImageProvider]:
        """
        Look up the catalog entry and adapter for a model.

        Raises:
            UnknownModelError: If the model id is not in the catalog
            ConfigurationError: If no adapter is registered for its backend
        """
        spec = self.catalog.get(model_id)
        if spec is None:
            raise UnknownModelError(model_id)
        provider = self.providers.get(spec.kind)
        if provider is None:
            raise ConfigurationError(
                f"No adapter registered for {spec.kind.value}", {"model_id": model_id}
            )
        return spec, provider

    def capabilities_for(self, model_id: str) -> ProviderCapabilities:
        spec, provider = self.resolve(model_id)
        return spec.capabilities or provider.default_capabilities

    def check_credentials(self, model_id: str) -> None:
        _, provider = self.resolve(model_id)
        provider.check_credentials()

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate an image, retrying transient failures.

        Content-policy and credential errors propagate at once and never
        fall back. Other provider failures try ``fallback_model`` once.
        """
        _, provider = self.resolve(request.model_id)
        provider.check_credentials()

        try:
            return await self._generate_with_retry(provider, request)
        except (ContentPolicyError, MissingCredentialsError):
            raise
        except ProviderError as primary_error:
            if not self.fallback_model or self.fallback_model == request.model_id:
                raise
            return await self._generate_fallback(request, primary_error)

    async def _generate_with_retry(self, provider: ImageProvider, request: GenerationRequest) -> GenerationResult:
        return await retry_async_call(
            provider.generate,
            request,
            config=self.retry_config,
            sleep=self._sleep,
        )

    async def _generate_fallback(self, request: GenerationRequest, primary_error: ProviderError) -> GenerationResult:
        try:
            _, fallback_provider = self.resolve(self.fallback_model)
            fallback_provider.check_credentials()
        except ConfigurationError as e:
            logger.warning(f"Fallback model {self.fallback_model} unavailable: {e}")
            raise primary_error

        logger.warning(f"Primary model {request.model_id} failed: {primary_error}. Trying fallback {self.fallback_model}...")
        capabilities = self.capabilities_for(self.fallback_model)
        parts = request.parts[:capabilities.max_references] if capabilities.supports_references else []
        fallback_request = replace(request, model_id=self.fallback_model, parts=parts)

        try:
            return await self._generate_with_retry(fallback_provider, fallback_request)
        except ProviderError as fallback_error:
            logger.error(f"Fallback also failed: {fallback_error}")
            raise
