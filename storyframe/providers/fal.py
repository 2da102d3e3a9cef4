"""
Fal.ai Provider

Synchronous Flux generation through ``https://fal.run/<model>``. The
finished image is returned as a CDN URL.
"""

from typing import Any, Dict, List, Optional

import httpx

from storyframe.core.constants import FAL_IMAGE_SIZES
from storyframe.core.exceptions import ContentPolicyError, ProviderError
from storyframe.core.logging_config import get_logger
from storyframe.core.models import GenerationRequest, GenerationResult, ReferenceKind
from storyframe.providers.base import ImageProvider, ProviderCapabilities, ProviderKind

logger = get_logger("providers.fal")

FAL_RUN_BASE = "https://fal.run"

# Control strength per reference role for flux-general
IDENTITY_STRENGTH = 0.7
SCENE_STRENGTH = 0.5


class FalImageProvider(ImageProvider):
    """Flux models hosted on Fal.ai."""

    kind = ProviderKind.FAL
    default_capabilities = ProviderCapabilities(supports_edit=True, supports_references=True, max_references=2)

    def __init__(
        self,
        api_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        base_url: str = FAL_RUN_BASE
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def missing_credentials(self) -> List[str]:
        return [] if self.api_key else ["FAL_KEY"]

    def _build_input(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": self._flatten_prompt(request),
            "image_size": FAL_IMAGE_SIZES.get(request.aspect_ratio, "landscape_16_9"),
            "num_images": 1,
            "output_format": "jpeg",
        }
        if not request.parts:
            return payload

        if "flux-general" in request.model_id:
            payload["control_images"] = [
                {
                    "image_url": part.image.to_data_uri(),
                    "control_strength": IDENTITY_STRENGTH
                    if part.kind == ReferenceKind.CHARACTER_FACE else SCENE_STRENGTH,
                }
                for part in request.parts
            ]
        else:
            payload["image_url"] = request.parts[0].image.to_data_uri()
            faces = [p for p in request.parts[1:] if p.kind == ReferenceKind.CHARACTER_FACE]
            if faces:
                payload["face_id_url"] = faces[0].image.to_data_uri()
        return payload

    @staticmethod
    def _flatten_prompt(request: GenerationRequest) -> str:
        # Flux takes a single text field, so reference instructions are appended
        notes = " ".join(part.instruction for part in request.parts)
        return f"{request.prompt} {notes}".strip()

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.check_credentials()
        url = f"{self.base_url}/{request.model_id}"
        headers = {"Content-Type": "application/json", "Authorization": f"Key {self.api_key}"}

        logger.info(f"Fal.ai request: {request.model_id}, {request.reference_count} references")
        result = await self._post_json(url, self._build_input(request), headers)

        nsfw_flags = result.get("has_nsfw_concepts") or []
        if any(nsfw_flags):
            raise ContentPolicyError(self.name, "image flagged by safety checker")

        images = result.get("images") or []
        image_url = images[0].get("url") if images and isinstance(images[0], dict) else None
        if not image_url:
            raise ProviderError(self.name, "No image URL in response")

        return GenerationResult(
            model_id=request.model_id,
            provider=self.name,
            image_url=image_url,
            job_id=result.get("request_id"),
        )
