"""
Gemini Image Provider

Direct calls to the Generative Language API ``generateContent`` endpoint.
Reference images travel inline, each preceded by its text instruction.
"""

import base64
import binascii
from typing import Any, Dict, List, Optional

import httpx

from storyframe.core.exceptions import ContentPolicyError, ProviderError
from storyframe.core.logging_config import get_logger
from storyframe.core.models import GenerationRequest, GenerationResult, ImageData
from storyframe.providers.base import (
    ImageProvider,
    ProviderCapabilities,
    ProviderKind,
    is_content_policy_text,
)

logger = get_logger("providers.gemini")

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

# finishReason values that mean the image was withheld on safety grounds
BLOCKED_FINISH_REASONS = {"SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "RECITATION"}


class GeminiImageProvider(ImageProvider):
    """Synchronous image generation through Gemini image models."""

    kind = ProviderKind.GEMINI
    default_capabilities = ProviderCapabilities(supports_edit=True, supports_references=True, max_references=14)

    def __init__(
        self,
        api_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        base_url: str = GEMINI_API_BASE
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def missing_credentials(self) -> List[str]:
        return [] if self.api_key else ["GEMINI_API_KEY"]

    def _build_body(self, request: GenerationRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": request.prompt}]
        for part in request.parts:
            parts.append({"text": part.instruction})
            parts.append({"inline_data": {"mime_type": part.image.mime_type, "data": part.image.base64}})

        # imageConfig must be nested inside generationConfig
        image_config = {"aspectRatio": request.aspect_ratio}
        if request.resolution in ("2K", "4K") and "pro" in request.model_id:
            image_config["imageSize"] = request.resolution

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": image_config,
            },
        }

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.check_credentials()
        url = f"{self.base_url}/{request.model_id}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

        logger.info(f"Gemini request: {request.model_id}, {request.reference_count} references")
        result = await self._post_json(url, self._build_body(request), headers)
        image = self._extract_image(result)
        return GenerationResult(model_id=request.model_id, provider=self.name, image=image)

    def _extract_image(self, result: Dict[str, Any]) -> ImageData:
        block_reason = (result.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ContentPolicyError(self.name, f"prompt blocked ({block_reason})")

        candidates = result.get("candidates") or []
        if not candidates:
            raise ProviderError(self.name, "No candidates in response")

        candidate = candidates[0]
        text = ""
        for part in (candidate.get("content") or {}).get("parts", []):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                try:
                    data = base64.b64decode(inline["data"])
                except (binascii.Error, ValueError) as e:
                    raise ProviderError(self.name, f"undecodable image payload: {e}") from e
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return ImageData(data=data, mime_type=mime_type)
            text += part.get("text", "")

        finish_reason = candidate.get("finishReason", "")
        if finish_reason in BLOCKED_FINISH_REASONS:
            raise ContentPolicyError(self.name, f"image withheld ({finish_reason})")
        if is_content_policy_text(text):
            raise ContentPolicyError(self.name, text.strip())
        raise ProviderError(self.name, f"No image in response{': ' + text[:200] if text else ''}")
