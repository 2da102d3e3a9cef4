"""
Imperial Provider

OpenAI-compatible ``/v1/chat/completions`` gateway serving Gemini image
models. The image comes back as message content: a markdown image, a data
URL, bare base64 or a plain URL.
"""

import base64
import binascii
import re
from typing import Any, Dict, List, Optional

import httpx

from storyframe.core.constants import ASPECT_RATIO_SIZES
from storyframe.core.exceptions import ContentPolicyError, ProviderError
from storyframe.core.logging_config import get_logger
from storyframe.core.models import GenerationRequest, GenerationResult, ImageData
from storyframe.core.reference_store import decode_data_uri
from storyframe.providers.base import (
    ImageProvider,
    ProviderCapabilities,
    ProviderKind,
    is_content_policy_text,
)

logger = get_logger("providers.imperial")

MARKDOWN_IMAGE = re.compile(r"!\[.*?\]\((data:image/[^;]+;base64,[A-Za-z0-9+/=]+)\)")
MARKDOWN_URL_IMAGE = re.compile(r"!\[.*?\]\((https?://[^)\s]+)\)")
RAW_BASE64 = re.compile(r"^[A-Za-z0-9+/=\s]{100,}$")


class ImperialImageProvider(ImageProvider):
    """Synchronous image generation through the Imperial chat gateway."""

    kind = ProviderKind.IMPERIAL
    default_capabilities = ProviderCapabilities(supports_edit=True, supports_references=True, max_references=10)

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def missing_credentials(self) -> List[str]:
        missing = []
        if not self.api_key:
            missing.append("IMPERIAL_API_KEY")
        if not self.base_url:
            missing.append("IMPERIAL_BASE_URL")
        return missing

    def _build_body(self, request: GenerationRequest) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        for part in request.parts:
            content.append({"type": "text", "text": part.instruction})
            content.append({"type": "image_url", "image_url": {"url": part.image.to_data_uri()}})

        return {
            "model": request.model_id,
            "messages": [{"role": "user", "content": content}],
            "size": ASPECT_RATIO_SIZES.get(request.aspect_ratio, "1024x1024"),
        }

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.check_credentials()
        url = f"{self.base_url}/v1/chat/completions"
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}

        logger.info(f"Imperial request: {request.model_id}, size {ASPECT_RATIO_SIZES.get(request.aspect_ratio, '1024x1024')}")
        result = await self._post_json(url, self._build_body(request), headers)

        choices = result.get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") if choices else None) or ""
        if isinstance(content, list):
            content = "".join(c.get("text", "") for c in content if isinstance(c, dict))

        return self._parse_content(request.model_id, content.strip())

    def _parse_content(self, model_id: str, content: str) -> GenerationResult:
        if not content:
            raise ProviderError(self.name, "No content in response")

        match = MARKDOWN_IMAGE.search(content)
        if match:
            return GenerationResult(model_id=model_id, provider=self.name, image=self._decode_uri(match.group(1)))

        if content.startswith("data:image"):
            return GenerationResult(model_id=model_id, provider=self.name, image=self._decode_uri(content))

        if RAW_BASE64.match(content):
            try:
                data = base64.b64decode(re.sub(r"\s", "", content))
            except (binascii.Error, ValueError) as e:
                raise ProviderError(self.name, f"undecodable base64 content: {e}") from e
            return GenerationResult(model_id=model_id, provider=self.name, image=ImageData(data=data))

        match = MARKDOWN_URL_IMAGE.search(content)
        if match:
            return GenerationResult(model_id=model_id, provider=self.name, image_url=match.group(1))

        if content.startswith("http"):
            return GenerationResult(model_id=model_id, provider=self.name, image_url=content.split()[0])

        if is_content_policy_text(content):
            raise ContentPolicyError(self.name, content)
        raise ProviderError(self.name, f"Unexpected response format: {content[:100]}")

    def _decode_uri(self, uri: str) -> ImageData:
        try:
            return decode_data_uri(uri)
        except ValueError as e:
            raise ProviderError(self.name, f"undecodable image: {e}") from e
