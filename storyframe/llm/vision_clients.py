"""
Vision Clients

Thin async clients for multimodal models used to compare two frames:
Gemini ``generateContent`` with inline images and Groq's OpenAI-compatible
chat completions with data-URL images. FallbackVisionClient tries each
configured backend in turn.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from storyframe.core.exceptions import ValidationBackendError
from storyframe.core.logging_config import get_logger
from storyframe.core.models import ImageData

logger = get_logger("llm.vision_clients")

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"


class VisionClient(ABC):
    """A model that answers a text prompt about a set of images."""

    name: str = "vision"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are present."""

    @abstractmethod
    async def analyze(self, prompt: str, images: Sequence[ImageData]) -> str:
        """
        Return the model's text answer.

        Raises:
            ValidationBackendError: On transport, HTTP or empty-response failures
        """

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = await self._get_client().post(url, json=body, headers=headers)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            raise ValidationBackendError(f"{self.name} vision call failed: {e}") from e
        except ValueError as e:
            raise ValidationBackendError(f"{self.name} returned invalid JSON") from e
        if not isinstance(result, dict):
            raise ValidationBackendError(f"{self.name} returned an unexpected response shape")
        return result


class GeminiVisionClient(VisionClient):
    """Gemini multimodal analysis."""

    name = "gemini"

    def __init__(self, api_key: str = "", model: str = "gemini-2.5-flash",
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.model = model

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def analyze(self, prompt: str, images: Sequence[ImageData]) -> str:
        # Images first, then the text prompt
        parts: List[Dict[str, Any]] = [
            {"inline_data": {"mime_type": img.mime_type, "data": img.base64}} for img in images
        ]
        parts.append({"text": prompt})

        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {"temperature": 0.3, "maxOutputTokens": 2048},
        }
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        result = await self._post(f"{GEMINI_API_BASE}/{self.model}:generateContent", body, headers)

        text = ""
        candidates = result.get("candidates") or []
        if candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
            for part in content.get("parts") or []:
                if isinstance(part, dict) and isinstance(part.get("text"), str):
                    text += part["text"]
        if not text.strip():
            raise ValidationBackendError("gemini vision returned no text")
        return text


class GroqVisionClient(VisionClient):
    """Groq-hosted vision model through the OpenAI-compatible API."""

    name = "groq"

    def __init__(self, api_key: str = "", model: str = "meta-llama/llama-4-scout-17b-16e-instruct",
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.model = model

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def analyze(self, prompt: str, images: Sequence[ImageData]) -> str:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend({"type": "image_url", "image_url": {"url": img.to_data_uri()}} for img in images)

        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0.3,
            "max_tokens": 2048,
        }
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        result = await self._post(GROQ_CHAT_URL, body, headers)

        choices = result.get("choices") or []
        message = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
        text = message.get("content") if isinstance(message, dict) else None
        if not text or not str(text).strip():
            raise ValidationBackendError("groq vision returned no text")
        return str(text)


class FallbackVisionClient(VisionClient):
    """Tries each configured vision client in order."""

    name = "fallback"

    def __init__(self, clients: Sequence[VisionClient]):
        super().__init__()
        self.clients = list(clients)

    def is_configured(self) -> bool:
        return any(c.is_configured() for c in self.clients)

    async def analyze(self, prompt: str, images: Sequence[ImageData]) -> str:
        configured = [c for c in self.clients if c.is_configured()]
        if not configured:
            raise ValidationBackendError("No vision backend configured")

        last_error: Optional[ValidationBackendError] = None
        for client in configured:
            try:
                return await client.analyze(prompt, images)
            except ValidationBackendError as e:
                logger.warning(f"Vision backend {client.name} failed: {e}")
                last_error = e
        raise last_error

    async def aclose(self) -> None:
        for client in self.clients:
            await client.aclose()
