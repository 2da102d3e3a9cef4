"""
Image Provider Base

Abstract adapter shared by every image backend, the closed set of backend
kinds, declared capabilities and HTTP error classification.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from storyframe.core.exceptions import (
    ContentPolicyError,
    MissingCredentialsError,
    ProviderError,
    TransientProviderError,
)
from storyframe.core.logging_config import get_logger
from storyframe.core.models import GenerationRequest, GenerationResult

logger = get_logger("providers.base")


class ProviderKind(Enum):
    """Image backends the router can dispatch to."""
    GEMINI = "gemini"
    IMPERIAL = "imperial"
    FAL = "fal"
    GOMMO = "gommo"


@dataclass(frozen=True)
class ProviderCapabilities:
    """What a backend/model accepts; the prompt assembler truncates to these."""
    supports_edit: bool = True
    supports_references: bool = True
    max_references: int = 14

    def limited_to(self, max_references: int) -> "ProviderCapabilities":
        return replace(self, max_references=max_references)


# Phrases backends use when refusing on content grounds (case-insensitive)
CONTENT_POLICY_PATTERNS = [
    "content policy",
    "safety filter",
    "safety system",
    "content filter",
    "prohibited",
    "blocked",
    "violates",
    "nsfw",
    "inappropriate",
    "harmful content",
    "not allowed",
]


def is_content_policy_text(text: Optional[str]) -> bool:
    """Check if a backend message indicates a content refusal."""
    if not text:
        return False
    text_lower = text.lower()
    return any(pattern in text_lower for pattern in CONTENT_POLICY_PATTERNS)


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        error = body.get("error") or body.get("message") or body.get("detail") or body
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return str(body)[:500]


def classify_http_error(provider: str, response: httpx.Response) -> Exception:
    """
    Map a failed backend response onto the error taxonomy.

    Args:
        provider: Backend name for messages
        response: The non-2xx response

    Returns:
        The exception to raise (not raised here)
    """
    status = response.status_code
    reason = _error_text(response)

    if status == 429 or status >= 500:
        return TransientProviderError(provider, f"HTTP {status}: {reason}", status_code=status)
    if status in (401, 403):
        return MissingCredentialsError(provider, reason=f"HTTP {status}: {reason}")
    if is_content_policy_text(reason):
        return ContentPolicyError(provider, reason, status_code=status)
    return ProviderError(provider, f"HTTP {status}: {reason}", status_code=status)


class ImageProvider(ABC):
    """
    Adapter for one image backend.

    Subclasses declare their kind and default capabilities, report which
    credentials are missing, and implement ``generate``.
    """

    kind: ProviderKind
    default_capabilities = ProviderCapabilities()

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    def missing_credentials(self) -> List[str]:
        """Names of required settings that are not configured."""

    def check_credentials(self) -> None:
        """
        Raise before any network call when credentials are absent.

        Raises:
            MissingCredentialsError: If any required credential is missing
        """
        missing = self.missing_credentials()
        if missing:
            raise MissingCredentialsError(self.name, missing)

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Produce one image for the request."""

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, translating transport and status failures."""
        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientProviderError(self.name, f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise TransientProviderError(self.name, f"connection error: {e}") from e

        if response.is_error:
            logger.debug(f"{self.name} {method} {url[:80]} -> HTTP {response.status_code}")
            raise classify_http_error(self.name, response)
        return response

    async def _post_json(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        response = await self._request("POST", url, json=body, headers=headers)
        return self._json(response)

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, f"invalid JSON response: {response.text[:200]}") from e
        if not isinstance(data, dict):
            raise ProviderError(self.name, f"unexpected response shape: {str(data)[:200]}")
        return data

    async def download(self, url: str) -> bytes:
        """Fetch a finished asset from a backend CDN."""
        response = await self._request("GET", url)
        return response.content
