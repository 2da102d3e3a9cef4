"""
Gommo Provider

Job-based proxy hub. A submission returns a job id (``id_base``); the job
status endpoint is then polled until it reports success or error, and the
finished asset is downloaded from the returned CDN URL.

Wire protocol (form-encoded POSTs against ``GOMMO_BASE_URL``):

    ai/generateImage  access_token, domain, action_type, model, prompt, ratio, subjects
                      -> {"imageInfo": {"id_base": ..., "status": ...}}
    ai/image          access_token, domain, id_base
                      -> {"imageInfo": {"status": ..., "url": ...}}
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from storyframe.core.exceptions import (
    ContentPolicyError,
    PollingTimeoutError,
    ProviderError,
    TransientProviderError,
)
from storyframe.core.logging_config import get_logger
from storyframe.core.models import GenerationRequest, GenerationResult, ImageData
from storyframe.core.reference_store import fix_mime_type
from storyframe.core.retry import PollConfig, PollExhaustedError, RetryConfig, poll_until, retry_async_call
from storyframe.providers.base import (
    ImageProvider,
    ProviderCapabilities,
    ProviderKind,
    is_content_policy_text,
)

logger = get_logger("providers.gommo")

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"

TERMINAL_STATUSES = {STATUS_SUCCESS, STATUS_ERROR}

# A single flaky status poll should not abort a job that is still running
STATUS_RETRY_CONFIG = RetryConfig(
    max_retries=2,
    base_delay=1.0,
    max_delay=5.0,
    jitter=False,
    retryable_exceptions=(TransientProviderError,)
)


def normalize_status(raw: Optional[str]) -> str:
    """Collapse backend status spellings (SUCCESS, PENDING_ACTIVE, failed...) to four states."""
    value = (raw or "").strip().lower()
    if "success" in value or value in ("done", "completed", "succeeded"):
        return STATUS_SUCCESS
    if "error" in value or "fail" in value or value in ("canceled", "cancelled"):
        return STATUS_ERROR
    if "process" in value or "running" in value:
        return STATUS_PROCESSING
    return STATUS_PENDING


def convert_ratio(aspect_ratio: str) -> str:
    """Gommo expects ratios as ``16_9``."""
    return aspect_ratio.replace(":", "_")


class GommoImageProvider(ImageProvider):
    """Asynchronous image generation through the Gommo job API."""

    kind = ProviderKind.GOMMO
    default_capabilities = ProviderCapabilities(supports_edit=True, supports_references=True, max_references=6)

    def __init__(
        self,
        domain: str = "",
        access_token: str = "",
        base_url: str = "https://api.gommo.net",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        poll_config: Optional[PollConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        super().__init__(client=client, timeout=timeout)
        self.domain = domain
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.poll_config = poll_config or PollConfig()
        self._sleep = sleep

    def missing_credentials(self) -> List[str]:
        missing = []
        if not self.domain:
            missing.append("GOMMO_DOMAIN")
        if not self.access_token:
            missing.append("GOMMO_ACCESS_TOKEN")
        return missing

    def _auth(self) -> Dict[str, str]:
        return {"access_token": self.access_token, "domain": self.domain}

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.check_credentials()

        job_id = await self.submit(request)
        logger.info(f"Gommo job {job_id} submitted ({request.model_id})")

        info = await self.wait_for_job(job_id)
        image_url = info.get("url") or info.get("image_url")
        if not image_url:
            raise ProviderError(self.name, f"job {job_id} finished without an asset URL")

        data = await self.download(image_url)
        image = ImageData(data=data, mime_type=fix_mime_type(None, url=image_url, data=data))
        return GenerationResult(
            model_id=request.model_id,
            provider=self.name,
            image=image,
            image_url=image_url,
            job_id=job_id,
        )

    async def submit(self, request: GenerationRequest) -> str:
        """Create a job and return its id."""
        form = {
            **self._auth(),
            "action_type": "create",
            "model": request.model_id,
            "prompt": request.prompt,
            "ratio": convert_ratio(request.aspect_ratio),
            "project_id": "default",
        }
        if request.parts:
            form["subjects"] = json.dumps([{"data": part.image.base64} for part in request.parts])

        response = await self._request("POST", f"{self.base_url}/ai/generateImage", data=form)
        result = self._json(response)
        self._raise_for_body_error(result)

        info = result.get("imageInfo") or {}
        job_id = info.get("id_base") or result.get("id_base")
        if not job_id:
            raise ProviderError(self.name, f"no job id in submission response: {str(result)[:200]}")
        return str(job_id)

    async def fetch_status(self, job_id: str) -> Dict[str, Any]:
        """Fetch one status snapshot with a normalized ``status`` field, retrying transient failures."""
        return await retry_async_call(
            self._fetch_status_once, job_id, config=STATUS_RETRY_CONFIG, sleep=self._sleep
        )

    async def _fetch_status_once(self, job_id: str) -> Dict[str, Any]:
        response = await self._request(
            "POST", f"{self.base_url}/ai/image", data={**self._auth(), "id_base": job_id}
        )
        result = self._json(response)
        info = dict(result.get("imageInfo") or result.get("data") or {})
        info["status"] = normalize_status(info.get("status"))
        return info

    async def wait_for_job(self, job_id: str) -> Dict[str, Any]:
        """
        Poll a job until it reaches a terminal state.

        Raises:
            PollingTimeoutError: If the attempt budget is exhausted
            ContentPolicyError: If the job failed on content grounds
            ProviderError: If the job failed otherwise
        """
        def on_poll(info: Dict[str, Any], attempt: int) -> None:
            logger.debug(f"Gommo job {job_id} poll {attempt}/{self.poll_config.max_attempts}: {info['status']}")

        try:
            info = await poll_until(
                lambda: self.fetch_status(job_id),
                lambda info: info["status"] in TERMINAL_STATUSES,
                config=self.poll_config,
                sleep=self._sleep,
                on_poll=on_poll,
            )
        except PollExhaustedError as e:
            raise PollingTimeoutError(self.name, job_id, e.attempts) from e

        if info["status"] == STATUS_ERROR:
            reason = str(info.get("error") or info.get("message") or "job failed")
            if is_content_policy_text(reason):
                raise ContentPolicyError(self.name, reason)
            raise ProviderError(self.name, f"job {job_id}: {reason}")
        return info

    def _raise_for_body_error(self, result: Dict[str, Any]) -> None:
        error = result.get("error")
        if not error:
            return
        reason = error.get("message") if isinstance(error, dict) else str(error)
        if is_content_policy_text(reason):
            raise ContentPolicyError(self.name, reason)
        raise ProviderError(self.name, reason)
