"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: tiny PNG images, a sample storyboard,
scripted image/vision backends and a recording sleep.
"""

import asyncio
import base64
import io
from typing import Callable, List, Optional

import httpx
import pytest
from PIL import Image

from storyframe.core.models import (
    Character,
    GenerationRequest,
    GenerationResult,
    ImageData,
    Product,
    Scene,
    SceneGroup,
    Storyboard,
)
from storyframe.core.reference_store import ReferenceStore
from storyframe.llm.vision_clients import VisionClient
from storyframe.providers.base import ImageProvider, ProviderCapabilities, ProviderKind
from storyframe.providers.router import ProviderRouter
from storyframe.quality.raccord_validator import ContinuityValidator, ValidationOptions
from storyframe.storyboard.orchestrator import GenerationOrchestrator
from storyframe.storyboard.prompt_assembler import PromptAssembler


def make_png(color=(200, 30, 30), size=(8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_data_uri(color=(200, 30, 30)) -> str:
    return "data:image/png;base64," + base64.b64encode(make_png(color)).decode("ascii")


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedProvider(ImageProvider):
    """
    Image provider returning scripted outcomes in order.

    An outcome may be an exception (raised), a GenerationResult (returned) or
    None (a fresh PNG is returned). When a gate is given, every call waits for
    it before answering.
    """

    def __init__(
        self,
        outcomes: Optional[list] = None,
        kind: ProviderKind = ProviderKind.GEMINI,
        capabilities: Optional[ProviderCapabilities] = None,
        missing: Optional[List[str]] = None,
        gate: Optional[asyncio.Event] = None
    ):
        super().__init__()
        self.kind = kind
        self.outcomes = list(outcomes or [])
        self.missing = list(missing or [])
        self.gate = gate
        self.requests: List[GenerationRequest] = []
        if capabilities is not None:
            self.default_capabilities = capabilities

    def missing_credentials(self) -> List[str]:
        return list(self.missing)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, GenerationResult):
            return outcome
        color = ((len(self.requests) * 40) % 256, 120, 60)
        return GenerationResult(model_id=request.model_id, provider=self.name,
                                image=ImageData(make_png(color)))


class ScriptedVisionClient(VisionClient):
    """Vision client answering with scripted texts or raising scripted errors."""

    name = "scripted"

    def __init__(self, responses: Optional[list] = None, configured: bool = True):
        super().__init__()
        self.responses = list(responses or [])
        self.configured = configured
        self.calls: List[List[ImageData]] = []

    def is_configured(self) -> bool:
        return self.configured

    async def analyze(self, prompt, images) -> str:
        self.calls.append(list(images))
        response = self.responses.pop(0) if self.responses else '{"isValid": true, "score": 1.0, "errors": []}'
        if isinstance(response, Exception):
            raise response
        return response


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def png_bytes() -> bytes:
    """A small red PNG."""
    return make_png()


@pytest.fixture
def image_uri() -> Callable[..., str]:
    """Factory for distinct PNG data URIs by color."""
    return make_data_uri


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def provider_factory() -> Callable[..., ScriptedProvider]:
    return ScriptedProvider


@pytest.fixture
def vision_factory() -> Callable[..., ScriptedVisionClient]:
    return ScriptedVisionClient


@pytest.fixture
def mock_client() -> Callable[[Callable], httpx.AsyncClient]:
    """Factory for an AsyncClient served by an httpx.MockTransport handler."""
    def build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return build


@pytest.fixture
def sample_storyboard() -> Storyboard:
    """Five ungenerated rooftop scenes featuring Alice Brown, plus Bob and a watch in the roster."""
    characters = [
        Character(
            id="c1", name="Alice Brown", description="red trench coat, short black hair",
            face_image=make_data_uri((10, 10, 10)), body_image=make_data_uri((20, 20, 20)),
        ),
        Character(id="c2", name="Bob", description="grey suit", face_image=make_data_uri((30, 30, 30))),
    ]
    products = [
        Product(id="p1", name="Aurora Watch", description="silver watch", front_image=make_data_uri((40, 40, 40))),
    ]
    groups = [
        SceneGroup(
            id="g1", name="Rooftop", description="Rainy rooftop above a neon city",
            lighting="neon rim light", weather="light rain", time_of_day="night",
        ),
    ]
    scenes = [
        Scene(
            id=f"s{i}", sequence_number=i, group_id="g1", character_ids=["c1"],
            description=f"Alice Brown walks to the edge of the roof, beat {i}",
        )
        for i in range(1, 6)
    ]
    return Storyboard(scenes=scenes, groups=groups, characters=characters, products=products)


@pytest.fixture
def orchestrator_factory(sleep_recorder) -> Callable[..., GenerationOrchestrator]:
    """
    Build an orchestrator over a scripted Gemini provider.

    Keyword args: provider, vision (enables validation), options,
    max_continuity_retries, learning_sink, reference_store.
    """
    def build(
        storyboard: Storyboard,
        provider: Optional[ScriptedProvider] = None,
        vision: Optional[VisionClient] = None,
        options: Optional[ValidationOptions] = None,
        max_continuity_retries: int = 1,
        learning_sink=None,
        reference_store: Optional[ReferenceStore] = None
    ) -> GenerationOrchestrator:
        store = reference_store or ReferenceStore()
        provider = provider or ScriptedProvider()
        router = ProviderRouter({provider.kind: provider}, sleep=sleep_recorder)
        validator = ContinuityValidator(store, vision, options) if vision is not None else None
        return GenerationOrchestrator(
            storyboard,
            router,
            PromptAssembler(store, learning_sink=learning_sink),
            validator=validator,
            learning_sink=learning_sink,
            max_continuity_retries=max_continuity_retries,
        )
    return build
