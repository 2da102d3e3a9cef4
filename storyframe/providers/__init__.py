"""
Storyframe Image Providers

Backend adapters (Gemini, Imperial, Fal.ai, Gommo) and the router that
dispatches to them.
"""

from storyframe.providers.base import ImageProvider, ProviderCapabilities, ProviderKind
from storyframe.providers.fal import FalImageProvider
from storyframe.providers.gemini import GeminiImageProvider
from storyframe.providers.gommo import GommoImageProvider
from storyframe.providers.imperial import ImperialImageProvider
from storyframe.providers.router import MODEL_CATALOG, ModelSpec, ProviderRouter

__all__ = [
    "ImageProvider",
    "ProviderCapabilities",
    "ProviderKind",
    "FalImageProvider",
    "GeminiImageProvider",
    "GommoImageProvider",
    "ImperialImageProvider",
    "MODEL_CATALOG",
    "ModelSpec",
    "ProviderRouter",
]
