"""
Storyframe LLM Module

Vision model clients used for continuity checks.
"""

from storyframe.llm.vision_clients import (
    FallbackVisionClient,
    GeminiVisionClient,
    GroqVisionClient,
    VisionClient,
)

__all__ = [
    "FallbackVisionClient",
    "GeminiVisionClient",
    "GroqVisionClient",
    "VisionClient",
]
