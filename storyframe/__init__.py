"""
Storyframe - Continuity-Preserving Storyboard Image Generation

Generates one image per storyboard scene through interchangeable image
backends while keeping characters, outfits, locations and lighting
consistent from shot to shot.
"""

__version__ = "0.1.0"

from storyframe.core.models import Scene, Storyboard
from storyframe.factory import Pipeline, build_pipeline

__all__ = [
    "Pipeline",
    "Scene",
    "Storyboard",
    "build_pipeline",
    "__version__",
]
