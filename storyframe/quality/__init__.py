"""
Storyframe Quality Module

Continuity (raccord) validation of generated frames.
"""

from storyframe.quality.raccord_validator import (
    ContinuityValidator,
    ValidationOptions,
    decide_action,
    format_decision,
)

__all__ = [
    "ContinuityValidator",
    "ValidationOptions",
    "decide_action",
    "format_decision",
]
