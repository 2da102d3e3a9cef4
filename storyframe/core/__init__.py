"""
Storyframe Core Module

Contains configuration, exceptions, logging, retry helpers, data models and
the reference image store.
"""

from storyframe.core.config import StoryframeSettings, get_settings
from storyframe.core.exceptions import (
    StoryframeError,
    ConfigurationError,
    UnknownModelError,
    MissingCredentialsError,
    ProviderError,
    TransientProviderError,
    ContentPolicyError,
    PollingTimeoutError,
    GenerationError,
    ValidationBackendError,
)
from storyframe.core.logging_config import setup_logging, get_logger, LogLevel
from storyframe.core.models import (
    Character,
    ContinuityAction,
    ContinuityDecision,
    GenerationRequest,
    GenerationResult,
    ImageData,
    Product,
    RaccordError,
    ReferencePart,
    Scene,
    SceneGroup,
    SceneStatus,
    Storyboard,
    StyleSettings,
)
from storyframe.core.reference_store import ReferenceStore

__all__ = [
    # Config
    "StoryframeSettings",
    "get_settings",
    # Exceptions
    "StoryframeError",
    "ConfigurationError",
    "UnknownModelError",
    "MissingCredentialsError",
    "ProviderError",
    "TransientProviderError",
    "ContentPolicyError",
    "PollingTimeoutError",
    "GenerationError",
    "ValidationBackendError",
    # Logging
    "setup_logging",
    "get_logger",
    "LogLevel",
    # Models
    "Character",
    "ContinuityAction",
    "ContinuityDecision",
    "GenerationRequest",
    "GenerationResult",
    "ImageData",
    "Product",
    "RaccordError",
    "ReferencePart",
    "Scene",
    "SceneGroup",
    "SceneStatus",
    "Storyboard",
    "StyleSettings",
    # Reference store
    "ReferenceStore",
]
