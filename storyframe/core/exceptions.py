"""
Storyframe Custom Exceptions

Custom exception classes for error handling throughout the storyboard generation pipeline.
"""

from typing import Optional


class StoryframeError(Exception):
    """Base exception for all Storyframe errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(StoryframeError):
    """Raised when there's an issue with configuration."""
    pass


class UnknownModelError(ConfigurationError):
    """Raised when a model id is not present in the model catalog."""

    def __init__(self, model_id: str):
        super().__init__(f"Unknown image model: '{model_id}'", {"model_id": model_id})
        self.model_id = model_id


class MissingCredentialsError(ConfigurationError):
    """Raised when a backend is selected but its credentials are absent or rejected."""

    def __init__(self, provider: str, missing: Optional[list] = None, reason: str = None):
        missing = missing or []
        if reason:
            message = f"{provider} credentials rejected: {reason}"
        else:
            message = f"{provider} credentials not configured: {', '.join(missing) or 'unknown'}"
        super().__init__(message, {"provider": provider, "missing": missing})
        self.provider = provider
        self.missing = missing


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ProviderError(StoryframeError):
    """Base exception for image backend failures."""

    def __init__(self, provider: str, reason: str, status_code: int = None):
        details = {"provider": provider}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(f"{provider} failed: {reason}", details)
        self.provider = provider
        self.reason = reason
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Raised for overloads, rate limits and timeouts. Safe to retry."""
    pass


class ContentPolicyError(ProviderError):
    """Raised when a backend refuses the request on content grounds. Never retried."""

    @property
    def is_content_block(self) -> bool:
        return True


class PollingTimeoutError(ProviderError):
    """Raised when an asynchronous job never reaches a terminal state."""

    def __init__(self, provider: str, job_id: str, attempts: int):
        super().__init__(provider, f"job {job_id} not finished after {attempts} polls")
        self.details["job_id"] = job_id
        self.details["attempts"] = attempts
        self.job_id = job_id
        self.attempts = attempts


# =============================================================================
# PIPELINE ERRORS
# =============================================================================

class GenerationError(StoryframeError):
    """Raised when a scene cannot be prepared for generation."""

    def __init__(self, scene_id: str, reason: str):
        super().__init__(f"Scene '{scene_id}': {reason}", {"scene_id": scene_id})
        self.scene_id = scene_id


class ValidationBackendError(StoryframeError):
    """Raised by vision backends when a continuity check cannot be completed."""
    pass


def describe_error(error: Exception) -> str:
    """Short, user-facing text for an error recorded on a scene."""
    if isinstance(error, ContentPolicyError):
        return f"Content blocked by {error.provider}: {error.reason}"
    if isinstance(error, MissingCredentialsError):
        return error.message
    if isinstance(error, PollingTimeoutError):
        return f"{error.provider} timed out waiting for the image"
    if isinstance(error, ProviderError):
        return error.message
    if isinstance(error, StoryframeError):
        return error.message
    return str(error) or error.__class__.__name__
