"""
Storyframe Configuration

Pydantic settings for backend credentials and pipeline tunables.
Values come from the environment or a local .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoryframeSettings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="STORYFRAME_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Backend credentials (standard vendor variable names)
    gemini_api_key: str = Field(
        default="", validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY", "gemini_api_key")
    )
    imperial_api_key: str = Field(
        default="", validation_alias=AliasChoices("IMPERIAL_API_KEY", "imperial_api_key")
    )
    imperial_base_url: str = Field(
        default="", validation_alias=AliasChoices("IMPERIAL_BASE_URL", "imperial_base_url")
    )
    fal_key: str = Field(default="", validation_alias=AliasChoices("FAL_KEY", "fal_key"))
    gommo_domain: str = Field(default="", validation_alias=AliasChoices("GOMMO_DOMAIN", "gommo_domain"))
    gommo_access_token: str = Field(
        default="", validation_alias=AliasChoices("GOMMO_ACCESS_TOKEN", "gommo_access_token")
    )
    gommo_base_url: str = Field(default="https://api.gommo.net")
    groq_api_key: str = Field(default="", validation_alias=AliasChoices("GROQ_API_KEY", "groq_api_key"))

    # Image generation
    image_model: str = Field(default="gemini-3-pro-image-preview")
    fallback_image_model: Optional[str] = Field(default=None)
    request_timeout: float = Field(default=120.0)

    # Reference store
    reference_timeout: float = Field(default=15.0)
    reference_cache_size: int = Field(default=100)
    reference_cache_ttl_minutes: float = Field(default=30.0)

    # Async job polling
    poll_interval: float = Field(default=3.0)
    poll_max_attempts: int = Field(default=60)

    # Transient failure retries
    retry_max_retries: int = Field(default=2)
    retry_base_delay: float = Field(default=2.0)

    # Continuity validation
    validation_enabled: bool = Field(default=True)
    validation_auto_retry_threshold: float = Field(default=0.6)
    validation_ask_user_threshold: float = Field(default=0.8)
    validation_strict_mode: bool = Field(default=False)
    max_continuity_retries: int = Field(default=1)
    gemini_vision_model: str = Field(default="gemini-2.5-flash")
    groq_vision_model: str = Field(default="meta-llama/llama-4-scout-17b-16e-instruct")

    # Batch
    batch_delay: float = Field(default=0.5)

    log_level: str = Field(default="INFO")


@lru_cache()
def get_settings() -> StoryframeSettings:
    """Get cached settings instance."""
    return StoryframeSettings()
