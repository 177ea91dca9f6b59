"""
Configuration loader with validation.

Uses pydantic-settings to load and validate environment variables.
A Google API key is required only for the text-generation agents; MongoDB
is optional (the executor falls back to an in-memory cache).
"""

from functools import lru_cache
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.generation import GenerationConfig


class Settings(BaseSettings):
    """Application settings loaded from environment (e.g. .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    GOOGLE_API_KEY: str | None = Field(
        default=None,
        description="Google AI Studio API key for Gemini models.",
    )
    GEMINI_CHAT_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="Model for interactive, per-framework interpretation.",
    )
    GEMINI_SYNTHESIS_MODEL: str = Field(
        default="gemini-2.5-pro",
        description="Model for the final oracle answer.",
    )
    GENERATION_TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0)
    GENERATION_MAX_TOKENS: int = Field(default=8192, gt=0)
    GENERATION_TOP_P: float = Field(default=0.95, gt=0.0, le=1.0)
    GENERATION_TOP_K: int = Field(default=40, gt=0)
    MONGODB_URI: str | None = Field(
        default=None,
        description="MongoDB connection string (e.g. mongodb+srv://...). Enables the persistent cache.",
    )
    MONGODB_DB_NAME: str = Field(default="framework_oracle")
    GEMINI_EMBEDDING_MODEL: str = Field(default="gemini-embedding-001")
    GEMINI_OPENAI_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description="OpenAI-compatible endpoint used for embeddings.",
    )
    VECTOR_INDEX_NAME: str = Field(
        default="journal_embedding_index",
        description="Atlas Vector Search index over journal entry embeddings.",
    )
    KNOWLEDGE_INDEX_NAME: str = Field(
        default="knowledge_embedding_index",
        description="Atlas Vector Search index over framework knowledge embeddings.",
    )
    STAGE_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)
    CACHE_STABLE_TTL_DAYS: int = Field(default=365, gt=0)
    CACHE_TIMEZONE: str = Field(
        default="UTC",
        description="Timezone whose midnight ends daily cache entries.",
    )
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_config() -> Settings:
    """Load and return validated application settings (singleton)."""
    return Settings()


def _config_entry(model: str, api_key: str) -> dict[str, Any]:
    return {"model": model, "api_type": "google", "api_key": api_key}


def build_llm_config(model: str | None = None) -> dict[str, Any]:
    """
    Build the LLM config dict expected by AutoGen for Gemini.

    Uses injected settings from get_config(). Requires GOOGLE_API_KEY to be
    set in environment.

    Args:
        model: Gemini model name; defaults to GEMINI_CHAT_MODEL.
    """
    settings = get_config()
    if not settings.GOOGLE_API_KEY:
        raise ValueError("Google API key is required. Set GOOGLE_API_KEY in .env or the environment.")
    return {"config_list": [_config_entry(model or settings.GEMINI_CHAT_MODEL, settings.GOOGLE_API_KEY)]}


def build_llm_config_from_input(api_key: str, model: str = "gemini-2.5-flash") -> dict[str, Any]:
    """
    Build the LLM config dict from a caller-provided key (e.g. the --api-key flag).
    """
    key = (api_key or "").strip()
    if not key:
        raise ValueError("API key is required to build an LLM config.")
    return {"config_list": [_config_entry(model.strip() or "gemini-2.5-flash", key)]}


def generation_config_from_settings(settings: Settings | None = None) -> GenerationConfig:
    """Default sampling parameters for text generation."""
    settings = settings or get_config()
    return GenerationConfig(
        temperature=settings.GENERATION_TEMPERATURE,
        max_output_tokens=settings.GENERATION_MAX_TOKENS,
        top_p=settings.GENERATION_TOP_P,
        top_k=settings.GENERATION_TOP_K,
    )
