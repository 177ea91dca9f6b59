"""
Text-generation collaborator.

Agents never call a model provider inline: they depend on the TextGenerator
protocol (prompt in, text plus token usage out), so agent logic is testable
with a deterministic stub. AutoGenTextGenerator is the production
implementation over AutoGen's OpenAIWrapper with a Gemini config_list.
"""

import asyncio
import logging
from typing import Any, Protocol

import openai
from pydantic import BaseModel, Field

from core.errors import GenerationError

# Try autogen imports; fail at runtime if not installed
try:
    import autogen
except ImportError:  # pragma: no cover - import-time fallback
    autogen = None

logger = logging.getLogger(__name__)


class GenerationConfig(BaseModel):
    """Sampling parameters for one generation call."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=8192, gt=0)
    top_p: float = Field(default=0.95, gt=0.0, le=1.0)
    top_k: int = Field(default=40, gt=0)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    """Generated text plus a token-usage summary."""

    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str | None = None


class TextGenerator(Protocol):
    """Prompt (and optional system instruction) in, text out."""

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        config: GenerationConfig | None = None,
    ) -> GenerationResult: ...


def classify_provider_error(exc: Exception) -> GenerationError:
    """Map a provider exception onto a GenerationError kind."""
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, openai.RateLimitError):
        return GenerationError("rate_limit", str(exc))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return GenerationError("auth", str(exc))
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return GenerationError("malformed_request", str(exc))
    # Non-OpenAI clients (e.g. google.api_core) expose an HTTP-like status code.
    code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if code == 429:
        return GenerationError("rate_limit", str(exc))
    if code in (401, 403):
        return GenerationError("auth", str(exc))
    if code in (400, 422):
        return GenerationError("malformed_request", str(exc))
    return GenerationError("provider", f"{type(exc).__name__}: {exc}")


class AutoGenTextGenerator:
    """
    TextGenerator backed by autogen.OpenAIWrapper.

    The wrapper call is blocking, so it runs in a worker thread; the awaiting
    stage can still be cancelled or time out at that suspension point.
    """

    def __init__(self, llm_config: dict[str, Any], *, default_config: GenerationConfig | None = None) -> None:
        """
        Initialize the generator with injected LLM configuration.

        Args:
            llm_config: AutoGen llm_config (e.g. from core.config.build_llm_config()).
            default_config: Sampling parameters used when a call passes none.
        """
        self._llm_config = llm_config
        self._default_config = default_config or GenerationConfig()
        self._client: Any = None
        if autogen is not None:
            self._client = autogen.OpenAIWrapper(config_list=llm_config["config_list"], cache_seed=None)

    @property
    def model(self) -> str | None:
        entries = self._llm_config.get("config_list") or [{}]
        return entries[0].get("model")

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        config: GenerationConfig | None = None,
    ) -> GenerationResult:
        if autogen is None or self._client is None:
            raise RuntimeError("autogen is not installed; cannot generate text.")
        if not prompt.strip():
            raise GenerationError("malformed_request", "prompt must not be empty")
        cfg = config or self._default_config

        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        def _create() -> Any:
            return self._client.create(
                messages=messages,
                temperature=cfg.temperature,
                max_tokens=cfg.max_output_tokens,
                top_p=cfg.top_p,
                top_k=cfg.top_k,
            )

        try:
            response = await asyncio.to_thread(_create)
        except Exception as exc:
            error = classify_provider_error(exc)
            logger.warning("generation_failed", extra={"kind": error.kind, "model": self.model})
            raise error from exc

        texts = self._client.extract_text_or_completion_object(response)
        text = texts[0] if texts else None
        if not isinstance(text, str) or not text.strip():
            raise GenerationError("empty_response", "model returned no text")
        return GenerationResult(
            text=text.strip(),
            usage=self._usage(response),
            model=getattr(response, "model", None) or self.model,
        )

    @staticmethod
    def _usage(response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )
