"""Shared test fixtures."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from core.cache import InMemoryCacheStore, ResultCache
from core.config import get_config
from core.generation import GenerationConfig, GenerationResult, TokenUsage
from core.schema import AgentContext, AgentResponse


class StubTextGenerator:
    """Deterministic TextGenerator: records prompts, returns canned text."""

    def __init__(self, reply: str | Callable[[str], str] = "generated insight") -> None:
        self._reply = reply
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        config: GenerationConfig | None = None,
    ) -> GenerationResult:
        self.calls.append({"prompt": prompt, "system": system, "config": config})
        text = self._reply(prompt) if callable(self._reply) else self._reply
        return GenerationResult(
            text=text,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            model="stub-model",
        )


class StubEmbedder:
    """Maps known texts to fixed vectors."""

    def __init__(self, vectors: dict[str, list[float]], default: list[float] | None = None) -> None:
        self._vectors = vectors
        self._default = default or [1.0, 0.0, 0.0]
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self._vectors.get(text, self._default)


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def clear_config_cache() -> Any:
    """get_config is an lru_cache singleton; keep tests independent of each other."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def generator() -> StubTextGenerator:
    return StubTextGenerator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 16, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def cache(store: InMemoryCacheStore, clock: FakeClock) -> ResultCache:
    return ResultCache(store, clock=clock)


@pytest.fixture
def birth_data() -> dict[str, Any]:
    return {
        "date": "1990-04-12",
        "time": "14:30",
        "location": {"latitude": 48.85, "longitude": 2.35},
    }


@pytest.fixture
def context(birth_data: dict[str, Any]) -> AgentContext:
    return AgentContext.model_validate(
        {
            "birthData": birth_data,
            "userQuery": "How do I handle stress at work?",
            "journalThemes": ["peace", "inner truth seeking"],
            "healthMetrics": {"sleep": 6.5, "energy": 7},
        }
    )


def seed(text: str, method: str = "deterministic", **extra: Any) -> AgentResponse:
    """Shorthand for a minimal valid AgentResponse."""
    return AgentResponse(interpretation_seed=text, method=method, **extra)
