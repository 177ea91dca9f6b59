"""
Canonical data contracts for the agent pipeline.

Every agent receives an AgentRequest and must hand back an AgentResponse;
both are strictly typed with Pydantic V2 models. Wire payloads use camelCase
keys (interpretationSeed, birthData, ...); Python callers may use either the
camelCase alias or the snake_case field name.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ContractModel(BaseModel):
    """Base for wire models: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeoLocation(ContractModel):
    """Birth place coordinates."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class BirthData(ContractModel):
    """Birth date, local time and place used by chart calculators."""

    date: str = Field(..., min_length=1, description="Birth date, e.g. 1990-04-12.")
    time: str = Field(..., min_length=1, description="Local birth time, e.g. 14:30.")
    location: GeoLocation


class AgentResponse(ContractModel):
    """Output every agent must produce (the handoff to the next stage).

    interpretation_seed and method are required; a response without them is
    rejected at the contract boundary and never passed downstream.
    """

    calculation: Any | None = Field(
        default=None, description="Opaque agent-specific computed payload."
    )
    correlations: list[str] = Field(
        default_factory=list,
        description="Cross-framework linkages, in discovery order.",
    )
    interpretation_seed: str = Field(
        ..., min_length=1, description="Text handed to the next stage or final generation."
    )
    method: str = Field(
        ..., min_length=1, description="How the result was produced (deterministic, composed, ...)."
    )
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    visualization_data: Any | None = Field(
        default=None, description="Optional payload for chart rendering."
    )

    @field_validator("interpretation_seed")
    @classmethod
    def _seed_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class AgentContext(ContractModel):
    """Structured bag of optional inputs shared by all stages of a run."""

    birth_data: BirthData | None = None
    health_metrics: dict[str, Any] | None = None
    journal_themes: list[str] | None = None
    user_query: str | None = None
    upstream: dict[str, AgentResponse] = Field(
        default_factory=dict,
        description="Outputs of prior stages keyed by stage name.",
    )


class AgentRequest(ContractModel):
    """Input every agent receives."""

    framework: str = Field(..., min_length=1, description="Registered framework identifier.")
    context: AgentContext


class TTLClass(str, Enum):
    """How long a framework's cached result stays valid."""

    STABLE_PROFILE = "stable_profile"
    DAILY = "daily"
    NO_CACHE = "no_cache"


class CacheEntry(BaseModel):
    """A cached AgentResponse keyed by request fingerprint."""

    fingerprint: str
    framework: str
    response: AgentResponse
    ttl_class: TTLClass
    created_at: datetime
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CachePolicy(BaseModel):
    """Caller-supplied caching hint: TTL class per framework."""

    ttl_classes: dict[str, TTLClass] = Field(default_factory=dict)
    default_ttl_class: TTLClass = TTLClass.NO_CACHE
    refresh: bool = Field(
        default=False, description="Ignore cached entries but still store fresh results."
    )

    def ttl_for(self, framework: str) -> TTLClass:
        return self.ttl_classes.get(framework, self.default_ttl_class)

    @classmethod
    def default(cls, **overrides: Any) -> "CachePolicy":
        """Policy using the catalogue's per-framework TTL classes."""
        from core.frameworks import DEFAULT_TTL_CLASSES

        return cls(ttl_classes=dict(DEFAULT_TTL_CLASSES), **overrides)


class PipelineStage(BaseModel):
    """One agent placement within a pipeline.

    name defaults to the framework identifier; depends_on lists the names of
    stages whose outputs must be present in context.upstream first.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    framework: str = Field(..., min_length=1)
    depends_on: tuple[str, ...] = ()
    timeout: float | None = Field(default=None, gt=0, description="Seconds; None uses executor default.")

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("framework"):
            data = {**data, "name": data["framework"]}
        return data
