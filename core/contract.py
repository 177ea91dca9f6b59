"""
Agent contract: the single chokepoint every request and response crosses.

validate_request / validate_response turn raw payloads into the typed
contracts of core.schema, collecting every violated field. The registry maps
framework identifiers to agents; new frameworks register an implementation
without touching the executor.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from core.errors import AgentValidationError, FieldViolation, UnknownFrameworkError
from core.schema import AgentRequest, AgentResponse

logger = logging.getLogger(__name__)

AgentFn = Callable[[AgentRequest], Awaitable[AgentResponse | Mapping[str, Any]]]


@runtime_checkable
class Agent(Protocol):
    """Anything that can serve one or more frameworks.

    context_fields names the AgentContext fields that feed the agent's cache
    fingerprint; None means the whole context.
    """

    frameworks: tuple[str, ...]
    context_fields: frozenset[str] | None

    async def execute(self, request: AgentRequest) -> AgentResponse | Mapping[str, Any]: ...


class FunctionAgent:
    """Adapts a plain async function to the Agent protocol."""

    def __init__(
        self,
        framework: str,
        fn: AgentFn,
        *,
        context_fields: Iterable[str] | None = None,
    ) -> None:
        self.frameworks = (framework,)
        self.context_fields = frozenset(context_fields) if context_fields is not None else None
        self._fn = fn
        self.__doc__ = fn.__doc__

    async def execute(self, request: AgentRequest) -> AgentResponse | Mapping[str, Any]:
        return await self._fn(request)

    def __repr__(self) -> str:
        return f"FunctionAgent({self.frameworks[0]!r})"


def _violations(exc: ValidationError) -> list[FieldViolation]:
    found: list[FieldViolation] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        found.append(FieldViolation(field=loc, message=err.get("msg", "invalid")))
    return found


def validate_request(raw: Any, registry: AgentRegistry | None = None) -> AgentRequest:
    """Validate a raw request against the contract.

    Args:
        raw: dict (camelCase or snake_case keys) or AgentRequest.
        registry: When given, framework must be one of its registered names.

    Returns:
        A validated AgentRequest.

    Raises:
        AgentValidationError: Listing every structural violation.
        UnknownFrameworkError: The request is well formed but names an
            unregistered framework.
    """
    payload = raw.model_dump(by_alias=True, exclude_unset=True) if isinstance(raw, AgentRequest) else raw
    try:
        request = AgentRequest.model_validate(payload)
    except ValidationError as exc:
        raise AgentValidationError(_violations(exc), boundary="request") from exc
    if registry is not None and request.framework not in registry:
        raise UnknownFrameworkError(request.framework)
    return request


def validate_response(raw: Any) -> AgentResponse:
    """Validate an agent's output; a malformed payload is never passed downstream.

    Raises:
        AgentValidationError: Naming every missing or invalid field.
    """
    payload = raw.model_dump(by_alias=True, exclude_unset=True) if isinstance(raw, AgentResponse) else raw
    try:
        return AgentResponse.model_validate(payload)
    except ValidationError as exc:
        raise AgentValidationError(_violations(exc), boundary="response") from exc


class AgentRegistry:
    """Mapping from framework identifier to the agent that serves it."""

    def __init__(self, agents: Iterable[Agent] = ()) -> None:
        self._agents: dict[str, Agent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> Agent:
        """Register the agent under every framework it declares."""
        if not agent.frameworks:
            raise ValueError(f"{agent!r} declares no frameworks")
        for framework in agent.frameworks:
            self.register_as(framework, agent)
        return agent

    def register_as(self, framework: str, agent: Agent) -> None:
        if not framework:
            raise ValueError("framework identifier must be non-empty")
        if framework in self._agents and self._agents[framework] is not agent:
            logger.warning("agent_registry_override", extra={"framework": framework})
        self._agents[framework] = agent

    def agent(
        self, framework: str, *, context_fields: Iterable[str] | None = None
    ) -> Callable[[AgentFn], FunctionAgent]:
        """Decorator registering an async function as the agent for framework."""

        def decorator(fn: AgentFn) -> FunctionAgent:
            wrapped = FunctionAgent(framework, fn, context_fields=context_fields)
            self.register_as(framework, wrapped)
            return wrapped

        return decorator

    def get(self, framework: str) -> Agent:
        try:
            return self._agents[framework]
        except KeyError:
            raise UnknownFrameworkError(framework) from None

    @property
    def frameworks(self) -> list[str]:
        return sorted(self._agents)

    def __contains__(self, framework: object) -> bool:
        return framework in self._agents

    def __iter__(self) -> Iterator[str]:
        return iter(self.frameworks)

    def __len__(self) -> int:
        return len(self._agents)
