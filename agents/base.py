"""
Abstract base for framework agents.

Each agent is a pure function of AgentRequest -> AgentResponse with a single
responsibility; it owns nothing beyond its own computation. Configuration
and collaborators (text generator, similarity search) are injected via the
constructor.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from core.schema import AgentRequest, AgentResponse


class BaseAgent(ABC):
    """
    Abstract base class for all framework agents.

    Input/Output contract: execute() receives a validated AgentRequest and
    returns an AgentResponse whose interpretation_seed is the handoff to the
    next stage. The executor re-validates every response at the contract
    boundary, so agents raise (ValueError for missing input) rather than
    return partial payloads.

    Attributes:
        frameworks: Framework identifiers this agent serves.
        description: One-line human description.
        context_fields: AgentContext fields that feed the cache fingerprint
            (None: the whole context, upstream included).
    """

    frameworks: tuple[str, ...] = ()
    description: str = ""
    context_fields: frozenset[str] | None = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def execute(self, request: AgentRequest) -> AgentResponse:
        """
        Run the agent's computation.

        Args:
            request: Validated request; request.context.upstream holds the
                outputs of prior stages keyed by stage name.

        Returns:
            AgentResponse for the next stage.
        """
        ...

    def get_prompt_template(self) -> str | None:
        """Optional sample of the prompt this agent hands downstream."""
        return None

    @staticmethod
    def merge_correlations(*groups: Iterable[str]) -> list[str]:
        """Concatenate correlation lists, dropping repeats, keeping discovery order."""
        return list(dict.fromkeys(item for group in groups for item in group))

    def require_upstream(self, request: AgentRequest) -> dict[str, AgentResponse]:
        upstream = request.context.upstream
        if not upstream:
            raise ValueError(f"{self.name} requires upstream results in context.upstream")
        return upstream

    def __repr__(self) -> str:
        return f"{self.name}(frameworks={list(self.frameworks)})"
