"""
Synthesizer Agent: Composition Filter.

Designated synthesis stage of multi-agent pipelines: receives every prior
stage's output in context.upstream and composes them into one handoff seed.
Deterministic; no model call.
"""

from agents.base import BaseAgent
from core.frameworks import SYNTHESIZER
from core.schema import AgentRequest, AgentResponse


class SynthesizerAgent(BaseAgent):
    """
    Composition filter: all upstream responses -> one composite response.

    Sections follow upstream key order, which the executor fixes to plan
    order, so the composite is independent of completion timing.
    """

    frameworks = (SYNTHESIZER,)
    description = "Composes all prior stage outputs into one seed."

    async def execute(self, request: AgentRequest) -> AgentResponse:
        upstream = self.require_upstream(request)
        sections = [f"## {name}\n{resp.interpretation_seed.strip()}" for name, resp in upstream.items()]
        if request.context.user_query:
            sections.insert(0, f"## Question\n{request.context.user_query}")

        confidences = [r.confidence for r in upstream.values() if r.confidence is not None]
        return AgentResponse(
            calculation={
                "sources": list(upstream),
                "methods": {name: resp.method for name, resp in upstream.items()},
            },
            correlations=self.merge_correlations(*(r.correlations for r in upstream.values())),
            interpretation_seed="\n\n".join(sections),
            method="composed",
            confidence=round(sum(confidences) / len(confidences), 4) if confidences else None,
        )
