"""
Interpreter Agent: Interpretation Filter.

Inputs upstream seeds (and the user's query); outputs an interpretation
written by the text-generation collaborator. With a knowledge base and an
embedder injected, reference text for each upstream framework is retrieved
first and added to the prompt.
"""

import logging
from collections.abc import Sequence

from agents.base import BaseAgent
from core.frameworks import INTERPRETATION_GUIDELINES, INTERPRETER
from core.generation import GenerationConfig, TextGenerator
from core.schema import AgentContext, AgentRequest, AgentResponse
from core.similarity import Embedder, KnowledgeSearch, SimilarityMatch

logger = logging.getLogger(__name__)


def render_context(context: AgentContext) -> str:
    """Render the non-upstream context fields as prompt lines."""
    lines: list[str] = []
    if context.user_query:
        lines.append(f"User Query: {context.user_query}")
    if context.journal_themes:
        lines.append(f"Journal Themes: {', '.join(context.journal_themes)}")
    if context.health_metrics:
        metrics = ", ".join(f"{k}={v}" for k, v in sorted(context.health_metrics.items()))
        lines.append(f"Health Data: {metrics}")
    return "\n".join(lines)


class InterpreterAgent(BaseAgent):
    """
    Interpretation filter: upstream seeds -> generated interpretation.

    The generator is injected; tests supply a deterministic stub.
    """

    frameworks = (INTERPRETER,)
    description = "Interprets upstream framework results for the user."

    def __init__(
        self,
        generator: TextGenerator,
        config: GenerationConfig | None = None,
        *,
        knowledge: KnowledgeSearch | None = None,
        embedder: Embedder | None = None,
        match_count: int = 3,
        match_threshold: float = 0.7,
    ) -> None:
        """
        Args:
            generator: Text-generation collaborator.
            config: Sampling parameters (generator default when None).
            knowledge: Optional framework knowledge base.
            embedder: Embeds the user query for knowledge search.
            match_count: Maximum knowledge entries per framework.
            match_threshold: Minimum similarity for a knowledge entry.
        """
        self._generator = generator
        self._config = config
        self._knowledge = knowledge
        self._embedder = embedder
        self._match_count = match_count
        self._match_threshold = match_threshold

    async def retrieve_knowledge(
        self, query: str | None, frameworks: Sequence[str]
    ) -> list[SimilarityMatch]:
        """Knowledge entries related to query, searched per framework."""
        if not query or not frameworks or self._knowledge is None or self._embedder is None:
            return []
        embedding = await self._embedder.embed(query)
        matches: list[SimilarityMatch] = []
        for framework in frameworks:
            matches.extend(
                await self._knowledge.search_knowledge(
                    embedding,
                    framework=framework,
                    count=self._match_count,
                    threshold=self._match_threshold,
                )
            )
        logger.debug("interpreter_knowledge", extra={"matches": len(matches)})
        return matches

    def build_prompt(
        self, request: AgentRequest, knowledge: Sequence[SimilarityMatch] = ()
    ) -> str:
        upstream = self.require_upstream(request)
        sections = [f"### {name}\n{resp.interpretation_seed}" for name, resp in upstream.items()]
        prompt = "Interpret the following framework results for one person.\n\n" + "\n\n".join(sections)
        if knowledge:
            entries = "\n".join(
                f"- [{m.metadata.get('framework', '?')}] {m.content}" for m in knowledge
            )
            prompt += "\n\n## Framework Knowledge\n" + entries
        rendered = render_context(request.context)
        if rendered:
            prompt += "\n\n## Context\n" + rendered
        return prompt

    async def execute(self, request: AgentRequest) -> AgentResponse:
        upstream = self.require_upstream(request)
        knowledge = await self.retrieve_knowledge(request.context.user_query, list(upstream))
        prompt = self.build_prompt(request, knowledge)
        result = await self._generator.generate(
            prompt, system=INTERPRETATION_GUIDELINES.strip(), config=self._config
        )
        return AgentResponse(
            calculation={
                "model": result.model,
                "usage": result.usage.model_dump(),
                "knowledge": [m.id for m in knowledge],
            },
            correlations=self.merge_correlations(*(r.correlations for r in upstream.values())),
            interpretation_seed=result.text,
            method="generated",
        )
