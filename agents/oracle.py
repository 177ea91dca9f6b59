"""
Oracle Agent: Answer Filter.

Final stage: turns the accumulated seeds (and, when configured, journal
entries retrieved by similarity search) into the answer shown to the user.
"""

import logging

from agents.base import BaseAgent
from agents.interpreter import render_context
from core.frameworks import ORACLE, ORACLE_GUIDELINES
from core.generation import GenerationConfig, TextGenerator
from core.schema import AgentRequest, AgentResponse
from core.similarity import Embedder, SimilarityMatch, SimilaritySearch

logger = logging.getLogger(__name__)


class OracleAgent(BaseAgent):
    """
    Answer filter: query + upstream seeds (+ related journal entries) -> answer.

    Retrieval runs only when both an embedder and a similarity search are
    injected and the request carries a user query.
    """

    frameworks = (ORACLE,)
    description = "Answers the user's question from all gathered context."

    def __init__(
        self,
        generator: TextGenerator,
        *,
        similarity: SimilaritySearch | None = None,
        embedder: Embedder | None = None,
        match_count: int = 3,
        match_threshold: float = 0.7,
        config: GenerationConfig | None = None,
    ) -> None:
        self._generator = generator
        self._similarity = similarity
        self._embedder = embedder
        self._match_count = match_count
        self._match_threshold = match_threshold
        self._config = config

    async def retrieve(self, query: str | None) -> list[SimilarityMatch]:
        if not query or self._similarity is None or self._embedder is None:
            return []
        embedding = await self._embedder.embed(query)
        matches = await self._similarity.search(
            embedding, count=self._match_count, threshold=self._match_threshold
        )
        logger.debug("oracle_retrieved", extra={"matches": len(matches)})
        return matches

    async def execute(self, request: AgentRequest) -> AgentResponse:
        context = request.context
        if not context.user_query and not context.upstream:
            raise ValueError("Oracle requires a user query or upstream results")

        matches = await self.retrieve(context.user_query)
        parts: list[str] = []
        for name, resp in context.upstream.items():
            parts.append(f"### {name}\n{resp.interpretation_seed}")
        if matches:
            entries = "\n".join(f"- ({m.similarity:.2f}) {m.content}" for m in matches)
            parts.append(f"### Related journal entries\n{entries}")
        rendered = render_context(context)
        if rendered:
            parts.append(f"### Context\n{rendered}")

        result = await self._generator.generate(
            "\n\n".join(parts), system=ORACLE_GUIDELINES, config=self._config
        )
        return AgentResponse(
            calculation={
                "model": result.model,
                "usage": result.usage.model_dump(),
                "matches": [m.model_dump() for m in matches],
            },
            correlations=self.merge_correlations(
                *(r.correlations for r in context.upstream.values())
            ),
            interpretation_seed=result.text,
            method="generated",
        )
