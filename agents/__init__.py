"""Framework agents: calculators, cross-mapper, interpreter, synthesizer, oracle."""

from agents.base import BaseAgent
from agents.cross_mapper import CrossMapperAgent
from agents.human_design import HumanDesignAgent
from agents.interpreter import InterpreterAgent
from agents.oracle import OracleAgent
from agents.synthesizer import SynthesizerAgent
from core.contract import AgentRegistry
from core.frameworks import CROSS_MAPPER, HUMAN_DESIGN, INTERPRETER, SYNTHESIZER
from core.generation import GenerationConfig, TextGenerator
from core.pipeline import Pipeline
from core.similarity import Embedder, KnowledgeSearch, SimilaritySearch

# Calculator -> cross-mapper -> interpreter, composed by the synthesizer.
# The oracle answers from the synthesized result in a follow-up stage.
DEFAULT_CHAIN = Pipeline.chain(
    HUMAN_DESIGN,
    CROSS_MAPPER,
    INTERPRETER,
    synthesis=SYNTHESIZER,
    name="default",
)


def build_default_registry(
    generator: TextGenerator,
    *,
    synthesis_generator: TextGenerator | None = None,
    similarity: SimilaritySearch | None = None,
    knowledge: KnowledgeSearch | None = None,
    embedder: Embedder | None = None,
    config: GenerationConfig | None = None,
) -> AgentRegistry:
    """
    Register every built-in agent.

    Args:
        generator: Text generator for per-framework interpretation.
        synthesis_generator: Generator for the oracle's final answer
            (defaults to generator).
        similarity: Optional journal search for the oracle.
        knowledge: Optional framework knowledge base for the interpreter.
        embedder: Embeds the user query for journal and knowledge search.
        config: Sampling parameters shared by generating agents.

    Returns:
        AgentRegistry serving every built-in framework.
    """
    return AgentRegistry(
        [
            HumanDesignAgent(),
            CrossMapperAgent(),
            InterpreterAgent(generator, config=config, knowledge=knowledge, embedder=embedder),
            SynthesizerAgent(),
            OracleAgent(
                synthesis_generator or generator,
                similarity=similarity,
                embedder=embedder,
                config=config,
            ),
        ]
    )


__all__ = [
    "BaseAgent",
    "CrossMapperAgent",
    "DEFAULT_CHAIN",
    "HumanDesignAgent",
    "InterpreterAgent",
    "OracleAgent",
    "SynthesizerAgent",
    "build_default_registry",
]
