"""
Framework Oracle: pipeline entry point.

Orchestrates the flow: BirthData -> Human Design -> Cross-Mapper ->
Interpreter -> Synthesizer -> Oracle -> Answer. A question asked without
birth data goes straight to the oracle.
Configuration is injected; no hardcoded secrets.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta

from agents import DEFAULT_CHAIN, build_default_registry
from core.cache import InMemoryCacheStore, ResultCache
from core.config import (
    Settings,
    build_llm_config,
    build_llm_config_from_input,
    generation_config_from_settings,
    get_config,
)
from core.executor import PipelineExecutor, PipelineReport, RunStatus
from core.frameworks import ORACLE, SYNTHESIZER
from core.generation import AutoGenTextGenerator
from core.pipeline import Pipeline
from core.schema import AgentContext, CachePolicy
from core.similarity import OpenAIEmbedder

logger = logging.getLogger(__name__)


def build_executor(settings: Settings | None = None, *, api_key: str | None = None) -> PipelineExecutor:
    """
    Wire the default registry, cache and generators from settings.

    Uses the MongoDB-backed Librarian for the cache, journal search and
    framework knowledge when MONGODB_URI is set; an in-memory cache otherwise.

    Args:
        settings: Application settings (get_config() when None).
        api_key: Caller-provided Google API key; overrides GOOGLE_API_KEY.
    """
    settings = settings or get_config()
    if api_key:
        chat_config = build_llm_config_from_input(api_key, settings.GEMINI_CHAT_MODEL)
        synthesis_config = build_llm_config_from_input(api_key, settings.GEMINI_SYNTHESIS_MODEL)
    else:
        chat_config = build_llm_config()
        synthesis_config = build_llm_config(settings.GEMINI_SYNTHESIS_MODEL)
    sampling = generation_config_from_settings(settings)
    generator = AutoGenTextGenerator(chat_config, default_config=sampling)
    synthesis_generator = AutoGenTextGenerator(synthesis_config, default_config=sampling)

    similarity = None
    knowledge = None
    embedder = None
    if settings.MONGODB_URI:
        from agents.librarian import Librarian

        librarian = Librarian(settings.MONGODB_URI)
        librarian.ensure_indexes()
        store = librarian
        similarity = librarian
        knowledge = librarian
        embedder = OpenAIEmbedder(
            api_key or settings.GOOGLE_API_KEY or "",
            model=settings.GEMINI_EMBEDDING_MODEL,
            base_url=settings.GEMINI_OPENAI_BASE_URL,
        )
    else:
        store = InMemoryCacheStore()

    registry = build_default_registry(
        generator,
        synthesis_generator=synthesis_generator,
        similarity=similarity,
        knowledge=knowledge,
        embedder=embedder,
    )
    cache = ResultCache(
        store,
        stable_ttl=timedelta(days=settings.CACHE_STABLE_TTL_DAYS),
        tz=settings.CACHE_TIMEZONE,
    )
    return PipelineExecutor(registry, cache, stage_timeout=settings.STAGE_TIMEOUT_SECONDS)


async def run_pipeline(
    executor: PipelineExecutor,
    context: AgentContext,
    *,
    pipeline: Pipeline = DEFAULT_CHAIN,
    policy: CachePolicy | None = None,
) -> PipelineReport:
    """
    Run the framework chain, then ask the oracle.

    The oracle receives the synthesized result as its only upstream entry,
    and the returned report carries the outcomes of both runs. Without birth
    data there is no chart to compute, so the question goes to the oracle
    alone. When the chain produced no final response its report is returned
    as is.

    Args:
        executor: Configured executor (see build_executor()).
        context: Birth data, query and personal context.
        pipeline: Chain to run before the oracle.
        policy: Optional cache policy for both runs.

    Returns:
        Combined report of the chain and the oracle.
    """
    oracle = Pipeline.single(ORACLE)
    if context.birth_data is None:
        logger.info("general_question", extra={"pipeline": oracle.name})
        return await executor.run(oracle, context, policy=policy)

    chain_report = await executor.run(pipeline, context, policy=policy)
    if chain_report.final_response is None:
        return chain_report

    oracle_context = context.model_copy(
        update={"upstream": {SYNTHESIZER: chain_report.final_response}}
    )
    oracle_report = await executor.run(oracle, oracle_context, policy=policy)
    return chain_report.followed_by(oracle_report)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask the framework oracle a question.")
    parser.add_argument("--query", required=True, help="Question for the oracle.")
    parser.add_argument("--date", help="Birth date, e.g. 1990-04-12.")
    parser.add_argument("--time", help="Local birth time, e.g. 14:30.")
    parser.add_argument("--lat", type=float, default=0.0, help="Birth latitude.")
    parser.add_argument("--lon", type=float, default=0.0, help="Birth longitude.")
    parser.add_argument("--refresh", action="store_true", help="Bypass cached results.")
    parser.add_argument("--api-key", help="Google API key (overrides GOOGLE_API_KEY).")
    return parser.parse_args(argv)


def context_from_args(args: argparse.Namespace) -> AgentContext:
    birth_data = None
    if args.date and args.time:
        birth_data = {
            "date": args.date,
            "time": args.time,
            "location": {"latitude": args.lat, "longitude": args.lon},
        }
    return AgentContext.model_validate({"birthData": birth_data, "userQuery": args.query})


def main(argv: list[str] | None = None) -> int:
    """
    Parse arguments, run the pipeline and print the answer or failure report.

    Returns 0 on full success, 2 when an answer was produced but some stages
    failed (they are named on stderr), 1 when there is no answer.
    """
    args = parse_args(argv)
    settings = get_config()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    executor = build_executor(settings, api_key=args.api_key)
    policy = CachePolicy.default(refresh=True) if args.refresh else None
    report = asyncio.run(run_pipeline(executor, context_from_args(args), policy=policy))

    if report.final_response is None:
        print(json.dumps(report.as_dict(), indent=2))
        return 1
    print(report.final_response.interpretation_seed)
    if report.status is RunStatus.SUCCESS:
        return 0
    print(
        f"Partial result ({report.status.value}): "
        f"failed={', '.join(report.failed_stages) or 'none'}; "
        f"aborted={', '.join(report.aborted_stages) or 'none'}",
        file=sys.stderr,
    )
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
