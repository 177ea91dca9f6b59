"""End-to-end tests for the entry point with stubbed collaborators."""

from unittest.mock import patch

import pytest

from agents import DEFAULT_CHAIN, build_default_registry
from core.cache import ResultCache
from core.config import Settings
from core.errors import GenerationError
from core.executor import PipelineExecutor, RunStatus, StageStatus
from core.schema import AgentContext
from main import build_executor, context_from_args, main, parse_args, run_pipeline
from tests.conftest import StubTextGenerator

BIRTH_ARGS = ["--date", "1990-04-12", "--time", "14:30", "--lat", "1.5", "--lon", "2"]


def _rate_limited(prompt: str) -> str:
    raise GenerationError("rate_limit", "quota exhausted")


@pytest.fixture
def oracle_generator() -> StubTextGenerator:
    return StubTextGenerator("the oracle speaks")


@pytest.fixture
def executor(
    generator: StubTextGenerator, oracle_generator: StubTextGenerator, cache: ResultCache
) -> PipelineExecutor:
    registry = build_default_registry(generator, synthesis_generator=oracle_generator)
    return PipelineExecutor(registry, cache, stage_timeout=5.0)


@pytest.fixture
def failing_interpreter(
    oracle_generator: StubTextGenerator, cache: ResultCache
) -> PipelineExecutor:
    registry = build_default_registry(
        StubTextGenerator(_rate_limited), synthesis_generator=oracle_generator
    )
    return PipelineExecutor(registry, cache, stage_timeout=5.0)


@pytest.mark.asyncio
async def test_run_pipeline_answers_with_oracle(
    executor: PipelineExecutor, context: AgentContext, generator: StubTextGenerator
) -> None:
    report = await run_pipeline(executor, context)

    assert report.status is RunStatus.SUCCESS
    assert list(report.outcomes) == [
        "human-design", "cross-mapper", "interpreter", "synthesizer", "oracle",
    ]  # fmt: skip
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "the oracle speaks"
    assert report.final_response.method == "generated"
    # The interpreter saw the calculator and cross-mapper seeds.
    assert "### human-design" in generator.calls[0]["prompt"]
    assert "### cross-mapper" in generator.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_repeat_question_reuses_cached_stages(
    executor: PipelineExecutor, context: AgentContext, generator: StubTextGenerator
) -> None:
    await run_pipeline(executor, context)
    chain = await executor.run(DEFAULT_CHAIN, context)
    assert chain.outcomes["human-design"].status is StageStatus.SKIPPED
    assert chain.outcomes["cross-mapper"].status is StageStatus.SKIPPED
    assert chain.outcomes["interpreter"].status is StageStatus.SKIPPED
    assert len(generator.calls) == 1


@pytest.mark.asyncio
async def test_interpreter_failure_is_reported_as_partial(
    failing_interpreter: PipelineExecutor,
    context: AgentContext,
    oracle_generator: StubTextGenerator,
) -> None:
    report = await run_pipeline(failing_interpreter, context)

    assert report.status is RunStatus.PARTIAL
    assert report.failed_stages == ["interpreter"]
    assert report.outcomes["synthesizer"].status is StageStatus.SUCCEEDED
    assert report.outcomes["oracle"].status is StageStatus.SUCCEEDED
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "the oracle speaks"
    assert isinstance(report.error.cause, GenerationError)  # type: ignore[union-attr]
    assert "### synthesizer" in oracle_generator.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_oracle_failure_leaves_no_answer(context: AgentContext, cache: ResultCache) -> None:
    registry = build_default_registry(
        StubTextGenerator(), synthesis_generator=StubTextGenerator(_rate_limited)
    )
    report = await run_pipeline(PipelineExecutor(registry, cache), context)

    assert report.final_response is None
    assert report.status is RunStatus.PARTIAL
    assert report.failed_stages == ["oracle"]
    assert report.outcomes["synthesizer"].ok


@pytest.mark.asyncio
async def test_general_question_goes_to_oracle(
    executor: PipelineExecutor,
    generator: StubTextGenerator,
    oracle_generator: StubTextGenerator,
) -> None:
    report = await run_pipeline(executor, AgentContext(user_query="What is a solar return?"))

    assert report.status is RunStatus.SUCCESS
    assert list(report.outcomes) == ["oracle"]
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "the oracle speaks"
    assert "User Query: What is a solar return?" in oracle_generator.calls[0]["prompt"]
    assert generator.calls == []


@pytest.mark.asyncio
async def test_empty_context_fails_at_oracle(executor: PipelineExecutor) -> None:
    report = await run_pipeline(executor, AgentContext())
    assert report.status is RunStatus.FAILURE
    assert report.final_response is None
    assert report.failed_stages == ["oracle"]


def test_main_prints_answer(
    executor: PipelineExecutor, capsys: pytest.CaptureFixture[str]
) -> None:
    with patch("main.build_executor", return_value=executor):
        code = main(["--query", "Why?", *BIRTH_ARGS])
    out = capsys.readouterr()
    assert code == 0
    assert out.out.strip() == "the oracle speaks"


def test_main_reports_partial_result(
    failing_interpreter: PipelineExecutor, capsys: pytest.CaptureFixture[str]
) -> None:
    with patch("main.build_executor", return_value=failing_interpreter):
        code = main(["--query", "Why?", *BIRTH_ARGS])
    out = capsys.readouterr()
    assert code == 2
    assert out.out.strip() == "the oracle speaks"
    assert "failed=interpreter" in out.err


def test_main_prints_report_without_answer(
    cache: ResultCache, capsys: pytest.CaptureFixture[str]
) -> None:
    registry = build_default_registry(
        StubTextGenerator(), synthesis_generator=StubTextGenerator(_rate_limited)
    )
    with patch("main.build_executor", return_value=PipelineExecutor(registry, cache)):
        code = main(["--query", "Why?", *BIRTH_ARGS])
    out = capsys.readouterr()
    assert code == 1
    assert '"status": "partial"' in out.out
    assert "quota exhausted" in out.out


def test_build_executor_uses_api_key_flag() -> None:
    settings = Settings(_env_file=None, GOOGLE_API_KEY=None)  # type: ignore[call-arg]
    with patch("main.AutoGenTextGenerator") as mock_generator:
        build_executor(settings, api_key=" flag-key ")
    configs = [c.args[0]["config_list"][0] for c in mock_generator.call_args_list]
    assert [c["api_key"] for c in configs] == ["flag-key", "flag-key"]
    assert [c["model"] for c in configs] == ["gemini-2.5-flash", "gemini-2.5-pro"]


def test_build_executor_without_any_key_raises() -> None:
    settings = Settings(_env_file=None, GOOGLE_API_KEY=None)  # type: ignore[call-arg]
    with patch("core.config.get_config", return_value=settings):
        with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
            build_executor(settings)


def test_context_from_args_with_birth_data() -> None:
    ctx = context_from_args(parse_args(["--query", "Why?", *BIRTH_ARGS]))
    assert ctx.user_query == "Why?"
    assert ctx.birth_data is not None
    assert ctx.birth_data.location.latitude == 1.5


def test_context_from_args_without_birth_data() -> None:
    args = parse_args(["--query", "Why?"])
    ctx = context_from_args(args)
    assert ctx.birth_data is None
    assert ctx.upstream == {}
    assert args.api_key is None
