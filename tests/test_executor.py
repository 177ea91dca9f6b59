"""Tests for the dependency-aware pipeline executor."""

import asyncio
from collections import Counter

import pytest
from pydantic_core import PydanticSerializationError

from core.cache import ResultCache
from core.contract import AgentRegistry
from core.errors import (
    AgentValidationError,
    CycleError,
    DependencyAbortedError,
    StageExecutionError,
    StageTimeoutError,
    UnknownFrameworkError,
)
from core.executor import PipelineExecutor, RunStatus, StageStatus
from core.pipeline import Pipeline
from core.schema import AgentContext, AgentRequest, CachePolicy, PipelineStage, TTLClass

CACHE_ALL = CachePolicy(default_ttl_class=TTLClass.STABLE_PROFILE)


def _reply(text: str, **extra: object) -> dict:
    return {"interpretationSeed": text, "method": "test", **extra}


@pytest.fixture
def calls() -> Counter:
    return Counter()


@pytest.fixture
def registry(calls: Counter) -> AgentRegistry:
    """a -> b -> c style agents that count invocations and echo upstream keys."""
    reg = AgentRegistry()

    for name in ("a", "b", "c"):

        async def agent(request: AgentRequest, _name: str = name) -> dict:
            calls[_name] += 1
            seen = "+".join(request.context.upstream)
            return _reply(f"{_name}({seen})")

        reg.agent(name)(agent)

    @reg.agent("boom")
    async def boom(request: AgentRequest) -> dict:
        calls["boom"] += 1
        raise RuntimeError("exploded")

    @reg.agent("incomplete")
    async def incomplete(request: AgentRequest) -> dict:
        return {"calculation": {}, "correlations": []}

    @reg.agent("slow")
    async def slow(request: AgentRequest) -> dict:
        await asyncio.sleep(5)
        return _reply("slow")

    @reg.agent("collect")
    async def collect(request: AgentRequest) -> dict:
        upstream = request.context.upstream
        return _reply(" | ".join(f"{k}={v.interpretation_seed}" for k, v in upstream.items()))

    return reg


@pytest.fixture
def executor(registry: AgentRegistry, cache: ResultCache) -> PipelineExecutor:
    return PipelineExecutor(registry, cache, stage_timeout=1.0, default_policy=CACHE_ALL)


# ── Sequential runs and caching ──────────────────────────────


@pytest.mark.asyncio
async def test_chain_passes_upstream(executor: PipelineExecutor) -> None:
    report = await executor.run(Pipeline.chain("a", "b", "c"))
    assert report.status is RunStatus.SUCCESS
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "c(a+b)"
    assert list(report.merged_context) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_second_run_served_from_cache(executor: PipelineExecutor, calls: Counter) -> None:
    policy = CachePolicy(
        ttl_classes={"a": TTLClass.STABLE_PROFILE, "b": TTLClass.STABLE_PROFILE},
        default_ttl_class=TTLClass.NO_CACHE,
    )
    pipeline = Pipeline.chain("a", "b", "c")
    first = await executor.run(pipeline, {"userQuery": "q"}, policy=policy)
    second = await executor.run(pipeline, {"userQuery": "q"}, policy=policy)

    assert second.outcomes["a"].status is StageStatus.SKIPPED
    assert second.outcomes["b"].status is StageStatus.SKIPPED
    assert second.outcomes["c"].status is StageStatus.SUCCEEDED
    assert calls == Counter({"a": 1, "b": 1, "c": 2})
    assert second.status is RunStatus.SUCCESS
    assert first.final_response is not None and second.final_response is not None
    assert second.final_response.model_dump() == first.final_response.model_dump()
    assert second.skipped_stages == ["a", "b"]


@pytest.mark.asyncio
async def test_refresh_bypasses_cache(executor: PipelineExecutor, calls: Counter) -> None:
    await executor.run(["a"])
    refresh = CachePolicy(default_ttl_class=TTLClass.STABLE_PROFILE, refresh=True)
    report = await executor.run(["a"], policy=refresh)
    assert report.outcomes["a"].status is StageStatus.SUCCEEDED
    assert calls["a"] == 2


@pytest.mark.asyncio
async def test_different_context_misses_cache(executor: PipelineExecutor, calls: Counter) -> None:
    await executor.run(["a"], {"userQuery": "one"})
    await executor.run(["a"], {"userQuery": "two"})
    assert calls["a"] == 2


@pytest.mark.asyncio
async def test_runs_without_cache(registry: AgentRegistry, calls: Counter) -> None:
    executor = PipelineExecutor(registry)
    await executor.run(["a"])
    report = await executor.run(["a"])
    assert report.outcomes["a"].status is StageStatus.SUCCEEDED
    assert calls["a"] == 2


# ── Planning errors raise before anything runs ───────────────


@pytest.mark.asyncio
async def test_cycle_raises_before_any_stage_runs(executor: PipelineExecutor, calls: Counter) -> None:
    stages = [
        PipelineStage(name="a", framework="a", depends_on=("b",)),
        PipelineStage(name="b", framework="b", depends_on=("a",)),
    ]
    with pytest.raises(CycleError):
        await executor.run(stages)
    assert sum(calls.values()) == 0


@pytest.mark.asyncio
async def test_unregistered_framework_raises(executor: PipelineExecutor, calls: Counter) -> None:
    with pytest.raises(UnknownFrameworkError) as exc_info:
        await executor.run(["a", "alpha"])
    assert exc_info.value.framework == "alpha"
    assert sum(calls.values()) == 0


@pytest.mark.asyncio
async def test_submit_validates_request(executor: PipelineExecutor) -> None:
    with pytest.raises(UnknownFrameworkError):
        await executor.submit({"framework": "alpha", "context": {}})
    with pytest.raises(AgentValidationError):
        await executor.submit({"context": {}})

    report = await executor.submit({"framework": "a", "context": {"userQuery": "q"}})
    assert report.ok
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "a()"


@pytest.mark.asyncio
async def test_invalid_context_raises(executor: PipelineExecutor) -> None:
    with pytest.raises(AgentValidationError) as exc_info:
        await executor.run(["a"], {"birthData": {"date": "d"}})
    assert all(field.startswith("context.") for field in exc_info.value.fields)


# ── Failures are recorded, not raised ────────────────────────


@pytest.mark.asyncio
async def test_failure_aborts_dependents(executor: PipelineExecutor, calls: Counter) -> None:
    stages = [
        PipelineStage(name="boom", framework="boom"),
        PipelineStage(name="b", framework="b", depends_on=("boom",)),
        PipelineStage(name="c", framework="c", depends_on=("b",)),
    ]
    report = await executor.run(stages)

    failed = report.outcomes["boom"]
    assert failed.status is StageStatus.FAILED
    assert isinstance(failed.error, StageExecutionError)
    assert isinstance(failed.error.cause, RuntimeError)

    aborted = report.outcomes["b"]
    assert aborted.status is StageStatus.ABORTED
    assert isinstance(aborted.error, DependencyAbortedError)
    assert aborted.error.failed_dependencies == ["boom"]
    assert aborted.error.origin is failed.error
    assert report.outcomes["c"].error.origin is failed.error  # type: ignore[union-attr]

    assert calls["b"] == 0 and calls["c"] == 0
    assert report.status is RunStatus.FAILURE
    assert report.failed_stages == ["boom"]
    assert report.aborted_stages == ["b", "c"]
    assert report.final_response is None


@pytest.mark.asyncio
async def test_independent_branch_survives_failure(executor: PipelineExecutor) -> None:
    stages = [
        PipelineStage(name="boom", framework="boom"),
        PipelineStage(name="b", framework="b", depends_on=("boom",)),
        PipelineStage(name="a", framework="a"),
    ]
    report = await executor.run(stages)
    assert report.status is RunStatus.PARTIAL
    assert report.outcomes["a"].status is StageStatus.SUCCEEDED
    assert report.error is report.outcomes["boom"].error


@pytest.mark.asyncio
async def test_invalid_response_fails_stage(executor: PipelineExecutor) -> None:
    report = await executor.run(Pipeline.chain("incomplete", "b"))
    outcome = report.outcomes["incomplete"]
    assert outcome.status is StageStatus.FAILED
    assert isinstance(outcome.error, StageExecutionError)
    assert isinstance(outcome.error.cause, AgentValidationError)
    assert sorted(outcome.error.cause.fields) == ["interpretationSeed", "method"]
    assert report.outcomes["b"].status is StageStatus.ABORTED


class _Opaque:
    """Accepted by an open metrics map, but has no JSON form."""


@pytest.mark.asyncio
async def test_unserializable_context_fails_stages(
    executor: PipelineExecutor, calls: Counter
) -> None:
    ctx = AgentContext(user_query="hi", health_metrics={"device": _Opaque()})
    report = await executor.run(["a", "b"], ctx)

    assert report.status is RunStatus.FAILURE
    assert report.failed_stages == ["a", "b"]
    outcome = report.outcomes["a"]
    assert isinstance(outcome.error, StageExecutionError)
    assert isinstance(outcome.error.cause, PydanticSerializationError)
    assert outcome.fingerprint is None
    assert calls["a"] == 0 and calls["b"] == 0


@pytest.mark.asyncio
async def test_followed_by_keeps_earlier_failures(executor: PipelineExecutor) -> None:
    first = await executor.run(
        [PipelineStage(name="boom", framework="boom"), PipelineStage(name="a", framework="a")]
    )
    second = await executor.run(["b"])
    combined = first.followed_by(second)

    assert second.status is RunStatus.SUCCESS
    assert combined.status is RunStatus.PARTIAL
    assert combined.failed_stages == ["boom"]
    assert list(combined.outcomes) == ["boom", "a", "b"]
    assert list(combined.merged_context) == ["a", "b"]
    assert combined.final_response is second.final_response
    assert combined.error is first.error
    assert combined.run_id == first.run_id


@pytest.mark.asyncio
async def test_failed_stage_is_not_cached(executor: PipelineExecutor, calls: Counter) -> None:
    await executor.run(["boom"])
    await executor.run(["boom"])
    assert calls["boom"] == 2


@pytest.mark.asyncio
async def test_stage_timeout(executor: PipelineExecutor) -> None:
    stages = [PipelineStage(framework="slow", timeout=0.05)]
    report = await executor.run(stages)
    outcome = report.outcomes["slow"]
    assert outcome.status is StageStatus.FAILED
    assert isinstance(outcome.error, StageTimeoutError)
    assert outcome.error.timeout == 0.05
    assert outcome.error_kind == "StageTimeoutError"


@pytest.mark.asyncio
async def test_agent_raising_timeout_error_is_execution_error(registry: AgentRegistry) -> None:
    @registry.agent("raises-timeout")
    async def raises_timeout(request: AgentRequest) -> dict:
        raise TimeoutError("upstream service timed out")

    report = await PipelineExecutor(registry).run(["raises-timeout"])
    assert isinstance(report.outcomes["raises-timeout"].error, StageExecutionError)


# ── Concurrency and synthesis ────────────────────────────────


@pytest.mark.asyncio
async def test_independent_stages_run_concurrently() -> None:
    reg = AgentRegistry()
    ready = asyncio.Event()

    @reg.agent("waiter")
    async def waiter(request: AgentRequest) -> dict:
        await ready.wait()
        return _reply("waited")

    @reg.agent("setter")
    async def setter(request: AgentRequest) -> dict:
        ready.set()
        return _reply("set")

    report = await PipelineExecutor(reg, stage_timeout=1.0).run(["waiter", "setter"])
    assert report.status is RunStatus.SUCCESS


@pytest.mark.parametrize("delays", [(0.02, 0.0), (0.0, 0.02)])
@pytest.mark.asyncio
async def test_merged_context_independent_of_completion_order(delays: tuple[float, float]) -> None:
    reg = AgentRegistry()
    for name, delay in zip(("x", "y"), delays):

        async def agent(request: AgentRequest, _name: str = name, _delay: float = delay) -> dict:
            await asyncio.sleep(_delay)
            return _reply(_name)

        reg.agent(name)(agent)

    @reg.agent("collect")
    async def collect(request: AgentRequest) -> dict:
        return _reply(",".join(request.context.upstream))

    report = await PipelineExecutor(reg).run(["x", "y"], synthesis="collect")
    assert list(report.merged_context) == ["x", "y", "collect"]
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "x,y"


@pytest.mark.asyncio
async def test_synthesis_runs_on_partial_results(executor: PipelineExecutor) -> None:
    report = await executor.run(["a", "boom"], synthesis="collect")
    assert report.outcomes["collect"].status is StageStatus.SUCCEEDED
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "a=a()"
    assert report.status is RunStatus.PARTIAL


@pytest.mark.asyncio
async def test_synthesis_aborts_when_nothing_succeeded(executor: PipelineExecutor) -> None:
    report = await executor.run(["boom"], synthesis="collect")
    assert report.outcomes["collect"].status is StageStatus.ABORTED
    assert report.final_response is None
    assert report.status is RunStatus.FAILURE


@pytest.mark.asyncio
async def test_multiple_terminals_without_synthesis_have_no_final(executor: PipelineExecutor) -> None:
    report = await executor.run(["a", "b"])
    assert report.status is RunStatus.SUCCESS
    assert report.final_response is None
    assert set(report.merged_context) == {"a", "b"}


@pytest.mark.asyncio
async def test_caller_upstream_is_preserved(executor: PipelineExecutor) -> None:
    context = AgentContext.model_validate(
        {"upstream": {"prior": {"interpretationSeed": "p", "method": "m"}}}
    )
    report = await executor.run(["a"], context)
    assert report.final_response is not None
    assert report.final_response.interpretation_seed == "a(prior)"


# ── Cancellation ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_run_keeps_completed_stages() -> None:
    reg = AgentRegistry()
    started = asyncio.Event()

    @reg.agent("fast")
    async def fast(request: AgentRequest) -> dict:
        return _reply("fast")

    @reg.agent("blocked")
    async def blocked(request: AgentRequest) -> dict:
        started.set()
        await asyncio.Event().wait()
        return _reply("never")

    run = PipelineExecutor(reg, stage_timeout=None).start(Pipeline.chain("fast", "blocked"))
    await started.wait()
    run.cancel()
    report = await run

    assert report.status is RunStatus.CANCELLED
    assert report.outcomes["fast"].status is StageStatus.SUCCEEDED
    assert report.outcomes["blocked"].status is StageStatus.CANCELLED
    assert run.done()


@pytest.mark.asyncio
async def test_cancelling_the_caller_cancels_stages() -> None:
    reg = AgentRegistry()
    started = asyncio.Event()
    interrupted = asyncio.Event()

    @reg.agent("blocked")
    async def blocked(request: AgentRequest) -> dict:
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            interrupted.set()
            raise
        return _reply("never")

    task = asyncio.create_task(PipelineExecutor(reg, stage_timeout=None).run(["blocked"]))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert interrupted.is_set()
