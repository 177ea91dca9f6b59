"""
Pipeline executor: runs agents respecting declared dependencies.

Each stage becomes an asyncio task. Stages with no unfinished prerequisites
run concurrently; a dependent stage joins on its prerequisites' tasks and
receives their outputs in context.upstream. Every stage writes only its own
slot in the run's outcome map, and the merged context is assembled in plan
order, so a synthesis stage sees the same logical context whatever the
completion timing.

Per-stage failures (agent errors, invalid responses, timeouts, aborted
prerequisites) are recorded on the report and never raised out of run();
only planning and contract errors are raised, before any stage starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from core.cache import ResultCache, fingerprint
from core.contract import AgentRegistry, validate_request, validate_response
from core.errors import (
    AgentValidationError,
    DependencyAbortedError,
    FieldViolation,
    PipelineError,
    StageExecutionError,
    StageTimeoutError,
    UnknownFrameworkError,
)
from core.pipeline import Pipeline
from core.schema import (
    AgentContext,
    AgentRequest,
    AgentResponse,
    CachePolicy,
    PipelineStage,
    TTLClass,
)

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    """Terminal state of one stage."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"  # served from cache
    FAILED = "failed"
    ABORTED = "aborted"  # a prerequisite did not succeed
    CANCELLED = "cancelled"


class RunStatus(str, Enum):
    """Overall outcome of a pipeline run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass
class StageOutcome:
    """Result of one stage within a run."""

    stage: str
    framework: str
    status: StageStatus
    response: AgentResponse | None = None
    error: PipelineError | None = None
    fingerprint: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED)

    @property
    def error_kind(self) -> str | None:
        return type(self.error).__name__ if self.error is not None else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "framework": self.framework,
            "status": self.status.value,
            "error_kind": self.error_kind,
            "error": str(self.error) if self.error is not None else None,
            "fingerprint": self.fingerprint,
            "duration_ms": round(self.duration_ms, 3),
        }


def run_status(outcomes: Iterable[StageOutcome]) -> RunStatus:
    outcomes = list(outcomes)
    if any(o.status is StageStatus.CANCELLED for o in outcomes):
        return RunStatus.CANCELLED
    if all(o.ok for o in outcomes):
        return RunStatus.SUCCESS
    if any(o.ok for o in outcomes):
        return RunStatus.PARTIAL
    return RunStatus.FAILURE


@dataclass
class PipelineReport:
    """Caller-facing result of a run.

    status distinguishes full success, partial success (see failed_stages
    and aborted_stages) and total failure. final_response is only ever a
    response that passed validate_response.
    """

    run_id: str
    pipeline: str
    status: RunStatus
    outcomes: dict[str, StageOutcome]
    merged_context: dict[str, AgentResponse] = field(default_factory=dict)
    final_response: AgentResponse | None = None
    error: PipelineError | None = None

    def _with_status(self, status: StageStatus) -> list[str]:
        return [name for name, o in self.outcomes.items() if o.status is status]

    @property
    def failed_stages(self) -> list[str]:
        return self._with_status(StageStatus.FAILED)

    @property
    def aborted_stages(self) -> list[str]:
        return self._with_status(StageStatus.ABORTED)

    @property
    def skipped_stages(self) -> list[str]:
        return self._with_status(StageStatus.SKIPPED)

    @property
    def succeeded_stages(self) -> list[str]:
        return self._with_status(StageStatus.SUCCEEDED)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    def followed_by(self, follow_up: PipelineReport) -> PipelineReport:
        """Combine this report with a run that consumed its final response.

        Stage outcomes of both runs are kept, so a stage that failed here
        still shows up (and the status drops to PARTIAL) when the follow-up
        succeeds. The follow-up supplies the final response.
        """
        outcomes = {**self.outcomes, **follow_up.outcomes}
        return PipelineReport(
            run_id=self.run_id,
            pipeline=f"{self.pipeline}+{follow_up.pipeline}",
            status=run_status(outcomes.values()),
            outcomes=outcomes,
            merged_context={**self.merged_context, **follow_up.merged_context},
            final_response=follow_up.final_response,
            error=self.error or follow_up.error,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline,
            "status": self.status.value,
            "stages": [o.as_dict() for o in self.outcomes.values()],
            "error": str(self.error) if self.error is not None else None,
            "final_response": (
                self.final_response.model_dump(mode="json", by_alias=True)
                if self.final_response is not None
                else None
            ),
        }


class PipelineRun:
    """Handle on an in-flight pipeline run.

    Created by PipelineExecutor.start() inside a running event loop. Await
    the run (or its wait() method) for the report; cancel() stops stages
    that have not started and interrupts those in flight. Results of stages
    that already completed stay valid and cached.
    """

    def __init__(
        self,
        executor: PipelineExecutor,
        pipeline: Pipeline,
        context: AgentContext,
        policy: CachePolicy,
    ) -> None:
        self.run_id = uuid.uuid4().hex[:12]
        self.pipeline = pipeline
        self._executor = executor
        self._context = context
        self._policy = policy
        self._outcomes: dict[str, StageOutcome] = {}
        self._tasks: dict[str, asyncio.Task[StageOutcome]] = {}
        self._report: PipelineReport | None = None
        logger.info(
            "pipeline_run_started",
            extra={"run_id": self.run_id, "pipeline": pipeline.name, "stages": len(pipeline)},
        )
        for stage in pipeline.stages:
            self._tasks[stage.name] = asyncio.create_task(
                self._run_stage(stage), name=f"{self.run_id}:{stage.name}"
            )

    @property
    def outcomes(self) -> Mapping[str, StageOutcome]:
        """Outcomes recorded so far (live view)."""
        return dict(self._outcomes)

    @property
    def report(self) -> PipelineReport | None:
        return self._report

    def done(self) -> bool:
        return all(task.done() for task in self._tasks.values())

    def cancel(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def wait(self) -> PipelineReport:
        if self._report is not None:
            return self._report
        tasks = list(self._tasks.values())
        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            # The awaiting task was cancelled: stop the stages, then propagate.
            self.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._report = self._build_report()
            raise
        self._report = self._build_report()
        return self._report

    def __await__(self):
        return self.wait().__await__()

    # -- per-stage state machine --------------------------------------------

    async def _run_stage(self, stage: PipelineStage) -> StageOutcome:
        started = time.perf_counter()
        try:
            outcome = await self._execute_stage(stage)
        except asyncio.CancelledError:
            self._outcomes[stage.name] = StageOutcome(
                stage=stage.name,
                framework=stage.framework,
                status=StageStatus.CANCELLED,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            logger.info("stage_cancelled", extra={"run_id": self.run_id, "stage": stage.name})
            raise
        outcome.duration_ms = (time.perf_counter() - started) * 1000
        self._outcomes[stage.name] = outcome
        return outcome

    def _prerequisites(self, stage: PipelineStage) -> list[str]:
        if stage is self.pipeline.synthesis:
            return [s.name for s in self.pipeline.order]
        return list(stage.depends_on)

    def _abort_if_needed(self, stage: PipelineStage) -> StageOutcome | None:
        prerequisites = self._prerequisites(stage)
        outcomes = [(name, self._outcomes.get(name)) for name in prerequisites]
        failed = [name for name, o in outcomes if o is None or not o.ok]
        if stage is self.pipeline.synthesis:
            # Synthesis runs on whatever succeeded; it only aborts on nothing.
            if len(failed) < len(prerequisites):
                return None
        elif not failed:
            return None

        origin: PipelineError | None = None
        for name in failed:
            prior = self._outcomes.get(name)
            if prior is None or prior.error is None:
                continue
            origin = (
                prior.error.origin
                if isinstance(prior.error, DependencyAbortedError)
                else prior.error
            )
            break
        error = DependencyAbortedError(stage.name, failed, origin)
        logger.warning(
            "stage_aborted",
            extra={"run_id": self.run_id, "stage": stage.name, "failed_dependencies": failed},
        )
        return StageOutcome(
            stage=stage.name, framework=stage.framework, status=StageStatus.ABORTED, error=error
        )

    def _build_request(self, stage: PipelineStage) -> AgentRequest:
        upstream = dict(self._context.upstream)
        for name in self.pipeline.ancestors(stage.name):
            prior = self._outcomes.get(name)
            if prior is not None and prior.ok and prior.response is not None:
                upstream[name] = prior.response
        context = self._context.model_copy(update={"upstream": upstream})
        return AgentRequest(framework=stage.framework, context=context)

    async def _execute_stage(self, stage: PipelineStage) -> StageOutcome:
        prerequisites = self._prerequisites(stage)
        if prerequisites:
            # Join point: asyncio.wait never cancels the awaited siblings.
            await asyncio.wait([self._tasks[name] for name in prerequisites])
        aborted = self._abort_if_needed(stage)
        if aborted is not None:
            return aborted

        agent = self._executor.registry.get(stage.framework)
        try:
            request = self._build_request(stage)
            key = fingerprint(
                stage.framework, request.context, getattr(agent, "context_fields", None)
            )
        except Exception as exc:
            # The stage input itself is unusable (e.g. a context value that
            # cannot be serialized); fail this stage only.
            input_error = StageExecutionError(stage.name, exc)
            logger.warning(
                "stage_failed",
                extra={"run_id": self.run_id, "stage": stage.name, "error": str(input_error)},
            )
            return StageOutcome(
                stage=stage.name,
                framework=stage.framework,
                status=StageStatus.FAILED,
                error=input_error,
            )
        ttl_class = self._policy.ttl_for(stage.framework)
        cache = self._executor.cache
        log_extra = {"run_id": self.run_id, "stage": stage.name, "fingerprint": key[:12]}

        if cache is not None and ttl_class is not TTLClass.NO_CACHE and not self._policy.refresh:
            entry = await cache.lookup(key)
            if entry is not None:
                logger.info("stage_served_from_cache", extra=log_extra)
                return StageOutcome(
                    stage=stage.name,
                    framework=stage.framework,
                    status=StageStatus.SKIPPED,
                    response=entry.response,
                    fingerprint=key,
                )

        timeout = stage.timeout if stage.timeout is not None else self._executor.stage_timeout
        deadline = asyncio.timeout(timeout)
        error: PipelineError
        try:
            async with deadline:
                raw = await agent.execute(request)
            response = validate_response(raw)
        except TimeoutError as exc:
            if deadline.expired():
                error = StageTimeoutError(stage.name, timeout or 0.0)
            else:
                error = StageExecutionError(stage.name, exc)
        except Exception as exc:
            error = StageExecutionError(stage.name, exc)
        else:
            logger.info("stage_succeeded", extra=log_extra)
            if cache is not None and ttl_class is not TTLClass.NO_CACHE:
                await cache.save(key, stage.framework, response, ttl_class)
            return StageOutcome(
                stage=stage.name,
                framework=stage.framework,
                status=StageStatus.SUCCEEDED,
                response=response,
                fingerprint=key,
            )

        logger.warning("stage_failed", extra={**log_extra, "error": str(error)})
        return StageOutcome(
            stage=stage.name,
            framework=stage.framework,
            status=StageStatus.FAILED,
            error=error,
            fingerprint=key,
        )

    # -- report --------------------------------------------------------------

    def _build_report(self) -> PipelineReport:
        for task in self._tasks.values():
            if task.done() and not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]

        outcomes: dict[str, StageOutcome] = {}
        for stage in self.pipeline.stages:
            outcomes[stage.name] = self._outcomes.get(stage.name) or StageOutcome(
                stage=stage.name, framework=stage.framework, status=StageStatus.CANCELLED
            )

        merged = {
            name: o.response for name, o in outcomes.items() if o.ok and o.response is not None
        }

        final: AgentResponse | None = None
        if self.pipeline.synthesis is not None:
            final = merged.get(self.pipeline.synthesis.name)
        else:
            terminals = self.pipeline.terminal_stages
            if len(terminals) == 1:
                final = merged.get(terminals[0].name)

        error = next(
            (o.error for o in outcomes.values() if o.status is StageStatus.FAILED), None
        )

        status = run_status(outcomes.values())
        report = PipelineReport(
            run_id=self.run_id,
            pipeline=self.pipeline.name,
            status=status,
            outcomes=outcomes,
            merged_context=merged,
            final_response=final,
            error=error,
        )
        logger.info(
            "pipeline_run_finished",
            extra={
                "run_id": self.run_id,
                "status": status.value,
                "failed": report.failed_stages,
                "aborted": report.aborted_stages,
                "skipped": report.skipped_stages,
            },
        )
        return report


class PipelineExecutor:
    """Entry point: plans pipelines against a registry and runs them.

    Args:
        registry: Framework -> agent mapping.
        cache: Optional ResultCache shared by all runs of this executor.
        stage_timeout: Default per-stage timeout in seconds (None: unbounded).
        default_policy: CachePolicy used when a run passes none.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        cache: ResultCache | None = None,
        *,
        stage_timeout: float | None = 30.0,
        default_policy: CachePolicy | None = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.stage_timeout = stage_timeout
        self.default_policy = default_policy or CachePolicy.default()

    def plan(
        self,
        stages: Pipeline | Sequence[PipelineStage | str],
        *,
        synthesis: PipelineStage | str | None = None,
        name: str = "pipeline",
    ) -> Pipeline:
        """Build (or accept) a Pipeline and check its frameworks are registered.

        Raises:
            PlanningError: Cycles, duplicate or unknown stage references.
            UnknownFrameworkError: A stage names an unregistered framework.
        """
        if isinstance(stages, Pipeline):
            if synthesis is not None:
                raise ValueError("pass synthesis when building the Pipeline, not to plan()")
            pipeline = stages
        else:
            pipeline = Pipeline(stages, synthesis=synthesis, name=name)
        for framework in pipeline.frameworks:
            if framework not in self.registry:
                raise UnknownFrameworkError(framework)
        return pipeline

    def start(
        self,
        stages: Pipeline | Sequence[PipelineStage | str],
        context: AgentContext | Mapping[str, Any] | None = None,
        *,
        synthesis: PipelineStage | str | None = None,
        policy: CachePolicy | None = None,
    ) -> PipelineRun:
        """Plan and launch a run; must be called with an event loop running."""
        pipeline = self.plan(stages, synthesis=synthesis)
        return PipelineRun(self, pipeline, _coerce_context(context), policy or self.default_policy)

    async def run(
        self,
        stages: Pipeline | Sequence[PipelineStage | str],
        context: AgentContext | Mapping[str, Any] | None = None,
        *,
        synthesis: PipelineStage | str | None = None,
        policy: CachePolicy | None = None,
    ) -> PipelineReport:
        """Run a pipeline to completion and return its report."""
        return await self.start(stages, context, synthesis=synthesis, policy=policy)

    async def submit(self, raw: Any, *, policy: CachePolicy | None = None) -> PipelineReport:
        """Simple path: validate one AgentRequest and run it as a single stage.

        Raises:
            AgentValidationError: The request is malformed.
            UnknownFrameworkError: The framework is not registered.
        """
        request = validate_request(raw, self.registry)
        return await self.run(Pipeline.single(request.framework), request.context, policy=policy)


def _coerce_context(context: AgentContext | Mapping[str, Any] | None) -> AgentContext:
    if context is None:
        return AgentContext()
    if isinstance(context, AgentContext):
        return context
    try:
        return AgentContext.model_validate(context)
    except ValidationError as exc:
        raise AgentValidationError(
            [
                FieldViolation(
                    field="context." + ".".join(str(p) for p in err.get("loc", ())),
                    message=err.get("msg", "invalid"),
                )
                for err in exc.errors()
            ]
        ) from exc
