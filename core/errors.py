"""
Error taxonomy for the agent contract and the pipeline executor.

Two families matter to callers:

* Planning and contract errors (AgentValidationError, UnknownFrameworkError,
  CycleError, UnknownStageReferenceError, DuplicateStageError) are raised
  before any stage executes. They signal programming or input defects.
* Stage errors (StageExecutionError, StageTimeoutError, DependencyAbortedError)
  are never raised out of the executor; they are recorded on the per-stage
  outcome of a PipelineReport.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from pydantic import BaseModel


class FieldViolation(BaseModel):
    """One violated field reported by the contract boundary."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class PipelineError(Exception):
    """Base class for every error raised by this package."""


class AgentValidationError(PipelineError, ValueError):
    """A request or response failed the agent contract.

    Lists every violated field, not just the first one.
    """

    def __init__(
        self,
        violations: Sequence[FieldViolation],
        *,
        boundary: Literal["request", "response"] = "request",
    ) -> None:
        self.violations: list[FieldViolation] = list(violations)
        self.boundary = boundary
        details = "; ".join(str(v) for v in self.violations) or "invalid payload"
        super().__init__(f"Invalid agent {boundary}: {details}")

    @property
    def fields(self) -> list[str]:
        return [v.field for v in self.violations]


class UnknownFrameworkError(AgentValidationError):
    """The request names a framework with no registered agent."""

    def __init__(self, framework: str) -> None:
        self.framework = framework
        super().__init__(
            [FieldViolation(field="framework", message=f"unknown framework '{framework}'")]
        )


class PlanningError(PipelineError):
    """Structural defect in a pipeline definition."""


class CycleError(PlanningError):
    """The stage dependency graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.cycle))


class UnknownStageReferenceError(PlanningError):
    """A stage depends on a stage name that is not part of the pipeline."""

    def __init__(self, stage: str, reference: str) -> None:
        self.stage = stage
        self.reference = reference
        super().__init__(f"Stage '{stage}' depends on unknown stage '{reference}'")


class DuplicateStageError(PlanningError):
    """Two stages share the same name."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"Duplicate stage name '{stage}'")


class StageFailure(PipelineError):
    """Base class for runtime failures recorded against one stage."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(message)


class StageExecutionError(StageFailure):
    """The agent raised, or returned a payload that failed validate_response."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(stage, f"Stage '{stage}' failed: {cause}")


class StageTimeoutError(StageFailure, TimeoutError):
    """The stage exceeded its allotted time."""

    def __init__(self, stage: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(stage, f"Stage '{stage}' timed out after {timeout:g}s")


class DependencyAbortedError(StageFailure):
    """The stage never ran because a prerequisite did not succeed."""

    def __init__(
        self,
        stage: str,
        failed_dependencies: Sequence[str],
        origin: PipelineError | None = None,
    ) -> None:
        self.failed_dependencies = list(failed_dependencies)
        self.origin = origin
        deps = ", ".join(self.failed_dependencies)
        super().__init__(stage, f"Stage '{stage}' aborted: prerequisite(s) failed: {deps}")


GenerationErrorKind = Literal[
    "rate_limit", "auth", "malformed_request", "empty_response", "provider"
]


class GenerationError(PipelineError):
    """The text-generation collaborator failed."""

    def __init__(self, kind: GenerationErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(f"[{kind}] {message}")
