"""
Pipeline planning: a validated, topologically ordered set of stages.

Building a Pipeline fails fast on duplicate names, references to unknown
stages and dependency cycles, so no stage ever executes for a malformed
pipeline. Ties in the topological order are broken by declaration order,
which keeps merged-context keys deterministic.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from core.errors import CycleError, DuplicateStageError, PlanningError, UnknownStageReferenceError
from core.schema import PipelineStage


def _as_stage(stage: PipelineStage | str) -> PipelineStage:
    if isinstance(stage, PipelineStage):
        return stage
    return PipelineStage(framework=stage)


def _find_cycle(stages: dict[str, PipelineStage]) -> list[str]:
    """Return one dependency cycle (first node repeated at the end)."""
    visiting: list[str] = []
    done: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in visiting:
            start = visiting.index(name)
            return visiting[start:] + [name]
        if name in done:
            return None
        visiting.append(name)
        for dep in stages[name].depends_on:
            found = visit(dep)
            if found:
                return found
        visiting.pop()
        done.add(name)
        return None

    for name in stages:
        cycle = visit(name)
        if cycle:
            return cycle
    return []


def topological_order(stages: Sequence[PipelineStage]) -> list[PipelineStage]:
    """Order stages so every stage follows its dependencies.

    Raises:
        CycleError: No valid order exists.
    """
    by_name = {s.name: s for s in stages}
    remaining = {s.name: set(s.depends_on) for s in stages}
    ordered: list[PipelineStage] = []
    while remaining:
        ready = next((s for s in stages if s.name in remaining and not remaining[s.name]), None)
        if ready is None:
            leftover = {name: by_name[name] for name in remaining}
            raise CycleError(_find_cycle(leftover))
        ordered.append(ready)
        del remaining[ready.name]
        for deps in remaining.values():
            deps.discard(ready.name)
    return ordered


class Pipeline:
    """Validated execution plan.

    Args:
        stages: Stages (or bare framework identifiers) to run.
        synthesis: Optional stage run after every other stage, with all
            successful outputs in its upstream context.
        name: Label used in logs.
    """

    def __init__(
        self,
        stages: Iterable[PipelineStage | str],
        *,
        synthesis: PipelineStage | str | None = None,
        name: str = "pipeline",
    ) -> None:
        self.name = name
        declared = [_as_stage(s) for s in stages]
        if not declared:
            raise PlanningError("pipeline has no stages")

        names: set[str] = set()
        for stage in declared:
            if stage.name in names:
                raise DuplicateStageError(stage.name)
            names.add(stage.name)
        for stage in declared:
            for dep in stage.depends_on:
                if dep not in names:
                    raise UnknownStageReferenceError(stage.name, dep)

        self.synthesis: PipelineStage | None = None
        if synthesis is not None:
            synth = _as_stage(synthesis)
            if synth.name in names:
                raise DuplicateStageError(synth.name)
            if synth.depends_on:
                raise PlanningError(
                    f"synthesis stage '{synth.name}' implicitly depends on every stage "
                    "and must not declare depends_on"
                )
            self.synthesis = synth

        self.order: list[PipelineStage] = topological_order(declared)
        self._index = {s.name: i for i, s in enumerate(self.order)}

    @classmethod
    def chain(
        cls,
        *stages: PipelineStage | str,
        synthesis: PipelineStage | str | None = None,
        name: str = "chain",
    ) -> Pipeline:
        """Sequential pipeline: each stage depends on the one before it."""
        linked: list[PipelineStage] = []
        for item in stages:
            stage = _as_stage(item)
            if linked and linked[-1].name not in stage.depends_on:
                stage = stage.model_copy(update={"depends_on": (*stage.depends_on, linked[-1].name)})
            linked.append(stage)
        return cls(linked, synthesis=synthesis, name=name)

    @classmethod
    def single(cls, framework: str) -> Pipeline:
        return cls([PipelineStage(framework=framework)], name=framework)

    @property
    def stages(self) -> list[PipelineStage]:
        """All stages in execution order, synthesis last."""
        return self.order + ([self.synthesis] if self.synthesis else [])

    @property
    def frameworks(self) -> list[str]:
        return list(dict.fromkeys(s.framework for s in self.stages))

    @property
    def terminal_stages(self) -> list[PipelineStage]:
        """Non-synthesis stages no other stage depends on."""
        required = {dep for s in self.order for dep in s.depends_on}
        return [s for s in self.order if s.name not in required]

    def get(self, name: str) -> PipelineStage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def ancestors(self, name: str) -> list[str]:
        """Transitive dependencies of a stage, in plan order."""
        stage = self.get(name)
        if stage is self.synthesis:
            return [s.name for s in self.order]
        seen: set[str] = set()
        pending = list(stage.depends_on)
        while pending:
            dep = pending.pop()
            if dep in seen:
                continue
            seen.add(dep)
            pending.extend(self.get(dep).depends_on)
        return sorted(seen, key=self._index.__getitem__)

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        return f"Pipeline(name='{self.name}', stages={[s.name for s in self.stages]})"
