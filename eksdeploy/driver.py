"""Apply/teardown driver: walks a stage graph and runs each stage's action."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Optional

from pydantic import BaseModel

from eksdeploy.console import print_error, print_header, print_info, print_success, print_warning
from eksdeploy.context import RunContext
from eksdeploy.executor import CommandExecutor
from eksdeploy.graph import StageGraph
from eksdeploy.models import (
    Action,
    Direction,
    RunReport,
    RunStatus,
    Stage,
    StageResult,
    StageStatus,
)
from eksdeploy.sources import VariableSource
from eksdeploy.validation import validate_plan

logger = logging.getLogger(__name__)

SATISFIED = (StageStatus.SUCCEEDED, StageStatus.SKIPPED_ALREADY_SATISFIED)


class PlanStep(BaseModel):
    """A stage, the action to run for the chosen direction and what it waits on."""

    stage: Stage
    action: Optional[Action] = None
    after: tuple[str, ...] = ()


def build_plan(graph: StageGraph, direction: Direction) -> list[PlanStep]:
    """Ordered steps: deploy order for apply, its exact inverse for teardown.

    For teardown a stage waits on its dependents, so nothing is removed while
    something that needs it still exists.
    """
    if direction == Direction.APPLY:
        order = graph.topological_order()
    else:
        order = graph.reverse_order()
    steps = []
    for stage_id in order:
        stage = graph.get(stage_id)
        after = stage.depends_on if direction == Direction.APPLY else graph.dependents(stage_id)
        steps.append(PlanStep(stage=stage, action=stage.action_for(direction), after=tuple(after)))
    return steps


class Driver:
    """Runs a plan with a breadth-aware failure policy.

    A failed fatal stage keeps its transitive dependents pending, while
    independent branches carry on.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        sources: Mapping[str, VariableSource],
        max_parallel: int = 1,
    ):
        self.executor = executor
        self.sources = dict(sources)
        self.max_parallel = max(1, max_parallel)

    def run(self, graph: StageGraph, direction: Direction, context: RunContext) -> RunReport:
        # Static errors surface here, before any stage touches the control plane.
        validate_plan(graph, direction, context.keys(), self.sources)
        plan = build_plan(graph, direction)

        statuses = {step.stage.id: StageStatus.PENDING for step in plan}
        results: dict[str, StageResult] = {}
        print_header(f"{direction.value.capitalize()}: {len(plan)} stage(s)")

        if self.max_parallel == 1:
            self._run_sequential(plan, statuses, results, context)
        else:
            asyncio.run(self._run_waves(plan, statuses, results, context))

        report = RunReport(direction=direction)
        for step in plan:
            stage_id = step.stage.id
            report.results.append(
                results.get(stage_id, StageResult(stage_id=stage_id, status=statuses[stage_id]))
            )
        failed = report.with_status(StageStatus.FAILED)
        report.status = RunStatus.ABORTED if failed else RunStatus.COMPLETED
        self._summarize(report)
        return report

    # -- scheduling --

    def _blocked_by(self, step: PlanStep, statuses: dict[str, StageStatus]) -> list[str]:
        return [dep for dep in step.after if dep in statuses and statuses[dep] not in SATISFIED]

    def _run_sequential(self, plan, statuses, results, context) -> None:
        for step in plan:
            blockers = self._blocked_by(step, statuses)
            if blockers:
                logger.warning("Stage %s left pending, blocked by %s", step.stage.id, ", ".join(blockers))
                continue
            statuses[step.stage.id] = StageStatus.RUNNING
            result = self.executor.execute(step.stage, step.action, context)
            self._record(result, statuses, results)

    async def _run_waves(self, plan, statuses, results, context) -> None:
        semaphore = asyncio.Semaphore(self.max_parallel)
        settled: set[str] = set()
        remaining = list(plan)

        async def run_step(step: PlanStep) -> StageResult:
            async with semaphore:
                return await asyncio.to_thread(self.executor.execute, step.stage, step.action, context)

        while remaining:
            eligible = [
                s for s in remaining
                if all(dep in settled or dep not in statuses for dep in s.after)
            ]
            runnable = []
            for step in eligible:
                remaining.remove(step)
                settled.add(step.stage.id)
                blockers = self._blocked_by(step, statuses)
                if blockers:
                    logger.warning(
                        "Stage %s left pending, blocked by %s", step.stage.id, ", ".join(blockers)
                    )
                    continue
                statuses[step.stage.id] = StageStatus.RUNNING
                runnable.append(step)
            for result in await asyncio.gather(*(run_step(step) for step in runnable)):
                self._record(result, statuses, results)

    # -- reporting --

    @staticmethod
    def _record(result: StageResult, statuses, results) -> None:
        statuses[result.stage_id] = result.status
        results[result.stage_id] = result
        if result.status == StageStatus.SUCCEEDED:
            print_success(f"{result.stage_id} ({result.duration_seconds:.1f}s)")
        elif result.status == StageStatus.SKIPPED_ALREADY_SATISFIED:
            print_info(f"{result.stage_id}: already satisfied")
        else:
            print_error(f"{result.stage_id} failed")
            if result.diagnostics:
                print(result.diagnostics)

    @staticmethod
    def _summarize(report: RunReport) -> None:
        pending = report.with_status(StageStatus.PENDING)
        failed = report.with_status(StageStatus.FAILED)
        if report.status == RunStatus.COMPLETED:
            print_success(f"{report.direction.value} completed")
            return
        print_error(f"{report.direction.value} aborted; failed: {', '.join(failed)}")
        if pending:
            print_warning(f"not run: {', '.join(pending)}")
