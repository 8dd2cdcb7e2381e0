"""Stage graph: declared stages plus their dependency edges."""

import heapq
from collections.abc import Iterable, Iterator

from eksdeploy.errors import CyclicDependencyError, DuplicateStageError, UnknownStageError
from eksdeploy.models import Stage


class StageGraph:
    """Keeps track of declared stages and orders them."""

    def __init__(self, stages: Iterable[Stage] = ()) -> None:
        self._stages: dict[str, Stage] = {}
        for stage in stages:
            self.add_stage(stage)

    def add_stage(self, stage: Stage) -> Stage:
        """Register *stage*. Dependencies may name stages declared later."""
        if stage.id in self._stages:
            raise DuplicateStageError(f"Stage '{stage.id}' is already declared")
        self._stages[stage.id] = stage
        return stage

    def get(self, stage_id: str) -> Stage:
        try:
            return self._stages[stage_id]
        except KeyError as exc:
            raise UnknownStageError(f"Stage '{stage_id}' is not declared") from exc

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages.values())

    def __len__(self) -> int:
        return len(self._stages)

    def ids(self) -> list[str]:
        """Stage ids in declaration order."""
        return list(self._stages)

    def dependents(self, stage_id: str) -> list[str]:
        """Stages that directly depend on *stage_id*, in declaration order."""
        return [s.id for s in self._stages.values() if stage_id in s.depends_on]

    def ancestors(self, stage_id: str) -> set[str]:
        """Transitive dependencies of *stage_id*."""
        seen: set[str] = set()
        stack = list(self.get(stage_id).depends_on)
        while stack:
            current = stack.pop()
            if current in seen or current not in self._stages:
                continue
            seen.add(current)
            stack.extend(self._stages[current].depends_on)
        return seen

    def subgraph(self, stage_ids: Iterable[str]) -> "StageGraph":
        """Induced graph over *stage_ids*.

        Dependencies outside the selection are dropped; they belong to an
        earlier invocation and are assumed to be in place.
        """
        wanted = set(stage_ids)
        for stage_id in wanted:
            self.get(stage_id)
        selected = []
        for stage in self._stages.values():
            if stage.id not in wanted:
                continue
            deps = tuple(d for d in stage.depends_on if d in wanted)
            selected.append(stage.model_copy(update={"depends_on": deps}))
        return StageGraph(selected)

    def topological_order(self) -> list[str]:
        """Deterministic linearization; ties go to the earlier-declared stage."""
        index = {stage_id: i for i, stage_id in enumerate(self._stages)}
        indegree: dict[str, int] = {}
        for stage in self._stages.values():
            for dep in stage.depends_on:
                if dep not in self._stages:
                    raise UnknownStageError(
                        f"Stage '{stage.id}' depends on undeclared stage '{dep}'"
                    )
            indegree[stage.id] = len(set(stage.depends_on))

        ready = [index[s] for s, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        ids = list(self._stages)
        order: list[str] = []
        while ready:
            current = ids[heapq.heappop(ready)]
            order.append(current)
            for child in self.dependents(current):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, index[child])

        if len(order) != len(self._stages):
            raise CyclicDependencyError(self._find_cycle(set(self._stages) - set(order)))
        return order

    def reverse_order(self) -> list[str]:
        """Teardown sequence: the exact inverse of :meth:`topological_order`."""
        return list(reversed(self.topological_order()))

    def _find_cycle(self, candidates: set[str]) -> list[str]:
        visiting: list[str] = []
        visited: set[str] = set()

        def visit(stage_id: str) -> list[str] | None:
            if stage_id in visiting:
                return visiting[visiting.index(stage_id):] + [stage_id]
            if stage_id in visited:
                return None
            visiting.append(stage_id)
            for dep in self._stages[stage_id].depends_on:
                if dep in candidates:
                    found = visit(dep)
                    if found:
                        return found
            visiting.pop()
            visited.add(stage_id)
            return None

        for stage_id in self._stages:
            if stage_id in candidates:
                cycle = visit(stage_id)
                if cycle:
                    return cycle
        return sorted(candidates)
