"""Static checks run before any remote mutation."""

from collections.abc import Iterable, Mapping
from pathlib import Path

from eksdeploy.errors import UnresolvedVariableError
from eksdeploy.graph import StageGraph
from eksdeploy.models import Direction, TemplateSpec, ValidationErrorDetail
from eksdeploy.sources import VariableSource
from eksdeploy.templates import unknown_tokens


def _upstream(graph: StageGraph, stage_id: str, direction: Direction) -> set[str]:
    """Stages that run before *stage_id* along dependency edges in *direction*."""
    if direction == Direction.APPLY:
        return graph.ancestors(stage_id)
    seen: set[str] = set()
    stack = graph.dependents(stage_id)
    while stack:
        current = stack.pop()
        if current not in seen:
            seen.add(current)
            stack.extend(graph.dependents(current))
    return seen


def collect_variable_errors(
    graph: StageGraph,
    direction: Direction,
    builtins: Iterable[str],
    sources: Mapping[str, VariableSource],
) -> list[ValidationErrorDetail]:
    """Every variable reference that no builtin, earlier output or source satisfies."""
    known = set(builtins)
    errors: list[ValidationErrorDetail] = []

    for name, source in sorted(sources.items()):
        for needed in sorted(source.variables() - known - set(sources)):
            errors.append(
                ValidationErrorDetail(
                    field=f"sources.{name}",
                    message=f"{source.describe()} references unknown variable {needed}",
                    value=needed,
                )
            )

    for stage in graph:
        action = stage.action_for(direction)
        if action is None:
            continue
        produced: set[str] = set()
        for upstream_id in _upstream(graph, stage.id, direction):
            upstream = graph.get(upstream_id).action_for(direction)
            if upstream:
                produced.update(o.name for o in upstream.outputs)
        for name in sorted(action.variables() | action.template_inputs()):
            if name in known or name in produced or name in sources:
                continue
            errors.append(
                ValidationErrorDetail(
                    field=f"{stage.id}.{direction.value}",
                    message=f"variable {name} has no earlier producer or declared source",
                    value=name,
                )
            )
    return errors


def validate_plan(
    graph: StageGraph,
    direction: Direction,
    builtins: Iterable[str],
    sources: Mapping[str, VariableSource],
) -> list[str]:
    """Check the graph is a DAG and every variable is satisfiable.

    Returns the topological order on success.
    """
    order = graph.topological_order()
    errors = collect_variable_errors(graph, direction, builtins, sources)
    if errors:
        raise UnresolvedVariableError(errors)
    return order


def validate_template_tokens(templates: Iterable[TemplateSpec]) -> list[ValidationErrorDetail]:
    """Flag sentinel-looking tokens in templates that have no placeholder mapping."""
    errors: list[ValidationErrorDetail] = []
    for spec in templates:
        text = Path(spec.source).read_text(encoding="utf-8")
        for token in unknown_tokens(text, spec.placeholders):
            errors.append(
                ValidationErrorDetail(
                    field=spec.source,
                    message="placeholder token has no variable mapping",
                    value=token,
                )
            )
    return errors
