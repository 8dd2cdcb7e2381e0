from enum import Enum
from string import Template
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StageStatus(str, Enum):
    """Lifecycle of a single stage within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_ALREADY_SATISFIED = "skipped_already_satisfied"


class RunStatus(str, Enum):
    """Overall status of one orchestrator invocation."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"


class FailurePolicy(str, Enum):
    """What a failing action means for the rest of the run."""

    FATAL = "fatal"
    TOLERANT = "tolerant"  # tolerant-of-absence


class Direction(str, Enum):
    """Which action of each stage a run executes."""

    APPLY = "apply"
    TEARDOWN = "teardown"


def template_variables(parts: tuple[str, ...]) -> set[str]:
    """Return the ``${VAR}`` identifiers referenced by a command template."""
    names: set[str] = set()
    for part in parts:
        names.update(Template(part).get_identifiers())
    return names


class Probe(BaseModel):
    """Read-only command used to observe remote state."""

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...]
    expect: Optional[str] = Field(
        default=None,
        description="Exact stdout that means ready; any non-empty stdout when unset",
    )
    absent_markers: tuple[str, ...] = Field(
        default=(),
        description="Output substrings meaning the observed target does not exist",
    )
    failure_states: tuple[str, ...] = Field(
        default=(),
        description="Exact stdout values that mean the target will never become ready",
    )

    def variables(self) -> set[str]:
        return template_variables(self.command)


class ReadinessCheck(BaseModel):
    """Completion condition polled after a command is submitted."""

    model_config = ConfigDict(frozen=True)

    description: str
    probe: Probe
    timeout_seconds: float = 300
    interval_seconds: float = 5


class TemplateSpec(BaseModel):
    """Manifest template rendered into a derived document before apply."""

    model_config = ConfigDict(frozen=True)

    source: str
    destination: str
    placeholders: dict[str, str] = Field(
        default_factory=lambda: {"fs-xxxxxxxxx": "EFS_ID"},
        description="Sentinel token -> variable name",
    )


class OutputSpec(BaseModel):
    """Variable emitted from a command's stdout."""

    model_config = ConfigDict(frozen=True)

    name: str
    json_path: Optional[str] = Field(
        default=None,
        description="Dotted path into JSON stdout; the whole stripped stdout when unset",
    )


class Action(BaseModel):
    """One direction (apply or teardown) of a stage."""

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...] = ()
    policy: FailurePolicy = FailurePolicy.FATAL
    satisfied_markers: tuple[str, ...] = ()
    exists_probe: Optional[Probe] = None
    readiness: Optional[ReadinessCheck] = None
    outputs: tuple[OutputSpec, ...] = ()
    templates: tuple[TemplateSpec, ...] = ()
    templates_optional: bool = Field(
        default=False,
        description="Render templates only when their variables resolve; run the command either way",
    )
    inputs: tuple[str, ...] = ()

    @property
    def tolerant(self) -> bool:
        return self.policy == FailurePolicy.TOLERANT

    def template_inputs(self) -> set[str]:
        names: set[str] = set()
        for template in self.templates:
            names.update(template.placeholders.values())
        return names

    def variables(self) -> set[str]:
        """Every variable this action needs before it can run."""
        names = set(self.inputs) | template_variables(self.command)
        if self.exists_probe:
            names |= self.exists_probe.variables()
        if self.readiness:
            names |= self.readiness.probe.variables()
        if not self.templates_optional:
            names |= self.template_inputs()
        return names


class Stage(BaseModel):
    """Named unit of orchestrated work. Defined once, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=r"^[a-z0-9][a-z0-9-]*$")
    depends_on: tuple[str, ...] = ()
    group: str = "infra"
    description: str = ""
    on_update: bool = True
    apply: Optional[Action] = None
    teardown: Optional[Action] = None

    def action_for(self, direction: Direction) -> Optional[Action]:
        return self.apply if direction == Direction.APPLY else self.teardown


class CommandResult(BaseModel):
    """Result of executing an external command."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class StageResult(BaseModel):
    """Outcome of one stage execution."""

    stage_id: str
    status: StageStatus
    outputs: dict[str, str] = Field(default_factory=dict)
    diagnostics: str = ""
    duration_seconds: float = 0.0


class RunReport(BaseModel):
    """Outcome of a whole apply or teardown run."""

    direction: Direction
    status: RunStatus = RunStatus.IN_PROGRESS
    results: list[StageResult] = Field(default_factory=list)

    def result(self, stage_id: str) -> StageResult:
        for result in self.results:
            if result.stage_id == stage_id:
                return result
        raise KeyError(stage_id)

    def with_status(self, status: StageStatus) -> list[str]:
        return [r.stage_id for r in self.results if r.status == status]

    @property
    def exit_code(self) -> int:
        return 0 if self.status == RunStatus.COMPLETED else 1


class ValidationErrorDetail(BaseModel):
    """Single static validation error detail."""

    field: str
    message: str
    value: Optional[str] = None
