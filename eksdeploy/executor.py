import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Optional

from eksdeploy.context import RunContext
from eksdeploy.errors import CommandFailed, DeploymentError, ReadinessTimeoutError
from eksdeploy.models import (
    Action,
    CommandResult,
    OutputSpec,
    Stage,
    StageResult,
    StageStatus,
)
from eksdeploy.resolver import VariableResolver
from eksdeploy.runner import (
    CommandRunner,
    format_command,
    poll_until,
    probe_has_failed,
    probe_is_absent,
    probe_is_ready,
    substitute,
)
from eksdeploy.settings import Settings
from eksdeploy.templates import render_file

logger = logging.getLogger(__name__)


def parse_output(spec: OutputSpec, stdout: str) -> Optional[str]:
    """Extract a declared output variable from a command's stdout."""
    if spec.json_path is None:
        return stdout.strip() or None
    try:
        value = json.loads(stdout)
    except json.JSONDecodeError:
        return None
    for key in spec.json_path.split("."):
        if isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        elif isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return None
    return None if value is None else str(value)


class CommandExecutor:
    """Runs one stage action and classifies the outcome."""

    def __init__(
        self,
        settings: Settings,
        resolver: VariableResolver,
        runner: CommandRunner,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.resolver = resolver
        self.runner = runner
        self._sleep = sleep
        self._clock = clock

    def execute(self, stage: Stage, action: Optional[Action], context: RunContext) -> StageResult:
        started = self._clock()
        if action is None:
            return StageResult(
                stage_id=stage.id,
                status=StageStatus.SKIPPED_ALREADY_SATISFIED,
                diagnostics="nothing to do in this direction",
            )
        try:
            status, outputs, diagnostics = self._run_action(stage, action, context)
        except DeploymentError as e:
            diagnostics = _diagnostics(e)
            if action.tolerant:
                logger.warning("Stage %s tolerated failure: %s", stage.id, diagnostics)
                status, outputs = StageStatus.SKIPPED_ALREADY_SATISFIED, {}
            else:
                logger.error("Stage %s failed: %s", stage.id, diagnostics)
                status, outputs = StageStatus.FAILED, {}
        return StageResult(
            stage_id=stage.id,
            status=status,
            outputs=outputs,
            diagnostics=diagnostics,
            duration_seconds=round(self._clock() - started, 3),
        )

    def _run_action(
        self, stage: Stage, action: Action, context: RunContext
    ) -> tuple[StageStatus, dict[str, str], str]:
        values = self.resolver.resolve(action.variables(), context)

        templates = action.templates
        if action.templates_optional and templates:
            try:
                values = {**values, **self.resolver.resolve(action.template_inputs(), context)}
            except DeploymentError as e:
                logger.warning("Stage %s: not rendering templates: %s", stage.id, e)
                templates = ()
        for template in templates:
            render_file(template, values)

        if action.exists_probe is not None:
            probe = action.exists_probe
            result = self.runner.run(
                substitute(probe.command, values), timeout=self.settings.command_timeout_seconds
            )
            if probe_is_absent(probe, result):
                logger.info("Stage %s: target absent, nothing to do", stage.id)
                return StageStatus.SKIPPED_ALREADY_SATISFIED, {}, result.output

        diagnostics = ""
        outputs: dict[str, str] = {}
        if action.command:
            command = substitute(action.command, values)
            logger.info("[%s] $ %s", stage.id, format_command(command))
            result = self.runner.run(command, timeout=self.settings.command_timeout_seconds)
            self._log_output(stage.id, result)
            diagnostics = result.output
            if not result.ok:
                if _matches(action.satisfied_markers, result):
                    logger.info("Stage %s: already satisfied", stage.id)
                    return StageStatus.SKIPPED_ALREADY_SATISFIED, {}, diagnostics
                raise CommandFailed(format_command(command), result.exit_code, result.output)
            outputs = self._record_outputs(action, result, context)

        if action.readiness is not None:
            self._wait_ready(action, {**values, **outputs})
        return StageStatus.SUCCEEDED, outputs, diagnostics

    def _record_outputs(
        self, action: Action, result: CommandResult, context: RunContext
    ) -> dict[str, str]:
        outputs: dict[str, str] = {}
        for spec in action.outputs:
            value = parse_output(spec, result.stdout)
            if value is None:
                raise CommandFailed(
                    format_command(result.command),
                    result.exit_code,
                    f"declared output {spec.name} missing from command output",
                )
            context.record(spec.name, value)
            outputs[spec.name] = value
        return outputs

    def _wait_ready(self, action: Action, values: Mapping[str, str]) -> None:
        readiness = action.readiness
        command = substitute(readiness.probe.command, values)

        def check() -> tuple[bool, str]:
            result = self.runner.run(command, timeout=self.settings.command_timeout_seconds)
            if probe_has_failed(readiness.probe, result):
                raise CommandFailed(
                    format_command(command),
                    result.exit_code,
                    f"gave up waiting for {readiness.description}: reached {result.stdout.strip()}",
                )
            return probe_is_ready(readiness.probe, result), result.output

        poll_until(
            check,
            description=readiness.description,
            timeout_seconds=readiness.timeout_seconds,
            interval_seconds=readiness.interval_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )

    @staticmethod
    def _log_output(stage_id: str, result: CommandResult) -> None:
        for line in result.output.splitlines():
            if line.strip():
                logger.info("[%s] %s", stage_id, line)


def _matches(markers: tuple[str, ...], result: CommandResult) -> bool:
    output = result.output.lower()
    return any(marker.lower() in output for marker in markers)


def _diagnostics(error: DeploymentError) -> str:
    if isinstance(error, CommandFailed):
        return f"{error}\n{error.stderr}".strip()
    if isinstance(error, ReadinessTimeoutError) and error.last_output:
        return f"{error}\nlast output: {error.last_output}"
    return str(error)
