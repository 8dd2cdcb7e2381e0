"""Resolves stage inputs from the run context or the remote control plane."""

import logging
import time
from collections.abc import Callable, Iterable, Mapping

from eksdeploy.context import RunContext
from eksdeploy.errors import UnresolvedVariableError
from eksdeploy.models import ValidationErrorDetail
from eksdeploy.runner import CommandRunner, poll_until, substitute
from eksdeploy.services.control_plane import ControlPlane
from eksdeploy.settings import Settings
from eksdeploy.sources import (
    CommandValue,
    PodIdentityAssociation,
    SecretValue,
    StackOutput,
    VariableSource,
)

logger = logging.getLogger(__name__)


def _unresolved(name: str, message: str) -> UnresolvedVariableError:
    return UnresolvedVariableError([ValidationErrorDetail(field=name, message=message)])


class VariableResolver:
    """Maps input names to values.

    Values already in the context (settings builtins, outputs of earlier
    stages) win; anything else is fetched from its declared source and
    recorded into the context.
    """

    def __init__(
        self,
        settings: Settings,
        sources: Mapping[str, VariableSource],
        control_plane: ControlPlane,
        runner: CommandRunner,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.sources = dict(sources)
        self.control_plane = control_plane
        self.runner = runner
        self._sleep = sleep
        self._clock = clock

    def has_source(self, name: str) -> bool:
        return name in self.sources

    def resolve(self, inputs: Iterable[str], context: RunContext) -> dict[str, str]:
        resolved: dict[str, str] = {}
        for name in sorted(set(inputs)):
            if name in context:
                resolved[name] = context[name]
                continue
            source = self.sources.get(name)
            if source is None:
                raise _unresolved(name, "no earlier stage output or declared source")
            value = self._fetch(source, context)
            if not value or value == "None":
                raise _unresolved(name, f"{source.describe()} returned no value")
            context.record(name, value)
            logger.info("Resolved %s from %s", name, source.describe())
            resolved[name] = value
        return resolved

    def _fetch(self, source: VariableSource, context: RunContext) -> str | None:
        if isinstance(source, StackOutput):
            return self.control_plane.stack_output(self.settings.stack_name, source.key)
        if isinstance(source, SecretValue):
            return self.control_plane.secret_value(source.secret_id, source.json_key)
        if isinstance(source, PodIdentityAssociation):
            return self.control_plane.pod_identity_association_id(
                self.settings.cluster_name, source.namespace, source.service_account
            )
        if isinstance(source, CommandValue):
            return self._fetch_command(source, context)
        raise TypeError(f"Unsupported variable source: {source!r}")

    def _fetch_command(self, source: CommandValue, context: RunContext) -> str | None:
        command = substitute(source.probe.command, context)

        def check() -> tuple[bool, str]:
            result = self.runner.run(command, timeout=self.settings.command_timeout_seconds)
            value = result.stdout.strip() if result.ok else ""
            return bool(value), value or result.stderr.strip()

        if not source.wait:
            done, value = check()
            return value if done else None
        return poll_until(
            check,
            description=source.describe(),
            timeout_seconds=source.timeout_seconds,
            interval_seconds=source.interval_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )
