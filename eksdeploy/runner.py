"""Subprocess execution, placeholder substitution and bounded polling."""

import logging
import os
import shlex
import subprocess
import time
from collections.abc import Callable, Mapping
from string import Template
from typing import Optional

from eksdeploy.errors import ReadinessTimeoutError, UnresolvedVariableError
from eksdeploy.models import CommandResult, Probe, ValidationErrorDetail

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126


def format_command(command: tuple[str, ...] | list[str]) -> str:
    return shlex.join(command)


def substitute(command: tuple[str, ...], values: Mapping[str, str]) -> tuple[str, ...]:
    """Fill ``${VAR}`` placeholders in every argument of *command*."""
    rendered = []
    for part in command:
        try:
            rendered.append(Template(part).substitute(values))
        except KeyError as e:
            name = e.args[0]
            raise UnresolvedVariableError(
                [ValidationErrorDetail(field=name, message="no value at run time", value=part)]
            ) from e
    return tuple(rendered)


class CommandRunner:
    """Runs external tools (aws, eksctl, helm, kubectl) as child processes."""

    def __init__(self, env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None):
        self.env = {**os.environ, **(env or {})}
        self.cwd = cwd

    def run(self, command: tuple[str, ...], timeout: Optional[float] = None) -> CommandResult:
        logger.debug("$ %s", format_command(command))
        try:
            completed = subprocess.run(
                list(command),
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.cwd,
                env=self.env,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(
                command=command,
                exit_code=EXIT_NOT_FOUND,
                stderr=f"Command '{command[0]}' could not be executed "
                f"({e.strerror or 'file not found'}). Ensure it is installed and on PATH.",
            )
        except OSError as e:
            return CommandResult(
                command=command,
                exit_code=EXIT_NOT_EXECUTABLE,
                stderr=f"Command '{command[0]}' could not be executed ({e.strerror or e}).",
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                command=command,
                exit_code=EXIT_TIMEOUT,
                stdout=_text(e.stdout),
                stderr=f"{_text(e.stderr)}\nCommand timed out after {timeout:g}s".strip(),
            )
        return CommandResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def probe_is_absent(probe: Probe, result: CommandResult) -> bool:
    """True when a failed probe reports that its target does not exist."""
    if result.ok or not probe.absent_markers:
        return False
    output = result.output.lower()
    return any(marker.lower() in output for marker in probe.absent_markers)


def probe_has_failed(probe: Probe, result: CommandResult) -> bool:
    """True when the observed target reports a terminal failure state."""
    return result.ok and result.stdout.strip() in probe.failure_states


def probe_is_ready(probe: Probe, result: CommandResult) -> bool:
    if probe_is_absent(probe, result):
        return True
    if not result.ok:
        return False
    stdout = result.stdout.strip()
    if probe.expect is None:
        return bool(stdout)
    return stdout == probe.expect


def poll_until(
    check: Callable[[], tuple[bool, str]],
    *,
    description: str,
    timeout_seconds: float,
    interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Re-check *check* every *interval_seconds* until it passes or time runs out.

    Returns the output of the passing check.
    """
    deadline = clock() + timeout_seconds
    attempt = 0
    while True:
        attempt += 1
        done, output = check()
        if done:
            logger.debug("%s: satisfied after %d check(s)", description, attempt)
            return output
        if clock() >= deadline:
            raise ReadinessTimeoutError(description, timeout_seconds, output)
        logger.info("Waiting for %s (check %d)...", description, attempt)
        sleep(interval_seconds)
