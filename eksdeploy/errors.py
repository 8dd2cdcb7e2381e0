"""Exception hierarchy for the deployment orchestrator."""

from typing import Optional

from eksdeploy.models import ValidationErrorDetail


class DeploymentError(Exception):
    """Base class for every orchestrator error."""


class DuplicateStageError(DeploymentError):
    """Raised when two stages share an identifier."""


class UnknownStageError(DeploymentError):
    """Raised when a stage depends on, or a run names, an undeclared stage."""


class CyclicDependencyError(DeploymentError):
    """Raised when the stage graph is not a DAG."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic stage dependency: {' -> '.join(cycle)}")


class UnresolvedVariableError(DeploymentError):
    """Raised when a referenced variable has no producer or source."""

    def __init__(self, errors: list[ValidationErrorDetail]):
        self.errors = errors
        messages = [f"{e.field}: {e.message}" for e in errors]
        super().__init__(f"Unresolved variables: {'; '.join(messages)}")


class VariableConflictError(DeploymentError):
    """Raised when a write-once context variable would be overwritten."""


class MissingPlaceholderValueError(DeploymentError):
    """Raised when a template token has no resolved value."""

    def __init__(self, token: str, variable: str, source: Optional[str] = None):
        self.token = token
        self.variable = variable
        where = f" in {source}" if source else ""
        super().__init__(
            f"Placeholder '{token}'{where} needs variable {variable}, which has no value"
        )


class InvalidManifestError(DeploymentError):
    """Raised when a rendered manifest is not valid YAML."""


class ReadinessTimeoutError(DeploymentError):
    """Raised when a remote resource does not reach its condition in time."""

    def __init__(self, description: str, timeout_seconds: float, last_output: str = ""):
        self.description = description
        self.timeout_seconds = timeout_seconds
        self.last_output = last_output
        super().__init__(f"Timed out after {timeout_seconds:g}s waiting for {description}")


class CommandFailed(DeploymentError):
    """Raised when an external tool returns a non-tolerated failure."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Command failed with exit code {exit_code}: {command}")


class ControlPlaneError(DeploymentError):
    """Raised when an AWS API call fails for a reason other than absence."""
