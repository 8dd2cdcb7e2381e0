"""Declared remote sources for run-time variables. All of them are read-only."""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from eksdeploy.models import Probe


class StackOutput(BaseModel):
    """CloudFormation output of the target stack."""

    model_config = ConfigDict(frozen=True)

    key: str

    def describe(self) -> str:
        return f"stack output {self.key}"

    def variables(self) -> set[str]:
        return set()


class SecretValue(BaseModel):
    """Secrets Manager secret, or one key of a JSON secret."""

    model_config = ConfigDict(frozen=True)

    secret_id: str
    json_key: Optional[str] = None

    def describe(self) -> str:
        suffix = f"[{self.json_key}]" if self.json_key else ""
        return f"secret {self.secret_id}{suffix}"

    def variables(self) -> set[str]:
        return set()


class PodIdentityAssociation(BaseModel):
    """Id of the EKS pod identity association bound to a service account."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    service_account: str

    def describe(self) -> str:
        return f"pod identity association for {self.namespace}/{self.service_account}"

    def variables(self) -> set[str]:
        return {"CLUSTER_NAME"}


class CommandValue(BaseModel):
    """Stdout of a read-only command, optionally polled until it is non-empty."""

    model_config = ConfigDict(frozen=True)

    probe: Probe
    wait: bool = False
    timeout_seconds: float = 300
    interval_seconds: float = 5

    def describe(self) -> str:
        return "output of " + " ".join(self.probe.command)

    def variables(self) -> set[str]:
        return self.probe.variables()


VariableSource = Union[StackOutput, SecretValue, PodIdentityAssociation, CommandValue]
