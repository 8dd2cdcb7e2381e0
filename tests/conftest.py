from typing import Optional

import pytest

from eksdeploy.context import RunContext
from eksdeploy.models import CommandResult
from eksdeploy.settings import Settings


def ok(stdout: str = "") -> tuple[int, str, str]:
    return 0, stdout, ""


def fail(stderr: str = "boom", exit_code: int = 1) -> tuple[int, str, str]:
    return exit_code, "", stderr


class FakeRunner:
    """Scripted stand-in for CommandRunner.

    Rules match when their fragment occurs in the joined command; the most
    recently added rule wins. Each rule replays its results in order and
    then keeps returning the last one.
    """

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self._rules: list[tuple[str, list]] = []

    def on(self, fragment: str, *results: tuple[int, str, str]) -> "FakeRunner":
        self._rules.append((fragment, list(results)))
        return self

    def run(self, command, timeout: Optional[float] = None) -> CommandResult:
        command = tuple(command)
        self.calls.append(command)
        joined = " ".join(command)
        exit_code, stdout, stderr = ok()
        for fragment, results in reversed(self._rules):
            if fragment in joined:
                exit_code, stdout, stderr = results.pop(0) if len(results) > 1 else results[0]
                break
        return CommandResult(command=command, exit_code=exit_code, stdout=stdout, stderr=stderr)

    def ran(self, fragment: str) -> list[str]:
        return [" ".join(c) for c in self.calls if fragment in " ".join(c)]


class FakeClock:
    """Monotonic clock that only advances when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeControlPlane:
    """In-memory view of the remote control plane."""

    def __init__(self, outputs=None, associations=None, secrets=None, status="CREATE_COMPLETE"):
        self.outputs = outputs
        self.associations = associations or {}
        self.secrets = secrets or {}
        self.status = status
        self.queries: list[str] = []

    def stack_outputs(self, stack_name):
        return self.outputs

    def stack_output(self, stack_name, key):
        self.queries.append(key)
        return (self.outputs or {}).get(key)

    def stack_status(self, stack_name):
        return self.status if self.outputs is not None else None

    def secret_value(self, secret_id, json_key=None):
        return self.secrets.get(secret_id)

    def pod_identity_association_id(self, cluster_name, namespace, service_account):
        return self.associations.get((namespace, service_account))

    def validate_template(self, template_path):
        return {"Parameters": []}


STACK_OUTPUTS = {
    "LoadBalancerControllerPolicyArn": "arn:aws:iam::123456789012:policy/lb",
    "ClusterAutoscalerPolicyArn": "arn:aws:iam::123456789012:policy/autoscaler",
    "VeleroBackupBucket": "grafana-eks-velero",
    "VeleroRoleArn": "arn:aws:iam::123456789012:role/velero",
    "FluentBitRoleArn": "arn:aws:iam::123456789012:role/fluent-bit",
    "SecretsManagerRoleArn": "arn:aws:iam::123456789012:role/secrets",
    "EFSFileSystemId": "fs-0123456789abcdef0",
}


@pytest.fixture
def manifests_dir(tmp_path):
    directory = tmp_path / "k8s-manifests"
    directory.mkdir()
    (directory / "01-namespace.yaml").write_text(
        "apiVersion: v1\nkind: Namespace\nmetadata:\n  name: grafana-stack\n"
    )
    (directory / "04-storage-class.yaml.template").write_text(
        "apiVersion: storage.k8s.io/v1\n"
        "kind: StorageClass\n"
        "metadata:\n"
        "  name: efs-sc\n"
        "provisioner: efs.csi.aws.com\n"
        "parameters:\n"
        "  fileSystemId: fs-xxxxxxxxx\n"
    )
    return directory


@pytest.fixture
def settings(tmp_path, manifests_dir):
    return Settings(
        _env_file=None,
        stack_name="grafana-eks",
        aws_region="eu-central-1",
        aws_profile="ecs-test",
        template_file=str(tmp_path / "grafana-eks.yaml"),
        manifests_dir=str(manifests_dir),
        enable_velero=True,
        enable_istio=False,
        enable_fluent_bit=False,
        readiness_timeout_seconds=30,
        poll_interval_seconds=5,
        stack_delete_timeout_seconds=120,
        max_parallel_stages=1,
    )


@pytest.fixture
def context(settings):
    return RunContext(settings.builtins())


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def control_plane():
    return FakeControlPlane(outputs=dict(STACK_OUTPUTS))
