"""End-to-end workflows against a scripted control plane and command runner."""

from pathlib import Path

import boto3
from botocore.exceptions import EndpointConnectionError

from eksdeploy.cli import run_workflow
from eksdeploy.models import RunStatus, StageStatus
from eksdeploy.services import ControlPlane
from eksdeploy.workflows import WORKFLOWS, select_stages

from conftest import FakeControlPlane, fail, ok

ALB = "k8s-grafanas-consolid-0123456789.eu-central-1.elb.amazonaws.com"


def _healthy_cluster(runner):
    runner.on("kubectl wait", ok("condition met"))
    runner.on("consolidated-alb", ok(ALB))
    return runner


def _run(name, settings, runner, control_plane, clock):
    return run_workflow(
        WORKFLOWS[name], settings, runner=runner, control_plane=control_plane, sleep=clock.sleep, clock=clock
    )


def test_full_deploy(settings, runner, control_plane, clock):
    _healthy_cluster(runner)
    assert _run("deploy", settings, runner, control_plane, clock).exit_code == 0

    assert runner.calls[0][:3] == ("aws", "cloudformation", "deploy")
    assert runner.ran("--attach-policy-arn=arn:aws:iam::123456789012:policy/lb")
    assert runner.ran(f"GF_SERVER_ROOT_URL=https://{ALB}/grafana/")
    assert runner.ran("configuration.backupStorageLocation[0].bucket=grafana-eks-velero")
    rendered = Path(settings.manifests_dir) / "04-storage-class-updated.yaml"
    assert "fs-0123456789abcdef0" in rendered.read_text()
    # stack outputs are queried once per variable, not per stage
    assert control_plane.queries.count("SecretsManagerRoleArn") == 1


def test_rerun_is_idempotent(settings, runner, control_plane, clock):
    _healthy_cluster(runner)
    assert _run("deploy", settings, runner, control_plane, clock).exit_code == 0

    runner.on("helm repo add", fail('Error: repository name (eks) already exists'))
    runner.on("create namespace", fail('Error from server (AlreadyExists): namespaces "velero" already exists'))
    runner.on("create-pod-identity-association", fail("An error occurred (ResourceInUseException)"))
    assert _run("deploy", settings, runner, control_plane, clock).exit_code == 0


def test_infra_failure_leaves_cluster_stages_pending(settings, runner, control_plane, clock, capsys):
    _healthy_cluster(runner)
    runner.on("cloudformation deploy", fail("Template format error: unresolved resource dependencies"))

    report = _run("deploy", settings, runner, control_plane, clock)
    assert report.exit_code == 1

    local = [s.id for s in select_stages(WORKFLOWS["deploy"], settings) if s.id.startswith("helm-repo-")]
    expected_pending = [
        s.id for s in select_stages(WORKFLOWS["deploy"], settings) if s.id != "stack" and s.id not in local
    ]
    assert report.with_status(StageStatus.FAILED) == ["stack"]
    assert sorted(report.with_status(StageStatus.SUCCEEDED)) == sorted(local)
    assert sorted(report.with_status(StageStatus.PENDING)) == sorted(expected_pending)

    commands = [" ".join(c) for c in runner.calls]
    assert not any(c.startswith(("kubectl", "eksctl", "helm upgrade")) for c in commands)
    out = capsys.readouterr().out
    assert "stack failed" in out
    assert "Template format error" in out


def test_clean_without_a_stack_is_a_no_op(settings, runner, clock):
    runner.on("describe-stacks", fail("An error occurred (ValidationError): Stack with id grafana-eks does not exist", 255))
    for tool in ("kubectl", "helm", "eksctl", "istioctl"):
        runner.on(tool, fail("Unable to connect to the server"))
    control_plane = FakeControlPlane(outputs=None)

    report = _run("clean", settings, runner, control_plane, clock)
    assert report.exit_code == 0
    assert runner.ran("delete-stack") == []
    assert report.results
    assert {r.status for r in report.results} == {StageStatus.SKIPPED_ALREADY_SATISFIED}


def test_clean_survives_an_unreachable_control_plane(settings, runner, clock, monkeypatch):
    session = boto3.session.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="eu-central-1",
    )
    control_plane = ControlPlane(settings, session=session)
    for service, operation in (
        ("cloudformation", "describe_stacks"),
        ("eks", "list_pod_identity_associations"),
    ):
        def unreachable(service=service, **kwargs):
            raise EndpointConnectionError(endpoint_url=f"https://{service}.eu-central-1.amazonaws.com/")

        monkeypatch.setattr(control_plane._get_client(service), operation, unreachable)
    runner.on("describe-stacks", fail("Stack with id grafana-eks does not exist", 255))

    report = _run("clean", settings, runner, control_plane, clock)

    assert report.status == RunStatus.COMPLETED
    assert report.result("stack").status == StageStatus.SKIPPED_ALREADY_SATISFIED
    for stage_id in ("velero-pod-identity", "fluent-bit-pod-identity"):
        result = report.result(stage_id)
        assert result.status == StageStatus.SKIPPED_ALREADY_SATISFIED
        assert "list_pod_identity_associations failed" in result.diagnostics
    assert runner.ran("delete-pod-identity-association") == []
    assert runner.ran("kubectl delete namespace velero")
    assert runner.ran("kubectl delete -f")


def test_delete_infra_waits_for_the_stack_to_go(settings, runner, control_plane, clock):
    runner.on(
        "describe-stacks",
        ok("CREATE_COMPLETE"),
        ok("DELETE_IN_PROGRESS"),
        fail("Stack with id grafana-eks does not exist", 255),
    )
    report = _run("delete-infra", settings, runner, control_plane, clock)
    assert report.exit_code == 0
    assert report.result("stack").status == StageStatus.SUCCEEDED
    assert len(runner.ran("delete-stack")) == 1
    assert clock.sleeps == [30]


def test_delete_infra_stops_when_deletion_fails(settings, runner, control_plane, clock):
    runner.on("describe-stacks", ok("CREATE_COMPLETE"), ok("DELETE_FAILED"))

    report = _run("delete-infra", settings, runner, control_plane, clock)

    assert report.exit_code == 1
    assert report.result("stack").status == StageStatus.FAILED
    assert "reached DELETE_FAILED" in report.result("stack").diagnostics
    assert len(runner.ran("describe-stacks")) == 2
    assert clock.sleeps == []


def test_delete_infra_times_out(settings, runner, control_plane, clock):
    runner.on("describe-stacks", ok("DELETE_IN_PROGRESS"))
    report = _run("delete-infra", settings, runner, control_plane, clock)
    assert report.exit_code == 1
    assert report.result("stack").status == StageStatus.FAILED
    assert "Timed out after 120s" in report.result("stack").diagnostics
