import pytest

from eksdeploy.errors import UnknownStageError
from eksdeploy.models import Direction
from eksdeploy.validation import validate_plan
from eksdeploy.workflows import (
    ADDONS,
    INFRA,
    WORKFLOWS,
    WORKLOADS,
    build_catalog,
    build_sources,
    select_stages,
)


@pytest.mark.parametrize("direction", list(Direction))
def test_catalog_passes_static_validation(settings, direction):
    graph = build_catalog(settings, direction)
    order = validate_plan(graph, direction, settings.builtins(), build_sources(settings))
    assert order[0] == "stack"


def test_optional_addons_follow_settings_on_apply(settings):
    ids = build_catalog(settings, Direction.APPLY).ids()
    assert "velero" in ids
    assert "istio" not in ids and "istio-injection" not in ids
    assert "fluent-bit" not in ids

    enabled = settings.model_copy(update={"enable_istio": True, "enable_fluent_bit": True, "enable_velero": False})
    ids = build_catalog(enabled, Direction.APPLY).ids()
    assert {"istio", "istio-addons", "istio-injection", "fluent-bit"} <= set(ids)
    assert "velero" not in ids and "helm-repo-vmware-tanzu" not in ids


def test_teardown_includes_every_optional_addon(settings):
    disabled = settings.model_copy(update={"enable_velero": False})
    ids = build_catalog(disabled, Direction.TEARDOWN).ids()
    assert {"velero", "velero-pod-identity", "istio", "istio-injection", "fluent-bit", "fluent-bit-pod-identity"} <= set(ids)


def test_namespaces_wrap_their_releases(settings):
    graph = build_catalog(settings, Direction.TEARDOWN)
    apply_order = graph.topological_order()
    teardown_order = graph.reverse_order()
    assert apply_order.index("velero-namespace") < apply_order.index("velero")
    assert teardown_order.index("velero") < teardown_order.index("velero-namespace")
    assert teardown_order.index("manifests") < teardown_order.index("lb-controller")
    assert teardown_order[-1] == "stack"


def test_every_teardown_except_the_stack_tolerates_absence(settings):
    for stage in build_catalog(settings, Direction.TEARDOWN):
        if stage.teardown is None:
            continue
        if stage.id == "stack":
            assert stage.teardown.exists_probe is not None
        else:
            assert stage.teardown.tolerant, stage.id


def test_chart_versions_are_pinned(settings):
    graph = build_catalog(settings, Direction.APPLY)
    assert "--version=1.16.0" in graph.get("lb-controller").apply.command
    assert "--version=9.43.2" in graph.get("autoscaler").apply.command
    assert "--version=1.5.5" in graph.get("secrets-store-csi").apply.command
    assert "--version=7.2.1" in graph.get("velero").apply.command


def test_manifests_stage_renders_templates(settings):
    manifests = build_catalog(settings, Direction.APPLY).get("manifests")
    assert [t.placeholders for t in manifests.apply.templates] == [{"fs-xxxxxxxxx": "EFS_ID"}]
    assert manifests.teardown.templates == manifests.apply.templates
    assert manifests.teardown.templates_optional
    assert "EFS_ID" not in manifests.teardown.variables()


def test_stack_teardown_fails_fast_on_delete_failed(settings):
    stack = build_catalog(settings, Direction.TEARDOWN).get("stack")
    assert stack.teardown.readiness.probe.failure_states == ("DELETE_FAILED",)


def test_select_groups(settings):
    graph = select_stages(WORKFLOWS["install-addons"], settings)
    assert {stage.group for stage in graph} == {ADDONS}
    assert graph.get("oidc-provider").depends_on == ()

    graph = select_stages(WORKFLOWS["deploy"], settings)
    assert {stage.group for stage in graph} == {INFRA, ADDONS, WORKLOADS}


def test_update_workloads_skips_first_deploy_only_stages(settings):
    ids = select_stages(WORKFLOWS["update-workloads"], settings).ids()
    assert "manifests" in ids and "postgres-irsa" in ids
    assert "grafana-root-url" not in ids
    assert "grafana-root-url" in select_stages(WORKFLOWS["deploy-workloads"], settings).ids()


def test_stage_filter(settings):
    graph = select_stages(WORKFLOWS["install-addons"], settings, ["velero-namespace", "velero"])
    assert graph.ids() == ["velero-namespace", "velero"]
    assert graph.get("velero").depends_on == ()


def test_stage_filter_outside_workflow(settings):
    with pytest.raises(UnknownStageError, match="deploy-infra"):
        select_stages(WORKFLOWS["deploy-infra"], settings, ["velero"])


def test_delete_workflows_run_in_teardown_direction():
    assert WORKFLOWS["clean"].direction == Direction.TEARDOWN
    assert WORKFLOWS["delete-infra"].groups == (INFRA,)
    assert WORKFLOWS["update"].updates_only
