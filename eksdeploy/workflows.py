"""Stage catalog for the grafana-eks system and the workflows built from it."""

from pydantic import BaseModel

from eksdeploy.errors import UnknownStageError
from eksdeploy.graph import StageGraph
from eksdeploy.models import (
    Action,
    Direction,
    FailurePolicy,
    Probe,
    ReadinessCheck,
    Stage,
)
from eksdeploy.settings import Settings
from eksdeploy.sources import CommandValue, PodIdentityAssociation, StackOutput, VariableSource
from eksdeploy.templates import discover_templates

INFRA = "infra"
ADDONS = "addons"
WORKLOADS = "workloads"
GROUPS = (INFRA, ADDONS, WORKLOADS)

LB_CONTROLLER_CHART_VERSION = "1.16.0"
CLUSTER_AUTOSCALER_CHART_VERSION = "9.43.2"
SECRETS_STORE_CSI_CHART_VERSION = "1.5.5"
VELERO_CHART_VERSION = "7.2.1"
VELERO_AWS_PLUGIN_IMAGE = "velero/velero-plugin-for-aws:v1.11.0"
FLUENT_BIT_CHART_VERSION = "0.1.34"

HELM_REPOSITORIES = {
    "eks": "https://aws.github.io/eks-charts",
    "autoscaler": "https://kubernetes.github.io/autoscaler",
    "secrets-store-csi-driver": "https://kubernetes-sigs.github.io/secrets-store-csi-driver/charts",
    "vmware-tanzu": "https://vmware-tanzu.github.io/helm-charts",
}

AWS_PROVIDER_INSTALLER = (
    "https://raw.githubusercontent.com/aws/secrets-store-csi-driver-provider-aws/"
    "main/deployment/aws-provider-installer.yaml"
)
ISTIO_ADDONS = tuple(
    f"https://raw.githubusercontent.com/istio/istio/release-1.24/samples/addons/{name}.yaml"
    for name in ("prometheus", "grafana", "jaeger", "kiali")
)
SM_ROLE_ANNOTATION = "eks.amazonaws.com/role-arn=${SM_ROLE_ARN}"
APP_NAMESPACES = ("grafana-stack", "postgres-stack")

ALREADY_EXISTS = ("already exists", "AlreadyExists", "ResourceInUseException")
STACK_MISSING = ("does not exist",)


def build_sources(settings: Settings) -> dict[str, VariableSource]:
    """Remote sources for every variable no stage produces itself."""
    return {
        "LB_POLICY_ARN": StackOutput(key="LoadBalancerControllerPolicyArn"),
        "CLUSTER_AUTOSCALER_POLICY_ARN": StackOutput(key="ClusterAutoscalerPolicyArn"),
        "VELERO_BUCKET": StackOutput(key="VeleroBackupBucket"),
        "VELERO_ROLE_ARN": StackOutput(key="VeleroRoleArn"),
        "FLUENT_BIT_ROLE_ARN": StackOutput(key="FluentBitRoleArn"),
        "SM_ROLE_ARN": StackOutput(key="SecretsManagerRoleArn"),
        "EFS_ID": StackOutput(key="EFSFileSystemId"),
        "VELERO_ASSOCIATION_ID": PodIdentityAssociation(namespace="velero", service_account="velero"),
        "FLUENT_BIT_ASSOCIATION_ID": PodIdentityAssociation(
            namespace="amazon-cloudwatch", service_account="fluent-bit"
        ),
        "ALB_DNS": CommandValue(
            probe=Probe(
                command=(
                    "kubectl", "get", "ingress", "consolidated-alb", "-n", "grafana-stack",
                    "-o", "jsonpath={.status.loadBalancer.ingress[0].hostname}",
                ),
            ),
            wait=True,
            timeout_seconds=settings.readiness_timeout_seconds,
            interval_seconds=settings.poll_interval_seconds,
        ),
    }


# -- action helpers --


def _tolerant(*command: str) -> Action:
    return Action(command=command, policy=FailurePolicy.TOLERANT)


def _wait(settings: Settings, description: str, *condition: str) -> ReadinessCheck:
    """Readiness polled with short ``kubectl wait`` calls."""
    return ReadinessCheck(
        description=description,
        probe=Probe(command=("kubectl", "wait", *condition, "--timeout=10s")),
        timeout_seconds=settings.readiness_timeout_seconds,
        interval_seconds=settings.poll_interval_seconds,
    )


def _deployment_available(settings: Settings, name: str, namespace: str) -> ReadinessCheck:
    return _wait(
        settings,
        f"deployment {namespace}/{name} to become available",
        "--for=condition=available", f"deployment/{name}", "-n", namespace,
    )


def _helm_uninstall(release: str, namespace: str) -> Action:
    return _tolerant("helm", "uninstall", release, "-n", namespace)


def _delete_iam_service_account(name: str, namespace: str) -> Action:
    return _tolerant(
        "eksctl", "delete", "iamserviceaccount",
        "--name", name,
        "--namespace", namespace,
        "--cluster", "${CLUSTER_NAME}",
        "--region", "${AWS_REGION}",
    )


def _create_iam_service_account(name: str, role_name: str, policy_variable: str) -> Action:
    return Action(
        command=(
            "eksctl", "create", "iamserviceaccount",
            "--cluster=${CLUSTER_NAME}",
            "--namespace=kube-system",
            f"--name={name}",
            "--role-name", role_name,
            f"--attach-policy-arn=${{{policy_variable}}}",
            "--override-existing-serviceaccounts",
            "--approve",
            "--region=${AWS_REGION}",
        ),
    )


def _namespace_stage(namespace: str, depends_on: tuple[str, ...] = ("kubeconfig",)) -> Stage:
    return Stage(
        id=f"{namespace}-namespace",
        depends_on=depends_on,
        group=ADDONS,
        description=f"Namespace {namespace}",
        apply=Action(
            command=("kubectl", "create", "namespace", namespace),
            satisfied_markers=ALREADY_EXISTS,
        ),
        teardown=_tolerant("kubectl", "delete", "namespace", namespace, "--ignore-not-found"),
    )


def _pod_identity_stage(
    stage_id: str, namespace: str, service_account: str, role_variable: str, association_variable: str
) -> Stage:
    return Stage(
        id=stage_id,
        depends_on=(f"{namespace}-namespace",),
        group=ADDONS,
        description=f"Pod identity association for {namespace}/{service_account}",
        apply=Action(
            command=(
                "aws", "eks", "create-pod-identity-association",
                "--cluster-name", "${CLUSTER_NAME}",
                "--namespace", namespace,
                "--service-account", service_account,
                "--role-arn", f"${{{role_variable}}}",
                "--region", "${AWS_REGION}",
            ),
            satisfied_markers=ALREADY_EXISTS,
        ),
        teardown=_tolerant(
            "aws", "eks", "delete-pod-identity-association",
            "--cluster-name", "${CLUSTER_NAME}",
            "--association-id", f"${{{association_variable}}}",
            "--region", "${AWS_REGION}",
        ),
    )


# -- groups --


def _infra_stages(settings: Settings) -> list[Stage]:
    stack_probe = Probe(
        command=(
            "aws", "cloudformation", "describe-stacks",
            "--stack-name", "${STACK_NAME}",
            "--query", "Stacks[0].StackStatus",
            "--output", "text",
            "--region", "${AWS_REGION}",
        ),
        expect="DELETE_COMPLETE",
        absent_markers=STACK_MISSING,
        failure_states=("DELETE_FAILED",),
    )
    return [
        Stage(
            id="stack",
            group=INFRA,
            description="CloudFormation stack with the EKS cluster",
            apply=Action(
                command=(
                    "aws", "cloudformation", "deploy",
                    "--template-file", "${TEMPLATE_FILE}",
                    "--stack-name", "${STACK_NAME}",
                    "--parameter-overrides", "file://${PARAMETERS_FILE}",
                    "--capabilities", "CAPABILITY_NAMED_IAM",
                    "--no-fail-on-empty-changeset",
                    "--region", "${AWS_REGION}",
                ),
            ),
            teardown=Action(
                command=(
                    "aws", "cloudformation", "delete-stack",
                    "--stack-name", "${STACK_NAME}",
                    "--region", "${AWS_REGION}",
                ),
                exists_probe=stack_probe,
                readiness=ReadinessCheck(
                    description=f"stack {settings.stack_name} to be deleted",
                    probe=stack_probe,
                    timeout_seconds=settings.stack_delete_timeout_seconds,
                    interval_seconds=max(settings.poll_interval_seconds, 30),
                ),
            ),
        ),
        Stage(
            id="kubeconfig",
            depends_on=("stack",),
            group=INFRA,
            description="Local kubeconfig entry for the cluster",
            apply=Action(
                command=(
                    "aws", "eks", "update-kubeconfig",
                    "--alias", "${KUBECONFIG_ALIAS}",
                    "--region", "${AWS_REGION}",
                    "--name", "${CLUSTER_NAME}",
                ),
            ),
        ),
    ]


def _addon_stages(settings: Settings, direction: Direction) -> list[Stage]:
    everything = direction == Direction.TEARDOWN
    with_velero = everything or settings.enable_velero
    with_istio = everything or settings.enable_istio
    with_fluent_bit = everything or settings.enable_fluent_bit

    repositories = ["eks", "autoscaler", "secrets-store-csi-driver"]
    if with_velero:
        repositories.append("vmware-tanzu")

    stages = [
        Stage(
            id="oidc-provider",
            depends_on=("kubeconfig",),
            group=ADDONS,
            description="IAM OIDC provider for the cluster",
            apply=_tolerant(
                "eksctl", "utils", "associate-iam-oidc-provider",
                "--cluster=${CLUSTER_NAME}",
                "--region=${AWS_REGION}",
                "--approve",
            ),
        ),
    ]
    for name in repositories:
        stages.append(
            Stage(
                id=f"helm-repo-{name}",
                group=ADDONS,
                description=f"Helm repository {name}",
                apply=Action(
                    command=("helm", "repo", "add", name, HELM_REPOSITORIES[name]),
                    satisfied_markers=ALREADY_EXISTS,
                ),
            )
        )
    stages += [
        Stage(
            id="helm-repo-update",
            depends_on=tuple(f"helm-repo-{name}" for name in repositories),
            group=ADDONS,
            apply=Action(command=("helm", "repo", "update")),
        ),
        Stage(
            id="lb-controller-sa",
            depends_on=("oidc-provider",),
            group=ADDONS,
            description="IRSA for the AWS Load Balancer Controller",
            apply=_create_iam_service_account(
                "aws-load-balancer-controller", "AmazonEKSLoadBalancerControllerRole", "LB_POLICY_ARN"
            ),
            teardown=_delete_iam_service_account("aws-load-balancer-controller", "kube-system"),
        ),
        Stage(
            id="lb-controller",
            depends_on=("lb-controller-sa", "helm-repo-update"),
            group=ADDONS,
            description="AWS Load Balancer Controller",
            apply=Action(
                command=(
                    "helm", "upgrade", "--install", "aws-load-balancer-controller",
                    "eks/aws-load-balancer-controller",
                    "-n", "kube-system",
                    f"--version={LB_CONTROLLER_CHART_VERSION}",
                    "--set", "clusterName=${CLUSTER_NAME}",
                    "--set", "serviceAccount.create=false",
                    "--set", "serviceAccount.name=aws-load-balancer-controller",
                ),
                readiness=_deployment_available(settings, "aws-load-balancer-controller", "kube-system"),
            ),
            teardown=_helm_uninstall("aws-load-balancer-controller", "kube-system"),
        ),
        Stage(
            id="autoscaler-sa",
            depends_on=("oidc-provider",),
            group=ADDONS,
            description="IRSA for the Cluster Autoscaler",
            apply=_create_iam_service_account(
                "cluster-autoscaler", "AmazonEKSClusterAutoscalerRole", "CLUSTER_AUTOSCALER_POLICY_ARN"
            ),
            teardown=_delete_iam_service_account("cluster-autoscaler", "kube-system"),
        ),
        Stage(
            id="autoscaler",
            depends_on=("autoscaler-sa", "helm-repo-update"),
            group=ADDONS,
            description="Cluster Autoscaler",
            apply=Action(
                command=(
                    "helm", "upgrade", "--install", "cluster-autoscaler",
                    "autoscaler/cluster-autoscaler",
                    "--namespace", "kube-system",
                    f"--version={CLUSTER_AUTOSCALER_CHART_VERSION}",
                    "--set", "autoDiscovery.clusterName=${CLUSTER_NAME}",
                    "--set", "awsRegion=${AWS_REGION}",
                    "--set", "serviceAccount.create=false",
                    "--set", "serviceAccount.name=cluster-autoscaler",
                ),
            ),
            teardown=_helm_uninstall("cluster-autoscaler", "kube-system"),
        ),
        Stage(
            id="secrets-store-csi",
            depends_on=("kubeconfig", "helm-repo-update"),
            group=ADDONS,
            description="Secrets Store CSI Driver",
            apply=Action(
                command=(
                    "helm", "upgrade", "--install", "csi-secrets-store",
                    "secrets-store-csi-driver/secrets-store-csi-driver",
                    "--namespace", "kube-system",
                    f"--version={SECRETS_STORE_CSI_CHART_VERSION}",
                    "--set", "syncSecret.enabled=true",
                    "--set", "enableSecretRotation=true",
                    "--set", "rotationPollInterval=15s",
                ),
            ),
            teardown=_helm_uninstall("csi-secrets-store", "kube-system"),
        ),
        Stage(
            id="secrets-store-aws-provider",
            depends_on=("secrets-store-csi",),
            group=ADDONS,
            description="AWS provider for the Secrets Store CSI Driver",
            apply=Action(command=("kubectl", "apply", "-f", AWS_PROVIDER_INSTALLER)),
            teardown=_tolerant("kubectl", "delete", "-f", AWS_PROVIDER_INSTALLER, "--ignore-not-found"),
        ),
        Stage(
            id="secrets-store-aws-provider-patch",
            depends_on=("secrets-store-aws-provider",),
            group=ADDONS,
            apply=Action(
                command=(
                    "kubectl", "patch", "daemonset", "csi-secrets-store-provider-aws",
                    "-n", "kube-system",
                    "--type=json",
                    '-p=[{"op": "replace", "path": "/spec/template/spec/automountServiceAccountToken", '
                    '"value": true}]',
                ),
            ),
        ),
    ]

    if with_velero:
        stages += [
            _namespace_stage("velero"),
            _pod_identity_stage(
                "velero-pod-identity", "velero", "velero", "VELERO_ROLE_ARN", "VELERO_ASSOCIATION_ID"
            ),
            Stage(
                id="velero",
                depends_on=("velero-pod-identity", "helm-repo-update"),
                group=ADDONS,
                description="Velero backups",
                apply=Action(
                    command=(
                        "helm", "upgrade", "--install", "velero", "vmware-tanzu/velero",
                        "--namespace", "velero",
                        f"--version={VELERO_CHART_VERSION}",
                        "--set", "configuration.backupStorageLocation[0].name=default",
                        "--set", "configuration.backupStorageLocation[0].provider=aws",
                        "--set", "configuration.backupStorageLocation[0].bucket=${VELERO_BUCKET}",
                        "--set", "configuration.backupStorageLocation[0].config.region=${AWS_REGION}",
                        "--set", "configuration.volumeSnapshotLocation[0].name=default",
                        "--set", "configuration.volumeSnapshotLocation[0].provider=aws",
                        "--set", "configuration.volumeSnapshotLocation[0].config.region=${AWS_REGION}",
                        "--set", "serviceAccount.server.create=true",
                        "--set", "serviceAccount.server.name=velero",
                        "--set", "kubectl.image.tag=1.34",
                        "--set", "initContainers[0].name=velero-plugin-for-aws",
                        "--set", f"initContainers[0].image={VELERO_AWS_PLUGIN_IMAGE}",
                        "--set", "initContainers[0].volumeMounts[0].mountPath=/target",
                        "--set", "initContainers[0].volumeMounts[0].name=plugins",
                    ),
                    readiness=_deployment_available(settings, "velero", "velero"),
                ),
                teardown=_helm_uninstall("velero", "velero"),
            ),
        ]

    if with_istio:
        stages += [
            _namespace_stage("istio-system"),
            Stage(
                id="istio",
                depends_on=("istio-system-namespace",),
                group=ADDONS,
                description="Istio control plane",
                apply=Action(
                    command=("${ISTIOCTL}", "install", "--set", "values.defaultRevision=default", "-y"),
                    readiness=_deployment_available(settings, "istiod", "istio-system"),
                ),
                teardown=_tolerant("${ISTIOCTL}", "uninstall", "--purge", "-y"),
            ),
            Stage(
                id="istio-addons",
                depends_on=("istio",),
                group=ADDONS,
                description="Istio sample addons (Prometheus, Grafana, Jaeger, Kiali)",
                apply=Action(
                    command=("kubectl", "apply", *(arg for url in ISTIO_ADDONS for arg in ("-f", url))),
                ),
                teardown=_tolerant(
                    "kubectl", "delete",
                    *(arg for url in reversed(ISTIO_ADDONS) for arg in ("-f", url)),
                    "--ignore-not-found",
                ),
            ),
        ]

    if with_fluent_bit:
        stages += [
            _namespace_stage("amazon-cloudwatch"),
            _pod_identity_stage(
                "fluent-bit-pod-identity",
                "amazon-cloudwatch",
                "fluent-bit",
                "FLUENT_BIT_ROLE_ARN",
                "FLUENT_BIT_ASSOCIATION_ID",
            ),
            Stage(
                id="fluent-bit",
                depends_on=("fluent-bit-pod-identity", "helm-repo-update"),
                group=ADDONS,
                description="AWS for Fluent Bit log shipping",
                apply=Action(
                    command=(
                        "helm", "upgrade", "--install", "aws-for-fluent-bit", "eks/aws-for-fluent-bit",
                        "--namespace", "amazon-cloudwatch",
                        f"--version={FLUENT_BIT_CHART_VERSION}",
                        "--set", "cloudWatchLogs.enabled=true",
                        "--set", "cloudWatchLogs.region=${AWS_REGION}",
                        "--set",
                        "cloudWatchLogs.logGroupName=/aws/containerinsights/${CLUSTER_NAME}/application",
                        "--set", "firehose.enabled=false",
                        "--set", "kinesis.enabled=false",
                        "--set", "elasticsearch.enabled=false",
                        "--set", "serviceAccount.create=true",
                        "--set", "serviceAccount.name=fluent-bit",
                        "--set", "resources.limits.memory=50Mi",
                        "--set", "resources.requests.memory=25Mi",
                    ),
                    readiness=_wait(
                        settings,
                        "fluent-bit pods to become ready",
                        "--for=condition=ready", "pod",
                        "-l", "app.kubernetes.io/name=aws-for-fluent-bit",
                        "-n", "amazon-cloudwatch",
                    ),
                ),
                teardown=_helm_uninstall("aws-for-fluent-bit", "amazon-cloudwatch"),
            ),
        ]
    return stages


def _workload_stages(settings: Settings, direction: Direction) -> list[Stage]:
    templates = discover_templates(settings.manifests_dir)
    manifests_dir = settings.manifests_dir.rstrip("/") + "/"
    stages = [
        Stage(
            id="csi-provider-irsa",
            depends_on=("secrets-store-aws-provider",),
            group=WORKLOADS,
            description="Secrets Manager role on the CSI provider service account",
            apply=Action(
                command=(
                    "kubectl", "annotate", "serviceaccount", "-n", "kube-system",
                    "csi-secrets-store-provider-aws", SM_ROLE_ANNOTATION, "--overwrite",
                ),
            ),
            teardown=_delete_iam_service_account("csi-secrets-store-provider-aws", "kube-system"),
        ),
        Stage(
            id="manifests",
            depends_on=("csi-provider-irsa", "lb-controller"),
            group=WORKLOADS,
            description="Kubernetes manifests for Grafana, PostgreSQL and pgAdmin",
            apply=Action(
                command=("kubectl", "apply", "-f", manifests_dir),
                templates=tuple(templates),
            ),
            teardown=Action(
                command=("kubectl", "delete", "-f", manifests_dir, "--ignore-not-found=true"),
                policy=FailurePolicy.TOLERANT,
                templates=tuple(templates),
                templates_optional=True,
            ),
        ),
        Stage(
            id="grafana-irsa",
            depends_on=("manifests",),
            group=WORKLOADS,
            apply=Action(
                command=(
                    "kubectl", "annotate", "serviceaccount", "-n", "grafana-stack",
                    "secrets-store-sa", SM_ROLE_ANNOTATION, "--overwrite",
                ),
            ),
            teardown=_delete_iam_service_account("secrets-store-sa", "grafana-stack"),
        ),
        Stage(
            id="postgres-irsa",
            depends_on=("manifests",),
            group=WORKLOADS,
            apply=Action(
                command=(
                    "kubectl", "annotate", "serviceaccount", "-n", "postgres-stack",
                    "secrets-store-sa", SM_ROLE_ANNOTATION, "--overwrite",
                ),
            ),
        ),
        Stage(
            id="grafana-root-url",
            depends_on=("grafana-irsa",),
            group=WORKLOADS,
            description="Point Grafana's root URL at the ALB hostname",
            on_update=False,
            apply=Action(
                command=(
                    "kubectl", "set", "env", "deployment/grafana", "-n", "grafana-stack",
                    "GF_SERVER_ROOT_URL=https://${ALB_DNS}/grafana/",
                ),
                readiness=_deployment_available(settings, "grafana", "grafana-stack"),
            ),
        ),
    ]
    if direction == Direction.TEARDOWN or settings.enable_istio:
        stages.append(
            Stage(
                id="istio-injection",
                depends_on=("manifests", "istio"),
                group=WORKLOADS,
                description="Sidecar injection for the application namespaces",
                apply=Action(
                    command=("kubectl", "label", "namespace", *APP_NAMESPACES,
                             "istio-injection=enabled", "--overwrite"),
                ),
                teardown=_tolerant("kubectl", "label", "namespace", *APP_NAMESPACES, "istio-injection-"),
            )
        )
    return stages


def build_catalog(settings: Settings, direction: Direction = Direction.APPLY) -> StageGraph:
    """Every grafana-eks stage for *direction*.

    Optional addons follow the ``enable_*`` settings when applying; teardown
    always includes them so a cluster deployed with other flags is cleaned up.
    """
    return StageGraph(
        _infra_stages(settings)
        + _addon_stages(settings, direction)
        + _workload_stages(settings, direction)
    )


class Workflow(BaseModel):
    """A CLI subcommand that runs one direction over some stage groups."""

    name: str
    direction: Direction
    groups: tuple[str, ...]
    updates_only: bool = False
    description: str = ""


WORKFLOWS = {
    w.name: w
    for w in (
        Workflow(name="deploy-infra", direction=Direction.APPLY, groups=(INFRA,),
                 description="Deploy the CloudFormation stack and update kubeconfig"),
        Workflow(name="update-infra", direction=Direction.APPLY, groups=(INFRA,), updates_only=True,
                 description="Update the CloudFormation stack and kubeconfig"),
        Workflow(name="install-addons", direction=Direction.APPLY, groups=(ADDONS,),
                 description="Install controllers, drivers and optional addons"),
        Workflow(name="deploy-workloads", direction=Direction.APPLY, groups=(WORKLOADS,),
                 description="Deploy the Kubernetes manifests"),
        Workflow(name="update-workloads", direction=Direction.APPLY, groups=(WORKLOADS,),
                 updates_only=True, description="Re-apply manifests and service account annotations"),
        Workflow(name="deploy", direction=Direction.APPLY, groups=GROUPS,
                 description="Full deployment: infra, addons, workloads"),
        Workflow(name="update", direction=Direction.APPLY, groups=GROUPS, updates_only=True,
                 description="Update infra, re-install addons, update workloads"),
        Workflow(name="delete-workloads", direction=Direction.TEARDOWN, groups=(WORKLOADS,),
                 description="Delete the Kubernetes manifests"),
        Workflow(name="delete-addons", direction=Direction.TEARDOWN, groups=(ADDONS,),
                 description="Delete controllers, drivers and their service accounts"),
        Workflow(name="delete-infra", direction=Direction.TEARDOWN, groups=(INFRA,),
                 description="Delete the CloudFormation stack"),
        Workflow(name="clean", direction=Direction.TEARDOWN, groups=GROUPS,
                 description="Full cleanup in reverse dependency order"),
    )
}


def select_stages(workflow: Workflow, settings: Settings, stage_ids=()) -> StageGraph:
    """Induced graph for *workflow*, optionally narrowed to *stage_ids*."""
    catalog = build_catalog(settings, workflow.direction)
    selected = [
        stage.id
        for stage in catalog
        if stage.group in workflow.groups and (stage.on_update or not workflow.updates_only)
    ]
    if stage_ids:
        for stage_id in stage_ids:
            if stage_id not in selected:
                raise UnknownStageError(f"Stage '{stage_id}' is not part of {workflow.name}")
        selected = [stage_id for stage_id in selected if stage_id in stage_ids]
    return catalog.subgraph(selected)
