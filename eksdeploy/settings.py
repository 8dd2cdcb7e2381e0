from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    stack_name: str = "grafana-eks"
    aws_region: str = "eu-central-1"
    aws_profile: str = "ecs-test"
    parameters_file: str = "parameters.json"

    template_file: str = "grafana-eks.yaml"
    manifests_dir: str = "k8s-manifests"
    kubeconfig_alias: str = "grafana-eks"
    istioctl: str = "istioctl"

    enable_velero: bool = True
    enable_istio: bool = False
    enable_fluent_bit: bool = False

    readiness_timeout_seconds: float = 300
    poll_interval_seconds: float = 5
    command_timeout_seconds: float = 1800
    stack_delete_timeout_seconds: float = 3600
    max_parallel_stages: int = 1

    log_level: str = "INFO"
    log_file: str = ""

    @property
    def cluster_name(self) -> str:
        return f"{self.stack_name}-cluster"

    def builtins(self) -> dict[str, str]:
        """Variables every stage may reference without a producer."""
        return {
            "STACK_NAME": self.stack_name,
            "CLUSTER_NAME": self.cluster_name,
            "AWS_REGION": self.aws_region,
            "AWS_PROFILE": self.aws_profile,
            "PARAMETERS_FILE": self.parameters_file,
            "TEMPLATE_FILE": self.template_file,
            "MANIFESTS_DIR": self.manifests_dir,
            "KUBECONFIG_ALIAS": self.kubeconfig_alias,
            "ISTIOCTL": self.istioctl,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
