import pytest

from eksdeploy.settings import Settings, get_settings

ENV_VARS = ("STACK_NAME", "AWS_REGION", "AWS_PROFILE", "PARAMETERS_FILE", "MAX_PARALLEL_STAGES", "ENABLE_ISTIO")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.stack_name == "grafana-eks"
    assert settings.aws_region == "eu-central-1"
    assert settings.aws_profile == "ecs-test"
    assert settings.parameters_file == "parameters.json"
    assert settings.cluster_name == "grafana-eks-cluster"
    assert settings.max_parallel_stages == 1


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("STACK_NAME", "staging")
    monkeypatch.setenv("ENABLE_ISTIO", "true")
    monkeypatch.setenv("MAX_PARALLEL_STAGES", "4")
    settings = Settings(_env_file=None)
    assert settings.cluster_name == "staging-cluster"
    assert settings.enable_istio is True
    assert settings.max_parallel_stages == 4


def test_dotenv_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("STACK_NAME=from-dotenv\nAWS_REGION=us-east-1\n")
    settings = Settings(_env_file=env_file)
    assert settings.stack_name == "from-dotenv"
    assert settings.aws_region == "us-east-1"


def test_builtins():
    builtins = Settings(_env_file=None, stack_name="demo").builtins()
    assert builtins["CLUSTER_NAME"] == "demo-cluster"
    assert set(builtins) == {
        "STACK_NAME", "CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE", "PARAMETERS_FILE",
        "TEMPLATE_FILE", "MANIFESTS_DIR", "KUBECONFIG_ALIAS", "ISTIOCTL",
    }


def test_get_settings_is_cached():
    get_settings.cache_clear()
    assert get_settings() is get_settings()
    get_settings.cache_clear()
