import json
import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ProfileNotFound

from eksdeploy.errors import ControlPlaneError
from eksdeploy.settings import Settings

logger = logging.getLogger(__name__)


def _is_absent(error: ClientError) -> bool:
    """Whether a ClientError only says the target does not exist."""
    code = error.response.get("Error", {}).get("Code", "")
    message = error.response.get("Error", {}).get("Message", "")
    if code in ("ResourceNotFoundException", "NotFoundException", "NoSuchEntity"):
        return True
    return code == "ValidationError" and "does not exist" in message


class ControlPlane:
    """Read-only queries against CloudFormation, EKS and Secrets Manager.

    The remote APIs are the source of truth, so nothing returned here is
    cached between calls; only the boto3 clients are reused.
    """

    def __init__(self, settings: Settings, session: Optional[boto3.session.Session] = None):
        self.settings = settings
        self._session = session
        self._clients: dict = {}

    def _get_session(self) -> boto3.session.Session:
        if self._session is None:
            try:
                self._session = boto3.session.Session(
                    profile_name=self.settings.aws_profile or None,
                    region_name=self.settings.aws_region,
                )
            except ProfileNotFound as e:
                raise ControlPlaneError(f"AWS profile not found: {e}") from e
        return self._session

    def _get_client(self, service: str):
        """Get a boto3 client for *service* (default credential chain)."""
        if service in self._clients:
            return self._clients[service]

        try:
            client = self._get_session().client(service, region_name=self.settings.aws_region)
        except BotoCoreError as e:
            raise ControlPlaneError(f"Cannot create {service} client: {e}") from e
        self._clients[service] = client
        return client

    def _call(self, service: str, operation: str, **kwargs) -> Optional[dict]:
        """Invoke *operation*; returns None when the API reports the target absent."""
        client = self._get_client(service)
        try:
            return getattr(client, operation)(**kwargs)
        except NoCredentialsError as e:
            raise ControlPlaneError(
                f"Failed to locate AWS credentials: {e}. "
                "Use env vars, a named profile, or another default provider chain."
            ) from e
        except ClientError as e:
            if _is_absent(e):
                logger.debug("%s.%s: target absent (%s)", service, operation, e)
                return None
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise ControlPlaneError(f"{service}.{operation} failed ({code}): {e}") from e
        except BotoCoreError as e:
            # connection failures, read timeouts, missing region
            raise ControlPlaneError(f"{service}.{operation} failed: {e}") from e

    # -- CloudFormation --

    def describe_stack(self, stack_name: str) -> Optional[dict]:
        response = self._call("cloudformation", "describe_stacks", StackName=stack_name)
        if not response or not response.get("Stacks"):
            return None
        return response["Stacks"][0]

    def stack_status(self, stack_name: str) -> Optional[str]:
        stack = self.describe_stack(stack_name)
        return stack["StackStatus"] if stack else None

    def stack_outputs(self, stack_name: str) -> Optional[dict[str, str]]:
        """All outputs of *stack_name*, or None when the stack does not exist."""
        stack = self.describe_stack(stack_name)
        if stack is None:
            return None
        return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])}

    def stack_output(self, stack_name: str, key: str) -> Optional[str]:
        outputs = self.stack_outputs(stack_name) or {}
        return outputs.get(key)

    def validate_template(self, template_path: str) -> dict:
        """Validate a local CloudFormation template through the API."""
        body = Path(template_path).read_text(encoding="utf-8")
        response = self._call("cloudformation", "validate_template", TemplateBody=body)
        return response or {}

    # -- Secrets Manager --

    def secret_value(self, secret_id: str, json_key: Optional[str] = None) -> Optional[str]:
        response = self._call("secretsmanager", "get_secret_value", SecretId=secret_id)
        if not response:
            return None
        secret = response.get("SecretString")
        if secret is None or json_key is None:
            return secret
        try:
            return json.loads(secret).get(json_key)
        except (json.JSONDecodeError, AttributeError) as e:
            raise ControlPlaneError(
                f"Secret {secret_id} is not a JSON object, cannot read key '{json_key}'"
            ) from e

    # -- EKS --

    def pod_identity_association_id(
        self, cluster_name: str, namespace: str, service_account: str
    ) -> Optional[str]:
        response = self._call(
            "eks",
            "list_pod_identity_associations",
            clusterName=cluster_name,
            namespace=namespace,
            serviceAccount=service_account,
        )
        if not response or not response.get("associations"):
            return None
        return response["associations"][0]["associationId"]
