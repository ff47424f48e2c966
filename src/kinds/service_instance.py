"""
Service Instance Kind - Deployment settings of a service in one environment.

A service instance always exists once its service and environment do, so
"create" is an update of the existing instance and deletion is a no-op.
Registry credentials and the pre-deploy command cannot be read back and
are tracked from the desired spec only.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from client import GraphQLClient
from errors import NotFound
from identity import IdentityCodec
from kinds.base import UUID_PATTERN, DeletionStrategy, ResourceKind
from policy import FieldPolicyTable, PolicyKind
from remote import Observation, RemoteCollaborator

logger = logging.getLogger(__name__)

BUILDERS = ["NIXPACKS", "HEROKU", "PAKETO", "RAILPACK"]
RESTART_POLICY_TYPES = ["ALWAYS", "NEVER", "ON_FAILURE"]

UPDATE_MUTATION = """
mutation serviceInstanceUpdate(
  $serviceId: String!, $environmentId: String, $input: ServiceInstanceUpdateInput!
) {
  serviceInstanceUpdate(
    serviceId: $serviceId, environmentId: $environmentId, input: $input
  )
}
"""

REDEPLOY_MUTATION = """
mutation serviceInstanceRedeploy($environmentId: String!, $serviceId: String!) {
  serviceInstanceRedeploy(environmentId: $environmentId, serviceId: $serviceId)
}
"""

GET_QUERY = """
query serviceInstance($environmentId: String!, $serviceId: String!) {
  serviceInstance(environmentId: $environmentId, serviceId: $serviceId) {
    source { image repo }
    builder
    buildCommand
    startCommand
    healthcheckPath
    healthcheckTimeout
    restartPolicyType
    restartPolicyMaxRetries
    sleepApplication
  }
}
"""

# Simple attribute -> API field mapping; source and credentials are nested.
_FIELDS = {
    "builder": "builder",
    "build_command": "buildCommand",
    "start_command": "startCommand",
    "pre_deploy_command": "preDeployCommand",
    "healthcheck_path": "healthcheckPath",
    "healthcheck_timeout": "healthcheckTimeout",
    "restart_policy_type": "restartPolicyType",
    "restart_policy_max_retries": "restartPolicyMaxRetries",
    "sleep_application": "sleepApplication",
}

KIND = ResourceKind(
    name="service_instance",
    policy=FieldPolicyTable(
        {
            "service_id": PolicyKind.IMMUTABLE,
            "environment_id": PolicyKind.IMMUTABLE,
            "source_image": PolicyKind.MUTABLE,
            "source_repo": PolicyKind.MUTABLE,
            "registry_credentials_username": PolicyKind.WRITE_ONLY,
            "registry_credentials_password": PolicyKind.WRITE_ONLY,
            "builder": PolicyKind.MUTABLE,
            "build_command": PolicyKind.MUTABLE,
            "start_command": PolicyKind.MUTABLE,
            "pre_deploy_command": PolicyKind.WRITE_ONLY,
            "healthcheck_path": PolicyKind.MUTABLE,
            "healthcheck_timeout": PolicyKind.MUTABLE,
            "restart_policy_type": PolicyKind.MUTABLE,
            "restart_policy_max_retries": PolicyKind.MUTABLE,
            "sleep_application": PolicyKind.MUTABLE,
        },
        kind="service_instance",
    ),
    identity=IdentityCodec("service_id", "environment_id"),
    natural_key=("service_id", "environment_id"),
    deletion=DeletionStrategy.unsupported(),
    coupled=(("registry_credentials_username", "registry_credentials_password"),),
    schema={
        "type": "object",
        "required": ["service_id", "environment_id"],
        "properties": {
            "service_id": {"type": "string", "pattern": UUID_PATTERN},
            "environment_id": {"type": "string", "pattern": UUID_PATTERN},
            "source_image": {"type": "string", "minLength": 1},
            "source_repo": {"type": "string", "minLength": 1},
            "registry_credentials_username": {"type": "string", "minLength": 1},
            "registry_credentials_password": {"type": "string", "minLength": 1},
            "builder": {"type": "string", "enum": BUILDERS},
            "build_command": {"type": "string"},
            "start_command": {"type": "string"},
            "pre_deploy_command": {"type": "array", "items": {"type": "string"}},
            "healthcheck_path": {"type": "string"},
            "healthcheck_timeout": {"type": "integer", "minimum": 1},
            "restart_policy_type": {"type": "string", "enum": RESTART_POLICY_TYPES},
            "restart_policy_max_retries": {"type": "integer", "minimum": 0},
            "sleep_application": {"type": "boolean"},
        },
        "additionalProperties": False,
        "not": {"required": ["source_image", "source_repo"]},
        "dependencies": {
            "registry_credentials_username": ["registry_credentials_password"],
            "registry_credentials_password": ["registry_credentials_username"],
        },
    },
    description="Deployment configuration of a service in an environment.",
)


def build_update_input(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a ServiceInstanceUpdateInput from attribute values.

    Only attributes present in values are sent, so an update carries just
    the changed settings.
    """
    update_input: Dict[str, Any] = {}

    source = {}
    if "source_image" in values:
        source["image"] = values["source_image"]
    if "source_repo" in values:
        source["repo"] = values["source_repo"]
    if source:
        update_input["source"] = source

    if (
        "registry_credentials_username" in values
        and "registry_credentials_password" in values
    ):
        update_input["registryCredentials"] = {
            "username": values["registry_credentials_username"],
            "password": values["registry_credentials_password"],
        }

    for attribute, api_field in _FIELDS.items():
        if attribute in values:
            update_input[api_field] = values[attribute]

    return update_input


def _observation(instance: Dict[str, Any], keys: Dict[str, str]) -> Observation:
    source = instance.get("source") or {}
    observation = {
        "service_id": keys["service_id"],
        "environment_id": keys["environment_id"],
        "source_image": source.get("image"),
        "source_repo": source.get("repo"),
    }
    for attribute, api_field in _FIELDS.items():
        if KIND.policy.policy_of(attribute) == PolicyKind.WRITE_ONLY:
            continue
        observation[attribute] = instance.get(api_field)
    return {k: v for k, v in observation.items() if v is not None}


class ServiceInstanceCollaborator(RemoteCollaborator):
    """
    Remote operations for service instances.

    Args:
        client: GraphQL transport.
        redeploy: Trigger a redeploy after every successful write.
    """

    deduplicates = True

    def __init__(self, client: GraphQLClient, redeploy: bool = False):
        self.client = client
        self.redeploy = redeploy

    @property
    def kind(self) -> str:
        return KIND.name

    async def _write(self, keys: Dict[str, str], values: Dict[str, Any]) -> None:
        variables = {
            "serviceId": keys["service_id"],
            "environmentId": keys["environment_id"],
            "input": build_update_input(values),
        }
        await self.client.execute(UPDATE_MUTATION, variables)

        if self.redeploy:
            logger.info(
                f"Redeploying service {keys['service_id']} in environment "
                f"{keys['environment_id']}"
            )
            await self.client.execute(
                REDEPLOY_MUTATION,
                {
                    "environmentId": keys["environment_id"],
                    "serviceId": keys["service_id"],
                },
            )

    async def create_or_get(self, payload: Dict[str, Any]) -> Tuple[str, Observation]:
        keys = {
            "service_id": payload["service_id"],
            "environment_id": payload["environment_id"],
        }
        identity = KIND.identity.encode((keys["service_id"], keys["environment_id"]))
        await self._write(keys, payload)

        observation = await self.read(identity)
        if observation is None:
            raise NotFound(f"Service instance {identity} does not exist")
        return identity, observation

    async def update(self, identity: str, delta: Dict[str, Any]) -> Observation:
        keys = KIND.identity.decode_as_dict(identity)
        await self._write(keys, delta)

        observation = await self.read(identity)
        if observation is None:
            raise NotFound(f"Service instance {identity} does not exist")
        return observation

    async def read(self, identity: str) -> Optional[Observation]:
        keys = KIND.identity.decode_as_dict(identity)
        try:
            data = await self.client.execute(
                GET_QUERY,
                {
                    "environmentId": keys["environment_id"],
                    "serviceId": keys["service_id"],
                },
            )
        except NotFound:
            return None

        instance = data.get("serviceInstance")
        if instance is None:
            return None
        return _observation(instance, keys)
