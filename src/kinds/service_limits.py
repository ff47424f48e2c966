"""
Service Limits Kind - Memory and vCPU limits of a service instance.

Limits are write-only: the API accepts them but offers no way to read them
back, so canonical state keeps the values last sent. Reading only checks
that the service instance still exists.
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

MINIMUM_LIMIT = 0.25

LIMITS_UPDATE_MUTATION = """
mutation serviceInstanceLimitsUpdate($input: ServiceInstanceLimitsUpdateInput!) {
  serviceInstanceLimitsUpdate(input: $input)
}
"""

EXISTS_QUERY = """
query serviceInstance($environmentId: String!, $serviceId: String!) {
  serviceInstance(environmentId: $environmentId, serviceId: $serviceId) {
    id
  }
}
"""

KIND = ResourceKind(
    name="service_limits",
    policy=FieldPolicyTable(
        {
            "service_id": PolicyKind.IMMUTABLE,
            "environment_id": PolicyKind.IMMUTABLE,
            "memory_gb": PolicyKind.WRITE_ONLY,
            "vcpus": PolicyKind.WRITE_ONLY,
        },
        kind="service_limits",
    ),
    identity=IdentityCodec("service_id", "environment_id"),
    natural_key=("service_id", "environment_id"),
    deletion=DeletionStrategy.unsupported(),
    schema={
        "type": "object",
        "required": ["service_id", "environment_id"],
        "properties": {
            "service_id": {"type": "string", "pattern": UUID_PATTERN},
            "environment_id": {"type": "string", "pattern": UUID_PATTERN},
            "memory_gb": {"type": "number", "minimum": MINIMUM_LIMIT},
            "vcpus": {"type": "number", "minimum": MINIMUM_LIMIT},
        },
        "additionalProperties": False,
    },
    description="Resource limits of a service instance.",
)


class ServiceLimitsCollaborator(RemoteCollaborator):
    """Remote operations for service limits."""

    deduplicates = True

    def __init__(self, client: GraphQLClient):
        self.client = client

    @property
    def kind(self) -> str:
        return KIND.name

    async def _write(self, keys: Dict[str, str], values: Dict[str, Any]) -> None:
        limits_input: Dict[str, Any] = {
            "serviceId": keys["service_id"],
            "environmentId": keys["environment_id"],
        }
        if "memory_gb" in values:
            limits_input["memoryGB"] = float(values["memory_gb"])
        if "vcpus" in values:
            limits_input["vCPUs"] = float(values["vcpus"])

        await self.client.execute(LIMITS_UPDATE_MUTATION, {"input": limits_input})
        logger.debug(f"Set limits of service {keys['service_id']}: {values}")

    async def create_or_get(self, payload: Dict[str, Any]) -> Tuple[str, Observation]:
        keys = {
            "service_id": payload["service_id"],
            "environment_id": payload["environment_id"],
        }
        await self._write(keys, payload)
        identity = KIND.identity.encode((keys["service_id"], keys["environment_id"]))
        return identity, dict(keys)

    async def update(self, identity: str, delta: Dict[str, Any]) -> Observation:
        keys = KIND.identity.decode_as_dict(identity)
        await self._write(keys, delta)
        return dict(keys)

    async def read(self, identity: str) -> Optional[Observation]:
        keys = KIND.identity.decode_as_dict(identity)
        try:
            data = await self.client.execute(
                EXISTS_QUERY,
                {
                    "environmentId": keys["environment_id"],
                    "serviceId": keys["service_id"],
                },
            )
        except NotFound:
            return None

        if data.get("serviceInstance") is None:
            return None
        return dict(keys)
