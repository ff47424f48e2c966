"""
Private Network Kind - Internal networks for service-to-service traffic.

Networks are created through a create-or-get mutation, so the remote
deduplicates on (project, environment, name). They cannot be updated: every
configurable attribute is immutable. The API only deletes networks per
environment, so deletion is coarse.
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

NETWORK_FIELDS = "publicId name projectId environmentId dnsName tags"

CREATE_OR_GET_MUTATION = f"""
mutation privateNetworkCreateOrGet($input: PrivateNetworkCreateOrGetInput!) {{
  privateNetworkCreateOrGet(input: $input) {{ {NETWORK_FIELDS} }}
}}
"""

LIST_QUERY = f"""
query privateNetworks($environmentId: String!) {{
  privateNetworks(environmentId: $environmentId) {{ {NETWORK_FIELDS} }}
}}
"""

DELETE_FOR_ENVIRONMENT_MUTATION = """
mutation privateNetworksForEnvironmentDelete($environmentId: String!) {
  privateNetworksForEnvironmentDelete(environmentId: $environmentId)
}
"""

ENVIRONMENT_CODEC = IdentityCodec("environment_id")

KIND = ResourceKind(
    name="private_network",
    policy=FieldPolicyTable(
        {
            "name": PolicyKind.IMMUTABLE,
            "project_id": PolicyKind.IMMUTABLE,
            "environment_id": PolicyKind.IMMUTABLE,
            "tags": PolicyKind.IMMUTABLE,
            "dns_name": PolicyKind.SERVER_AUTHORITATIVE,
        },
        kind="private_network",
    ),
    identity=IdentityCodec("environment_id", "network_id"),
    natural_key=("project_id", "environment_id", "name"),
    deletion=DeletionStrategy.coarse("environment_id"),
    updatable=False,
    schema={
        "type": "object",
        "required": ["name", "project_id", "environment_id"],
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "project_id": {"type": "string", "pattern": UUID_PATTERN},
            "environment_id": {"type": "string", "pattern": UUID_PATTERN},
            "tags": {"type": "array", "items": {"type": "string"}},
            "dns_name": {"type": "string"},
        },
        "additionalProperties": False,
    },
    description="Private network for secure service communication in an environment.",
)


def _observation(network: Dict[str, Any]) -> Observation:
    observation = {
        "name": network["name"],
        "project_id": network["projectId"],
        "environment_id": network["environmentId"],
        "dns_name": network.get("dnsName"),
        "tags": list(network.get("tags") or []),
    }
    return {k: v for k, v in observation.items() if v is not None}


class PrivateNetworkCollaborator(RemoteCollaborator):
    """Remote operations for private networks."""

    deduplicates = True

    def __init__(self, client: GraphQLClient):
        self.client = client

    @property
    def kind(self) -> str:
        return KIND.name

    async def _list(self, environment_id: str) -> list:
        try:
            data = await self.client.execute(
                LIST_QUERY, {"environmentId": environment_id}
            )
        except NotFound:
            return []
        return data.get("privateNetworks") or []

    async def create_or_get(self, payload: Dict[str, Any]) -> Tuple[str, Observation]:
        variables = {
            "input": {
                "name": payload["name"],
                "projectId": payload["project_id"],
                "environmentId": payload["environment_id"],
                "tags": list(payload.get("tags", [])),
            }
        }
        data = await self.client.execute(CREATE_OR_GET_MUTATION, variables)
        network = data["privateNetworkCreateOrGet"]
        identity = KIND.identity.encode((network["environmentId"], network["publicId"]))
        logger.debug(f"Created or got private network {identity}")
        return identity, _observation(network)

    async def read(self, identity: str) -> Optional[Observation]:
        environment_id, network_id = KIND.identity.decode(identity)
        for network in await self._list(environment_id):
            if network["publicId"] == network_id:
                return _observation(network)
        return None

    async def lookup(
        self, natural_key: Dict[str, Any]
    ) -> Optional[Tuple[str, Observation]]:
        """
        Find a network by (project, environment, name).

        The resolver only calls this when the collaborator is run with
        deduplicates set to False.
        """
        environment_id = natural_key["environment_id"]
        for network in await self._list(environment_id):
            if (
                network["name"] == natural_key["name"]
                and network["projectId"] == natural_key["project_id"]
            ):
                identity = KIND.identity.encode((environment_id, network["publicId"]))
                return identity, _observation(network)
        return None

    async def delete(self, token: str) -> None:
        (environment_id,) = ENVIRONMENT_CODEC.decode(token)
        await self.client.execute(
            DELETE_FOR_ENVIRONMENT_MUTATION, {"environmentId": environment_id}
        )
        logger.debug(f"Deleted all private networks in environment {environment_id}")
