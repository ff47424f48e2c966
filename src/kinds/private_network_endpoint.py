"""
Private Network Endpoint Kind - Attaches a service to a private network.

The endpoint gives the service a DNS name and private IPs inside the
network. Endpoints are created with a create-or-get mutation and are never
updated in place. They are read back by (environment, network, service), so
the identity token carries those ids plus the endpoint's public id: an
endpoint recreated under the same keys is a different resource.
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

ENDPOINT_FIELDS = "publicId dnsName privateIps serviceInstanceId tags"

CREATE_OR_GET_MUTATION = f"""
mutation privateNetworkEndpointCreateOrGet(
  $input: PrivateNetworkEndpointCreateOrGetInput!
) {{
  privateNetworkEndpointCreateOrGet(input: $input) {{ {ENDPOINT_FIELDS} }}
}}
"""

GET_QUERY = f"""
query privateNetworkEndpoint(
  $environmentId: String!, $privateNetworkId: String!, $serviceId: String!
) {{
  privateNetworkEndpoint(
    environmentId: $environmentId
    privateNetworkId: $privateNetworkId
    serviceId: $serviceId
  ) {{ {ENDPOINT_FIELDS} }}
}}
"""

DELETE_MUTATION = """
mutation privateNetworkEndpointDelete($id: String!) {
  privateNetworkEndpointDelete(id: $id)
}
"""

KIND = ResourceKind(
    name="private_network_endpoint",
    policy=FieldPolicyTable(
        {
            "environment_id": PolicyKind.IMMUTABLE,
            "private_network_id": PolicyKind.IMMUTABLE,
            "service_id": PolicyKind.IMMUTABLE,
            "service_name": PolicyKind.IMMUTABLE,
            "tags": PolicyKind.IMMUTABLE,
            "dns_name": PolicyKind.SERVER_AUTHORITATIVE,
            "private_ips": PolicyKind.SERVER_AUTHORITATIVE,
        },
        kind="private_network_endpoint",
    ),
    identity=IdentityCodec(
        "environment_id", "private_network_id", "service_id", "endpoint_id"
    ),
    natural_key=("environment_id", "private_network_id", "service_id"),
    deletion=DeletionStrategy.scoped(),
    updatable=False,
    schema={
        "type": "object",
        "required": [
            "environment_id",
            "private_network_id",
            "service_id",
            "service_name",
        ],
        "properties": {
            "environment_id": {"type": "string", "pattern": UUID_PATTERN},
            "private_network_id": {"type": "string", "pattern": UUID_PATTERN},
            "service_id": {"type": "string", "pattern": UUID_PATTERN},
            "service_name": {"type": "string", "minLength": 1},
            "tags": {"type": "array", "items": {"type": "string"}},
            "dns_name": {"type": "string"},
            "private_ips": {"type": "array", "items": {"type": "string"}},
        },
        "additionalProperties": False,
    },
    description="Connects a service to a private network.",
)


def _observation(
    endpoint: Dict[str, Any], keys: Dict[str, str], service_name: Optional[str] = None
) -> Observation:
    observation = {
        "environment_id": keys["environment_id"],
        "private_network_id": keys["private_network_id"],
        "service_id": keys["service_id"],
        "dns_name": endpoint.get("dnsName"),
        "private_ips": [ip for ip in endpoint.get("privateIps") or [] if ip],
        "tags": [tag for tag in endpoint.get("tags") or [] if tag],
    }
    if service_name is not None:
        observation["service_name"] = service_name
    return {k: v for k, v in observation.items() if v is not None}


class PrivateNetworkEndpointCollaborator(RemoteCollaborator):
    """Remote operations for private network endpoints."""

    deduplicates = True

    def __init__(self, client: GraphQLClient):
        self.client = client

    @property
    def kind(self) -> str:
        return KIND.name

    async def create_or_get(self, payload: Dict[str, Any]) -> Tuple[str, Observation]:
        variables = {
            "input": {
                "environmentId": payload["environment_id"],
                "privateNetworkId": payload["private_network_id"],
                "serviceId": payload["service_id"],
                "serviceName": payload["service_name"],
                "tags": list(payload.get("tags", [])),
            }
        }
        data = await self.client.execute(CREATE_OR_GET_MUTATION, variables)
        endpoint = data["privateNetworkEndpointCreateOrGet"]
        identity = KIND.identity.encode(
            (
                payload["environment_id"],
                payload["private_network_id"],
                payload["service_id"],
                endpoint["publicId"],
            )
        )
        logger.debug(f"Created or got private network endpoint {identity}")
        return identity, _observation(endpoint, payload, payload["service_name"])

    async def read(self, identity: str) -> Optional[Observation]:
        keys = KIND.identity.decode_as_dict(identity)
        variables = {
            "environmentId": keys["environment_id"],
            "privateNetworkId": keys["private_network_id"],
            "serviceId": keys["service_id"],
        }
        try:
            data = await self.client.execute(GET_QUERY, variables)
        except NotFound:
            return None

        endpoint = data.get("privateNetworkEndpoint")
        if endpoint is None:
            return None
        if endpoint.get("publicId") != keys["endpoint_id"]:
            logger.info(
                f"Endpoint {keys['endpoint_id']} was replaced remotely by "
                f"{endpoint.get('publicId')}"
            )
            return None
        return _observation(endpoint, keys)

    async def delete(self, token: str) -> None:
        keys = KIND.identity.decode_as_dict(token)
        await self.client.execute(DELETE_MUTATION, {"id": keys["endpoint_id"]})
        logger.debug(f"Deleted private network endpoint {keys['endpoint_id']}")
