"""
Resource kinds managed by the controller.

Each kind module defines a KIND (field policies, identity layout, natural
key, deletion strategy, schema) and the collaborator that maps the
reconciliation operations onto control-plane GraphQL calls.
"""

from kinds import (
    private_network,
    private_network_endpoint,
    service_instance,
    service_limits,
)
from kinds.base import DeletionMode, DeletionStrategy, ResourceKind
from kinds.registry import (
    KindRegistration,
    KindRegistry,
    get_registry,
    register_builtin_kinds,
)

BUILTIN_KINDS = [
    KindRegistration(
        private_network.KIND, private_network.PrivateNetworkCollaborator
    ),
    KindRegistration(
        private_network_endpoint.KIND,
        private_network_endpoint.PrivateNetworkEndpointCollaborator,
    ),
    KindRegistration(
        service_instance.KIND,
        service_instance.ServiceInstanceCollaborator,
        options=("redeploy",),
    ),
    KindRegistration(service_limits.KIND, service_limits.ServiceLimitsCollaborator),
]

__all__ = [
    "BUILTIN_KINDS",
    "DeletionMode",
    "DeletionStrategy",
    "KindRegistration",
    "KindRegistry",
    "ResourceKind",
    "get_registry",
    "register_builtin_kinds",
]
