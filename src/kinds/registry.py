"""
Kind Registry - Discovery and registration of resource kinds.

This module provides the central registry for resource kinds, pairing each
kind definition with the collaborator class that talks to the remote API
for it.
"""

import logging
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Tuple, Type

from client import GraphQLClient
from kinds.base import ResourceKind
from remote import RemoteCollaborator

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "converge.kinds"


@dataclass(frozen=True)
class KindRegistration:
    """
    A resource kind together with its collaborator class.

    Attributes:
        options: Names of collaborator keyword options this kind accepts
            (e.g. "redeploy"); other options are not passed on.
    """

    kind: ResourceKind
    collaborator_class: Type[RemoteCollaborator]
    options: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.kind.name


class KindRegistry:
    """Central registry of resource kinds."""

    def __init__(self):
        self._registrations: Dict[str, KindRegistration] = {}

    def register(self, registration: KindRegistration) -> None:
        """
        Register a resource kind.

        Args:
            registration: The kind and its collaborator class.
        """
        name = registration.name
        if name in self._registrations:
            logger.warning(f"Overwriting existing resource kind: {name}")

        self._registrations[name] = registration
        logger.info(
            f"Registered resource kind: {name} "
            f"(deletion: {registration.kind.deletion.mode.value})"
        )

    def get_registration(self, name: str) -> KindRegistration:
        """
        Get the registration of a kind.

        Raises:
            ValueError: If the kind is not registered.
        """
        if name not in self._registrations:
            available = ", ".join(sorted(self._registrations)) or "none"
            raise ValueError(
                f"Unknown resource kind: {name}. Available kinds: {available}"
            )
        return self._registrations[name]

    def get_kind(self, name: str) -> ResourceKind:
        """Get a kind definition by name."""
        return self.get_registration(name).kind

    def create_collaborator(
        self, name: str, client: GraphQLClient, **options: Any
    ) -> RemoteCollaborator:
        """
        Instantiate the collaborator for a kind.

        Args:
            name: The kind name.
            client: GraphQL transport shared by all collaborators.
            **options: Collaborator options; only those the kind accepts
                are passed on.

        Returns:
            A RemoteCollaborator for the kind.
        """
        registration = self.get_registration(name)
        accepted = {k: v for k, v in options.items() if k in registration.options}
        return registration.collaborator_class(client, **accepted)

    def has_kind(self, name: str) -> bool:
        """Check if a kind is registered."""
        return name in self._registrations

    def list_kinds(self) -> List[str]:
        """List all registered kind names."""
        return list(self._registrations.keys())


# Global registry instance
_registry: Optional[KindRegistry] = None


def get_registry() -> KindRegistry:
    """Get the global kind registry singleton."""
    global _registry
    if _registry is None:
        _registry = KindRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_kinds() -> None:
    """
    Register the built-in kinds and discover additional kinds via entry
    points.

    Entry points in the "converge.kinds" group must load to a
    KindRegistration.
    """
    from kinds import BUILTIN_KINDS

    registry = get_registry()
    for registration in BUILTIN_KINDS:
        registry.register(registration)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registration = ep.load()
            registry.register(registration)
        except Exception as e:
            logger.warning(f"Could not load resource kind {ep.name}: {e}")
