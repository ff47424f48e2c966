"""
Remote Collaborator Base - Abstract interface to the control plane.

A collaborator turns reconciliation operations into remote calls for one
resource kind. The Reconciler receives it at construction; there is no
process-wide client.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, Optional, Tuple, TypeVar

from errors import CallTimeout, NotSupported

Observation = Dict[str, Any]

T = TypeVar("T")


async def call_remote(
    operation: str, awaitable: Awaitable[T], timeout: Optional[float]
) -> T:
    """
    Await a remote call with the caller-supplied timeout.

    Raises:
        CallTimeout: If the call did not finish in time. The remote side
            effect may or may not have happened.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise CallTimeout(operation, timeout) from None


class RemoteCollaborator(ABC):
    """
    Abstract base class for remote collaborators.

    Every method may raise one of NotFound, Conflict, ValidationRejected,
    Transient or Unauthorized.
    """

    # True when the remote create-or-get call deduplicates on its own.
    # When False the resolver looks up by natural key before creating.
    deduplicates: bool = True

    @property
    @abstractmethod
    def kind(self) -> str:
        """Name of the resource kind this collaborator serves."""
        pass

    @abstractmethod
    async def read(self, identity: str) -> Optional[Observation]:
        """
        Read the current remote state of a resource.

        Args:
            identity: The resource's identity token.

        Returns:
            The observation, or None if the resource does not exist.
        """
        pass

    @abstractmethod
    async def create_or_get(self, payload: Dict[str, Any]) -> Tuple[str, Observation]:
        """
        Create the resource, or return it if it already exists.

        Args:
            payload: Present attribute values of the desired spec.

        Returns:
            Tuple of (identity token, observation).
        """
        pass

    async def update(self, identity: str, delta: Dict[str, Any]) -> Observation:
        """
        Apply a partial update.

        Args:
            identity: The resource's identity token.
            delta: Only the attributes that changed.

        Returns:
            The observation returned by the remote.
        """
        raise NotSupported(f"Kind '{self.kind}' does not support updates")

    async def delete(self, token: str) -> None:
        """
        Delete by identity, or by parent identity for coarse deletion.

        Args:
            token: Identity token, or parent identity token.
        """
        raise NotSupported(f"Kind '{self.kind}' does not support deletion")

    async def lookup(
        self, natural_key: Dict[str, Any]
    ) -> Optional[Tuple[str, Observation]]:
        """
        Find an existing resource by natural key.

        Only used when deduplicates is False.

        Returns:
            Tuple of (identity token, observation), or None if not found.
        """
        raise NotSupported(f"Kind '{self.kind}' does not support lookup")

    async def close(self) -> None:
        """Release any resources held by the collaborator."""
        pass
