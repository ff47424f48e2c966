"""
Create-or-Get Resolver - Idempotent creation over the remote API.

Some kinds are deduplicated by the remote itself (the create call returns
the existing resource). For the others the resolver looks the resource up
by natural key before creating it, and treats an "already exists" conflict
as a lost race: it looks up once more instead of failing.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from drift import values_equal
from errors import Conflict, ConflictUnresolvable
from kinds.base import ResourceKind
from policy import ABSENT, PolicyKind, is_present
from remote import Observation, RemoteCollaborator, call_remote

logger = logging.getLogger(__name__)


class CreateOrGetResolver:
    """Creates a resource or returns the existing one with the same natural key."""

    def __init__(
        self,
        kind: ResourceKind,
        collaborator: RemoteCollaborator,
        timeout: Optional[float] = None,
    ):
        self.kind = kind
        self.collaborator = collaborator
        self.timeout = timeout

    async def create_or_get(self, spec: Mapping[str, Any]) -> Tuple[str, Observation]:
        """
        Create the resource described by spec, or get the existing one.

        Args:
            spec: The desired resource spec.

        Returns:
            Tuple of (identity token, observation).

        Raises:
            ConflictUnresolvable: If the existing resource with the same
                natural key differs from spec on an immutable attribute.
        """
        payload = self.kind.payload_of(spec)
        natural_key = self.kind.natural_key_of(spec)

        if self.collaborator.deduplicates:
            identity, observation = await call_remote(
                f"{self.kind.name}.create_or_get",
                self.collaborator.create_or_get(payload),
                self.timeout,
            )
        else:
            identity, observation = await self._lookup_then_create(
                natural_key, payload
            )

        self._check_equivalent(spec, natural_key, observation)
        logger.info(f"Resolved {self.kind.name} {natural_key} to {identity}")
        return identity, observation

    async def _lookup_then_create(
        self, natural_key: Dict[str, Any], payload: Dict[str, Any]
    ) -> Tuple[str, Observation]:
        found = await self._lookup(natural_key)
        if found is not None:
            logger.info(f"Found existing {self.kind.name} for {natural_key}")
            return found

        try:
            return await call_remote(
                f"{self.kind.name}.create_or_get",
                self.collaborator.create_or_get(payload),
                self.timeout,
            )
        except Conflict:
            logger.info(
                f"Create of {self.kind.name} {natural_key} raced with another "
                f"writer, looking it up again"
            )
            found = await self._lookup(natural_key)
            if found is None:
                raise
            return found

    async def _lookup(
        self, natural_key: Dict[str, Any]
    ) -> Optional[Tuple[str, Observation]]:
        return await call_remote(
            f"{self.kind.name}.lookup",
            self.collaborator.lookup(natural_key),
            self.timeout,
        )

    def _check_equivalent(
        self,
        spec: Mapping[str, Any],
        natural_key: Dict[str, Any],
        observation: Observation,
    ) -> None:
        mismatched = []
        for attribute in self.kind.policy.attributes(PolicyKind.IMMUTABLE):
            wanted = spec.get(attribute, ABSENT)
            actual = observation.get(attribute, ABSENT)
            if not is_present(wanted) or not is_present(actual):
                continue
            if not values_equal(wanted, actual):
                mismatched.append(attribute)

        if mismatched:
            raise ConflictUnresolvable(natural_key, mismatched)
