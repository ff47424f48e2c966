"""
Resource Kind Base - Declarative description of one resource kind.

A kind bundles everything the generic Reconciler needs to know about a
resource: its field policies, how its identity is encoded, its natural key,
whether it can be updated in place and how it is deleted.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from identity import IdentityCodec
from policy import ABSENT, FieldPolicyTable, PolicyKind, is_present

logger = logging.getLogger(__name__)

UUID_PATTERN = (
    "^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


class DeletionMode(Enum):
    """How a kind's remote resources are removed."""

    UNSUPPORTED = "unsupported"
    SCOPED = "scoped"
    COARSE = "coarse"


COARSE_DELETION_WARNING = (
    "Kind '{kind}' deletes every resource under {parent} at once; other "
    "resources of this kind sharing that parent are removed as well"
)


@dataclass(frozen=True)
class DeletionStrategy:
    """
    Deletion strategy of a kind.

    - unsupported: the resource's lifetime is bound to a parent; deletion is
      a logged no-op and the remote instance is abandoned.
    - scoped: delete exactly the resource's identity.
    - coarse: the remote only deletes at parent granularity, so the parent
      identity (built from parent_attributes) is deleted. Callers that
      manage several resources under the same parent lose all of them.
    """

    mode: DeletionMode
    parent_attributes: Tuple[str, ...] = ()

    @classmethod
    def unsupported(cls) -> "DeletionStrategy":
        return cls(DeletionMode.UNSUPPORTED)

    @classmethod
    def scoped(cls) -> "DeletionStrategy":
        return cls(DeletionMode.SCOPED)

    @classmethod
    def coarse(cls, *parent_attributes: str) -> "DeletionStrategy":
        if not parent_attributes:
            raise ValueError("Coarse deletion needs at least one parent attribute")
        return cls(DeletionMode.COARSE, tuple(parent_attributes))

    def target(self, identity: str, state: Mapping[str, Any]) -> Optional[str]:
        """
        Get the token to pass to the remote delete operation.

        Args:
            identity: The resource's identity token.
            state: The resource's canonical state, used for parent ids.

        Returns:
            The token to delete, or None when deletion is unsupported.
        """
        if self.mode == DeletionMode.UNSUPPORTED:
            return None
        if self.mode == DeletionMode.SCOPED:
            return identity
        parent_codec = IdentityCodec(*self.parent_attributes)
        return parent_codec.encode(
            [state.get(a, ABSENT) for a in self.parent_attributes]
        )


@dataclass
class ResourceKind:
    """
    Definition of a resource kind.

    Attributes:
        natural_key: Immutable attributes identifying the resource from the
            caller's point of view.
        updatable: Whether the remote supports in-place updates.
        coupled: Groups of attributes the remote only accepts together;
            when one of a group changes, the rest are sent along.
        schema: JSON Schema the desired spec is validated against.
    """

    name: str
    policy: FieldPolicyTable
    identity: IdentityCodec
    natural_key: Tuple[str, ...]
    deletion: DeletionStrategy
    updatable: bool = True
    coupled: Tuple[Tuple[str, ...], ...] = ()
    schema: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        for attribute in self.natural_key:
            if self.policy.policy_of(attribute) != PolicyKind.IMMUTABLE:
                raise ValueError(
                    f"Natural key attribute '{attribute}' of kind '{self.name}' "
                    f"must be immutable"
                )
        for attribute in self.deletion.parent_attributes:
            self.policy.policy_of(attribute)
        for group in self.coupled:
            for attribute in group:
                self.policy.policy_of(attribute)
        if self.deletion.mode == DeletionMode.COARSE:
            logger.debug(self.coarse_deletion_warning())

    def natural_key_of(self, spec: Mapping[str, Any]) -> Dict[str, Any]:
        """Extract the natural key values from a spec."""
        return {a: spec.get(a, ABSENT) for a in self.natural_key}

    def payload_of(self, spec: Mapping[str, Any]) -> Dict[str, Any]:
        """Present values of a spec, in schema order."""
        return {
            a: spec[a] for a in self.policy if a in spec and is_present(spec[a])
        }

    def coarse_deletion_warning(self) -> str:
        parent = ", ".join(self.deletion.parent_attributes) or "its parent"
        return COARSE_DELETION_WARNING.format(kind=self.name, parent=parent)
