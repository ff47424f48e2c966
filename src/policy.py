"""
Field Policy Table - How each attribute of a resource kind is reconciled.

Every attribute in a kind's schema carries exactly one policy:

- server-authoritative: always refreshed from the remote read
- write-only: never read back; the local value is trusted forever
- immutable: any change forces replacement of the whole resource
- mutable: changed in place through the update operation

Resource specs are plain dicts. A value is either present, ABSENT (also the
meaning of a missing key) or UNKNOWN (decided by a pending remote operation).
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from errors import UnknownAttribute


class _Marker:
    """Singleton marker for a non-present value."""

    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


ABSENT = _Marker("ABSENT")
UNKNOWN = _Marker("UNKNOWN")


def is_present(value: Any) -> bool:
    """Return True unless the value is ABSENT or UNKNOWN."""
    return value is not ABSENT and value is not UNKNOWN


def present_values(spec: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop ABSENT and UNKNOWN entries from a spec."""
    return {k: v for k, v in spec.items() if is_present(v)}


class PolicyKind(Enum):
    """How an attribute is reconciled against the remote system."""

    SERVER_AUTHORITATIVE = "server-authoritative"
    WRITE_ONLY = "write-only"
    IMMUTABLE = "immutable"
    MUTABLE = "mutable"


class FieldPolicyTable:
    """
    Read-only mapping of attribute name to PolicyKind.

    The table is fixed when a kind is defined and is shared by every
    Reconciler of that kind, so it must never be mutated afterwards.
    """

    def __init__(self, entries: Mapping[str, PolicyKind], kind: Optional[str] = None):
        for attribute, policy in entries.items():
            if not isinstance(policy, PolicyKind):
                raise TypeError(
                    f"Policy for '{attribute}' must be a PolicyKind, got {policy!r}"
                )
        self._entries = MappingProxyType(dict(entries))
        self.kind = kind

    def policy_of(self, attribute: str) -> PolicyKind:
        """
        Get the policy of an attribute.

        Raises:
            UnknownAttribute: If the attribute is not in the schema.
        """
        try:
            return self._entries[attribute]
        except KeyError:
            raise UnknownAttribute(attribute, self.kind) from None

    def attributes(self, *policies: PolicyKind) -> List[str]:
        """List attributes, optionally filtered to the given policies."""
        if not policies:
            return list(self._entries)
        return [a for a, p in self._entries.items() if p in policies]

    def check(self, spec: Mapping[str, Any]) -> None:
        """Raise UnknownAttribute for the first attribute not in the schema."""
        for attribute in spec:
            self.policy_of(attribute)

    @property
    def entries(self) -> Mapping[str, PolicyKind]:
        return self._entries

    def __contains__(self, attribute: object) -> bool:
        return attribute in self._entries

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
