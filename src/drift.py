"""
Drift Detector - Compares a desired spec with a fresh remote observation.

Only server-authoritative and mutable attributes with a present desired
value take part in the comparison. Write-only attributes are never reported
by the remote, so their absence from an observation is expected.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional

from policy import ABSENT, FieldPolicyTable, PolicyKind, is_present

logger = logging.getLogger(__name__)

COMPARED_POLICIES = (PolicyKind.SERVER_AUTHORITATIVE, PolicyKind.MUTABLE)


class DriftState(Enum):
    """Outcome of comparing desired and observed state."""

    UNCHANGED = "unchanged"
    DRIFTED = "drifted"
    VANISHED = "vanished"


@dataclass
class DriftResult:
    """Result from drift detection."""

    state: DriftState = DriftState.UNCHANGED
    drifted: List[str] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return self.state == DriftState.DRIFTED


class DriftDetector:
    """Classifies an observation as unchanged, drifted or vanished."""

    def __init__(self, policy: FieldPolicyTable):
        self.policy = policy

    def detect(
        self,
        desired: Mapping[str, Any],
        observed: Optional[Mapping[str, Any]],
    ) -> DriftResult:
        """
        Detect drift between desired and observed state.

        Args:
            desired: The desired resource spec.
            observed: The remote observation, or None if the resource no
                longer exists remotely.

        Returns:
            DriftResult with the mismatched attributes in schema order.
        """
        if observed is None:
            return DriftResult(state=DriftState.VANISHED)

        drifted = []
        for attribute in self.policy.attributes(*COMPARED_POLICIES):
            wanted = desired.get(attribute, ABSENT)
            if not is_present(wanted):
                continue
            actual = observed.get(attribute, ABSENT)
            if not values_equal(wanted, actual):
                drifted.append(attribute)

        if drifted:
            logger.debug(f"Drift detected on: {', '.join(drifted)}")
            return DriftResult(state=DriftState.DRIFTED, drifted=drifted)
        return DriftResult(state=DriftState.UNCHANGED)


def values_equal(a: Any, b: Any) -> bool:
    """
    Compare two attribute values.

    Lists and tuples compare element-wise regardless of container type, and
    an int equals a float of the same value.
    """
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b
