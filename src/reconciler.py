"""
Reconciler - Converges one resource instance onto its desired spec.

Each cycle runs Planning -> Applying -> Observing -> Done, strictly in
order. Any remote failure moves the cycle to Faulted and raises Faulted
wrapping the remote error; nothing is rolled back and the caller's prior
canonical state stays valid, so the whole cycle can simply be retried.

One Reconciler serves one resource instance at a time. Independent
instances are reconciled concurrently with separate Reconcilers; the only
state they share is their kind's read-only policy table.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from drift import DriftDetector, DriftResult, DriftState, values_equal
from errors import Faulted, NotFound, NotSupported, RemoteError, ValidationRejected
from kinds.base import DeletionMode, ResourceKind
from policy import ABSENT, UNKNOWN, PolicyKind, is_present
from remote import Observation, RemoteCollaborator, call_remote
from resolver import CreateOrGetResolver

logger = logging.getLogger(__name__)


class ReconcilerPhase(Enum):
    """Phases of a reconciliation cycle."""

    PLANNING = "planning"
    APPLYING = "applying"
    OBSERVING = "observing"
    DONE = "done"
    FAULTED = "faulted"


class ChangeKind(Enum):
    """What a reconciliation cycle did to the resource."""

    CREATED = "created"
    UPDATED = "updated"
    REPLACED = "replaced"
    UNCHANGED = "unchanged"
    REMOVED = "removed"


class PlanAction(Enum):
    """Action chosen during Planning."""

    CREATE = "create"
    REPLACE = "replace"
    UPDATE = "update"
    NOOP = "noop"


@dataclass
class Plan:
    """Outcome of Planning."""

    action: PlanAction
    delta: Dict[str, Any] = field(default_factory=dict)
    replace_reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Result of one reconciliation cycle.

    The caller persists identity and canonical_state and passes the result
    back as prior state on the next cycle. A removed result has no identity.
    """

    identity: Optional[str]
    canonical_state: Dict[str, Any]
    change_kind: ChangeKind
    drifted: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


class Reconciler:
    """
    Generic reconciler parameterized by a resource kind and a collaborator.

    Attributes:
        phase: Phase of the current (or last) cycle, None before the first.
        last_plan: Plan chosen by the current (or last) cycle.
    """

    def __init__(
        self,
        kind: ResourceKind,
        collaborator: RemoteCollaborator,
        timeout: Optional[float] = None,
    ):
        self.kind = kind
        self.collaborator = collaborator
        self.timeout = timeout
        self.detector = DriftDetector(kind.policy)
        self.resolver = CreateOrGetResolver(kind, collaborator, timeout)
        self.phase: Optional[ReconcilerPhase] = None
        self.last_plan: Optional[Plan] = None

    # ==================== Public operations ====================

    async def reconcile(
        self,
        desired: Mapping[str, Any],
        prior: Optional[ReconciliationResult] = None,
    ) -> ReconciliationResult:
        """
        Run one full reconciliation cycle.

        Args:
            desired: The desired resource spec.
            prior: The result of the previous cycle, if any.

        Returns:
            ReconciliationResult with the new canonical state.

        Raises:
            Faulted: If a remote call failed or timed out.
            UnknownAttribute: If desired names an attribute outside the schema.
            ValidationRejected: If a non-computed attribute is UNKNOWN.
            NotSupported: If an in-place update is needed but the kind has none.
            ConflictUnresolvable: If another resource owns the natural key.
        """
        if prior is not None and prior.identity is None:
            prior = None

        self.phase = ReconcilerPhase.PLANNING
        try:
            plan = self.plan(desired, prior)
        except Exception:
            self.phase = ReconcilerPhase.FAULTED
            raise
        self.last_plan = plan
        logger.info(
            f"Planned {plan.action.value} for {self.kind.name}"
            + (f" {prior.identity}" if prior else "")
        )

        try:
            self.phase = ReconcilerPhase.APPLYING
            identity, change_kind, warnings = await self._apply(plan, desired, prior)

            self.phase = ReconcilerPhase.OBSERVING
            return await self._observe(identity, desired, prior, change_kind, warnings)
        except RemoteError as e:
            raise self._fault(e) from e
        except Exception:
            self.phase = ReconcilerPhase.FAULTED
            raise

    async def import_by_identity(self, token: str) -> ReconciliationResult:
        """
        Adopt an existing remote resource by running Observing only.

        Args:
            token: Identity token of the remote resource.

        Returns:
            ReconciliationResult with change kind unchanged, or removed if
            nothing exists under that identity.

        Raises:
            MalformedIdentity: If the token cannot be decoded by the kind.
            Faulted: If the remote read failed.
        """
        self.kind.identity.decode(token)
        self.last_plan = None
        self.phase = ReconcilerPhase.OBSERVING
        try:
            return await self._observe(token, {}, None, ChangeKind.UNCHANGED, [])
        except RemoteError as e:
            raise self._fault(e) from e

    async def destroy(
        self, prior: Optional[ReconciliationResult]
    ) -> ReconciliationResult:
        """
        Remove a managed resource according to the kind's deletion strategy.

        Args:
            prior: The result of the last cycle for this resource.

        Returns:
            ReconciliationResult with change kind removed.
        """
        self.phase = ReconcilerPhase.APPLYING
        warnings: List[str] = []
        try:
            if prior is not None and prior.identity is not None:
                await self._delete(prior.identity, prior.canonical_state, warnings)
        except RemoteError as e:
            raise self._fault(e) from e
        except Exception:
            self.phase = ReconcilerPhase.FAULTED
            raise

        self.phase = ReconcilerPhase.DONE
        return ReconciliationResult(
            identity=None,
            canonical_state={},
            change_kind=ChangeKind.REMOVED,
            warnings=tuple(warnings),
        )

    def plan(
        self,
        desired: Mapping[str, Any],
        prior: Optional[ReconciliationResult],
    ) -> Plan:
        """
        Partition the delta between desired and prior canonical state.

        An ABSENT desired value means the attribute is not managed: it never
        produces a delta and is never sent as a zero value. An immutable
        attribute only forces a replace when the prior state holds a
        different value; one the remote never reported is taken as is.
        """
        policy = self.kind.policy
        policy.check(desired)
        for attribute, value in desired.items():
            if value is UNKNOWN and (
                policy.policy_of(attribute) != PolicyKind.SERVER_AUTHORITATIVE
            ):
                raise ValidationRejected(
                    attribute, "value is unknown; resolve it before reconciling"
                )

        if prior is None or prior.identity is None:
            return Plan(PlanAction.CREATE)

        current = prior.canonical_state
        replace_reasons = []
        delta = {}
        for attribute in policy:
            kind = policy.policy_of(attribute)
            wanted = desired.get(attribute, ABSENT)
            if kind == PolicyKind.SERVER_AUTHORITATIVE or not is_present(wanted):
                continue
            held = current.get(attribute, ABSENT)
            if values_equal(wanted, held):
                continue
            if kind == PolicyKind.IMMUTABLE:
                # Unreported immutables are adopted from desired during merge.
                if is_present(held):
                    replace_reasons.append(attribute)
            else:
                delta[attribute] = wanted

        if replace_reasons:
            return Plan(PlanAction.REPLACE, replace_reasons=replace_reasons)

        for group in self.kind.coupled:
            if any(a in delta for a in group):
                for attribute in group:
                    wanted = desired.get(attribute, ABSENT)
                    if attribute not in delta and is_present(wanted):
                        delta[attribute] = wanted

        if delta:
            if not self.kind.updatable:
                raise NotSupported(
                    f"Kind '{self.kind.name}' cannot be updated in place "
                    f"(changed: {', '.join(delta)})"
                )
            return Plan(PlanAction.UPDATE, delta=delta)
        return Plan(PlanAction.NOOP)

    def merge(
        self,
        desired: Mapping[str, Any],
        observed: Observation,
        prior_state: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Build canonical state from desired spec and remote observation.

        Write-only values come from desired (or prior state when desired
        leaves them unmanaged); server-authoritative and mutable values come
        from the observation; immutable values come from the observation
        when reported, otherwise from desired.
        """
        prior_state = prior_state or {}
        state = {}
        for attribute in self.kind.policy:
            kind = self.kind.policy.policy_of(attribute)
            wanted = desired.get(attribute, ABSENT)
            seen = observed.get(attribute, ABSENT)

            if kind == PolicyKind.WRITE_ONLY:
                value = wanted
                if not is_present(value):
                    value = prior_state.get(attribute, ABSENT)
            elif kind == PolicyKind.IMMUTABLE:
                value = seen if is_present(seen) else wanted
                if not is_present(value):
                    value = prior_state.get(attribute, ABSENT)
            else:
                value = seen

            if is_present(value):
                state[attribute] = value
        return state

    # ==================== Phases ====================

    async def _apply(
        self,
        plan: Plan,
        desired: Mapping[str, Any],
        prior: Optional[ReconciliationResult],
    ) -> Tuple[str, ChangeKind, List[str]]:
        warnings: List[str] = []

        if plan.action == PlanAction.NOOP:
            return prior.identity, ChangeKind.UNCHANGED, warnings

        if plan.action == PlanAction.CREATE:
            identity, _ = await self.resolver.create_or_get(desired)
            return identity, ChangeKind.CREATED, warnings

        if plan.action == PlanAction.UPDATE:
            logger.info(
                f"Updating {self.kind.name} {prior.identity}: {', '.join(plan.delta)}"
            )
            await call_remote(
                f"{self.kind.name}.update",
                self.collaborator.update(prior.identity, dict(plan.delta)),
                self.timeout,
            )
            return prior.identity, ChangeKind.UPDATED, warnings

        logger.info(
            f"Replacing {self.kind.name} {prior.identity}: immutable "
            f"{', '.join(plan.replace_reasons)} changed"
        )
        await self._delete(prior.identity, prior.canonical_state, warnings)
        identity, _ = await self.resolver.create_or_get(desired)
        return identity, ChangeKind.REPLACED, warnings

    async def _observe(
        self,
        identity: str,
        desired: Mapping[str, Any],
        prior: Optional[ReconciliationResult],
        change_kind: ChangeKind,
        warnings: List[str],
    ) -> ReconciliationResult:
        observed = await call_remote(
            f"{self.kind.name}.read",
            self.collaborator.read(identity),
            self.timeout,
        )
        drift: DriftResult = self.detector.detect(desired, observed)

        self.phase = ReconcilerPhase.DONE
        if drift.state == DriftState.VANISHED:
            logger.info(f"{self.kind.name} {identity} no longer exists remotely")
            return ReconciliationResult(
                identity=None,
                canonical_state={},
                change_kind=ChangeKind.REMOVED,
                warnings=tuple(warnings),
            )

        if drift.has_drift:
            logger.info(
                f"{self.kind.name} {identity} differs from desired on: "
                f"{', '.join(drift.drifted)}"
            )

        # A replaced resource starts fresh; write-only values of the old
        # instance do not carry over.
        keep_prior = prior is not None and change_kind in (
            ChangeKind.UPDATED,
            ChangeKind.UNCHANGED,
        )
        canonical = self.merge(
            desired, observed, prior.canonical_state if keep_prior else None
        )
        return ReconciliationResult(
            identity=identity,
            canonical_state=canonical,
            change_kind=change_kind,
            drifted=tuple(drift.drifted),
            warnings=tuple(warnings),
        )

    async def _delete(
        self, identity: str, state: Mapping[str, Any], warnings: List[str]
    ) -> None:
        strategy = self.kind.deletion
        if strategy.mode == DeletionMode.UNSUPPORTED:
            logger.info(
                f"{self.kind.name} has no remote deletion; abandoning {identity}"
            )
            return

        target = strategy.target(identity, state)
        if strategy.mode == DeletionMode.COARSE:
            message = self.kind.coarse_deletion_warning()
            logger.warning(message)
            warnings.append(message)

        try:
            await call_remote(
                f"{self.kind.name}.delete",
                self.collaborator.delete(target),
                self.timeout,
            )
        except NotFound:
            logger.info(f"{self.kind.name} {target} was already deleted")
            return
        logger.info(f"Deleted {self.kind.name} {target}")

    def _fault(self, cause: RemoteError) -> Faulted:
        phase = self.phase.value if self.phase else ReconcilerPhase.PLANNING.value
        self.phase = ReconcilerPhase.FAULTED
        logger.error(
            f"Reconciliation of {self.kind.name} faulted during {phase}: {cause}"
        )
        return Faulted(phase, cause)
