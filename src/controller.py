"""
Converge Controller - Runs reconciliation cycles for managed resources.

Reconciles every entry of a manifest concurrently (bounded by a
semaphore), persisting each result or fault in the state store and keeping
a history of attempts. Also adopts existing remote resources by identity
and destroys managed ones.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from config import ControllerConfig
from db import ResourceStatus, StateStore
from errors import Faulted, ReconcileError
from kinds.registry import KindRegistry, get_registry
from manifest import ManifestEntry
from policy import PolicyKind
from reconciler import ChangeKind, Reconciler, ReconciliationResult
from remote import RemoteCollaborator
from validation import validate_resource_spec

logger = logging.getLogger(__name__)

CollaboratorFactory = Callable[[str], RemoteCollaborator]


@dataclass
class CycleOutcome:
    """Summary of one controller operation on one resource."""

    kind: str
    name: str
    success: bool
    change_kind: Optional[str] = None
    identity: Optional[str] = None
    drifted: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    retryable: bool = False

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"


def prior_from_record(
    record: Optional[Dict[str, Any]]
) -> Optional[ReconciliationResult]:
    """
    Rebuild the prior cycle result from a stored resource record.

    Returns None when the resource was never created or has been removed.
    """
    if not record or not record.get("identity"):
        return None
    return ReconciliationResult(
        identity=record["identity"],
        canonical_state=dict(record.get("canonical") or {}),
        change_kind=ChangeKind(record.get("last_change_kind") or "unchanged"),
    )


class Controller:
    """
    Coordinates reconcilers, the state store and the kind registry.

    Args:
        store: Connected state store.
        collaborator_factory: Builds a collaborator for a kind name.
        registry: Kind registry; defaults to the global one.
        config: Concurrency and timeout settings.
    """

    def __init__(
        self,
        store: StateStore,
        collaborator_factory: CollaboratorFactory,
        registry: Optional[KindRegistry] = None,
        config: Optional[ControllerConfig] = None,
    ):
        self.store = store
        self.collaborator_factory = collaborator_factory
        self.registry = registry or get_registry()
        self.config = config or ControllerConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_reconciles)

    def _reconciler(self, kind_name: str) -> Reconciler:
        kind = self.registry.get_kind(kind_name)
        return Reconciler(
            kind, self.collaborator_factory(kind_name), self.config.call_timeout
        )

    def _determine_trigger_reason(self, record: Optional[Dict[str, Any]]) -> str:
        """Determine why this reconciliation was triggered."""
        if record is None or record.get("last_reconcile_time") is None:
            return "initial"
        elif record.get("status") == ResourceStatus.FAULTED.value:
            return "retry"
        elif record.get("status") == ResourceStatus.PENDING.value:
            return "spec_change"
        else:
            return "drift_check"

    # ==================== Apply ====================

    async def reconcile_all(
        self, entries: Sequence[ManifestEntry]
    ) -> List[CycleOutcome]:
        """
        Reconcile every manifest entry concurrently.

        Entries are independent; one failing does not stop the others.

        Returns:
            One CycleOutcome per entry, in manifest order.
        """
        logger.info(f"Reconciling {len(entries)} resource(s)")
        outcomes = await asyncio.gather(*(self.reconcile_entry(e) for e in entries))
        failed = [o for o in outcomes if not o.success]
        if failed:
            logger.warning(
                f"{len(failed)} of {len(outcomes)} resource(s) failed to reconcile"
            )
        return list(outcomes)

    async def reconcile_entry(self, entry: ManifestEntry) -> CycleOutcome:
        """Validate, reconcile and persist one manifest entry."""
        async with self.semaphore:
            if not self.registry.has_kind(entry.kind):
                return self._rejected(entry, f"Unknown resource kind: {entry.kind}")

            kind = self.registry.get_kind(entry.kind)
            is_valid, message = validate_resource_spec(kind, entry.spec)
            if not is_valid:
                return self._rejected(entry, f"Invalid spec: {message}")

            resource_id = await self.store.save_desired(
                entry.kind, entry.name, entry.spec
            )
            record = await self.store.get_resource(entry.kind, entry.name)
            prior = prior_from_record(record)
            trigger_reason = self._determine_trigger_reason(record)

            reconciler = self._reconciler(entry.kind)
            start_time = time.monotonic()
            try:
                result = await reconciler.reconcile(entry.spec, prior)
            except ReconcileError as e:
                phase = self._failed_phase(reconciler, e)
                return await self._record_failure(
                    entry.kind,
                    entry.name,
                    resource_id,
                    phase,
                    e,
                    time.monotonic() - start_time,
                    trigger_reason,
                )
            except Exception as e:
                logger.error(f"Error reconciling {entry.key}: {e}", exc_info=True)
                return await self._record_failure(
                    entry.kind,
                    entry.name,
                    resource_id,
                    "faulted",
                    e,
                    time.monotonic() - start_time,
                    trigger_reason,
                )
            finally:
                await reconciler.collaborator.close()

            return await self._record_success(
                entry.kind,
                entry.name,
                resource_id,
                result,
                time.monotonic() - start_time,
                trigger_reason,
            )

    # ==================== Import / Destroy ====================

    async def import_resource(
        self, kind_name: str, name: str, token: str
    ) -> CycleOutcome:
        """
        Adopt an existing remote resource under a local name.

        The observed configurable attributes become the stored desired spec,
        so the next apply of a manifest entry with the same name updates it
        instead of creating a new one.
        """
        reconciler = self._reconciler(kind_name)
        try:
            result = await reconciler.import_by_identity(token)
        except ReconcileError as e:
            logger.error(f"Import of {kind_name} {token} failed: {e}")
            return CycleOutcome(
                kind_name, name, False, error=str(e), retryable=self._retryable(e)
            )
        finally:
            await reconciler.collaborator.close()

        if result.change_kind == ChangeKind.REMOVED:
            return CycleOutcome(
                kind_name,
                name,
                False,
                error=f"No {kind_name} exists with identity {token}",
            )

        policy = reconciler.kind.policy
        desired = {
            a: v
            for a, v in result.canonical_state.items()
            if policy.policy_of(a) != PolicyKind.SERVER_AUTHORITATIVE
        }
        resource_id = await self.store.save_desired(kind_name, name, desired)
        return await self._record_success(
            kind_name, name, resource_id, result, 0.0, "import"
        )

    async def destroy_resource(self, kind_name: str, name: str) -> CycleOutcome:
        """Delete a managed resource according to its kind's deletion strategy."""
        record = await self.store.get_resource(kind_name, name)
        if record is None:
            return CycleOutcome(
                kind_name, name, False, error=f"{kind_name}/{name} is not managed"
            )

        reconciler = self._reconciler(kind_name)
        start_time = time.monotonic()
        try:
            result = await reconciler.destroy(prior_from_record(record))
        except ReconcileError as e:
            return await self._record_failure(
                kind_name,
                name,
                record["id"],
                self._failed_phase(reconciler, e),
                e,
                time.monotonic() - start_time,
                "deletion",
            )
        finally:
            await reconciler.collaborator.close()

        return await self._record_success(
            kind_name,
            name,
            record["id"],
            result,
            time.monotonic() - start_time,
            "deletion",
        )

    # ==================== Recording ====================

    @staticmethod
    def _retryable(error: Exception) -> bool:
        return bool(getattr(error, "retryable", False))

    @staticmethod
    def _failed_phase(reconciler: Reconciler, error: ReconcileError) -> str:
        if isinstance(error, Faulted):
            return error.phase
        return "planning" if reconciler.last_plan is None else "applying"

    def _rejected(self, entry: ManifestEntry, message: str) -> CycleOutcome:
        logger.error(f"Rejected {entry.key}: {message}")
        return CycleOutcome(entry.kind, entry.name, False, error=message)

    async def _record_success(
        self,
        kind_name: str,
        name: str,
        resource_id: int,
        result: ReconciliationResult,
        duration: float,
        trigger_reason: str,
    ) -> CycleOutcome:
        await self.store.save_result(
            kind_name,
            name,
            result.identity,
            result.canonical_state,
            result.change_kind.value,
        )
        await self.store.record_reconciliation(
            resource_id,
            success=True,
            phase="done",
            change_kind=result.change_kind.value,
            drifted=result.drifted,
            warnings=result.warnings,
            duration_seconds=duration,
            trigger_reason=trigger_reason,
        )
        logger.info(
            f"{kind_name}/{name}: {result.change_kind.value} in {duration:.2f}s"
        )
        return CycleOutcome(
            kind_name,
            name,
            True,
            change_kind=result.change_kind.value,
            identity=result.identity,
            drifted=list(result.drifted),
            warnings=list(result.warnings),
        )

    async def _record_failure(
        self,
        kind_name: str,
        name: str,
        resource_id: int,
        phase: str,
        error: Exception,
        duration: float,
        trigger_reason: str,
    ) -> CycleOutcome:
        message = str(error)
        await self.store.save_fault(kind_name, name, message)
        await self.store.record_reconciliation(
            resource_id,
            success=False,
            phase=phase,
            error_message=message,
            duration_seconds=duration,
            trigger_reason=trigger_reason,
        )
        logger.error(f"{kind_name}/{name} failed during {phase}: {message}")
        return CycleOutcome(
            kind_name, name, False, error=message, retryable=self._retryable(error)
        )
