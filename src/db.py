"""
State Store - PostgreSQL persistence of managed resources.

Stores, per (kind, name), the desired spec, the identity token and the
canonical state from the last successful cycle, plus a history of every
reconciliation attempt.
"""

import asyncpg
import hashlib
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from migrate import run_migrations
from policy import present_values

logger = logging.getLogger(__name__)


class ResourceStatus(Enum):
    """Status of a managed resource."""

    PENDING = "pending"
    READY = "ready"
    FAULTED = "faulted"
    REMOVED = "removed"


class StateStore:
    """Manages PostgreSQL operations for the controller."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    @classmethod
    def from_config(cls, database_config) -> "StateStore":
        """Create a store from a DatabaseConfig."""
        return cls(
            host=database_config.host,
            port=database_config.port,
            database=database_config.database,
            user=database_config.user,
            password=database_config.password,
            min_pool_size=database_config.min_pool_size,
            max_pool_size=database_config.max_pool_size,
        )

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    # ==================== Resource Methods ====================

    async def save_desired(
        self, kind: str, name: str, spec: Mapping[str, Any]
    ) -> int:
        """
        Create or update the desired spec of a managed resource.

        Only present values are stored; absent and unknown attributes are
        left out. A changed spec moves the resource back to pending.

        Args:
            kind: Resource kind name
            name: Resource name, unique per kind
            spec: Desired resource spec

        Returns:
            The resource ID.
        """
        self._ensure_connected()
        desired = present_values(spec)
        spec_hash = self._calculate_spec_hash(desired)

        async with self.pool.acquire() as conn:
            resource_id = await conn.fetchval(
                """
                INSERT INTO managed_resources (kind, name, desired, spec_hash, status)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (kind, name) DO UPDATE
                SET desired = EXCLUDED.desired,
                    spec_hash = EXCLUDED.spec_hash,
                    status = CASE
                        WHEN managed_resources.spec_hash = EXCLUDED.spec_hash
                        THEN managed_resources.status
                        ELSE EXCLUDED.status
                    END,
                    updated_at = NOW()
                RETURNING id
                """,
                kind,
                name,
                json.dumps(desired),
                spec_hash,
                ResourceStatus.PENDING.value,
            )

            logger.debug(f"Saved desired spec of {kind}/{name} (ID {resource_id})")
            return resource_id

    async def get_resource(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Get a managed resource by kind and name."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM managed_resources WHERE kind = $1 AND name = $2",
                kind,
                name,
            )
            if not row:
                return None

            return self._parse_resource_row(row)

    async def list_resources(
        self,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """List managed resources with optional filters."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM managed_resources WHERE 1=1"
            params = []
            param_count = 0

            if kind:
                param_count += 1
                query += f" AND kind = ${param_count}"
                params.append(kind)

            if status:
                param_count += 1
                query += f" AND status = ${param_count}"
                params.append(status)

            param_count += 1
            query += f" ORDER BY kind, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_resource_row(row) for row in rows]

    async def save_result(
        self,
        kind: str,
        name: str,
        identity: Optional[str],
        canonical_state: Dict[str, Any],
        change_kind: str,
    ) -> None:
        """
        Persist the outcome of a successful cycle.

        A result without identity marks the resource as removed.
        """
        self._ensure_connected()
        status = ResourceStatus.READY if identity else ResourceStatus.REMOVED

        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE managed_resources
                SET identity = $1,
                    canonical = $2,
                    status = $3,
                    last_change_kind = $4,
                    last_error = NULL,
                    last_reconcile_time = NOW(),
                    updated_at = NOW()
                WHERE kind = $5 AND name = $6
                """,
                identity,
                json.dumps(canonical_state),
                status.value,
                change_kind,
                kind,
                name,
            )

        logger.info(f"Stored {kind}/{name} as {status.value} ({change_kind})")

    async def save_fault(self, kind: str, name: str, error_message: str) -> None:
        """
        Record a failed cycle.

        Identity and canonical state are left as they were, so the next
        cycle starts from the last good state.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE managed_resources
                SET status = $1,
                    last_error = $2,
                    last_reconcile_time = NOW(),
                    updated_at = NOW()
                WHERE kind = $3 AND name = $4
                """,
                ResourceStatus.FAULTED.value,
                error_message,
                kind,
                name,
            )

        logger.warning(f"Stored fault of {kind}/{name}: {error_message}")

    async def delete_resource(self, kind: str, name: str) -> bool:
        """
        Permanently delete a resource record and its history.

        Returns:
            True if a record was deleted.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM managed_resources
                WHERE kind = $1 AND name = $2
                RETURNING id
                """,
                kind,
                name,
            )
            if result:
                logger.info(f"Deleted record of {kind}/{name}")
                return True
            return False

    # ==================== History Methods ====================

    async def record_reconciliation(
        self,
        resource_id: int,
        success: bool,
        phase: str,
        change_kind: Optional[str] = None,
        drifted: Sequence[str] = (),
        warnings: Sequence[str] = (),
        error_message: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        trigger_reason: Optional[str] = None,
    ):
        """Record a reconciliation attempt in history."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO reconciliation_history (
                    resource_id, success, phase, change_kind,
                    drifted, warnings, error_message,
                    duration_seconds, trigger_reason
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                resource_id,
                success,
                phase,
                change_kind,
                json.dumps(list(drifted)),
                json.dumps(list(warnings)),
                error_message,
                duration_seconds,
                trigger_reason,
            )

    async def get_reconciliation_history(
        self, resource_id: int, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Get reconciliation history for a resource, newest first."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM reconciliation_history
                WHERE resource_id = $1
                ORDER BY reconcile_time DESC
                LIMIT $2
                """,
                resource_id,
                limit,
            )

            history = []
            for row in rows:
                entry = dict(row)
                entry["drifted"] = self._load_json(entry.get("drifted"), [])
                entry["warnings"] = self._load_json(entry.get("warnings"), [])
                history.append(entry)
            return history

    # ==================== Helpers ====================

    @staticmethod
    def _load_json(value: Any, default: Any) -> Any:
        if value is None:
            return default
        if isinstance(value, str):
            return json.loads(value)
        return value

    def _parse_resource_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Parse a managed_resources row, converting JSON fields.

        Args:
            row: An asyncpg.Record from a database query

        Returns:
            A dictionary with the resource data, with desired and canonical
            parsed into Python dicts
        """
        result = dict(row)
        result["desired"] = self._load_json(result.get("desired"), {})
        result["canonical"] = self._load_json(result.get("canonical"), {})
        return result

    def _calculate_spec_hash(self, spec: Dict[str, Any]) -> str:
        """Calculate a hash of the desired spec for change detection."""
        spec_string = json.dumps(spec, sort_keys=True)
        return hashlib.sha256(spec_string.encode()).hexdigest()
