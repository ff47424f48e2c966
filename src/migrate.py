"""
Schema Migrations - Forward-only SQL migrations for the state store.

Migration files live in the migrations/ package and are named
NNN_description.sql. Applied versions are tracked in schema_migrations;
each pending file runs in its own transaction.
"""

import logging
import re
from pathlib import Path
from typing import List, NamedTuple, Optional, Set

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

TRACKING_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version VARCHAR(16) PRIMARY KEY,
    filename VARCHAR(255) NOT NULL,
    applied_at TIMESTAMP NOT NULL DEFAULT NOW()
)
"""


class Migration(NamedTuple):
    """A migration file on disk."""

    version: str
    filename: str
    path: Path


def discover_migrations(directory: Optional[Path] = None) -> List[Migration]:
    """
    Find migration files, ordered by version.

    Args:
        directory: Where to look; defaults to the bundled migrations.

    Raises:
        FileNotFoundError: If the directory doesn't exist.
        ValueError: If two files share a version.
    """
    directory = directory or MIGRATIONS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    migrations: List[Migration] = []
    seen: Set[str] = set()
    for entry in sorted(directory.iterdir()):
        match = MIGRATION_PATTERN.match(entry.name)
        if not match or not entry.is_file():
            continue
        version = match.group(1)
        if version in seen:
            raise ValueError(f"Duplicate migration version {version}: {entry.name}")
        seen.add(version)
        migrations.append(Migration(version, entry.name, entry))

    return migrations


async def applied_versions(conn: asyncpg.Connection) -> Set[str]:
    """Create the tracking table if needed and return applied versions."""
    await conn.execute(TRACKING_TABLE_SQL)
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def apply_migration(pool: asyncpg.Pool, migration: Migration) -> None:
    """Apply one migration and record it, atomically."""
    sql = migration.path.read_text(encoding="utf-8")

    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
                migration.version,
                migration.filename,
            )

    logger.info(f"Applied migration {migration.filename}")


async def run_migrations(pool: asyncpg.Pool, directory: Optional[Path] = None) -> int:
    """
    Apply all pending migrations in version order.

    Args:
        pool: A connected asyncpg pool.
        directory: Migration directory override (tests).

    Returns:
        Number of migrations applied.

    Raises:
        asyncpg.PostgresError: If a migration fails. It is rolled back and
            the ones before it stay applied.
    """
    migrations = discover_migrations(directory)

    async with pool.acquire() as conn:
        applied = await applied_versions(conn)

    pending = [m for m in migrations if m.version not in applied]
    if not pending:
        logger.info("Database schema is up to date")
        return 0

    logger.info(f"Applying {len(pending)} pending migration(s)")
    for migration in pending:
        await apply_migration(pool, migration)

    return len(pending)
