"""
Schema migrations for the package store.

Applies forward-only SQL migrations from the migrations/ directory. Each
migration runs in its own transaction, and the whole run holds a Postgres
advisory lock so that controller replicas starting together apply each
migration once.
"""

import logging
import re
from pathlib import Path
from typing import List, Set, Tuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

MIGRATION_TABLE = "package_schema_migrations"

# Arbitrary key shared by every replica of the package manager.
MIGRATION_LOCK_KEY = 7_301_117

Migration = Tuple[str, str, Path]


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    """Create the migration tracking table if it doesn't exist."""
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {MIGRATION_TABLE} (
            version VARCHAR(16) PRIMARY KEY,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
        """)


def discover_migrations() -> List[Migration]:
    """
    Find migration files, sorted by version.

    Raises:
        FileNotFoundError: If the migrations directory doesn't exist.
    """
    if not MIGRATIONS_DIR.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {MIGRATIONS_DIR}")

    migrations = []
    for entry in sorted(MIGRATIONS_DIR.iterdir()):
        match = MIGRATION_PATTERN.match(entry.name)
        if match and entry.is_file():
            migrations.append((match.group(1), entry.name, entry))
    return migrations


async def get_applied_versions(conn: asyncpg.Connection) -> Set[str]:
    """Get the set of already-applied migration versions."""
    rows = await conn.fetch(f"SELECT version FROM {MIGRATION_TABLE}")
    return {row["version"] for row in rows}


def pending_migrations(
    migrations: List[Migration], applied: Set[str]
) -> List[Migration]:
    """Return the migrations not applied yet, in version order."""
    return [m for m in migrations if m[0] not in applied]


async def apply_migration(conn: asyncpg.Connection, migration: Migration) -> None:
    """Apply a single migration in its own transaction."""
    version, filename, path = migration
    sql = path.read_text(encoding="utf-8")

    async with conn.transaction():
        await conn.execute(sql)
        await conn.execute(
            f"INSERT INTO {MIGRATION_TABLE} (version, filename) VALUES ($1, $2)",
            version,
            filename,
        )

    logger.info(f"Applied migration {filename}")


async def run_migrations(pool: asyncpg.Pool) -> int:
    """
    Apply all pending migrations in order.

    Args:
        pool: An asyncpg connection pool (must already be connected).

    Returns:
        Number of migrations applied.

    Raises:
        FileNotFoundError: If the migrations directory is missing.
        asyncpg.PostgresError: If a migration fails (it is rolled back;
            previously applied migrations remain).
    """
    migrations = discover_migrations()
    if not migrations:
        logger.info("No migration files found")
        return 0

    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        try:
            await ensure_migration_table(conn)
            pending = pending_migrations(
                migrations, await get_applied_versions(conn)
            )
            if not pending:
                logger.info("Package store schema is up to date")
                return 0

            logger.info(f"Applying {len(pending)} pending migration(s)")
            for migration in pending:
                await apply_migration(conn, migration)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

    return len(pending)
