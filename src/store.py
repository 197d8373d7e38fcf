"""
Package Store - PostgreSQL persistence for packages and their revisions.

Stores packages, package revisions and image configs. Revisions reference
their package with ON DELETE CASCADE, so deleting a package deletes every
revision it owns.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from conditions import ConditionSet
from errors import NotFoundError
from migrate import run_migrations
from models import (
    LABEL_OWNER,
    ActivationPolicy,
    DesiredState,
    ImageConfig,
    ImageConfigRef,
    Package,
    PackageRevision,
    PullPolicy,
)

logger = logging.getLogger(__name__)


def _load_json(value: Any, default: Any) -> Any:
    """Decode a JSONB column that asyncpg may return as text."""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value) if value else default
    return value


class PackageStore:
    """Manages PostgreSQL operations for packages and package revisions."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

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
            command_timeout=60,
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

    # ==================== Package Methods ====================

    async def get_package(self, name: str) -> Package:
        """
        Get a package by name.

        Raises:
            NotFoundError: If the package does not exist.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM packages WHERE name = $1", name)
            if not row:
                raise NotFoundError("package", name)
            return self._parse_package_row(row)

    async def list_packages(self) -> List[Package]:
        """List all packages ordered by name."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM packages ORDER BY name")
            return [self._parse_package_row(row) for row in rows]

    async def list_package_names(self) -> List[str]:
        """List the names of all packages, the controller's work keys."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT name FROM packages ORDER BY name")
            return [row["name"] for row in rows]

    async def apply_package(self, package: Package) -> None:
        """
        Create or update a package's spec. Status is left untouched.

        The row is only rewritten when the spec actually changes.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO packages (
                    name, source, pull_policy, activation_policy,
                    revision_history_limit, pull_secrets, annotations, labels
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (name) DO UPDATE
                SET source = EXCLUDED.source,
                    pull_policy = EXCLUDED.pull_policy,
                    activation_policy = EXCLUDED.activation_policy,
                    revision_history_limit = EXCLUDED.revision_history_limit,
                    pull_secrets = EXCLUDED.pull_secrets,
                    annotations = EXCLUDED.annotations,
                    labels = EXCLUDED.labels,
                    updated_at = NOW()
                WHERE (packages.source, packages.pull_policy,
                       packages.activation_policy, packages.revision_history_limit,
                       packages.pull_secrets, packages.annotations, packages.labels)
                  IS DISTINCT FROM
                      (EXCLUDED.source, EXCLUDED.pull_policy,
                       EXCLUDED.activation_policy, EXCLUDED.revision_history_limit,
                       EXCLUDED.pull_secrets, EXCLUDED.annotations, EXCLUDED.labels)
                """,
                package.name,
                package.source,
                package.pull_policy.value,
                package.activation_policy.value if package.activation_policy else None,
                package.revision_history_limit,
                json.dumps(package.pull_secrets),
                json.dumps(package.annotations),
                json.dumps(package.labels),
            )
            logger.info(f"Applied package {package.name}")

    async def delete_package(self, name: str) -> bool:
        """Delete a package and, by cascade, all of its revisions."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "DELETE FROM packages WHERE name = $1 RETURNING name", name
            )
            if result:
                logger.info(f"Deleted package {name}")
                return True
            return False

    async def set_annotation(self, name: str, key: str, value: str) -> None:
        """Set an annotation on a package."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE packages
                SET annotations = annotations || jsonb_build_object($2::text, $3::text),
                    updated_at = NOW()
                WHERE name = $1
                RETURNING name
                """,
                name,
                key,
                value,
            )
            if not result:
                raise NotFoundError("package", name)

    async def remove_annotation(self, name: str, key: str) -> None:
        """Remove an annotation from a package."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE packages
                SET annotations = annotations - $2::text, updated_at = NOW()
                WHERE name = $1
                RETURNING name
                """,
                name,
                key,
            )
            if not result:
                raise NotFoundError("package", name)

    async def patch_package_status(self, package: Package) -> None:
        """
        Replace the status of a package.

        Raises:
            NotFoundError: If the package was deleted meanwhile.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE packages
                SET status = $1, updated_at = NOW()
                WHERE name = $2
                RETURNING name
                """,
                json.dumps(package.status_dict()),
                package.name,
            )
            if not result:
                raise NotFoundError("package", package.name)

    # ==================== Package Revision Methods ====================

    async def list_revisions(self, package_name: str) -> List[PackageRevision]:
        """List the revisions labelled as owned by a package, newest first."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM package_revisions
                WHERE labels->>'{LABEL_OWNER}' = $1
                ORDER BY revision DESC
                """,
                package_name,
            )
            return [self._parse_revision_row(row) for row in rows]

    async def get_revision(self, name: str) -> PackageRevision:
        """
        Get a package revision by name.

        Raises:
            NotFoundError: If the revision does not exist.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM package_revisions WHERE name = $1", name
            )
            if not row:
                raise NotFoundError("package revision", name)
            return self._parse_revision_row(row)

    async def apply_revision(self, revision: PackageRevision) -> None:
        """
        Create or update a package revision.

        Only the desired state, ordinal and labels of an existing revision
        are updated, and nothing is written when they are unchanged. Health
        conditions belong to the revision runtime and are never overwritten.

        Raises:
            ValueError: If a revision of that name belongs to another package.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            owner = await conn.fetchval(
                """
                INSERT INTO package_revisions (
                    name, package_name, revision, desired_state,
                    source, pull_policy, labels
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (name) DO UPDATE
                SET desired_state = EXCLUDED.desired_state,
                    revision = EXCLUDED.revision,
                    labels = EXCLUDED.labels,
                    updated_at = NOW()
                WHERE package_revisions.package_name = EXCLUDED.package_name
                  AND (package_revisions.desired_state, package_revisions.revision,
                       package_revisions.labels)
                      IS DISTINCT FROM
                      (EXCLUDED.desired_state, EXCLUDED.revision, EXCLUDED.labels)
                RETURNING package_name
                """,
                revision.name,
                revision.package_name,
                revision.revision,
                revision.desired_state.value,
                revision.source,
                revision.pull_policy.value,
                json.dumps(revision.labels),
            )
            if owner is None:
                # Nothing written: either unchanged or owned by someone else
                existing = await conn.fetchval(
                    "SELECT package_name FROM package_revisions WHERE name = $1",
                    revision.name,
                )
                if existing != revision.package_name:
                    raise ValueError(
                        f"Package revision {revision.name} is owned by "
                        f"package {existing}, not {revision.package_name}"
                    )

    async def set_revision_desired_state(
        self, name: str, desired_state: DesiredState
    ) -> None:
        """Set the desired state of a revision, used for manual activation."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE package_revisions
                SET desired_state = $1, updated_at = NOW()
                WHERE name = $2
                RETURNING name
                """,
                desired_state.value,
                name,
            )
            if not result:
                raise NotFoundError("package revision", name)

    async def delete_revision(self, name: str) -> None:
        """
        Delete a package revision.

        Raises:
            NotFoundError: If the revision does not exist.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "DELETE FROM package_revisions WHERE name = $1 RETURNING name", name
            )
            if not result:
                raise NotFoundError("package revision", name)
            logger.info(f"Deleted package revision {name}")

    # ==================== Image Config Methods ====================

    async def list_image_configs(self) -> List[ImageConfig]:
        """List all image configs."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM image_configs ORDER BY name")
            return [self._parse_image_config_row(row) for row in rows]

    async def apply_image_config(self, config: ImageConfig) -> None:
        """Create or update an image config."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO image_configs (name, prefix, rewrite_prefix, pull_secret)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (name) DO UPDATE
                SET prefix = EXCLUDED.prefix,
                    rewrite_prefix = EXCLUDED.rewrite_prefix,
                    pull_secret = EXCLUDED.pull_secret,
                    updated_at = NOW()
                """,
                config.name,
                config.prefix,
                config.rewrite_prefix,
                config.pull_secret,
            )
            logger.info(f"Applied image config {config.name}")

    async def delete_image_config(self, name: str) -> bool:
        """Delete an image config."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "DELETE FROM image_configs WHERE name = $1 RETURNING name", name
            )
            return result is not None

    # ==================== Row Parsing ====================

    def _parse_package_row(self, row: asyncpg.Record) -> Package:
        """
        Parse a package row from the database.

        Args:
            row: An asyncpg.Record from the packages table

        Returns:
            A Package with its status decoded
        """
        data = dict(row)
        status: Dict[str, Any] = _load_json(data.get("status"), {})
        activation_policy = data.get("activation_policy")
        return Package(
            name=data["name"],
            source=data["source"],
            pull_policy=PullPolicy(data.get("pull_policy") or PullPolicy.DEFAULT.value),
            activation_policy=(
                ActivationPolicy(activation_policy) if activation_policy else None
            ),
            revision_history_limit=data.get("revision_history_limit"),
            pull_secrets=_load_json(data.get("pull_secrets"), []),
            annotations=_load_json(data.get("annotations"), {}),
            labels=_load_json(data.get("labels"), {}),
            conditions=ConditionSet.from_list(status.get("conditions")),
            current_revision=status.get("current_revision"),
            applied_image_config_refs=[
                ImageConfigRef.from_dict(ref)
                for ref in status.get("applied_image_config_refs") or []
            ],
            resolved_source=status.get("resolved_source"),
        )

    def _parse_revision_row(self, row: asyncpg.Record) -> PackageRevision:
        """Parse a package revision row from the database."""
        data = dict(row)
        return PackageRevision(
            name=data["name"],
            package_name=data["package_name"],
            revision=data["revision"],
            desired_state=DesiredState(data["desired_state"]),
            source=data.get("source") or "",
            pull_policy=PullPolicy(data.get("pull_policy") or PullPolicy.DEFAULT.value),
            labels=_load_json(data.get("labels"), {}),
            conditions=ConditionSet.from_list(_load_json(data.get("conditions"), [])),
        )

    def _parse_image_config_row(self, row: asyncpg.Record) -> ImageConfig:
        data = dict(row)
        return ImageConfig(
            name=data["name"],
            prefix=data["prefix"],
            rewrite_prefix=data.get("rewrite_prefix"),
            pull_secret=data.get("pull_secret"),
        )
