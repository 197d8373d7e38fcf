"""Pytest configuration and fixtures."""

import copy

import pytest
from unittest.mock import AsyncMock, MagicMock

from conditions import ConditionSet, revision_healthy
from errors import NotFoundError
from models import (
    LABEL_OWNER,
    ActivationPolicy,
    DesiredState,
    Package,
    PackageRevision,
)


class InMemoryStore:
    """Package store kept in dictionaries, counting writes."""

    def __init__(self):
        self.packages = {}
        self.revisions = {}
        self.image_configs = {}
        self.status_patches = 0
        self.revision_writes = 0
        self.deleted = []

    def add_package(self, package):
        self.packages[package.name] = copy.deepcopy(package)

    def add_revision(self, revision):
        self.revisions[revision.name] = copy.deepcopy(revision)

    async def get_package(self, name):
        if name not in self.packages:
            raise NotFoundError("package", name)
        return copy.deepcopy(self.packages[name])

    async def list_package_names(self):
        return sorted(self.packages)

    async def list_revisions(self, package_name):
        owned = [
            copy.deepcopy(r)
            for r in self.revisions.values()
            if r.labels.get(LABEL_OWNER) == package_name
        ]
        return sorted(owned, key=lambda r: r.revision, reverse=True)

    async def apply_revision(self, revision):
        existing = self.revisions.get(revision.name)
        if existing is not None:
            if (existing.desired_state, existing.revision, existing.labels) == (
                revision.desired_state,
                revision.revision,
                revision.labels,
            ):
                return
            stored = copy.deepcopy(existing)
            stored.desired_state = revision.desired_state
            stored.revision = revision.revision
            stored.labels = dict(revision.labels)
        else:
            stored = copy.deepcopy(revision)
        self.revisions[revision.name] = stored
        self.revision_writes += 1

    async def delete_revision(self, name):
        if name not in self.revisions:
            raise NotFoundError("package revision", name)
        del self.revisions[name]
        self.deleted.append(name)

    async def patch_package_status(self, package):
        if package.name not in self.packages:
            raise NotFoundError("package", package.name)
        stored = self.packages[package.name]
        stored.conditions = package.conditions.copy()
        stored.current_revision = package.current_revision
        stored.applied_image_config_refs = list(package.applied_image_config_refs)
        stored.resolved_source = package.resolved_source
        self.status_patches += 1

    async def list_image_configs(self):
        return list(self.image_configs.values())


@pytest.fixture
def memory_store():
    """An empty in-memory package store."""
    return InMemoryStore()


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def sample_package():
    """A package with automatic activation."""
    return Package(name="test", source="xpkg.example.io/org/test:v1.0.0")


@pytest.fixture
def manual_package():
    """A package with manual activation and a history limit of 1."""
    return Package(
        name="test",
        source="xpkg.example.io/org/test:v1.0.0",
        activation_policy=ActivationPolicy.MANUAL,
        revision_history_limit=1,
    )


@pytest.fixture
def make_revision():
    """Factory for revisions owned by the package 'test'."""

    def _make(name, revision, state=DesiredState.INACTIVE, healthy=False):
        conditions = ConditionSet([revision_healthy()]) if healthy else ConditionSet()
        return PackageRevision(
            name=name,
            package_name="test",
            revision=revision,
            desired_state=state,
            source="xpkg.example.io/org/test:v1.0.0",
            labels={LABEL_OWNER: "test"},
            conditions=conditions,
        )

    return _make
