"""Unit tests for imageconfig.py - Image config resolution."""

import pytest
from unittest.mock import AsyncMock

from errors import ReconcileError, ReconcileStep
from imageconfig import DatabaseConfigStore, resolve_image, select_image_config
from models import ImageConfig, ImageConfigReason, ImageConfigRef, Package

MIRROR = ImageConfig(
    name="mirror",
    prefix="xpkg.example.io/",
    rewrite_prefix="mirror.internal/xpkg/",
)
MIRROR_SECRET = ImageConfig(
    name="mirror-secret", prefix="mirror.internal/", pull_secret="mirror-cred"
)


class TestSelectImageConfig:
    """Tests for select_image_config."""

    def test_longest_prefix_wins(self):
        configs = [
            ImageConfig(name="broad", prefix="xpkg.example.io/", pull_secret="a"),
            ImageConfig(name="narrow", prefix="xpkg.example.io/org/", pull_secret="b"),
        ]
        selected = select_image_config(
            configs, "xpkg.example.io/org/pkg:v1", lambda c: True
        )
        assert selected.name == "narrow"

    def test_predicate_filters(self):
        selected = select_image_config(
            [MIRROR], "xpkg.example.io/org/pkg", lambda c: bool(c.pull_secret)
        )
        assert selected is None

    def test_no_match(self):
        assert select_image_config([MIRROR], "docker.io/pkg", lambda c: True) is None

    def test_tie_broken_by_name(self):
        configs = [
            ImageConfig(name="b", prefix="xpkg.example.io/", pull_secret="b"),
            ImageConfig(name="a", prefix="xpkg.example.io/", pull_secret="a"),
        ]
        first = select_image_config(configs, "xpkg.example.io/x", lambda c: True)
        second = select_image_config(configs[::-1], "xpkg.example.io/x", lambda c: True)
        assert first.name == second.name


@pytest.mark.asyncio
class TestDatabaseConfigStore:
    """Tests for DatabaseConfigStore."""

    @pytest.fixture
    def config_store(self):
        store = AsyncMock()
        store.list_image_configs = AsyncMock(return_value=[MIRROR, MIRROR_SECRET])
        return DatabaseConfigStore(store)

    async def test_rewrite_path(self, config_store):
        name, ref = await config_store.rewrite_path("xpkg.example.io/org/pkg:v1")
        assert name == "mirror"
        assert ref == "mirror.internal/xpkg/org/pkg:v1"

    async def test_rewrite_path_no_match(self, config_store):
        assert await config_store.rewrite_path("docker.io/pkg") == ("", "")

    async def test_pull_secret_for(self, config_store):
        name, secret = await config_store.pull_secret_for("mirror.internal/xpkg/pkg")
        assert (name, secret) == ("mirror-secret", "mirror-cred")

    async def test_pull_secret_for_no_match(self, config_store):
        assert await config_store.pull_secret_for("xpkg.example.io/pkg") == ("", "")


@pytest.mark.asyncio
class TestResolveImage:
    """Tests for resolve_image."""

    @pytest.fixture
    def package(self):
        return Package(name="test", source="xpkg.example.io/org/pkg:v1")

    async def test_no_configs(self, package):
        """Test the source is used unchanged when no config matches."""
        config_store = AsyncMock()
        config_store.rewrite_path = AsyncMock(return_value=("", ""))
        config_store.pull_secret_for = AsyncMock(return_value=("", ""))

        resolution = await resolve_image(config_store, package)

        assert resolution.source == package.source
        assert resolution.resolved_source is None
        assert resolution.pull_secrets == []
        assert resolution.applied_refs == []

    async def test_rewrite_and_secret(self, package):
        """Test the pull secret is looked up for the rewritten reference."""
        config_store = AsyncMock()
        config_store.rewrite_path = AsyncMock(
            return_value=("mirror", "mirror.internal/xpkg/org/pkg:v1")
        )
        config_store.pull_secret_for = AsyncMock(
            return_value=("mirror-secret", "mirror-cred")
        )

        resolution = await resolve_image(config_store, package)

        config_store.pull_secret_for.assert_called_once_with(
            "mirror.internal/xpkg/org/pkg:v1"
        )
        assert resolution.source == "mirror.internal/xpkg/org/pkg:v1"
        assert resolution.resolved_source == "mirror.internal/xpkg/org/pkg:v1"
        assert resolution.pull_secrets == ["mirror-cred"]
        assert resolution.applied_refs == [
            ImageConfigRef("mirror", ImageConfigReason.REWRITE),
            ImageConfigRef("mirror-secret", ImageConfigReason.PULL_SECRET),
        ]

    async def test_rewrite_failure(self, package):
        config_store = AsyncMock()
        config_store.rewrite_path = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(ReconcileError) as exc_info:
            await resolve_image(config_store, package)

        assert exc_info.value.step == ReconcileStep.REWRITE_IMAGE
        assert str(exc_info.value) == "cannot rewrite image path using config: boom"

    async def test_pull_secret_failure(self, package):
        config_store = AsyncMock()
        config_store.rewrite_path = AsyncMock(return_value=("", ""))
        config_store.pull_secret_for = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(ReconcileError) as exc_info:
            await resolve_image(config_store, package)

        assert exc_info.value.step == ReconcileStep.GET_PULL_CONFIG
