"""Unit tests for models.py, naming.py and errors.py."""

import pytest

from conditions import ConditionStatus, ConditionSet, active, revision_unhealthy
from errors import ERROR_MESSAGES, NotFoundError, ReconcileError, ReconcileStep
from models import (
    ANNOTATION_PAUSED,
    ActivationPolicy,
    DesiredState,
    ImageConfig,
    ImageConfigReason,
    ImageConfigRef,
    Package,
    PackageRevision,
    PullPolicy,
)
from naming import revision_name, to_dns_label


# ==================== Models ====================


class TestPackage:
    """Tests for Package dataclass."""

    def test_default_values(self):
        """Test default values."""
        package = Package(name="test", source="img:v1")
        assert package.pull_policy == PullPolicy.DEFAULT
        assert package.activation_policy is None
        assert package.revision_history_limit is None
        assert package.current_revision is None
        assert len(package.conditions) == 0

    @pytest.mark.parametrize(
        "policy,expected",
        [
            (None, True),
            (ActivationPolicy.AUTOMATIC, True),
            (ActivationPolicy.MANUAL, False),
        ],
    )
    def test_automatic_activation(self, policy, expected):
        """Test a missing activation policy means automatic."""
        package = Package(name="test", source="img:v1", activation_policy=policy)
        assert package.automatic_activation is expected

    def test_paused(self):
        """Test the pause annotation must be exactly 'true'."""
        assert Package(
            name="test", source="img", annotations={ANNOTATION_PAUSED: "true"}
        ).paused
        assert not Package(
            name="test", source="img", annotations={ANNOTATION_PAUSED: "false"}
        ).paused
        assert not Package(name="test", source="img").paused

    def test_deepcopy_is_independent(self):
        package = Package(name="test", source="img")
        copied = package.deepcopy()
        copied.conditions.set(active())
        copied.annotations["a"] = "b"

        assert len(package.conditions) == 0
        assert package.annotations == {}

    def test_status_equal(self):
        """Test status comparison covers every status field."""
        package = Package(name="test", source="img")
        other = package.deepcopy()
        assert package.status_equal(other)

        other.current_revision = "test-abc"
        assert not package.status_equal(other)

        other = package.deepcopy()
        other.applied_image_config_refs = [
            ImageConfigRef("mirror", ImageConfigReason.REWRITE)
        ]
        assert not package.status_equal(other)

    def test_to_dict(self):
        package = Package(
            name="test",
            source="img",
            activation_policy=ActivationPolicy.MANUAL,
            current_revision="test-abc",
        )
        data = package.to_dict()
        assert data["activation_policy"] == "Manual"
        assert data["pull_policy"] == "Default"
        assert data["status"]["current_revision"] == "test-abc"
        assert data["status"]["conditions"] == []


class TestPackageRevision:
    """Tests for PackageRevision dataclass."""

    def test_defaults(self):
        revision = PackageRevision(name="test-abc", package_name="test", revision=1)
        assert revision.desired_state == DesiredState.INACTIVE
        assert not revision.is_active
        assert revision.health == ConditionStatus.UNKNOWN

    def test_health(self):
        revision = PackageRevision(
            name="test-abc",
            package_name="test",
            revision=1,
            conditions=ConditionSet([revision_unhealthy()]),
        )
        assert revision.health == ConditionStatus.FALSE


class TestImageConfig:
    """Tests for ImageConfig dataclass."""

    def test_matches_prefix(self):
        config = ImageConfig(name="mirror", prefix="xpkg.example.io/")
        assert config.matches("xpkg.example.io/org/pkg:v1")
        assert not config.matches("docker.io/org/pkg:v1")

    def test_rewrite(self):
        config = ImageConfig(
            name="mirror",
            prefix="xpkg.example.io/",
            rewrite_prefix="mirror.internal/xpkg/",
        )
        assert config.rewrite("xpkg.example.io/org/pkg:v1") == (
            "mirror.internal/xpkg/org/pkg:v1"
        )

    def test_rewrite_without_rewrite_prefix(self):
        config = ImageConfig(name="secret", prefix="xpkg.example.io/", pull_secret="s")
        assert config.rewrite("xpkg.example.io/org/pkg") == "xpkg.example.io/org/pkg"

    def test_ref_round_trip(self):
        ref = ImageConfigRef(name="mirror", reason=ImageConfigReason.PULL_SECRET)
        assert ref.to_dict() == {"name": "mirror", "reason": "PullSecret"}
        assert ImageConfigRef.from_dict(ref.to_dict()) == ref


# ==================== Naming ====================


class TestRevisionName:
    """Tests for revision naming."""

    def test_short_identity(self):
        """Test the identity is used whole when short."""
        assert revision_name("test", "1234567") == "test-1234567"

    def test_identity_truncated(self):
        """Test the identity contributes its first 12 characters."""
        assert revision_name("test", "abcdef0123456789") == "test-abcdef012345"

    def test_deterministic(self):
        assert revision_name("pkg", "deadbeef") == revision_name("pkg", "deadbeef")

    def test_long_package_name(self):
        """Test long package names are truncated to stay a valid label."""
        name = revision_name("a" * 70, "0123456789abcdef")
        assert name == "a" * 50 + "-0123456789ab"
        assert len(name) <= 63

    def test_invalid_characters(self):
        assert revision_name("My_Package", "ABC") == "my-package-abc"

    def test_to_dns_label_trims_dashes(self):
        assert to_dns_label("-Foo.Bar-") == "foo-bar"


# ==================== Errors ====================


class TestErrors:
    """Tests for error types."""

    def test_not_found_message(self):
        error = NotFoundError("package", "test")
        assert str(error) == "package 'test' not found"
        assert error.kind == "package"
        assert error.name == "test"

    def test_reconcile_error_wraps_cause(self):
        """Test the message is '<step message>: <cause>'."""
        error = ReconcileError(ReconcileStep.GET_PACKAGE, RuntimeError("boom"))
        assert str(error) == "cannot get package: boom"
        assert error.step == ReconcileStep.GET_PACKAGE
        assert isinstance(error.cause, RuntimeError)

    def test_reconcile_error_without_cause(self):
        error = ReconcileError(ReconcileStep.UPDATE_STATUS)
        assert str(error) == "cannot update package status"

    def test_every_step_has_message(self):
        for step in ReconcileStep:
            assert ERROR_MESSAGES[step]

    @pytest.mark.parametrize(
        "step,transient",
        [
            (ReconcileStep.GET_PACKAGE, True),
            (ReconcileStep.UPDATE_STATUS, True),
            (ReconcileStep.GC_REVISIONS, True),
            (ReconcileStep.RESOLVE_REVISION, False),
            (ReconcileStep.REWRITE_IMAGE, False),
        ],
    )
    def test_transient(self, step, transient):
        assert ReconcileError(step).transient is transient
