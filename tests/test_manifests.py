"""Unit tests for manifests.py - Manifest validation."""

import pytest
from pydantic import ValidationError

from manifests import (
    ImageConfigManifest,
    PackageManifest,
    parse_manifest,
    validate_name_format,
)
from models import ActivationPolicy, PullPolicy


class TestValidateNameFormat:
    """Tests for validate_name_format."""

    def test_valid(self):
        assert validate_name_format("provider-aws", "name") == "provider-aws"

    @pytest.mark.parametrize(
        "value", ["", "Upper", "-leading", "trailing-", "under_score", "a" * 64]
    )
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            validate_name_format(value, "name")


class TestPackageManifest:
    """Tests for PackageManifest."""

    def test_minimal(self):
        manifest = parse_manifest(
            {
                "kind": "Package",
                "metadata": {"name": "provider-aws"},
                "spec": {"source": "xpkg.example.io/org/provider-aws:v1.0.0"},
            }
        )

        assert isinstance(manifest, PackageManifest)
        package = manifest.to_package()
        assert package.name == "provider-aws"
        assert package.pull_policy == PullPolicy.DEFAULT
        assert package.activation_policy is None
        assert package.revision_history_limit is None

    def test_full(self):
        manifest = parse_manifest(
            {
                "kind": "Package",
                "metadata": {
                    "name": "provider-aws",
                    "annotations": {"pkg.no8s.io/paused": "true"},
                },
                "spec": {
                    "source": "xpkg.example.io/org/provider-aws:v1.0.0",
                    "pull_policy": "Always",
                    "activation_policy": "Manual",
                    "revision_history_limit": 2,
                    "pull_secrets": ["regcred"],
                },
            }
        )

        package = manifest.to_package()
        assert package.pull_policy == PullPolicy.ALWAYS
        assert package.activation_policy == ActivationPolicy.MANUAL
        assert package.revision_history_limit == 2
        assert package.pull_secrets == ["regcred"]
        assert package.paused

    def test_invalid_name(self):
        with pytest.raises(ValidationError):
            PackageManifest.model_validate(
                {"metadata": {"name": "Bad_Name"}, "spec": {"source": "img:v1"}}
            )

    def test_invalid_source(self):
        with pytest.raises(ValidationError):
            PackageManifest.model_validate(
                {"metadata": {"name": "pkg"}, "spec": {"source": "img:"}}
            )

    def test_negative_history_limit(self):
        with pytest.raises(ValidationError):
            PackageManifest.model_validate(
                {
                    "metadata": {"name": "pkg"},
                    "spec": {"source": "img:v1", "revision_history_limit": -1},
                }
            )

    def test_unknown_activation_policy(self):
        with pytest.raises(ValidationError):
            PackageManifest.model_validate(
                {
                    "metadata": {"name": "pkg"},
                    "spec": {"source": "img:v1", "activation_policy": "Sometimes"},
                }
            )


class TestImageConfigManifest:
    """Tests for ImageConfigManifest."""

    def test_rewrite(self):
        manifest = parse_manifest(
            {
                "kind": "ImageConfig",
                "metadata": {"name": "mirror"},
                "spec": {
                    "prefix": "xpkg.example.io/",
                    "rewrite_prefix": "mirror.internal/xpkg/",
                },
            }
        )

        assert isinstance(manifest, ImageConfigManifest)
        config = manifest.to_image_config()
        assert config.prefix == "xpkg.example.io/"
        assert config.rewrite_prefix == "mirror.internal/xpkg/"
        assert config.pull_secret is None

    def test_requires_an_effect(self):
        with pytest.raises(ValidationError):
            ImageConfigManifest.model_validate(
                {"metadata": {"name": "noop"}, "spec": {"prefix": "xpkg.example.io/"}}
            )


class TestParseManifest:
    """Tests for parse_manifest."""

    def test_unknown_kind(self):
        with pytest.raises(ValueError) as exc_info:
            parse_manifest({"kind": "Deployment"})
        assert "unknown kind" in str(exc_info.value)

    def test_not_a_mapping(self):
        with pytest.raises(ValueError):
            parse_manifest(["kind", "Package"])
