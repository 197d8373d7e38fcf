"""
Manifest models - validation of user-supplied Package and ImageConfig documents.

Manifests follow the usual ``kind`` / ``metadata`` / ``spec`` layout:

    kind: Package
    metadata:
      name: crossplane-aws
    spec:
      source: xpkg.upbound.io/crossplane/provider-aws:v1.0.0
      activation_policy: Manual
      revision_history_limit: 1
"""

import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from models import ActivationPolicy, ImageConfig, Package, PullPolicy
from revisioner import parse_reference

NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
MAX_NAME_LENGTH = 63


def validate_name_format(value: str, field_name: str) -> str:
    """Validate that a name follows Kubernetes naming conventions."""
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"{field_name} cannot exceed {MAX_NAME_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must consist of lowercase alphanumeric characters or '-', "
            f"must start and end with an alphanumeric character"
        )
    return value


class Metadata(BaseModel):
    name: str = Field(..., description="Object name", examples=["provider-aws"])
    annotations: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "metadata.name")


class PackageSpec(BaseModel):
    """Desired state of a package."""

    source: str = Field(..., description="OCI image reference of the package")
    pull_policy: PullPolicy = Field(default=PullPolicy.DEFAULT)
    activation_policy: Optional[ActivationPolicy] = Field(
        default=None, description="Manual or Automatic; absent means Automatic"
    )
    revision_history_limit: Optional[int] = Field(
        default=None, ge=0, description="Inactive revisions to keep; absent keeps all"
    )
    pull_secrets: List[str] = Field(default_factory=list)

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        # Registry only matters for resolution, any default works for parsing
        parse_reference(v, "index.docker.io")
        return v

    @field_validator("pull_secrets")
    @classmethod
    def validate_pull_secrets(cls, v: List[str]) -> List[str]:
        for secret in v:
            validate_name_format(secret, "pull secret")
        return v


class PackageManifest(BaseModel):
    kind: Literal["Package"] = "Package"
    metadata: Metadata
    spec: PackageSpec

    def to_package(self) -> Package:
        return Package(
            name=self.metadata.name,
            source=self.spec.source,
            pull_policy=self.spec.pull_policy,
            activation_policy=self.spec.activation_policy,
            revision_history_limit=self.spec.revision_history_limit,
            pull_secrets=list(self.spec.pull_secrets),
            annotations=dict(self.metadata.annotations),
            labels=dict(self.metadata.labels),
        )


class ImageConfigSpec(BaseModel):
    """Rewrite and/or pull secret for image references under a prefix."""

    prefix: str = Field(..., min_length=1, description="Image reference prefix to match")
    rewrite_prefix: Optional[str] = None
    pull_secret: Optional[str] = None

    @model_validator(mode="after")
    def check_has_effect(self) -> "ImageConfigSpec":
        if not self.rewrite_prefix and not self.pull_secret:
            raise ValueError("at least one of rewrite_prefix or pull_secret is required")
        return self


class ImageConfigManifest(BaseModel):
    kind: Literal["ImageConfig"] = "ImageConfig"
    metadata: Metadata
    spec: ImageConfigSpec

    def to_image_config(self) -> ImageConfig:
        return ImageConfig(
            name=self.metadata.name,
            prefix=self.spec.prefix,
            rewrite_prefix=self.spec.rewrite_prefix,
            pull_secret=self.spec.pull_secret,
        )


Manifest = Union[PackageManifest, ImageConfigManifest]

MANIFEST_KINDS = {
    "Package": PackageManifest,
    "ImageConfig": ImageConfigManifest,
}


def parse_manifest(data: Any) -> Manifest:
    """
    Validate a decoded YAML/JSON document.

    Raises:
        ValueError: If the document is not a mapping, has an unknown kind,
            or fails validation (pydantic's ValidationError is a ValueError).
    """
    if not isinstance(data, dict):
        raise ValueError("manifest must be a mapping")
    kind = data.get("kind")
    model = MANIFEST_KINDS.get(kind)
    if model is None:
        raise ValueError(
            f"unknown kind {kind!r}, expected one of: {', '.join(MANIFEST_KINDS)}"
        )
    return model.model_validate(data)
