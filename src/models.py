"""
Package Model - Packages, package revisions and image configs.

A Package is the desired state a user declares. Each distinct content
identity resolved for a package is materialized as an immutable
PackageRevision owned by it.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from conditions import ConditionSet, ConditionStatus, ConditionType

# Label linking a revision back to its package, used for listing.
LABEL_OWNER = "owner"

# Annotation that pauses reconciliation of a package when set to "true".
ANNOTATION_PAUSED = "pkg.no8s.io/paused"


class PullPolicy(Enum):
    """When the package source is re-resolved."""

    DEFAULT = "Default"
    ALWAYS = "Always"


class ActivationPolicy(Enum):
    """Whether a newly resolved revision becomes active on its own."""

    MANUAL = "Manual"
    AUTOMATIC = "Automatic"


class DesiredState(Enum):
    """Desired state of a package revision."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class ImageConfigReason(Enum):
    """Why an image config was applied to a package."""

    REWRITE = "Rewrite"
    PULL_SECRET = "PullSecret"


@dataclass(frozen=True)
class ImageConfigRef:
    """Reference to an image config that was applied to a package."""

    name: str
    reason: ImageConfigReason

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "reason": self.reason.value}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "ImageConfigRef":
        return cls(name=data["name"], reason=ImageConfigReason(data["reason"]))


@dataclass
class ImageConfig:
    """
    Rewrite and pull secret policy for image references.

    A config matches every reference starting with ``prefix``. When several
    configs match, the longest prefix wins.
    """

    name: str
    prefix: str
    rewrite_prefix: Optional[str] = None
    pull_secret: Optional[str] = None

    def matches(self, reference: str) -> bool:
        return reference.startswith(self.prefix)

    def rewrite(self, reference: str) -> str:
        if self.rewrite_prefix is None:
            return reference
        return self.rewrite_prefix + reference[len(self.prefix) :]


@dataclass
class Package:
    """Desired state of a package, plus the status written by the reconciler."""

    name: str
    source: str
    pull_policy: PullPolicy = PullPolicy.DEFAULT
    activation_policy: Optional[ActivationPolicy] = None
    revision_history_limit: Optional[int] = None
    pull_secrets: List[str] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    # Status
    conditions: ConditionSet = field(default_factory=ConditionSet)
    current_revision: Optional[str] = None
    applied_image_config_refs: List[ImageConfigRef] = field(default_factory=list)
    resolved_source: Optional[str] = None

    @property
    def paused(self) -> bool:
        return self.annotations.get(ANNOTATION_PAUSED, "").lower() == "true"

    @property
    def automatic_activation(self) -> bool:
        """Packages without an activation policy activate automatically."""
        return self.activation_policy in (None, ActivationPolicy.AUTOMATIC)

    def deepcopy(self) -> "Package":
        return copy.deepcopy(self)

    def status_equal(self, other: "Package") -> bool:
        """Compare status fields, ignoring condition transition times."""
        return (
            self.conditions.equal(other.conditions)
            and self.current_revision == other.current_revision
            and self.applied_image_config_refs == other.applied_image_config_refs
            and self.resolved_source == other.resolved_source
        )

    def status_dict(self) -> Dict[str, Any]:
        return {
            "conditions": self.conditions.to_list(),
            "current_revision": self.current_revision,
            "applied_image_config_refs": [
                ref.to_dict() for ref in self.applied_image_config_refs
            ],
            "resolved_source": self.resolved_source,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "pull_policy": self.pull_policy.value,
            "activation_policy": (
                self.activation_policy.value if self.activation_policy else None
            ),
            "revision_history_limit": self.revision_history_limit,
            "pull_secrets": list(self.pull_secrets),
            "annotations": dict(self.annotations),
            "labels": dict(self.labels),
            "status": self.status_dict(),
        }


@dataclass
class PackageRevision:
    """
    One resolved content identity of a package.

    Only ``desired_state`` is changed by the reconciler after creation.
    ``package_name`` is the owner back-reference; deleting the package
    deletes its revisions.
    """

    name: str
    package_name: str
    revision: int
    desired_state: DesiredState = DesiredState.INACTIVE
    source: str = ""
    pull_policy: PullPolicy = PullPolicy.DEFAULT
    labels: Dict[str, str] = field(default_factory=dict)
    conditions: ConditionSet = field(default_factory=ConditionSet)

    @property
    def is_active(self) -> bool:
        return self.desired_state == DesiredState.ACTIVE

    @property
    def health(self) -> ConditionStatus:
        return self.conditions.status_of(ConditionType.REVISION_HEALTHY)

    def deepcopy(self) -> "PackageRevision":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "package_name": self.package_name,
            "revision": self.revision,
            "desired_state": self.desired_state.value,
            "source": self.source,
            "pull_policy": self.pull_policy.value,
            "labels": dict(self.labels),
            "conditions": self.conditions.to_list(),
        }
