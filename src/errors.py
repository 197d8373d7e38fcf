"""
Errors raised by the package manager.

Every failure of a reconciliation pass surfaces as a ReconcileError carrying
the step that failed, so logs can classify failures by stage without
inspecting causes.
"""

from enum import Enum
from typing import Optional


class NotFoundError(Exception):
    """Raised by the store when an object does not exist."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name!r} not found")


class RevisionIntegrityError(Exception):
    """Raised when two revisions of one package share an ordinal."""


class ReconcileStep(Enum):
    """Reconciliation steps that can fail."""

    GET_PACKAGE = "get_package"
    LIST_REVISIONS = "list_revisions"
    REWRITE_IMAGE = "rewrite_image"
    GET_PULL_CONFIG = "get_pull_config"
    RESOLVE_REVISION = "resolve_revision"
    APPLY_REVISION = "apply_revision"
    UPDATE_STATUS = "update_status"
    GC_REVISIONS = "gc_revisions"


ERROR_MESSAGES = {
    ReconcileStep.GET_PACKAGE: "cannot get package",
    ReconcileStep.LIST_REVISIONS: "cannot list package revisions",
    ReconcileStep.REWRITE_IMAGE: "cannot rewrite image path using config",
    ReconcileStep.GET_PULL_CONFIG: "cannot get image pull secret from config",
    ReconcileStep.RESOLVE_REVISION: "cannot resolve package revision",
    ReconcileStep.APPLY_REVISION: "cannot apply package revision",
    ReconcileStep.UPDATE_STATUS: "cannot update package status",
    ReconcileStep.GC_REVISIONS: "cannot garbage collect old package revision",
}


class ReconcileError(Exception):
    """
    A reconciliation pass failed at a given step.

    The string form is ``"<step message>: <cause>"``.
    """

    def __init__(self, step: ReconcileStep, cause: Optional[BaseException] = None):
        self.step = step
        self.message = ERROR_MESSAGES[step]
        self.cause = cause
        if cause is None:
            super().__init__(self.message)
        else:
            super().__init__(f"{self.message}: {cause}")

    @property
    def transient(self) -> bool:
        """Whether the failure came from infrastructure rather than resolution."""
        return self.step not in (
            ReconcileStep.REWRITE_IMAGE,
            ReconcileStep.GET_PULL_CONFIG,
            ReconcileStep.RESOLVE_REVISION,
        )
