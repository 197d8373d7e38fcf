"""
Activation Selector - Decides which revision of a package is active.

At most one revision of a package is active after a pass. With automatic
activation the revision matching the package's current source is always the
active one; with manual activation the user chooses.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from conditions import Condition, active, inactive
from models import DesiredState, Package, PackageRevision

INACTIVE_MESSAGE = "Package is inactive"


@dataclass
class ActivationDecision:
    """
    Result of activation selection.

    ``changed`` holds copies of the revisions whose desired state must be
    written, including ``current`` when it is new or changed.
    """

    current: PackageRevision
    condition: Condition
    changed: List[PackageRevision] = field(default_factory=list)


def _keeper(
    target: PackageRevision, revisions: List[PackageRevision]
) -> Optional[PackageRevision]:
    """Pick the revision that stays active under manual activation."""
    if target.is_active:
        return target
    candidates = [r for r in revisions if r.is_active and r.name != target.name]
    if not candidates:
        return None
    return max(candidates, key=lambda r: r.revision)


def select_activation(
    package: Package,
    target: PackageRevision,
    revisions: List[PackageRevision],
    is_new: bool = False,
) -> ActivationDecision:
    """
    Decide the desired state of every revision of a package.

    Args:
        package: The package being reconciled.
        target: The revision matching the package's resolved identity.
        revisions: All other existing revisions of the package. The target
            may or may not be included.
        is_new: Whether ``target`` does not exist in the store yet.

    Returns:
        An ActivationDecision. Input revisions are not modified.
    """
    current = target.deepcopy()
    others = [r for r in revisions if r.name != target.name]

    if package.automatic_activation:
        current.desired_state = DesiredState.ACTIVE
        keep = current
    else:
        keep = _keeper(current, others)

    changed: List[PackageRevision] = []
    if is_new or current.desired_state != target.desired_state:
        changed.append(current)

    for revision in others:
        if revision.is_active and (keep is None or revision.name != keep.name):
            updated = revision.deepcopy()
            updated.desired_state = DesiredState.INACTIVE
            changed.append(updated)

    if current.is_active:
        condition = active()
    else:
        condition = inactive().with_message(INACTIVE_MESSAGE)

    return ActivationDecision(current=current, condition=condition, changed=changed)
