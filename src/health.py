"""
Package status aggregation.

Folds the current revision's health and the activation outcome into the
package status. All status changes of a pass are computed here, so the
reconciler writes status exactly once.
"""

from typing import Optional

from conditions import Condition, ConditionStatus, ConditionType, healthy, unhealthy
from imageconfig import ImageResolution
from models import Package, PackageRevision


def package_health(revision: PackageRevision) -> Condition:
    """Map a revision's health condition to the package's health condition."""
    health = revision.conditions.get(ConditionType.REVISION_HEALTHY)
    status = health.status if health else ConditionStatus.UNKNOWN

    if status == ConditionStatus.TRUE:
        return healthy()
    if status == ConditionStatus.UNKNOWN:
        return unhealthy().with_message(
            f'Package revision health is "{status.value}"'
        )
    return unhealthy().with_message(
        f'Package revision health is "{status.value}" with message: {health.message}'
    )


def aggregate_status(
    package: Package,
    current: PackageRevision,
    activation: Condition,
    resolution: Optional[ImageResolution] = None,
) -> Package:
    """
    Compute the package status for this pass.

    Returns:
        A copy of ``package`` carrying the new status.
    """
    result = package.deepcopy()
    result.conditions.set(package_health(current), activation)
    result.current_revision = current.name
    if resolution is None:
        result.applied_image_config_refs = []
        result.resolved_source = None
    else:
        result.applied_image_config_refs = list(resolution.applied_refs)
        result.resolved_source = resolution.resolved_source
    return result
