"""
Revision Garbage Collection - Enforces the revision history limit.

The current revision and any active revision are never collected. Of the
remaining revisions the newest ``limit`` by ordinal are kept.
"""

import logging
from collections import Counter
from typing import List, Optional

from errors import NotFoundError, RevisionIntegrityError
from models import PackageRevision

logger = logging.getLogger(__name__)


def select_for_deletion(
    revisions: List[PackageRevision],
    limit: Optional[int],
    current: str,
) -> List[PackageRevision]:
    """
    Select the revisions that fall outside the retention window.

    Args:
        revisions: All revisions of one package.
        limit: Number of non-current revisions to keep. None keeps all.
        current: Name of the current revision.

    Returns:
        Revisions to delete, oldest last.

    Raises:
        RevisionIntegrityError: If two revisions share an ordinal.
    """
    counts = Counter(r.revision for r in revisions)
    duplicates = sorted(ordinal for ordinal, n in counts.items() if n > 1)
    if duplicates:
        raise RevisionIntegrityError(
            f"Revisions share ordinals {duplicates}: "
            f"{sorted(r.name for r in revisions if r.revision in duplicates)}"
        )

    if limit is None:
        return []

    others = sorted(
        (r for r in revisions if r.name != current and not r.is_active),
        key=lambda r: r.revision,
        reverse=True,
    )
    return others[max(limit, 0) :]


async def collect_garbage(
    store,
    revisions: List[PackageRevision],
    limit: Optional[int],
    current: str,
) -> List[str]:
    """
    Delete revisions beyond the retention window.

    Every selected revision is attempted. Revisions already deleted are
    treated as collected.

    Returns:
        Names of the revisions deleted.

    Raises:
        RevisionIntegrityError: If two revisions share an ordinal.
        Exception: The first deletion failure, after all deletions ran.
    """
    deleted: List[str] = []
    first_error: Optional[Exception] = None

    for revision in select_for_deletion(revisions, limit, current):
        try:
            await store.delete_revision(revision.name)
        except NotFoundError:
            logger.debug(f"Revision {revision.name} already deleted")
        except Exception as e:
            logger.error(f"Failed to delete revision {revision.name}: {e}")
            if first_error is None:
                first_error = e
            continue
        deleted.append(revision.name)
        logger.info(
            f"Garbage collected revision {revision.name} "
            f"(revision {revision.revision}) of package {revision.package_name}"
        )

    if first_error is not None:
        raise first_error
    return deleted
