"""
Package Reconciler - Converges a package toward its revisions.

One call to ``Reconciler.reconcile()`` is one reconciliation pass:

    get package -> pause gate -> list revisions -> resolve image config
    -> resolve identity -> materialize revision -> select activation
    -> aggregate status -> patch status -> garbage collect

Passes are idempotent and keep no state between calls, so a failed pass is
retried by simply running it again.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from activation import select_activation
from conditions import (
    REASON_RECONCILE_PAUSED,
    ConditionType,
    reconcile_paused,
    unpacking,
)
from errors import NotFoundError, ReconcileError, ReconcileStep
from garbage_collector import collect_garbage
from health import aggregate_status
from imageconfig import ConfigStore, ImageResolution, resolve_image
from models import LABEL_OWNER, DesiredState, Package, PackageRevision, PullPolicy
from naming import revision_name
from revisioner import Revisioner

logger = logging.getLogger(__name__)

RECONCILE_PAUSED_MESSAGE = "Reconciliation is paused via the pause annotation"

DEFAULT_PULL_INTERVAL = 60
DEFAULT_UNPACK_WAIT = 30


@dataclass
class ReconcileResult:
    """What the caller should do after a successful pass."""

    requeue: bool = False
    requeue_after: Optional[float] = None


class Reconciler:
    """Reconciles packages into package revisions."""

    def __init__(
        self,
        store,
        revisioner: Revisioner,
        config_store: ConfigStore,
        pull_interval: float = DEFAULT_PULL_INTERVAL,
        unpack_wait: float = DEFAULT_UNPACK_WAIT,
    ):
        self.store = store
        self.revisioner = revisioner
        self.config_store = config_store
        self.pull_interval = pull_interval
        self.unpack_wait = unpack_wait

    async def reconcile(self, name: str) -> ReconcileResult:
        """
        Run one reconciliation pass for a package.

        Args:
            name: The package name.

        Returns:
            A ReconcileResult describing whether to requeue.

        Raises:
            ReconcileError: If any step of the pass fails.
        """
        try:
            package = await self.store.get_package(name)
        except NotFoundError:
            logger.debug(f"Package {name} not found, nothing to reconcile")
            return ReconcileResult()
        except Exception as e:
            raise ReconcileError(ReconcileStep.GET_PACKAGE, e) from e

        if package.paused:
            updated = package.deepcopy()
            updated.conditions.set(
                reconcile_paused().with_message(RECONCILE_PAUSED_MESSAGE)
            )
            await self._update_status(package, updated)
            logger.debug(f"Reconciliation of package {name} is paused")
            return ReconcileResult()

        synced = package.conditions.get(ConditionType.SYNCED)
        if synced is not None and synced.reason == REASON_RECONCILE_PAUSED:
            # Persist the removal of all conditions and start over.
            updated = package.deepcopy()
            updated.conditions.clear()
            await self._update_status(package, updated)
            logger.info(f"Resumed reconciliation of package {name}")
            return ReconcileResult(requeue=True)

        try:
            revisions = await self.store.list_revisions(name)
        except NotFoundError:
            revisions = []
        except Exception as e:
            raise ReconcileError(ReconcileStep.LIST_REVISIONS, e) from e

        try:
            resolution = await resolve_image(self.config_store, package)
            identity = await self._resolve_identity(package, resolution)
        except ReconcileError as e:
            await self._record_unpacking(package, e)
            raise

        if not identity:
            updated = package.deepcopy()
            updated.conditions.set(unpacking())
            await self._update_status(package, updated)
            return ReconcileResult(requeue_after=self.unpack_wait)

        target, is_new = self._materialize(package, identity, resolution, revisions)
        decision = select_activation(package, target, revisions, is_new=is_new)

        for revision in decision.changed:
            try:
                await self.store.apply_revision(revision)
            except Exception as e:
                raise ReconcileError(ReconcileStep.APPLY_REVISION, e) from e
            logger.info(
                f"Applied revision {revision.name} (revision {revision.revision}) "
                f"of package {name}: {revision.desired_state.value}"
            )

        updated = aggregate_status(
            package, decision.current, decision.condition, resolution
        )
        await self._update_status(package, updated)

        try:
            await collect_garbage(
                self.store,
                self._revisions_after(revisions, decision.changed),
                package.revision_history_limit,
                decision.current.name,
            )
        except Exception as e:
            raise ReconcileError(ReconcileStep.GC_REVISIONS, e) from e

        if package.pull_policy == PullPolicy.ALWAYS:
            return ReconcileResult(requeue_after=self.pull_interval)
        return ReconcileResult()

    async def _resolve_identity(
        self, package: Package, resolution: ImageResolution
    ) -> str:
        try:
            return await self.revisioner.resolve_identity(
                package,
                source=resolution.source,
                pull_secrets=resolution.pull_secrets,
            )
        except Exception as e:
            raise ReconcileError(ReconcileStep.RESOLVE_REVISION, e) from e

    def _materialize(
        self,
        package: Package,
        identity: str,
        resolution: ImageResolution,
        revisions: List[PackageRevision],
    ) -> Tuple[PackageRevision, bool]:
        """Return the revision for ``identity`` and whether it is new."""
        name = revision_name(package.name, identity)
        for revision in revisions:
            if revision.name == name:
                return revision, False

        ordinal = max((r.revision for r in revisions), default=0) + 1
        logger.info(
            f"New revision {name} (revision {ordinal}) for package {package.name}"
        )
        return (
            PackageRevision(
                name=name,
                package_name=package.name,
                revision=ordinal,
                desired_state=DesiredState.INACTIVE,
                source=resolution.source,
                pull_policy=package.pull_policy,
                labels={LABEL_OWNER: package.name},
            ),
            True,
        )

    def _revisions_after(
        self, revisions: List[PackageRevision], changed: List[PackageRevision]
    ) -> List[PackageRevision]:
        """The revision set as it is in the store after this pass's writes."""
        by_name: Dict[str, PackageRevision] = {r.name: r for r in revisions}
        for revision in changed:
            by_name[revision.name] = revision
        return list(by_name.values())

    async def _update_status(self, original: Package, updated: Package) -> None:
        """Patch the package status unless nothing changed."""
        if updated.status_equal(original):
            return
        try:
            await self.store.patch_package_status(updated)
        except Exception as e:
            raise ReconcileError(ReconcileStep.UPDATE_STATUS, e) from e

    async def _record_unpacking(self, package: Package, error: ReconcileError) -> None:
        """Surface a resolution failure on the package status."""
        updated = package.deepcopy()
        updated.conditions.set(unpacking().with_message(str(error)))
        try:
            await self._update_status(package, updated)
        except ReconcileError as e:
            logger.warning(
                f"Could not record resolution failure on package {package.name}: {e}"
            )
