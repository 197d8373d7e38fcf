"""
Package Controller - Schedules reconciliation passes.

Similar to a Kubernetes controller work queue: every package is resynced
periodically, passes can ask to be requeued, and failed passes are retried
with exponential backoff. At most one pass per package runs at a time, and
passes for different packages run concurrently up to a limit.
"""

import asyncio
import logging
import random
import time
from typing import Dict, Optional, Set

from config import ControllerConfig
from errors import ReconcileError
from reconciler import Reconciler, ReconcileResult

logger = logging.getLogger(__name__)


def backoff_delay(
    retry_count: int,
    base_delay: float,
    max_delay: float,
    jitter_factor: float,
) -> float:
    """Exponential backoff capped at ``max_delay`` with ±jitter."""
    delay = min(base_delay * (2 ** min(retry_count, 10)), max_delay)
    return delay * (1 + random.uniform(-jitter_factor, jitter_factor))


class Controller:
    """
    Runs the package reconciler over all packages in the store.

    Keeps a schedule of when each package is next due. A full resync every
    ``reconcile_interval`` makes every package due; requeue results and
    failures reschedule individual packages.
    """

    def __init__(
        self,
        store,
        reconciler: Reconciler,
        config: Optional[ControllerConfig] = None,
        tick_interval: float = 1.0,
    ):
        self.store = store
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.tick_interval = tick_interval
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_reconciles)
        self.running = False

        # Package name -> monotonic time the package is next due
        self._due: Dict[str, float] = {}
        self._retries: Dict[str, int] = {}
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._last_resync: Optional[float] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start the reconciliation loop. Returns when stopped."""
        logger.info("Starting package controller")
        self.running = True
        self._shutdown_event.clear()

        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self.tick_interval
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self):
        """Stop the loop and cancel in-flight passes."""
        logger.info("Stopping package controller")
        self.running = False
        self._shutdown_event.set()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def run_once(self) -> None:
        """Resync if due, then dispatch every package whose time has come."""
        now = time.monotonic()
        if (
            self._last_resync is None
            or now - self._last_resync >= self.config.reconcile_interval
        ):
            await self.resync(now)
            self._last_resync = now

        for name in self._pop_due(now):
            self._in_flight.add(name)
            task = asyncio.create_task(self.reconcile_package(name))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def resync(self, now: Optional[float] = None) -> None:
        """Make every package in the store due at ``now``."""
        names = await self.store.list_package_names()
        if now is None:
            now = time.monotonic()
        for name in names:
            self._due[name] = min(self._due.get(name, now), now)
        logger.debug(f"Resynced {len(names)} packages")

    def trigger_reconciliation(self, name: str) -> None:
        """Make a package due immediately."""
        logger.debug(f"Triggering reconciliation for package {name}")
        self._due[name] = time.monotonic()

    def _pop_due(self, now: float) -> Set[str]:
        """Remove and return due packages that have no pass in flight."""
        due = {
            name
            for name, at in self._due.items()
            if at <= now and name not in self._in_flight
        }
        for name in due:
            del self._due[name]
        return due

    async def reconcile_package(self, name: str) -> None:
        """Run one bounded pass for a package and schedule the next one."""
        async with self.semaphore:
            start_time = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    self.reconciler.reconcile(name),
                    timeout=self.config.reconcile_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    f"Reconciliation of package {name} timed out after "
                    f"{self.config.reconcile_timeout}s"
                )
                self._schedule_retry(name)
            except ReconcileError as e:
                # Resolution failures are already surfaced on the package status
                log = logger.error if e.transient else logger.warning
                log(f"Failed to reconcile package {name} [{e.step.value}]: {e}")
                self._schedule_retry(name)
            except Exception as e:
                logger.error(f"Error reconciling package {name}: {e}", exc_info=True)
                self._schedule_retry(name)
            else:
                duration = time.monotonic() - start_time
                logger.debug(f"Reconciled package {name} in {duration:.2f}s")
                self._retries.pop(name, None)
                self._schedule_result(name, result)
            finally:
                self._in_flight.discard(name)

    def _schedule_result(self, name: str, result: ReconcileResult) -> None:
        if result.requeue_after is not None:
            self._due[name] = time.monotonic() + result.requeue_after
        elif result.requeue:
            self.trigger_reconciliation(name)

    def _schedule_retry(self, name: str) -> None:
        retry_count = self._retries.get(name, 0)
        delay = backoff_delay(
            retry_count,
            self.config.backoff_base_delay,
            self.config.backoff_max_delay,
            self.config.backoff_jitter_factor,
        )
        self._retries[name] = retry_count + 1
        self._due[name] = time.monotonic() + delay
        logger.info(f"Retrying package {name} in {delay:.1f}s (attempt {retry_count + 1})")
