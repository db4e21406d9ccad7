"""
NicClusterPolicy Controller - Hosting loop for the State manager.

Similar to Kubernetes controllers, reconciles every NicClusterPolicy
periodically and whenever a watched object changes. Each pass runs the
State manager once and writes the aggregate outcome to the policy status.
"""

import asyncio
import copy
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from cluster import ClusterAPIError, ClusterClient
from config import ControllerConfig, StateConfig
from events import EventBus, EventType, WatchEvent
from policy import API_VERSION, KIND, policy_name
from state.base import Results, SyncStatus
from state.info_catalog import InfoCatalog, InfoType, StaticConfigProvider
from state.manager import StateManager

logger = logging.getLogger(__name__)


@dataclass
class ReconcileRecord:
    """Outcome of the last reconciliation of one policy."""

    name: str
    results: Results
    timestamp: str
    duration_seconds: float
    requeue_after: Optional[int] = None


def policy_status(results: Results) -> Dict[str, Any]:
    """Status sub-resource content for a policy."""
    return {
        "state": results.status.value,
        "appliedStates": [r.to_dict() for r in results.states_status],
    }


class Controller:
    """
    Reconciles NicClusterPolicy objects through the State manager.

    Different policies reconcile concurrently up to max_concurrent_reconciles;
    a policy never reconciles while a previous pass for it is still running.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        manager: StateManager,
        config: Optional[ControllerConfig] = None,
        state_config: Optional[StateConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.cluster = cluster
        self.manager = manager
        self.config = config or ControllerConfig()
        self.state_config = state_config or StateConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_reconciles)
        self.running = False
        self._event_bus = event_bus
        self._tasks: List[asyncio.Task] = []
        # Queued reconciliations, at most one waiting per policy
        self._pending: Set[str] = set()
        self._queued_tasks: Set[asyncio.Task] = set()

        # Per-policy locks, kept only while a pass holds or waits for them
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._requeue_at: Dict[str, float] = {}
        self._observed_generation: Dict[str, Optional[int]] = {}
        self.last_results: Dict[str, ReconcileRecord] = {}

    def build_info_catalog(self) -> InfoCatalog:
        """Information providers handed to every State."""
        catalog = InfoCatalog()
        catalog.add(
            InfoType.STATIC_CONFIG,
            StaticConfigProvider(
                cni_bin_directory=self.state_config.cni_bin_directory,
                cni_network_directory=self.state_config.cni_network_directory,
            ),
        )
        return catalog

    async def start(self):
        """Start the resync, requeue and event loops."""
        logger.info("Starting NicClusterPolicy Controller")
        self.running = True

        self._tasks = [
            asyncio.create_task(self._resync_loop()),
            asyncio.create_task(self._requeue_loop()),
        ]
        if self._event_bus:
            self._tasks.append(asyncio.create_task(self._event_loop()))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Controller loops cancelled")
        except Exception as e:
            logger.error(f"Controller error: {e}")
            raise

    async def stop(self):
        """Stop the controller loops."""
        logger.info("Stopping NicClusterPolicy Controller")
        self.running = False
        tasks, self._tasks = self._tasks + list(self._queued_tasks), []
        self._queued_tasks.clear()
        self._pending.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _resync_loop(self):
        """Periodically reconcile every policy in the cluster."""
        while self.running:
            try:
                policies = await self.cluster.list(API_VERSION, KIND)
                if policies:
                    logger.info(f"Resyncing {len(policies)} policies")
                    await asyncio.gather(
                        *(self.reconcile(p) for p in policies), return_exceptions=True
                    )
                await asyncio.sleep(self.config.resync_interval)
            except Exception as e:
                logger.error(f"Error in resync loop: {e}", exc_info=True)
                await asyncio.sleep(10)

    async def _requeue_loop(self):
        """Reconcile not-ready policies once their requeue delay expired."""
        while self.running:
            try:
                now = time.monotonic()
                due = [name for name, at in self._requeue_at.items() if at <= now]
                for name in due:
                    self._requeue_at.pop(name, None)
                    self.enqueue(name)
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"Error in requeue loop: {e}", exc_info=True)
                await asyncio.sleep(10)

    async def _event_loop(self):
        """Reconcile the owning policy whenever a watched object changes."""
        subscriber_id, subscription = await self._event_bus.subscribe()
        try:
            async for event in subscription:
                if not self.running:
                    break
                name = self.policy_for_event(event)
                if name:
                    self.enqueue(name)
        finally:
            await self._event_bus.unsubscribe(subscriber_id)

    def enqueue(self, name: str) -> Optional[asyncio.Task]:
        """
        Schedule a reconciliation of a policy in the background.

        Requests for a policy that already has a pass waiting to start are
        coalesced into that pass, which fetches the policy only once it runs.

        Returns:
            The scheduled task, or None when coalesced
        """
        if name in self._pending:
            logger.debug(f"Reconciliation of {name} already queued")
            return None
        self._pending.add(name)
        task = asyncio.create_task(self.trigger_reconciliation(name))
        self._queued_tasks.add(task)
        task.add_done_callback(self._queued_task_done)
        return task

    def _queued_task_done(self, task: asyncio.Task) -> None:
        self._queued_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Queued reconciliation failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    @asynccontextmanager
    async def _policy_lock(self, name: str):
        """Hold the per-policy lock; the lock is dropped once nobody uses it."""
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if self._lock_users[name] == 0:
                del self._lock_users[name]
                del self._locks[name]

    def policy_for_event(self, event: WatchEvent) -> Optional[str]:
        """
        Map a watch event to the name of the policy to reconcile.

        Policy events only count when the spec generation changed, so the
        controller's own status writes do not retrigger it.
        """
        if event.kind == KIND and event.api_version == API_VERSION:
            if event.event_type == EventType.DELETED:
                self.forget(event.name)
                return None
            if (
                event.name in self._observed_generation
                and self._observed_generation[event.name] == event.generation
            ):
                return None
            return event.name

        owner = event.controller_owner()
        if owner and owner.get("kind") == KIND:
            return owner.get("name")
        return None

    def forget(self, name: str) -> None:
        """Drop everything remembered about a deleted policy."""
        self._requeue_at.pop(name, None)
        self._observed_generation.pop(name, None)
        self.last_results.pop(name, None)

    async def trigger_reconciliation(self, name: str) -> Optional[Results]:
        """Fetch a policy by name and reconcile it."""
        async with self._policy_lock(name):
            # From here on, new requests need another pass
            self._pending.discard(name)
            try:
                policy = await self.cluster.get(API_VERSION, KIND, name)
            except ClusterAPIError as e:
                logger.warning(f"Failed to fetch policy {name}: {e}")
                self._requeue_at[name] = (
                    time.monotonic() + self.config.not_ready_requeue_delay
                )
                return None
            if policy is None:
                logger.info(f"Policy {name} no longer exists")
                self.forget(name)
                return None
            return await self._reconcile_locked(name, policy)

    async def reconcile(self, policy: Dict[str, Any]) -> Results:
        """
        Run one reconciliation pass for a policy.

        Returns:
            The State manager's Results for this pass
        """
        name = policy_name(policy)
        async with self._policy_lock(name):
            return await self._reconcile_locked(name, policy)

    async def _reconcile_locked(self, name: str, policy: Dict[str, Any]) -> Results:
        async with self.semaphore:
            start_time = time.monotonic()
            try:
                results = await self.manager.sync_state(
                    policy, self.build_info_catalog()
                )
            except Exception as e:
                logger.error(f"Error reconciling {name}: {e}", exc_info=True)
                results = Results(status=SyncStatus.NOT_READY)

            await self._update_policy_status(policy, results)
            self._observed_generation[name] = (policy.get("metadata") or {}).get(
                "generation"
            )

            requeue_after = None
            if results.status == SyncStatus.READY:
                self._requeue_at.pop(name, None)
                logger.info(f"Policy {name} is ready")
            else:
                requeue_after = self.config.not_ready_requeue_delay
                self._requeue_at[name] = time.monotonic() + requeue_after
                logger.info(f"Policy {name} not ready, requeue in {requeue_after}s")

            self.last_results[name] = ReconcileRecord(
                name=name,
                results=results,
                timestamp=datetime.now(timezone.utc).isoformat(),
                duration_seconds=time.monotonic() - start_time,
                requeue_after=requeue_after,
            )
            return results

    async def _update_policy_status(
        self, policy: Dict[str, Any], results: Results
    ) -> None:
        status = policy_status(results)
        if policy.get("status") == status:
            return
        body = copy.deepcopy(policy)
        body["status"] = status
        try:
            await self.cluster.update_status(body)
        except ClusterAPIError as e:
            logger.warning(f"Failed to update status of {policy_name(policy)}: {e}")

    def list_records(self) -> List[ReconcileRecord]:
        return [self.last_results[name] for name in sorted(self.last_results)]
