"""
State Skeleton - Shared convergence algorithm held by every State.

Given a Desired Set of rendered objects, the skeleton:

1. Creates missing objects and merges desired fields onto existing ones,
   skipping the write when the live object already matches.
2. Deletes objects previously created for the same State and custom resource
   that are no longer desired. Stale objects are recognized solely from the
   tracking labels on live objects, never from in-memory history.
3. Evaluates the live status of every desired object.

Object-level failures are collected rather than aborting the batch.
"""

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from cluster import ClusterAPIError, ClusterClient, KindNotServedError, describe
from render import RenderError, Renderer, TemplatingData
from state.base import KindDescriptor, StateSyncError, SyncStatus
from state.readiness import ReadinessCheck, is_object_ready

logger = logging.getLogger(__name__)

STATE_LABEL = "network-operator.io/state"
OWNER_UID_LABEL = "network-operator.io/owner-uid"

# Kinds the manifests of built-in States are made of
DEFAULT_TRACKED_KINDS: Tuple[KindDescriptor, ...] = (
    KindDescriptor("v1", "ServiceAccount"),
    KindDescriptor("v1", "ConfigMap"),
    KindDescriptor("rbac.authorization.k8s.io/v1", "Role"),
    KindDescriptor("rbac.authorization.k8s.io/v1", "RoleBinding"),
    KindDescriptor("rbac.authorization.k8s.io/v1", "ClusterRole"),
    KindDescriptor("rbac.authorization.k8s.io/v1", "ClusterRoleBinding"),
    KindDescriptor("apps/v1", "DaemonSet"),
    KindDescriptor("apps/v1", "Deployment"),
)

# Hook applied to each stamped desired object right before it is written
ObjectHook = Callable[[Dict[str, Any]], None]

Identity = Tuple[str, str, str, str]

SyncOutcome = Tuple[SyncStatus, Optional[Exception]]


def identity(obj: Dict[str, Any]) -> Identity:
    """Version-independent identity: (group, kind, namespace, name)."""
    metadata = obj.get("metadata") or {}
    group = obj.get("apiVersion", "").rpartition("/")[0]
    return (
        group,
        obj.get("kind", ""),
        metadata.get("namespace") or "",
        metadata.get("name", ""),
    )


def is_subset(desired: Any, live: Any) -> bool:
    """
    Check whether every field of desired is present and equal in live.

    Mappings are compared as subsets, lists element-wise with equal length,
    everything else by equality.
    """
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(k in live and is_subset(v, live[k]) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(is_subset(d, l) for d, l in zip(desired, live))
    return desired == live


def merge_objects(live: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge desired fields onto a copy of the live object.

    Mappings merge recursively, lists and scalars are replaced. The live
    status and server-managed metadata are kept.
    """
    merged = copy.deepcopy(live)

    def _merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                _merge(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    _merge(merged, {k: v for k, v in desired.items() if k != "status"})
    return merged


def status_for_errors(errors: Iterable[Exception]) -> SyncStatus:
    """NOT_READY when every error is expected to self-resolve, else ERROR."""
    for error in errors:
        if not (isinstance(error, ClusterAPIError) and error.transient):
            return SyncStatus.ERROR
    return SyncStatus.NOT_READY


class StateSkeleton:
    """
    Convergence operations shared by all States.

    Each State holds one skeleton and supplies its renderer, the kinds it
    tracks and optionally a readiness check.
    """

    def __init__(
        self,
        name: str,
        description: str,
        client: ClusterClient,
        renderer: Renderer,
        tracked_kinds: Optional[Iterable[KindDescriptor]] = None,
        readiness_check: ReadinessCheck = is_object_ready,
    ):
        self.name = name
        self.description = description
        self.client = client
        self.renderer = renderer
        self.readiness_check = readiness_check
        kinds = list(DEFAULT_TRACKED_KINDS)
        for kind in tracked_kinds or []:
            if kind not in kinds:
                kinds.append(kind)
        self.tracked_kinds = kinds

    def untracked_kinds(self, objs: List[Dict[str, Any]]) -> List[str]:
        """
        Kinds in objs that stale cleanup would never list.

        Objects of such kinds could not be removed once they leave the
        Desired Set, so they must never be written.
        """
        tracked = {(k.api_version.rpartition("/")[0], k.kind) for k in self.tracked_kinds}
        untracked: List[str] = []
        for obj in objs:
            group, kind = identity(obj)[:2]
            if (group, kind) not in tracked and kind not in untracked:
                untracked.append(kind)
        return untracked

    def render(self, data: TemplatingData) -> List[Dict[str, Any]]:
        """Render this State's manifests. Raises RenderError."""
        objs = self.renderer.render_objects(data)
        logger.debug(f"State {self.name}: rendered {[describe(o) for o in objs]}")
        return objs

    def tracking_labels(self, custom_resource: Dict[str, Any]) -> Dict[str, str]:
        labels = {STATE_LABEL: self.name}
        uid = (custom_resource.get("metadata") or {}).get("uid")
        if uid:
            labels[OWNER_UID_LABEL] = uid
        return labels

    def label_selector(self, custom_resource: Dict[str, Any]) -> str:
        return ",".join(
            f"{k}={v}" for k, v in self.tracking_labels(custom_resource).items()
        )

    def stamp(
        self, obj: Dict[str, Any], custom_resource: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Return a copy of obj carrying tracking labels and an owner reference.

        The owner reference is only added when the custom resource has a uid.
        """
        stamped = copy.deepcopy(obj)
        metadata = stamped.setdefault("metadata", {})
        labels = metadata.get("labels") or {}
        labels.update(self.tracking_labels(custom_resource))
        metadata["labels"] = labels

        cr_meta = custom_resource.get("metadata") or {}
        if cr_meta.get("uid"):
            metadata["ownerReferences"] = [
                {
                    "apiVersion": custom_resource.get("apiVersion"),
                    "kind": custom_resource.get("kind"),
                    "name": cr_meta.get("name"),
                    "uid": cr_meta["uid"],
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ]
        return stamped

    async def create_or_update_objects(
        self,
        objs: List[Dict[str, Any]],
        custom_resource: Dict[str, Any],
        hook: Optional[ObjectHook] = None,
    ) -> List[Exception]:
        """
        Create absent objects and update drifted ones.

        Args:
            objs: The Desired Set, in render order
            custom_resource: Owner of the objects
            hook: Optional State-specific mutation applied before each write

        Returns:
            Errors for the objects that failed; empty when all succeeded
        """
        errors: List[Exception] = []
        for obj in objs:
            desired = self.stamp(obj, custom_resource)
            if hook is not None:
                hook(desired)
            api_version, kind = desired["apiVersion"], desired["kind"]
            metadata = desired["metadata"]
            try:
                live = await self.client.get(
                    api_version, kind, metadata.get("name"), metadata.get("namespace")
                )
                if live is None:
                    await self.client.create(desired)
                    logger.info(f"State {self.name}: created {describe(desired)}")
                elif is_subset(desired, live):
                    logger.debug(f"State {self.name}: {describe(desired)} unchanged")
                else:
                    await self.client.update(merge_objects(live, desired))
                    logger.info(f"State {self.name}: updated {describe(desired)}")
            except ClusterAPIError as e:
                logger.warning(
                    f"State {self.name}: failed to apply {describe(desired)}: {e}"
                )
                errors.append(e)
        return errors

    async def handle_stale_objects(
        self, objs: List[Dict[str, Any]], custom_resource: Dict[str, Any]
    ) -> bool:
        """
        Delete tracked objects that are not in the Desired Set.

        Args:
            objs: The current Desired Set (empty when the State is disabled)
            custom_resource: The owning custom resource

        Returns:
            True if stale objects were found, meaning removal is still pending

        Raises:
            StateSyncError: If listing or deleting stale objects failed
        """
        desired_ids: Set[Identity] = {identity(o) for o in objs}
        selector = self.label_selector(custom_resource)
        pending = False
        errors: List[Exception] = []
        for kind in self.tracked_kinds:
            try:
                live_objs = await self.client.list(
                    kind.api_version, kind.kind, label_selector=selector
                )
            except KindNotServedError:
                logger.debug(f"State {self.name}: {kind} not served, skipping")
                continue
            except ClusterAPIError as e:
                errors.append(e)
                continue

            for live in live_objs:
                if identity(live) in desired_ids:
                    continue
                pending = True
                metadata = live.get("metadata") or {}
                if metadata.get("deletionTimestamp"):
                    logger.debug(
                        f"State {self.name}: {describe(live)} is still terminating"
                    )
                    continue
                try:
                    await self.client.delete(
                        live.get("apiVersion", kind.api_version),
                        live.get("kind", kind.kind),
                        metadata.get("name"),
                        metadata.get("namespace"),
                    )
                    logger.info(f"State {self.name}: deleted stale {describe(live)}")
                except ClusterAPIError as e:
                    errors.append(e)

        if errors:
            raise StateSyncError("failed to handle stale objects", errors)
        return pending

    async def get_sync_status(self, objs: List[Dict[str, Any]]) -> SyncOutcome:
        """
        Evaluate the live status of every desired object.

        Returns:
            READY when all objects converged, NOT_READY otherwise, ERROR with
            the cause if an object vanished or could not be read
        """
        ready = True
        for obj in objs:
            metadata = obj.get("metadata") or {}
            try:
                live = await self.client.get(
                    obj["apiVersion"],
                    obj["kind"],
                    metadata.get("name"),
                    metadata.get("namespace"),
                )
            except ClusterAPIError as e:
                return SyncStatus.ERROR, e
            if live is None:
                return SyncStatus.ERROR, ClusterAPIError(
                    f"{describe(obj)} not found while reading status",
                    status=404,
                    transient=False,
                )
            obj_ready, reason = self.readiness_check(live)
            if not obj_ready:
                logger.info(f"State {self.name}: {describe(obj)} not ready: {reason}")
                ready = False
        return (SyncStatus.READY if ready else SyncStatus.NOT_READY), None

    async def sync_objects(
        self,
        objs: List[Dict[str, Any]],
        custom_resource: Dict[str, Any],
        hook: Optional[ObjectHook] = None,
    ) -> SyncOutcome:
        """
        Run create-or-update, stale cleanup and status evaluation in order.

        An empty Desired Set is NOT_READY, as is any cycle that issued
        stale deletions. A Desired Set with untracked kinds is ERROR.
        """
        if not objs:
            return SyncStatus.NOT_READY, None

        untracked = self.untracked_kinds(objs)
        if untracked:
            message = (
                f"State {self.name} renders kinds it does not track for stale "
                f"cleanup: {', '.join(untracked)}"
            )
            logger.error(message)
            return SyncStatus.ERROR, StateSyncError(message)

        errors = await self.create_or_update_objects(objs, custom_resource, hook)
        if errors:
            return status_for_errors(errors), StateSyncError(
                "failed to create/update objects", errors
            )

        try:
            pending = await self.handle_stale_objects(objs, custom_resource)
        except StateSyncError as e:
            return status_for_errors(e.errors), e
        if pending:
            logger.info(f"State {self.name}: waiting for stale objects removal")
            return SyncStatus.NOT_READY, None

        return await self.get_sync_status(objs)

    async def handle_state_objects_deletion(
        self, custom_resource: Dict[str, Any]
    ) -> SyncOutcome:
        """
        Converge a disabled State toward absence.

        Returns:
            NOT_READY while tracked objects remain, READY once none are left
        """
        logger.info(f"State {self.name}: disabled, removing state objects")
        try:
            pending = await self.handle_stale_objects([], custom_resource)
        except StateSyncError as e:
            return status_for_errors(e.errors), e
        if pending:
            return SyncStatus.NOT_READY, None
        return SyncStatus.READY, None

    async def converge(
        self,
        custom_resource: Dict[str, Any],
        data: Optional[TemplatingData],
        hook: Optional[ObjectHook] = None,
    ) -> SyncOutcome:
        """
        Render and sync this State's manifests, or remove them when data is None.

        Args:
            custom_resource: The owning custom resource
            data: Binding context, or None when the State is disabled
            hook: Optional State-specific mutation applied before each write
        """
        if data is None:
            return await self.handle_state_objects_deletion(custom_resource)
        try:
            objs = self.render(data)
        except RenderError as e:
            logger.error(f"State {self.name}: failed to render manifests: {e}")
            return SyncStatus.ERROR, e
        return await self.sync_objects(objs, custom_resource, hook)
