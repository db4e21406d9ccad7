"""
Object Readiness - Per-kind convergence checks for live objects.

A closed mapping from kind to a check over the live object's status.
Kinds without a check are considered converged once they exist.
"""

from typing import Any, Callable, Dict, Tuple

ReadinessCheck = Callable[[Dict[str, Any]], Tuple[bool, str]]


def _generation_observed(obj: Dict[str, Any]) -> bool:
    generation = (obj.get("metadata") or {}).get("generation")
    observed = (obj.get("status") or {}).get("observedGeneration")
    if generation is None:
        return True
    return observed is not None and observed >= generation


def daemonset_ready(obj: Dict[str, Any]) -> Tuple[bool, str]:
    """A DaemonSet is ready when every scheduled pod is updated and available."""
    if not _generation_observed(obj):
        return False, "rollout not yet observed"
    status = obj.get("status") or {}
    desired = status.get("desiredNumberScheduled", 0)
    available = status.get("numberAvailable", 0)
    updated = status.get("updatedNumberScheduled", 0)
    if desired == available and desired == updated:
        return True, ""
    return False, f"{available}/{desired} available, {updated}/{desired} updated"


def deployment_ready(obj: Dict[str, Any]) -> Tuple[bool, str]:
    """A Deployment is ready when all replicas are updated and available."""
    if not _generation_observed(obj):
        return False, "rollout not yet observed"
    replicas = (obj.get("spec") or {}).get("replicas", 1)
    status = obj.get("status") or {}
    available = status.get("availableReplicas", 0)
    updated = status.get("updatedReplicas", 0)
    if available >= replicas and updated >= replicas:
        return True, ""
    return False, f"{available}/{replicas} available, {updated}/{replicas} updated"


def statefulset_ready(obj: Dict[str, Any]) -> Tuple[bool, str]:
    if not _generation_observed(obj):
        return False, "rollout not yet observed"
    replicas = (obj.get("spec") or {}).get("replicas", 1)
    status = obj.get("status") or {}
    ready = status.get("readyReplicas", 0)
    updated = status.get("updatedReplicas", 0)
    if ready >= replicas and updated >= replicas:
        return True, ""
    return False, f"{ready}/{replicas} ready, {updated}/{replicas} updated"


def job_ready(obj: Dict[str, Any]) -> Tuple[bool, str]:
    for condition in (obj.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Complete" and condition.get("status") == "True":
            return True, ""
    return False, "job not complete"


READINESS_CHECKS: Dict[str, ReadinessCheck] = {
    "DaemonSet": daemonset_ready,
    "Deployment": deployment_ready,
    "StatefulSet": statefulset_ready,
    "Job": job_ready,
}


def is_object_ready(obj: Dict[str, Any]) -> Tuple[bool, str]:
    """
    Check whether a live object has converged.

    Args:
        obj: The live object as returned by the cluster API

    Returns:
        Tuple of (ready, reason). reason is empty when ready.
    """
    check = READINESS_CHECKS.get(obj.get("kind", ""))
    if check is None:
        return True, ""
    return check(obj)
