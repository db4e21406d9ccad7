"""Binding context types shared by the built-in States."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from policy import ImageSpec


@dataclass
class RuntimeSpec:
    """Values resolved at sync time rather than read from the policy."""

    namespace: str
    cni_bin_directory: str = ""
    cni_network_directory: str = ""
    # Keyed by container name
    container_resources: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class ManifestRenderData:
    cr_spec: ImageSpec
    tolerations: List[Dict[str, Any]]
    node_affinity: Optional[Dict[str, Any]]
    runtime_spec: RuntimeSpec


def container_resources_map(image_spec: ImageSpec) -> Dict[str, Dict[str, Any]]:
    """Index per-container resource overrides by container name."""
    resources = {}
    for req in image_spec.container_resources:
        entry = {}
        if req.requests:
            entry["requests"] = req.requests
        if req.limits:
            entry["limits"] = req.limits
        resources[req.name] = entry
    return resources
