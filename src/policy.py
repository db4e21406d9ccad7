"""
NicClusterPolicy - Custom resource describing the desired networking stack.

The operator only reads the fields it needs; unknown fields are ignored.
Field validation is the admission webhook's job and is not repeated here.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GROUP = "mellanox.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "NicClusterPolicy"


class _SpecModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class ResourceRequirements(_SpecModel):
    """Resource overrides for one named container."""

    name: str
    requests: Optional[Dict[str, Any]] = None
    limits: Optional[Dict[str, Any]] = None


class ImageSpec(_SpecModel):
    """Container image of a sub-component."""

    image: str
    repository: str
    version: str
    image_pull_secrets: List[str] = Field(default_factory=list)
    container_resources: List[ResourceRequirements] = Field(default_factory=list)


class ImageSpecWithConfig(ImageSpec):
    """Image spec carrying an opaque configuration document."""

    config: Optional[str] = None


class SecondaryNetworkSpec(_SpecModel):
    multus: Optional[ImageSpecWithConfig] = None
    cni_plugins: Optional[ImageSpec] = None


class NicClusterPolicySpec(_SpecModel):
    tolerations: List[Dict[str, Any]] = Field(default_factory=list)
    node_affinity: Optional[Dict[str, Any]] = None
    secondary_network: Optional[SecondaryNetworkSpec] = None
    rdma_shared_device_plugin: Optional[ImageSpecWithConfig] = None


def parse_policy_spec(custom_resource: Dict[str, Any]) -> NicClusterPolicySpec:
    """
    Parse the spec of a NicClusterPolicy object.

    Raises:
        pydantic.ValidationError: If a present section lacks required fields
    """
    return NicClusterPolicySpec.model_validate(custom_resource.get("spec") or {})


def policy_name(custom_resource: Dict[str, Any]) -> str:
    return (custom_resource.get("metadata") or {}).get("name", "")
