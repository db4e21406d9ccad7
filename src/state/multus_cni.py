"""Multus CNI meta-plugin State."""

import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from cluster import ClusterClient
from policy import parse_policy_spec, policy_name
from render import TemplatingData, new_renderer_from_dir
from state.base import KindDescriptor, State, SyncStatus
from state.info_catalog import InfoCatalog
from state.render_data import ManifestRenderData, RuntimeSpec, container_resources_map
from state.skeleton import StateSkeleton

logger = logging.getLogger(__name__)

STATE_MULTUS_CNI_NAME = "state-multus-cni"
STATE_MULTUS_CNI_DESCRIPTION = "Multus CNI deployed in the cluster"


class MultusCNIState(State):
    """Deploys the multus DaemonSet and, when configured, its ConfigMap."""

    NAME = STATE_MULTUS_CNI_NAME
    DESCRIPTION = STATE_MULTUS_CNI_DESCRIPTION

    def __init__(self, client: ClusterClient, manifest_dir: str, namespace: str):
        self.namespace = namespace
        self.skel = StateSkeleton(
            name=self.NAME,
            description=self.DESCRIPTION,
            client=client,
            renderer=new_renderer_from_dir(manifest_dir),
            tracked_kinds=self.watched_kinds().values(),
        )

    @property
    def name(self) -> str:
        return self.NAME

    @property
    def description(self) -> str:
        return self.DESCRIPTION

    def watched_kinds(self) -> Dict[str, KindDescriptor]:
        return {
            "DaemonSet": KindDescriptor("apps/v1", "DaemonSet"),
            "ConfigMap": KindDescriptor("v1", "ConfigMap"),
        }

    async def sync(
        self, custom_resource: Dict[str, Any], info_catalog: InfoCatalog
    ) -> Tuple[SyncStatus, Optional[Exception]]:
        logger.info(f"Sync custom resource {policy_name(custom_resource)}: {self.name}")
        try:
            spec = parse_policy_spec(custom_resource)
        except ValidationError as e:
            return SyncStatus.ERROR, e

        multus = spec.secondary_network.multus if spec.secondary_network else None
        if multus is None:
            # Not requested, or removed from the policy since the last pass
            return await self.skel.converge(custom_resource, None)

        static_info = info_catalog.get_static_config_provider()
        if static_info is None:
            return SyncStatus.ERROR, ValueError(
                "unexpected state, catalog does not provide static info"
            )

        data = ManifestRenderData(
            cr_spec=multus,
            tolerations=spec.tolerations,
            node_affinity=spec.node_affinity,
            runtime_spec=RuntimeSpec(
                namespace=self.namespace,
                cni_bin_directory=static_info.cni_bin_directory,
                cni_network_directory=static_info.cni_network_directory,
                container_resources=container_resources_map(multus),
            ),
        )
        return await self.skel.converge(custom_resource, TemplatingData(data=data))
