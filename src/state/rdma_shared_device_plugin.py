"""RDMA shared device plugin State."""

import json
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

STATE_RDMA_SHARED_DP_NAME = "state-rdma-shared-device-plugin"
STATE_RDMA_SHARED_DP_DESCRIPTION = "RDMA shared device plugin deployed in the cluster"

DEFAULT_DEVICE_PLUGIN_CONFIG = json.dumps(
    {
        "periodicUpdateInterval": 300,
        "configList": [
            {
                "resourceName": "rdma_shared_device_a",
                "rdmaHcaMax": 63,
                "selectors": {"vendors": ["15b3"]},
            }
        ],
    },
    indent=2,
)


class RdmaSharedDevicePluginState(State):
    """
    Deploys the RDMA shared device plugin.

    The plugin configuration ConfigMap sorts before the DaemonSet mounting it.
    """

    NAME = STATE_RDMA_SHARED_DP_NAME
    DESCRIPTION = STATE_RDMA_SHARED_DP_DESCRIPTION

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

        plugin = spec.rdma_shared_device_plugin
        if plugin is None:
            return await self.skel.converge(custom_resource, None)

        if not plugin.config:
            plugin = plugin.model_copy(update={"config": DEFAULT_DEVICE_PLUGIN_CONFIG})

        data = ManifestRenderData(
            cr_spec=plugin,
            tolerations=spec.tolerations,
            node_affinity=spec.node_affinity,
            runtime_spec=RuntimeSpec(
                namespace=self.namespace,
                container_resources=container_resources_map(plugin),
            ),
        )
        return await self.skel.converge(custom_resource, TemplatingData(data=data))
