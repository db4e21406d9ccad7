"""Unit tests for the built-in States against the shipped manifests."""

import copy
import json
import os

import pytest

from state.base import SyncStatus
from state.cni_plugins import CNIPluginsState
from state.info_catalog import InfoCatalog, InfoType, StaticConfigProvider
from state.multus_cni import MultusCNIState
from state.rdma_shared_device_plugin import (
    DEFAULT_DEVICE_PLUGIN_CONFIG,
    RdmaSharedDevicePluginState,
)
from state.skeleton import OWNER_UID_LABEL, STATE_LABEL

NAMESPACE = "nvidia-network-operator"


@pytest.fixture
def info_catalog():
    catalog = InfoCatalog()
    catalog.add(
        InfoType.STATIC_CONFIG,
        StaticConfigProvider(
            cni_bin_directory="/var/lib/cni/bin",
            cni_network_directory="/var/lib/cni/net.d",
        ),
    )
    return catalog


def make_state(state_class, fake_cluster, manifests_dir):
    return state_class(
        client=fake_cluster,
        manifest_dir=os.path.join(manifests_dir, state_class.NAME),
        namespace=NAMESPACE,
    )


def pod_spec(ds):
    return ds["spec"]["template"]["spec"]


# ==================== Multus tests ====================


@pytest.mark.asyncio
class TestMultusCNIState:
    """Tests for MultusCNIState."""

    async def test_deploys_rbac_and_daemonset(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)

        status, err = await state.sync(sample_policy, info_catalog)

        assert err is None
        assert status == SyncStatus.READY
        assert [c[1:] for c in fake_cluster.writes()] == [
            ("ServiceAccount", "multus"),
            ("ClusterRole", "multus"),
            ("ClusterRoleBinding", "multus"),
            ("DaemonSet", "kube-multus-ds"),
        ]

    async def test_daemonset_content(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)
        await state.sync(sample_policy, info_catalog)

        ds = fake_cluster.find("DaemonSet", "kube-multus-ds")
        spec = pod_spec(ds)
        container = spec["containers"][0]
        assert ds["metadata"]["namespace"] == NAMESPACE
        assert container["image"] == "ghcr.io/k8snetworkplumbingwg/multus-cni:v4.1.0"
        assert container["command"] == ["/thin_entrypoint"]
        assert "--multus-conf-file=auto" in container["args"]
        assert spec["initContainers"][0]["name"] == "install-multus-binary"
        assert spec["imagePullSecrets"] == [{"name": "regcred"}]
        assert spec["tolerations"][0]["key"] == "dedicated"
        assert spec["tolerations"][-1]["key"] == "nvidia.com/gpu"
        volumes = {v["name"]: v for v in spec["volumes"]}
        assert volumes["cnibin"]["hostPath"]["path"] == "/var/lib/cni/bin"
        assert volumes["cninetwork"]["hostPath"]["path"] == "/var/lib/cni/net.d"
        assert ds["metadata"]["labels"][STATE_LABEL] == "state-multus-cni"
        assert ds["metadata"]["labels"][OWNER_UID_LABEL] == sample_policy["metadata"]["uid"]

    async def test_legacy_version_uses_entrypoint(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        sample_policy["spec"]["secondaryNetwork"]["multus"]["version"] = "v3.9.3"
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)

        await state.sync(sample_policy, info_catalog)

        spec = pod_spec(fake_cluster.find("DaemonSet", "kube-multus-ds"))
        assert spec["containers"][0]["command"] == ["/entrypoint.sh"]
        assert "initContainers" not in spec

    async def test_config_adds_configmap(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        config = json.dumps({"cniVersion": "0.3.1", "name": "multus-cni-network"})
        sample_policy["spec"]["secondaryNetwork"]["multus"]["config"] = config
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)

        await state.sync(sample_policy, info_catalog)

        cm = fake_cluster.find("ConfigMap", "multus-cni-config")
        assert json.loads(cm["data"]["cni-conf.json"]) == json.loads(config)
        container = pod_spec(fake_cluster.find("DaemonSet", "kube-multus-ds"))[
            "containers"
        ][0]
        assert "--multus-conf-file=/tmp/multus-conf/00-multus.conf" in container["args"]

    async def test_container_resources_override(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        sample_policy["spec"]["secondaryNetwork"]["multus"]["containerResources"] = [
            {"name": "kube-multus", "requests": {"cpu": "200m"}}
        ]
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)

        await state.sync(sample_policy, info_catalog)

        container = pod_spec(fake_cluster.find("DaemonSet", "kube-multus-ds"))[
            "containers"
        ][0]
        assert container["resources"] == {"requests": {"cpu": "200m"}}

    async def test_removed_config_deletes_configmap(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        with_config = copy.deepcopy(sample_policy)
        with_config["spec"]["secondaryNetwork"]["multus"]["config"] = "{}"
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)
        await state.sync(with_config, info_catalog)
        assert fake_cluster.find("ConfigMap", "multus-cni-config") is not None

        status, _ = await state.sync(sample_policy, info_catalog)

        assert status == SyncStatus.NOT_READY
        assert fake_cluster.find("ConfigMap", "multus-cni-config") is None
        status, _ = await state.sync(sample_policy, info_catalog)
        assert status == SyncStatus.READY

    async def test_missing_static_config_is_error(
        self, fake_cluster, manifests_dir, sample_policy
    ):
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)

        status, err = await state.sync(sample_policy, InfoCatalog())

        assert status == SyncStatus.ERROR
        assert "static info" in str(err)
        assert fake_cluster.writes() == []

    async def test_disabled_removes_objects(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)
        await state.sync(sample_policy, info_catalog)
        del sample_policy["spec"]["secondaryNetwork"]["multus"]

        status, _ = await state.sync(sample_policy, info_catalog)

        assert status == SyncStatus.NOT_READY
        assert fake_cluster.find("DaemonSet", "kube-multus-ds") is None
        assert fake_cluster.find("ClusterRole", "multus") is None

    async def test_invalid_spec_is_error(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        del sample_policy["spec"]["secondaryNetwork"]["multus"]["image"]
        state = make_state(MultusCNIState, fake_cluster, manifests_dir)

        status, err = await state.sync(sample_policy, info_catalog)

        assert status == SyncStatus.ERROR
        assert err is not None


# ==================== CNI plugins tests ====================


@pytest.mark.asyncio
class TestCNIPluginsState:
    """Tests for CNIPluginsState."""

    async def test_deploys_daemonset(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(CNIPluginsState, fake_cluster, manifests_dir)

        status, err = await state.sync(sample_policy, info_catalog)

        assert err is None
        assert status == SyncStatus.READY
        ds = fake_cluster.find("DaemonSet", "cni-plugins-ds")
        container = pod_spec(ds)["containers"][0]
        assert container["image"] == "ghcr.io/k8snetworkplumbingwg/plugins:v1.5.0"
        assert pod_spec(ds)["volumes"][0]["hostPath"]["path"] == "/var/lib/cni/bin"

    async def test_node_affinity(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        affinity = {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [
                    {
                        "matchExpressions": [
                            {"key": "network", "operator": "In", "values": ["rdma"]}
                        ]
                    }
                ]
            }
        }
        sample_policy["spec"]["nodeAffinity"] = affinity
        state = make_state(CNIPluginsState, fake_cluster, manifests_dir)

        await state.sync(sample_policy, info_catalog)

        ds = fake_cluster.find("DaemonSet", "cni-plugins-ds")
        assert pod_spec(ds)["affinity"]["nodeAffinity"] == affinity

    async def test_not_ready_while_rolling_out(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(CNIPluginsState, fake_cluster, manifests_dir)
        await state.sync(sample_policy, info_catalog)
        ds = fake_cluster.find("DaemonSet", "cni-plugins-ds")
        ds["status"] = {"desiredNumberScheduled": 4, "numberAvailable": 2}

        status, err = await state.sync(sample_policy, info_catalog)

        assert status == SyncStatus.NOT_READY
        assert err is None

    async def test_not_requested_is_ready(self, fake_cluster, manifests_dir, info_catalog):
        state = make_state(CNIPluginsState, fake_cluster, manifests_dir)
        policy = {"metadata": {"name": "p", "uid": "u"}, "spec": {}}

        status, err = await state.sync(policy, info_catalog)

        assert status == SyncStatus.READY
        assert fake_cluster.writes() == []


# ==================== RDMA shared device plugin tests ====================


@pytest.mark.asyncio
class TestRdmaSharedDevicePluginState:
    """Tests for RdmaSharedDevicePluginState."""

    async def test_deploys_configmap_then_daemonset(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(RdmaSharedDevicePluginState, fake_cluster, manifests_dir)

        status, err = await state.sync(sample_policy, info_catalog)

        assert err is None
        assert status == SyncStatus.READY
        assert [c[1:] for c in fake_cluster.writes()] == [
            ("ConfigMap", "rdma-devices"),
            ("DaemonSet", "rdma-shared-dp-ds"),
        ]

    async def test_default_config_and_digest_image(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        state = make_state(RdmaSharedDevicePluginState, fake_cluster, manifests_dir)

        await state.sync(sample_policy, info_catalog)

        cm = fake_cluster.find("ConfigMap", "rdma-devices")
        assert json.loads(cm["data"]["config.json"]) == json.loads(
            DEFAULT_DEVICE_PLUGIN_CONFIG
        )
        ds = fake_cluster.find("DaemonSet", "rdma-shared-dp-ds")
        assert (
            pod_spec(ds)["containers"][0]["image"]
            == "ghcr.io/mellanox/k8s-rdma-shared-dev-plugin@sha256:1a2b3c"
        )

    async def test_custom_config(
        self, fake_cluster, manifests_dir, sample_policy, info_catalog
    ):
        config = '{"configList": [{"resourceName": "hca"}]}'
        sample_policy["spec"]["rdmaSharedDevicePlugin"]["config"] = config
        state = make_state(RdmaSharedDevicePluginState, fake_cluster, manifests_dir)

        await state.sync(sample_policy, info_catalog)

        cm = fake_cluster.find("ConfigMap", "rdma-devices")
        assert cm["data"]["config.json"] == config

    async def test_does_not_need_static_config(
        self, fake_cluster, manifests_dir, sample_policy
    ):
        state = make_state(RdmaSharedDevicePluginState, fake_cluster, manifests_dir)

        status, err = await state.sync(sample_policy, InfoCatalog())

        assert status == SyncStatus.READY
        assert err is None


class TestWatchedKinds:
    """Tests for the kinds each State watches."""

    @pytest.mark.parametrize(
        "state_class,expected",
        [
            (MultusCNIState, {"DaemonSet", "ConfigMap"}),
            (CNIPluginsState, {"DaemonSet"}),
            (RdmaSharedDevicePluginState, {"DaemonSet", "ConfigMap"}),
        ],
    )
    def test_watched_kinds(self, state_class, expected, fake_cluster, manifests_dir):
        state = make_state(state_class, fake_cluster, manifests_dir)
        assert set(state.watched_kinds()) == expected
