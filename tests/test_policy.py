"""Unit tests for policy.py - NicClusterPolicy spec models."""

import pytest
from pydantic import ValidationError

from policy import API_VERSION, KIND, parse_policy_spec, policy_name
from render import to_plain
from state.render_data import container_resources_map


class TestParsePolicySpec:
    """Tests for parse_policy_spec."""

    def test_parses_camel_case_fields(self, sample_policy):
        spec = parse_policy_spec(sample_policy)

        multus = spec.secondary_network.multus
        assert multus.image == "multus-cni"
        assert multus.image_pull_secrets == ["regcred"]
        assert spec.secondary_network.cni_plugins.version == "v1.5.0"
        assert spec.rdma_shared_device_plugin.repository == "ghcr.io/mellanox"
        assert spec.tolerations[0]["key"] == "dedicated"

    def test_empty_spec(self):
        spec = parse_policy_spec({"metadata": {"name": "p"}})

        assert spec.secondary_network is None
        assert spec.rdma_shared_device_plugin is None
        assert spec.tolerations == []

    def test_unknown_fields_ignored(self, sample_policy):
        sample_policy["spec"]["ofedDriver"] = {"image": "mofed"}
        parse_policy_spec(sample_policy)

    def test_missing_required_field(self, sample_policy):
        del sample_policy["spec"]["secondaryNetwork"]["cniPlugins"]["repository"]

        with pytest.raises(ValidationError):
            parse_policy_spec(sample_policy)

    def test_policy_name(self, sample_policy):
        assert policy_name(sample_policy) == "nic-cluster-policy"
        assert policy_name({}) == ""

    def test_api_version(self):
        assert API_VERSION == "mellanox.com/v1alpha1"
        assert KIND == "NicClusterPolicy"


class TestRenderHelpers:
    """Tests for turning spec models into template values."""

    def test_container_resources_map(self, sample_policy):
        sample_policy["spec"]["secondaryNetwork"]["multus"]["containerResources"] = [
            {"name": "kube-multus", "limits": {"memory": "100Mi"}},
            {"name": "install-multus-binary"},
        ]
        multus = parse_policy_spec(sample_policy).secondary_network.multus

        assert container_resources_map(multus) == {
            "kube-multus": {"limits": {"memory": "100Mi"}},
            "install-multus-binary": {},
        }

    def test_to_plain_uses_aliases(self, sample_policy):
        cni = parse_policy_spec(sample_policy).secondary_network.cni_plugins

        plain = to_plain(cni)

        assert plain["imagePullSecrets"] == []
        assert "image_pull_secrets" not in plain
