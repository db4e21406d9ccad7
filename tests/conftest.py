"""Pytest configuration and fixtures."""

import copy
import os
from typing import Any, Dict, List, Optional, Tuple

import pytest

from cluster import ClusterAPIError, ClusterClient, KindNotServedError, object_key

TESTDATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "testdata")
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
MANIFESTS_DIR = os.path.join(REPO_ROOT, "manifests")


def _matches_selector(obj: Dict[str, Any], label_selector: Optional[str]) -> bool:
    if not label_selector:
        return True
    labels = (obj.get("metadata") or {}).get("labels") or {}
    for term in label_selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeClusterClient(ClusterClient):
    """
    In-memory ClusterClient recording every write.

    Failures are injected per (operation, kind, name) via `fail_on`; kinds in
    `unserved` raise KindNotServedError. With `keep_terminating` set, deleted
    objects stay behind carrying a deletionTimestamp.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.status_updates: List[Dict[str, Any]] = []
        self.fail_on: Dict[Tuple[str, str, str], Exception] = {}
        self.unserved: set = set()
        self.keep_terminating = False
        self._version = 0

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Seed a live object."""
        stored = copy.deepcopy(obj)
        self._version += 1
        stored.setdefault("metadata", {})["resourceVersion"] = str(self._version)
        self.objects[object_key(stored)] = stored
        return stored

    def find(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        for key, obj in self.objects.items():
            if key[1] == kind and key[3] == name:
                return obj
        return None

    def writes(self) -> List[Tuple[str, str, str]]:
        return [c for c in self.calls if c[0] in ("create", "update", "delete")]

    def _check(self, op: str, kind: str, name: str) -> None:
        if kind in self.unserved:
            raise KindNotServedError("v1", kind)
        error = self.fail_on.get((op, kind, name))
        if error is not None:
            raise error

    async def get(self, api_version, kind, name, namespace=None):
        self._check("get", kind, name)
        obj = self.objects.get((api_version, kind, namespace or "", name))
        return copy.deepcopy(obj) if obj is not None else None

    async def list(self, api_version, kind, label_selector=None, namespace=None):
        self._check("list", kind, "")
        self.calls.append(("list", kind, label_selector or ""))
        return [
            copy.deepcopy(obj)
            for key, obj in self.objects.items()
            if key[0] == api_version
            and key[1] == kind
            and (namespace is None or key[2] == namespace)
            and _matches_selector(obj, label_selector)
        ]

    async def create(self, obj):
        name = obj["metadata"]["name"]
        self._check("create", obj["kind"], name)
        self.calls.append(("create", obj["kind"], name))
        if object_key(obj) in self.objects:
            raise ClusterAPIError("already exists", status=409)
        return copy.deepcopy(self.add(obj))

    async def update(self, obj):
        name = obj["metadata"]["name"]
        self._check("update", obj["kind"], name)
        self.calls.append(("update", obj["kind"], name))
        if object_key(obj) not in self.objects:
            raise ClusterAPIError("not found", status=404)
        return copy.deepcopy(self.add(obj))

    async def update_status(self, obj):
        self._check("update_status", obj["kind"], obj["metadata"]["name"])
        self.status_updates.append(copy.deepcopy(obj))
        return copy.deepcopy(obj)

    async def delete(self, api_version, kind, name, namespace=None):
        self._check("delete", kind, name)
        self.calls.append(("delete", kind, name))
        key = (api_version, kind, namespace or "", name)
        if self.keep_terminating and key in self.objects:
            self.objects[key]["metadata"]["deletionTimestamp"] = "2024-01-15T10:30:00Z"
            return
        self.objects.pop(key, None)

    def stream_events(self, api_version, kind, label_selector=None, timeout_seconds=300):
        return iter(())


@pytest.fixture
def fake_cluster():
    """In-memory cluster API."""
    return FakeClusterClient()


@pytest.fixture
def testdata_dir():
    return TESTDATA_DIR


@pytest.fixture
def manifests_dir():
    return MANIFESTS_DIR


@pytest.fixture
def sample_policy():
    """NicClusterPolicy enabling every built-in State."""
    return {
        "apiVersion": "mellanox.com/v1alpha1",
        "kind": "NicClusterPolicy",
        "metadata": {
            "name": "nic-cluster-policy",
            "uid": "8c7e5b34-1f2a-4d7e-9a63-0b5f0a6e2c11",
            "generation": 1,
        },
        "spec": {
            "tolerations": [
                {"key": "dedicated", "operator": "Equal", "value": "net", "effect": "NoSchedule"}
            ],
            "secondaryNetwork": {
                "multus": {
                    "image": "multus-cni",
                    "repository": "ghcr.io/k8snetworkplumbingwg",
                    "version": "v4.1.0",
                    "imagePullSecrets": ["regcred"],
                },
                "cniPlugins": {
                    "image": "plugins",
                    "repository": "ghcr.io/k8snetworkplumbingwg",
                    "version": "v1.5.0",
                },
            },
            "rdmaSharedDevicePlugin": {
                "image": "k8s-rdma-shared-dev-plugin",
                "repository": "ghcr.io/mellanox",
                "version": "sha256:1a2b3c",
            },
        },
    }


def ready_daemonset_status(obj: Dict[str, Any], scheduled: int = 2) -> Dict[str, Any]:
    """Give a stored DaemonSet a fully rolled out status."""
    obj.setdefault("metadata", {})["generation"] = 1
    obj["status"] = {
        "observedGeneration": 1,
        "desiredNumberScheduled": scheduled,
        "numberAvailable": scheduled,
        "updatedNumberScheduled": scheduled,
    }
    return obj
