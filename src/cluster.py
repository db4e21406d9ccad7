"""
Cluster API Client - Typed access to arbitrary Kubernetes objects.

Wraps the synchronous kubernetes dynamic client behind an async interface.
Every call runs in a worker thread and is bounded by a request timeout; a
timeout or connection failure surfaces as a transient ClusterAPIError.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import urllib3
from kubernetes import config as k8s_config
from kubernetes.client import ApiClient
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

logger = logging.getLogger(__name__)

# HTTP statuses expected to resolve on a later reconciliation pass
TRANSIENT_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})

ObjectKey = Tuple[str, str, str, str]


class ClusterAPIError(Exception):
    """Raised when a cluster API round trip fails."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        transient: Optional[bool] = None,
    ):
        self.message = message
        self.status = status
        if transient is None:
            transient = status is None or status in TRANSIENT_STATUSES
        self.transient = transient
        super().__init__(message)


class KindNotServedError(ClusterAPIError):
    """Raised when the cluster does not serve the requested apiVersion/kind."""

    def __init__(self, api_version: str, kind: str):
        super().__init__(
            f"kind {kind} ({api_version}) is not served by the cluster",
            status=404,
            transient=False,
        )


def object_key(obj: Dict[str, Any]) -> ObjectKey:
    """Identity of an object: (apiVersion, kind, namespace, name)."""
    metadata = obj.get("metadata") or {}
    return (
        obj.get("apiVersion", ""),
        obj.get("kind", ""),
        metadata.get("namespace") or "",
        metadata.get("name", ""),
    )


def describe(obj: Dict[str, Any]) -> str:
    """Human readable kind/namespace/name of an object."""
    _, kind, namespace, name = object_key(obj)
    return f"{kind}/{namespace}/{name}" if namespace else f"{kind}/{name}"


class ClusterClient(ABC):
    """
    Abstract cluster API client.

    Objects are plain dicts in the Kubernetes wire shape. Missing objects are
    reported as None from get() rather than raised.
    """

    @abstractmethod
    async def get(
        self, api_version: str, kind: str, name: str, namespace: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch one object, or None if it does not exist."""
        pass

    @abstractmethod
    async def list(
        self,
        api_version: str,
        kind: str,
        label_selector: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List objects of a kind, across all namespaces unless one is given."""
        pass

    @abstractmethod
    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Create an object and return the live result."""
        pass

    @abstractmethod
    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an object (carrying its resourceVersion) and return the result."""
        pass

    @abstractmethod
    async def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Write the status sub-resource of an object."""
        pass

    @abstractmethod
    async def delete(
        self, api_version: str, kind: str, name: str, namespace: Optional[str] = None
    ) -> None:
        """Delete an object. Deleting an absent object is not an error."""
        pass

    @abstractmethod
    def stream_events(
        self,
        api_version: str,
        kind: str,
        label_selector: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> Iterator[Dict[str, Any]]:
        """
        Blocking iterator of watch events ({"type", "object"}) for a kind.

        Ends when the server-side timeout expires. Intended to be drained
        from a worker thread.
        """
        pass


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the kubernetes dynamic client."""

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        request_timeout: float = 30.0,
        dynamic_client: Optional[DynamicClient] = None,
    ):
        self.kubeconfig = kubeconfig
        self.request_timeout = request_timeout
        self._dynamic = dynamic_client

    def connect(self) -> None:
        """Load cluster credentials and run API discovery."""
        if self._dynamic is not None:
            return
        try:
            k8s_config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except k8s_config.ConfigException:
            k8s_config.load_kube_config(config_file=self.kubeconfig)
            logger.info("Loaded kubeconfig")
        self._dynamic = DynamicClient(ApiClient())

    @property
    def dynamic(self) -> DynamicClient:
        if self._dynamic is None:
            self.connect()
        return self._dynamic

    async def _call(self, description: str, fn: Callable[..., Any], *args, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs), timeout=self.request_timeout
            )
        except asyncio.TimeoutError:
            raise ClusterAPIError(f"{description}: timed out", transient=True)
        except ClusterAPIError:
            raise
        except ApiException as e:
            raise ClusterAPIError(f"{description}: {e.reason}", status=e.status)
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ClusterAPIError(f"{description}: {e}", transient=True)

    def _resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError:
            raise KindNotServedError(api_version, kind)

    def _get(self, api_version, kind, name, namespace):
        resource = self._resource(api_version, kind)
        try:
            result = resource.get(
                name=name,
                namespace=namespace if resource.namespaced else None,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return result.to_dict()

    async def get(self, api_version, kind, name, namespace=None):
        return await self._call(
            f"get {kind} {name}", self._get, api_version, kind, name, namespace
        )

    def _list(self, api_version, kind, label_selector, namespace):
        resource = self._resource(api_version, kind)
        result = resource.get(
            label_selector=label_selector,
            namespace=namespace if resource.namespaced else None,
            _request_timeout=self.request_timeout,
        ).to_dict()
        items = result.get("items") or []
        for item in items:
            item.setdefault("apiVersion", api_version)
            item.setdefault("kind", kind)
        return items

    async def list(self, api_version, kind, label_selector=None, namespace=None):
        return await self._call(
            f"list {kind}", self._list, api_version, kind, label_selector, namespace
        )

    def _namespace_of(self, resource, obj):
        if not resource.namespaced:
            return None
        return (obj.get("metadata") or {}).get("namespace")

    def _create(self, obj):
        resource = self._resource(obj["apiVersion"], obj["kind"])
        return resource.create(
            body=obj,
            namespace=self._namespace_of(resource, obj),
            _request_timeout=self.request_timeout,
        ).to_dict()

    async def create(self, obj):
        return await self._call(f"create {describe(obj)}", self._create, obj)

    def _update(self, obj):
        resource = self._resource(obj["apiVersion"], obj["kind"])
        return resource.replace(
            body=obj,
            namespace=self._namespace_of(resource, obj),
            _request_timeout=self.request_timeout,
        ).to_dict()

    async def update(self, obj):
        return await self._call(f"update {describe(obj)}", self._update, obj)

    def _update_status(self, obj):
        resource = self._resource(obj["apiVersion"], obj["kind"])
        return resource.status.replace(
            body=obj,
            namespace=self._namespace_of(resource, obj),
            _request_timeout=self.request_timeout,
        ).to_dict()

    async def update_status(self, obj):
        return await self._call(
            f"update status {describe(obj)}", self._update_status, obj
        )

    def _delete(self, api_version, kind, name, namespace):
        resource = self._resource(api_version, kind)
        try:
            resource.delete(
                name=name,
                namespace=namespace if resource.namespaced else None,
                body={"propagationPolicy": "Background"},
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status != 404:
                raise

    async def delete(self, api_version, kind, name, namespace=None):
        await self._call(
            f"delete {kind} {name}", self._delete, api_version, kind, name, namespace
        )

    def stream_events(
        self, api_version, kind, label_selector=None, timeout_seconds=300
    ):
        resource = self._resource(api_version, kind)
        for event in self.dynamic.watch(
            resource, label_selector=label_selector, timeout=timeout_seconds
        ):
            yield {"type": event["type"], "object": event["raw_object"]}


class DryRunClusterClient(ClusterClient):
    """
    In-memory ClusterClient that starts empty and keeps every write.

    Used for offline rendering: a State synced against it leaves exactly the
    objects it would create in `objects`, in creation order.
    """

    def __init__(self):
        self._objects: Dict[ObjectKey, Dict[str, Any]] = {}

    @property
    def objects(self) -> List[Dict[str, Any]]:
        return list(self._objects.values())

    async def get(self, api_version, kind, name, namespace=None):
        obj = self._objects.get((api_version, kind, namespace or "", name))
        return copy.deepcopy(obj) if obj is not None else None

    async def list(self, api_version, kind, label_selector=None, namespace=None):
        return [
            copy.deepcopy(obj)
            for key, obj in self._objects.items()
            if key[0] == api_version
            and key[1] == kind
            and (namespace is None or key[2] == namespace)
        ]

    async def create(self, obj):
        key = object_key(obj)
        if key in self._objects:
            raise ClusterAPIError(f"create {describe(obj)}: already exists", status=409)
        self._objects[key] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    async def update(self, obj):
        key = object_key(obj)
        if key not in self._objects:
            raise ClusterAPIError(f"update {describe(obj)}: not found", status=404)
        self._objects[key] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    async def update_status(self, obj):
        return await self.update(obj)

    async def delete(self, api_version, kind, name, namespace=None):
        self._objects.pop((api_version, kind, namespace or "", name), None)

    def stream_events(
        self, api_version, kind, label_selector=None, timeout_seconds=300
    ):
        return iter(())
