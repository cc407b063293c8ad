"""Kubernetes resource layer: typed get/list/create/update/delete over unstructured dicts."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from enforcer.core.kinds import ResourceKind
from enforcer.errors import AlreadyExists, ConflictError, KindNotInstalled, NotFound, TransientClusterError

logger = logging.getLogger(__name__)

_api_client = None
_core_v1_api = None
_custom_objects_api = None
_config_loaded = False
_init_lock = threading.Lock()


@runtime_checkable
class ResourceClient(Protocol):
    def is_installed(self, kind: ResourceKind) -> bool: ...

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]: ...

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...

    def create(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]: ...

    def update(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]: ...

    def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> None: ...


def _load_config() -> None:
    global _config_loaded
    if _config_loaded:
        return
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    _config_loaded = True


def _get_api_client():
    """Return a cached ApiClient (thread-safe lazy init)."""
    global _api_client
    if _api_client is not None:
        return _api_client
    with _init_lock:
        if _api_client is not None:
            return _api_client
        from kubernetes import client

        _load_config()
        _api_client = client.ApiClient()
        return _api_client


def _get_core_v1():
    global _core_v1_api
    if _core_v1_api is not None:
        return _core_v1_api
    from kubernetes import client

    api_client = _get_api_client()
    with _init_lock:
        if _core_v1_api is None:
            _core_v1_api = client.CoreV1Api(api_client)
        return _core_v1_api


def _get_custom_objects():
    global _custom_objects_api
    if _custom_objects_api is not None:
        return _custom_objects_api
    from kubernetes import client

    api_client = _get_api_client()
    with _init_lock:
        if _custom_objects_api is None:
            _custom_objects_api = client.CustomObjectsApi(api_client)
        return _custom_objects_api


def _status_reason(e: Any) -> Optional[str]:
    body = getattr(e, "body", None)
    if not body:
        return getattr(e, "reason", None)
    try:
        parsed = json.loads(body)
    except Exception:
        return getattr(e, "reason", None)
    if isinstance(parsed, dict) and parsed.get("reason"):
        return str(parsed["reason"])
    return getattr(e, "reason", None)


def _metadata(body: Dict[str, Any]) -> Dict[str, Any]:
    return body.get("metadata") or {}


class DefaultK8sProvider:
    """
    ResourceClient backed by the official kubernetes client.

    Custom resources go through CustomObjectsApi; ConfigMaps through CoreV1Api.
    ApiException is translated into the enforcer error taxonomy here and nowhere else.
    """

    def is_installed(self, kind: ResourceKind) -> bool:
        if not kind.group:
            return True
        try:
            resources = _get_custom_objects().get_api_resources(kind.group, kind.version)
        except Exception as e:
            if getattr(e, "status", None) == 404:
                return False
            raise self._translate(e, kind, None, None) from e
        for res in getattr(resources, "resources", None) or []:
            if getattr(res, "name", None) == kind.plural:
                return True
        return False

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        try:
            if not kind.group:
                obj = _get_core_v1().read_namespaced_config_map(name=name, namespace=namespace)
                return _get_api_client().sanitize_for_serialization(obj)
            api = _get_custom_objects()
            if kind.namespaced:
                return api.get_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name)
            return api.get_cluster_custom_object(kind.group, kind.version, kind.plural, name)
        except Exception as e:
            raise self._translate(e, kind, namespace, name) from e

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        selector = label_selector or ""
        try:
            if not kind.group:
                v1 = _get_core_v1()
                if namespace:
                    out = v1.list_namespaced_config_map(namespace=namespace, label_selector=selector)
                else:
                    out = v1.list_config_map_for_all_namespaces(label_selector=selector)
                return list(_get_api_client().sanitize_for_serialization(out).get("items") or [])
            api = _get_custom_objects()
            if kind.namespaced and namespace:
                out = api.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, label_selector=selector
                )
            else:
                out = api.list_cluster_custom_object(kind.group, kind.version, kind.plural, label_selector=selector)
            return list((out or {}).get("items") or [])
        except Exception as e:
            raise self._translate(e, kind, namespace, None) from e

    def create(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        meta = _metadata(body)
        namespace = meta.get("namespace")
        try:
            if not kind.group:
                obj = _get_core_v1().create_namespaced_config_map(namespace=namespace, body=body)
                return _get_api_client().sanitize_for_serialization(obj)
            api = _get_custom_objects()
            if kind.namespaced:
                return api.create_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, body)
            return api.create_cluster_custom_object(kind.group, kind.version, kind.plural, body)
        except Exception as e:
            raise self._translate(e, kind, namespace, meta.get("name")) from e

    def update(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        meta = _metadata(body)
        namespace, name = meta.get("namespace"), meta.get("name")
        try:
            if not kind.group:
                obj = _get_core_v1().replace_namespaced_config_map(name=name, namespace=namespace, body=body)
                return _get_api_client().sanitize_for_serialization(obj)
            api = _get_custom_objects()
            if kind.namespaced:
                return api.replace_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name, body
                )
            return api.replace_cluster_custom_object(kind.group, kind.version, kind.plural, name, body)
        except Exception as e:
            raise self._translate(e, kind, namespace, name) from e

    def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> None:
        from kubernetes import client

        body = None
        if resource_version:
            body = client.V1DeleteOptions(preconditions=client.V1Preconditions(resource_version=resource_version))
        try:
            if not kind.group:
                _get_core_v1().delete_namespaced_config_map(name=name, namespace=namespace, body=body)
                return
            api = _get_custom_objects()
            if kind.namespaced:
                api.delete_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name, body=body)
            else:
                api.delete_cluster_custom_object(kind.group, kind.version, kind.plural, name, body=body)
        except Exception as e:
            raise self._translate(e, kind, namespace, name) from e

    def _translate(self, e: Exception, kind: ResourceKind, namespace: Optional[str], name: Optional[str]) -> Exception:
        from kubernetes.client.rest import ApiException

        where = f"{kind} {namespace + '/' if namespace else ''}{name or ''}".strip()
        if not isinstance(e, ApiException):
            return TransientClusterError(f"{where}: {e}")

        reason = _status_reason(e)
        if e.status == 404:
            # A 404 from a group/version the server does not serve means the CRD is missing.
            # Collection requests only 404 in that case.
            if kind.group and (name is None or not self._served(kind)):
                return KindNotInstalled(f"{kind} is not installed")
            return NotFound(f"{where} not found")
        if e.status == 409:
            if reason == "AlreadyExists":
                return AlreadyExists(f"{where} already exists")
            return ConflictError(f"{where}: conflict", status=e.status, reason=reason)
        return TransientClusterError(f"{where}: {e.status} {reason}", status=e.status, reason=reason)

    def _served(self, kind: ResourceKind) -> bool:
        try:
            return self.is_installed(kind)
        except Exception:
            # Discovery failed too; report the original 404 as a plain not-found.
            return True


def get_k8s_provider() -> ResourceClient:
    """Seam for swapping provider implementations (tests use an in-memory cluster)."""
    return DefaultK8sProvider()
