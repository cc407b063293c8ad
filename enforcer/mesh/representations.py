"""
Mesh configuration shapes that can hold the external authorizer entry.

Every variant exposes the same capability: read the extension-provider list, test for an
entry structurally, add/remove it in memory, and hand back the object to persist. Nothing is
written here; the registrar persists `config_object()` after a mutation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import yaml

from enforcer.config import EnforcerConfig
from enforcer.core.kinds import CONFIG_MAP, ISTIO_OPERATOR, SAIL_ISTIO, SERVICE_MESH_CONTROL_PLANE, ResourceKind
from enforcer.core.models import AuthorizerEntry
from enforcer.errors import KindNotInstalled, NotFound, RepresentationNotInstalled

logger = logging.getLogger(__name__)

EXTENSION_PROVIDERS = "extensionProviders"


def _dig(obj: Dict[str, Any], path: Sequence[str], *, create: bool) -> Optional[Dict[str, Any]]:
    cur = obj
    for key in path:
        nxt = cur.get(key)
        if not isinstance(nxt, dict):
            if not create:
                return None
            nxt = {}
            cur[key] = nxt
        cur = nxt
    return cur


class MeshConfigRepresentation(ABC):
    kind: ResourceKind

    def __init__(self, obj: Dict[str, Any]) -> None:
        self.obj = obj

    @classmethod
    @abstractmethod
    def locate(cls, client: Any, cfg: EnforcerConfig) -> "MeshConfigRepresentation":
        """Fetch the backing object. Raises NotFound / KindNotInstalled from the resource layer."""

    @classmethod
    def probe(cls, client: Any, cfg: EnforcerConfig) -> "MeshConfigRepresentation":
        try:
            return cls.locate(client, cfg)
        except (NotFound, KindNotInstalled) as e:
            raise RepresentationNotInstalled(f"{cls.__name__}: {e}") from e

    @abstractmethod
    def _mesh_config(self, *, create: bool) -> Optional[Dict[str, Any]]: ...

    @property
    def description(self) -> str:
        meta = self.obj.get("metadata") or {}
        ns = meta.get("namespace")
        return f"{self.kind.kind} {ns + '/' if ns else ''}{meta.get('name')}"

    def authorizers(self) -> List[Dict[str, Any]]:
        mesh = self._mesh_config(create=False) or {}
        return list(mesh.get(EXTENSION_PROVIDERS) or [])

    def has_authorizer(self, entry: AuthorizerEntry) -> bool:
        return any(entry.matches(p) for p in self.authorizers())

    def add_authorizer(self, entry: AuthorizerEntry) -> bool:
        if self.has_authorizer(entry):
            return False
        mesh = self._mesh_config(create=True)
        providers = mesh.get(EXTENSION_PROVIDERS)
        if not isinstance(providers, list):
            providers = []
            mesh[EXTENSION_PROVIDERS] = providers
        providers.append(entry.to_extension_provider())
        return True

    def remove_authorizer(self, entry: AuthorizerEntry) -> bool:
        mesh = self._mesh_config(create=False)
        if not mesh:
            return False
        providers = list(mesh.get(EXTENSION_PROVIDERS) or [])
        kept = [p for p in providers if not entry.matches(p)]
        if len(kept) == len(providers):
            return False
        mesh[EXTENSION_PROVIDERS] = kept
        return True

    def config_object(self) -> Dict[str, Any]:
        return self.obj


class IstioOperatorConfig(MeshConfigRepresentation):
    """Istio operator install spec: `spec.meshConfig`."""

    kind = ISTIO_OPERATOR

    @classmethod
    def locate(cls, client: Any, cfg: EnforcerConfig) -> "IstioOperatorConfig":
        return cls(client.get(ISTIO_OPERATOR, cfg.control_plane_name, namespace=cfg.control_plane_namespace))

    def _mesh_config(self, *, create: bool) -> Optional[Dict[str, Any]]:
        return _dig(self.obj, ("spec", "meshConfig"), create=create)


class SailIstioConfig(MeshConfigRepresentation):
    """Sail operator `Istio` CR (cluster scoped): `spec.values.meshConfig`."""

    kind = SAIL_ISTIO

    @classmethod
    def locate(cls, client: Any, cfg: EnforcerConfig) -> "SailIstioConfig":
        return cls(client.get(SAIL_ISTIO, cfg.istio_cr_name))

    def _mesh_config(self, *, create: bool) -> Optional[Dict[str, Any]]:
        return _dig(self.obj, ("spec", "values", "meshConfig"), create=create)


class MeshConfigMapConfig(MeshConfigRepresentation):
    """Mesh config embedded as YAML under `data.mesh` of the control-plane ConfigMap."""

    kind = CONFIG_MAP
    data_key = "mesh"

    def __init__(self, obj: Dict[str, Any]) -> None:
        super().__init__(obj)
        raw = (obj.get("data") or {}).get(self.data_key) or ""
        parsed = yaml.safe_load(raw) if raw.strip() else None
        self._mesh: Dict[str, Any] = parsed if isinstance(parsed, dict) else {}

    @classmethod
    def locate(cls, client: Any, cfg: EnforcerConfig) -> "MeshConfigMapConfig":
        return cls(client.get(CONFIG_MAP, cfg.mesh_config_map_name, namespace=cfg.control_plane_namespace))

    def _mesh_config(self, *, create: bool) -> Optional[Dict[str, Any]]:
        return self._mesh

    def config_object(self) -> Dict[str, Any]:
        data = self.obj.get("data")
        if not isinstance(data, dict):
            data = {}
            self.obj["data"] = data
        data[self.data_key] = yaml.safe_dump(self._mesh, default_flow_style=False, sort_keys=False)
        return self.obj


class ServiceMeshControlPlaneConfig(MeshConfigRepresentation):
    """OpenShift Service Mesh control plane: `spec.techPreview.meshConfig`."""

    kind = SERVICE_MESH_CONTROL_PLANE

    @classmethod
    def locate(cls, client: Any, cfg: EnforcerConfig) -> "ServiceMeshControlPlaneConfig":
        return cls(
            client.get(SERVICE_MESH_CONTROL_PLANE, cfg.control_plane_name, namespace=cfg.control_plane_namespace)
        )

    def _mesh_config(self, *, create: bool) -> Optional[Dict[str, Any]]:
        return _dig(self.obj, ("spec", "techPreview", "meshConfig"), create=create)
