"""
Register the shared external authorizer with whichever mesh is installed.

Implementation A (Istio) is resolved through a priority chain: the operator install spec,
else the Sail `Istio` CR; the companion mesh ConfigMap is included whenever it exists. If
any A representation exists, only A is touched. Otherwise implementation B (OpenShift
Service Mesh) is used: the ServiceMeshMember prerequisite is ensured, then the
ServiceMeshControlPlane is updated. Failure to reach B is reported.

Objects are re-read on every call; conflicts on persist propagate for the caller to retry.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from enforcer.config import EnforcerConfig, load_enforcer_config
from enforcer.core.kinds import SERVICE_MESH_MEMBER
from enforcer.core.models import AuthorizerEntry
from enforcer.errors import AlreadyExists, KindNotInstalled, NotFound, RepresentationNotInstalled
from enforcer.mesh.representations import (
    IstioOperatorConfig,
    MeshConfigMapConfig,
    MeshConfigRepresentation,
    SailIstioConfig,
    ServiceMeshControlPlaneConfig,
)

logger = logging.getLogger(__name__)

ISTIO = "istio"
OSSM = "ossm"

PRIMARY_CHAIN: Sequence[Type[MeshConfigRepresentation]] = (IstioOperatorConfig, SailIstioConfig)
COMPANIONS: Sequence[Type[MeshConfigRepresentation]] = (MeshConfigMapConfig,)

SERVICE_MESH_MEMBER_NAME = "default"


class RegistrationState(str, enum.Enum):
    UNREGISTERED = "Unregistered"
    REGISTERED = "Registered"


def discover(
    client: Any,
    cfg: EnforcerConfig,
    chain: Sequence[Type[MeshConfigRepresentation]] = PRIMARY_CHAIN,
    companions: Sequence[Type[MeshConfigRepresentation]] = COMPANIONS,
) -> List[MeshConfigRepresentation]:
    """First representation found in `chain`, plus every companion that exists alongside it."""
    found: List[MeshConfigRepresentation] = []
    for cls in chain:
        try:
            found.append(cls.probe(client, cfg))
            break
        except RepresentationNotInstalled as e:
            logger.debug("mesh config representation not installed: %s", e)
    if not found:
        return found
    for cls in companions:
        try:
            found.append(cls.probe(client, cfg))
        except RepresentationNotInstalled as e:
            logger.debug("mesh config companion not installed: %s", e)
    return found


def controller_reference(owner: Dict[str, Any]) -> Dict[str, Any]:
    meta = owner.get("metadata") or {}
    return {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": meta.get("name"),
        "uid": meta.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }


class AuthorizerRegistrar:
    def __init__(self, client: Any, cfg: Optional[EnforcerConfig] = None) -> None:
        self.client = client
        self.cfg = cfg or load_enforcer_config()

    def authorizer(self, namespace: str) -> AuthorizerEntry:
        return AuthorizerEntry(
            name=self.cfg.authorizer_provider_name,
            service=self.cfg.authorizer_service_name,
            namespace=namespace,
            port=self.cfg.authorizer_port,
        )

    def register(self, namespace: str, owner: Optional[Dict[str, Any]] = None) -> str:
        """Ensure the authorizer entry exists exactly once. Returns the mesh used."""
        entry = self.authorizer(namespace)
        configs = discover(self.client, self.cfg)
        if configs:
            for config in configs:
                self._add(config, entry)
            return ISTIO

        self._ensure_member(namespace, owner)
        self._add(ServiceMeshControlPlaneConfig.locate(self.client, self.cfg), entry)
        return OSSM

    def unregister(self, namespace: str) -> str:
        """Remove the authorizer entry if present. The ServiceMeshMember is left in place."""
        entry = self.authorizer(namespace)
        configs = discover(self.client, self.cfg)
        if configs:
            for config in configs:
                self._remove(config, entry)
            return ISTIO

        self._remove(ServiceMeshControlPlaneConfig.locate(self.client, self.cfg), entry)
        return OSSM

    def state(self, namespace: str) -> Dict[str, RegistrationState]:
        entry = self.authorizer(namespace)
        out = {ISTIO: RegistrationState.UNREGISTERED, OSSM: RegistrationState.UNREGISTERED}

        configs = discover(self.client, self.cfg)
        if configs and all(c.has_authorizer(entry) for c in configs):
            out[ISTIO] = RegistrationState.REGISTERED

        try:
            smcp = ServiceMeshControlPlaneConfig.locate(self.client, self.cfg)
        except (NotFound, KindNotInstalled):
            return out
        if smcp.has_authorizer(entry):
            out[OSSM] = RegistrationState.REGISTERED
        return out

    def _add(self, config: MeshConfigRepresentation, entry: AuthorizerEntry) -> None:
        if not config.add_authorizer(entry):
            logger.debug("external authorizer already present in %s", config.description)
            return
        logger.info("adding external authorizer to %s", config.description)
        self.client.update(config.kind, config.config_object())

    def _remove(self, config: MeshConfigRepresentation, entry: AuthorizerEntry) -> None:
        if not config.remove_authorizer(entry):
            logger.debug("external authorizer not present in %s", config.description)
            return
        logger.info("removing external authorizer from %s", config.description)
        self.client.update(config.kind, config.config_object())

    def _ensure_member(self, namespace: str, owner: Optional[Dict[str, Any]]) -> None:
        try:
            self.client.get(SERVICE_MESH_MEMBER, SERVICE_MESH_MEMBER_NAME, namespace=namespace)
            return
        except NotFound:
            pass

        member: Dict[str, Any] = {
            "apiVersion": SERVICE_MESH_MEMBER.api_version,
            "kind": SERVICE_MESH_MEMBER.kind,
            "metadata": {"name": SERVICE_MESH_MEMBER_NAME, "namespace": namespace},
            "spec": {
                "controlPlaneRef": {
                    "name": self.cfg.control_plane_name,
                    "namespace": self.cfg.control_plane_namespace,
                }
            },
        }
        if owner:
            member["metadata"]["ownerReferences"] = [controller_reference(owner)]
        try:
            self.client.create(SERVICE_MESH_MEMBER, member)
        except AlreadyExists:
            logger.debug("ServiceMeshMember %s/%s created concurrently", namespace, SERVICE_MESH_MEMBER_NAME)
            return
        logger.info("created ServiceMeshMember %s/%s", namespace, SERVICE_MESH_MEMBER_NAME)
