"""Resource kinds touched by the enforcer (group/version/plural coordinates)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.kind}.{self.group or 'core'}/{self.version}"


GATEWAY_API_GROUP = "gateway.networking.k8s.io"
ENVOY_GATEWAY_GROUP = "gateway.envoyproxy.io"

GATEWAY = ResourceKind(GATEWAY_API_GROUP, "v1", "Gateway", "gateways")
HTTP_ROUTE = ResourceKind(GATEWAY_API_GROUP, "v1", "HTTPRoute", "httproutes")
REFERENCE_GRANT = ResourceKind(GATEWAY_API_GROUP, "v1beta1", "ReferenceGrant", "referencegrants")
SECURITY_POLICY = ResourceKind(ENVOY_GATEWAY_GROUP, "v1alpha1", "SecurityPolicy", "securitypolicies")
ENVOY_PATCH_POLICY = ResourceKind(ENVOY_GATEWAY_GROUP, "v1alpha1", "EnvoyPatchPolicy", "envoypatchpolicies")

CONFIG_MAP = ResourceKind("", "v1", "ConfigMap", "configmaps")

# Mesh implementation A (Istio): operator install spec, or the Sail operator's Istio CR.
ISTIO_OPERATOR = ResourceKind("install.istio.io", "v1alpha1", "IstioOperator", "istiooperators")
SAIL_ISTIO = ResourceKind("operator.istio.io", "v1alpha1", "Istio", "istios", namespaced=False)

# Mesh implementation B (OpenShift Service Mesh).
SERVICE_MESH_CONTROL_PLANE = ResourceKind("maistra.io", "v2", "ServiceMeshControlPlane", "servicemeshcontrolplanes")
SERVICE_MESH_MEMBER = ResourceKind("maistra.io", "v1", "ServiceMeshMember", "servicemeshmembers")

LIMITADOR = ResourceKind("limitador.kuadrant.io", "v1alpha1", "Limitador", "limitadors")
