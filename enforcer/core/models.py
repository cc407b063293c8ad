"""Domain models for policies, targets, and the objects the enforcer synthesizes.

Inputs (`Policy`, `Gateway`, `Route`, `GatewayClassification`) are frozen: they are read
once per reconciliation pass and owned elsewhere. Outputs render to plain manifest dicts
via `to_manifest()` so they can be handed to the resource layer unchanged.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from enforcer.core.kinds import ENVOY_GATEWAY_GROUP, GATEWAY_API_GROUP, REFERENCE_GRANT, SECURITY_POLICY
from enforcer.core.labels import AUTH_POLICY_BACK_REF, ROUTES_ANNOTATION
from enforcer.errors import ClassificationError


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BaseModelFrozen(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ObjectKey(BaseModelFrozen):
    namespace: str = ""
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


class PolicyTargetRef(BaseModelFrozen):
    group: str = GATEWAY_API_GROUP
    kind: Literal["Gateway", "HTTPRoute"]
    name: str
    section_name: Optional[str] = None

    def to_manifest(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"group": self.group, "kind": self.kind, "name": self.name}
        if self.section_name:
            out["sectionName"] = self.section_name
        return out


class Policy(BaseModelFrozen):
    namespace: str
    name: str
    target_ref: PolicyTargetRef
    annotations: Dict[str, str] = Field(default_factory=dict)
    deletion_pending: bool = False

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    @property
    def target_key(self) -> ObjectKey:
        # Policies may only target objects in their own namespace.
        return ObjectKey(namespace=self.namespace, name=self.target_ref.name)


class _Target(BaseModelFrozen):
    namespace: str
    name: str
    annotations: Dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    @property
    def policy_back_ref(self) -> Optional[str]:
        return self.annotations.get(AUTH_POLICY_BACK_REF) or None

    def has_direct_policy(self) -> bool:
        return self.policy_back_ref is not None


class Route(_Target):
    rules: List[Dict[str, Any]] = Field(default_factory=list)


class Gateway(_Target):
    # Accepted child routes only.
    routes: List[Route] = Field(default_factory=list)


class GatewayClassification(BaseModelFrozen):
    """Three-way partition of the gateways relevant to one policy."""

    valid: List[Gateway] = Field(default_factory=list)
    missing: List[Gateway] = Field(default_factory=list)
    invalid: List[Gateway] = Field(default_factory=list)

    @model_validator(mode="after")
    def _disjoint(self) -> "GatewayClassification":
        seen: Dict[ObjectKey, str] = {}
        for bucket in ("valid", "missing", "invalid"):
            for gw in getattr(self, bucket):
                prior = seen.get(gw.key)
                if prior is not None and prior != bucket:
                    raise ClassificationError(f"gateway {gw.key} classified as both {prior} and {bucket}")
                seen[gw.key] = bucket
        return self

    @property
    def in_scope(self) -> List[Gateway]:
        return list(self.valid) + list(self.missing)


class AuthorizerRef(BaseModelFrozen):
    name: str
    namespace: str
    port: int

    def to_backend_ref(self) -> Dict[str, Any]:
        return {"name": self.name, "namespace": self.namespace, "port": self.port}


class RouteRule(BaseModelFrozen):
    route: ObjectKey
    index: int
    matches: List[Dict[str, Any]] = Field(default_factory=list)


class EnforcementArtifact(BaseModelStrict):
    """Desired SecurityPolicy for one (policy, gateway) pair."""

    name: str
    namespace: str
    policy: ObjectKey
    gateway: ObjectKey
    target_ref: PolicyTargetRef
    authorizer: AuthorizerRef
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    rules: List[RouteRule] = Field(default_factory=list)
    tombstone: bool = False

    @property
    def routes(self) -> List[ObjectKey]:
        out: List[ObjectKey] = []
        for rule in self.rules:
            if rule.route not in out:
                out.append(rule.route)
        return out

    def to_manifest(self) -> Dict[str, Any]:
        annotations = dict(self.annotations)
        routes = sorted(str(r) for r in self.routes)
        if routes:
            annotations[ROUTES_ANNOTATION] = ",".join(routes)
        metadata: Dict[str, Any] = {"name": self.name, "namespace": self.namespace, "labels": dict(self.labels)}
        if annotations:
            metadata["annotations"] = annotations
        return {
            "apiVersion": SECURITY_POLICY.api_version,
            "kind": SECURITY_POLICY.kind,
            "metadata": metadata,
            "spec": {
                "targetRef": self.target_ref.to_manifest(),
                "extAuth": {"grpc": {"backendRef": self.authorizer.to_backend_ref()}},
            },
        }


class ReferenceGrantFrom(BaseModelFrozen):
    group: str = ENVOY_GATEWAY_GROUP
    kind: str = SECURITY_POLICY.kind
    namespace: str

    def to_manifest(self) -> Dict[str, str]:
        return {"group": self.group, "kind": self.kind, "namespace": self.namespace}


class ReferenceGrantTo(BaseModelFrozen):
    group: str = ""
    kind: str = "Service"
    name: str

    def to_manifest(self) -> Dict[str, str]:
        return {"group": self.group, "kind": self.kind, "name": self.name}


class CrossNamespaceGrant(BaseModelStrict):
    """Desired ReferenceGrant letting artifact namespaces reach the authorizer service."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    namespace: str
    from_: List[ReferenceGrantFrom] = Field(default_factory=list, alias="from")
    to: ReferenceGrantTo
    tombstone: bool = False

    @property
    def from_namespaces(self) -> List[str]:
        return [f.namespace for f in self.from_]

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "apiVersion": REFERENCE_GRANT.api_version,
            "kind": REFERENCE_GRANT.kind,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": {
                "from": [f.to_manifest() for f in self.from_],
                "to": [self.to.to_manifest()],
            },
        }


class AuthorizerEntry(BaseModelFrozen):
    """The external authorizer as registered in mesh config `extensionProviders`."""

    name: str
    service: str
    namespace: str
    port: int

    @property
    def host(self) -> str:
        return f"{self.service}.{self.namespace}.svc.cluster.local"

    def to_extension_provider(self) -> Dict[str, Any]:
        return {"name": self.name, "envoyExtAuthzGrpc": {"service": self.host, "port": self.port}}

    def matches(self, provider: Any) -> bool:
        """Structural comparison against a raw extension-provider entry."""
        if not isinstance(provider, dict) or provider.get("name") != self.name:
            return False
        grpc = provider.get("envoyExtAuthzGrpc")
        if not isinstance(grpc, dict):
            return False
        try:
            port = int(grpc.get("port"))
        except (TypeError, ValueError):
            return False
        return grpc.get("service") == self.host and port == self.port
