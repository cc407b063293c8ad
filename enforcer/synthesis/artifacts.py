"""
Artifact synthesis: desired SecurityPolicy for one (policy, gateway) pair.

Identity (name, namespace, labels) is a pure function of the inputs so repeated passes
converge on the same object and bulk lookups by label selector stay stable.

Precedence:
- gateway-level policy: routes carrying their own policy back-reference contribute no rules;
  no remaining rules -> tombstone
- route-level policy: tombstone when the parent gateway carries its own policy
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Iterable, List, Optional, Union

from enforcer.config import EnforcerConfig, load_enforcer_config
from enforcer.core.labels import artifact_labels
from enforcer.core.models import (
    AuthorizerRef,
    EnforcementArtifact,
    Gateway,
    ObjectKey,
    Policy,
    PolicyTargetRef,
    Route,
    RouteRule,
)
from enforcer.core.namespace import resolve_control_plane_namespace
from enforcer.errors import NamespaceResolutionError

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 253
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9.-]+")

Target = Union[Gateway, Route]


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:8]


def artifact_name(gateway: ObjectKey, target_ref: PolicyTargetRef, namespace: Optional[str] = None) -> str:
    """
    Derive the artifact name. `namespace` is where the artifact lives (the target's namespace).

    Route artifacts live beside the route, so parent gateways sharing a name across namespaces
    would collide there; a gateway from another namespace adds a hash of its namespace.
    """
    if target_ref.kind == "Gateway":
        raw = f"on-{gateway.name}"
    else:
        raw = f"on-{gateway.name}-{target_ref.kind}-{target_ref.name}"
        if target_ref.section_name:
            raw = f"{raw}-{target_ref.section_name}"
        if namespace and gateway.namespace != namespace:
            raw = f"{raw}-{_short_hash(gateway.namespace)}"
    name = _INVALID_NAME_CHARS.sub("-", raw.lower()).strip("-.")
    if len(name) <= MAX_NAME_LENGTH:
        return name
    identity = "|".join(
        [
            gateway.namespace,
            gateway.name,
            target_ref.group,
            target_ref.kind,
            target_ref.name,
            target_ref.section_name or "",
        ]
    )
    return f"{name[: MAX_NAME_LENGTH - 9].rstrip('-.')}-{_short_hash(identity)}"


def route_rules(route: Route) -> List[RouteRule]:
    """Rules a route contributes. A route without explicit rules matches everything once."""
    if not route.rules:
        return [RouteRule(route=route.key, index=0, matches=[])]
    return [
        RouteRule(route=route.key, index=i, matches=list(rule.get("matches") or []))
        for i, rule in enumerate(route.rules)
    ]


def authorizer_ref(namespace: str, cfg: Optional[EnforcerConfig] = None) -> AuthorizerRef:
    cfg = cfg or load_enforcer_config()
    return AuthorizerRef(name=cfg.authorizer_service_name, namespace=namespace, port=cfg.authorizer_port)


def synthesize_artifact(
    policy: Policy,
    target: Target,
    gateway: Gateway,
    *,
    authorizer: AuthorizerRef,
) -> EnforcementArtifact:
    artifact = EnforcementArtifact(
        name=artifact_name(gateway.key, policy.target_ref, target.namespace),
        namespace=target.namespace,
        policy=policy.key,
        gateway=gateway.key,
        target_ref=policy.target_ref,
        authorizer=authorizer,
        labels=artifact_labels(
            policy_namespace=policy.namespace,
            policy_name=policy.name,
            gateway_namespace=gateway.namespace,
            gateway_name=gateway.name,
            control_plane_namespace=authorizer.namespace,
        ),
    )

    if policy.deletion_pending:
        logger.debug("policy %s marked for deletion, tombstoning %s", policy.key, artifact.name)
        artifact.tombstone = True
        return artifact

    if isinstance(target, Gateway):
        rules: List[RouteRule] = []
        for route in target.routes:
            if route.has_direct_policy():
                logger.debug("route %s has its own policy %s, not inherited", route.key, route.policy_back_ref)
                continue
            rules.extend(route_rules(route))
        if not rules:
            logger.debug("no routes inherit policy %s on gateway %s, tombstoning", policy.key, gateway.key)
            artifact.tombstone = True
            return artifact
        artifact.rules = rules
        return artifact

    if gateway.has_direct_policy():
        logger.debug("gateway %s has policy %s, tombstoning route artifact", gateway.key, gateway.policy_back_ref)
        artifact.tombstone = True
        return artifact
    artifact.rules = route_rules(target)
    return artifact


class ArtifactSynthesizer:
    """Binds configuration and namespace resolution to `synthesize_artifact`."""

    def __init__(self, cfg: Optional[EnforcerConfig] = None, *, client: Any = None) -> None:
        self.cfg = cfg or load_enforcer_config()
        self.client = client

    def control_plane_namespace(self, policy: Policy, target: Target, gateways: Iterable[Gateway] = ()) -> str:
        """First namespace any (target, gateway) chain resolves to; the cluster is consulted last."""
        for gw in gateways:
            try:
                return resolve_control_plane_namespace(policy, target, gw)
            except NamespaceResolutionError:
                continue
        return resolve_control_plane_namespace(policy, target, client=self.client)

    def authorizer_for(self, policy: Policy, target: Target, gateway: Optional[Gateway] = None) -> AuthorizerRef:
        return authorizer_ref(self.control_plane_namespace(policy, target, [gateway] if gateway else []), self.cfg)

    def synthesize(
        self,
        policy: Policy,
        target: Target,
        gateway: Gateway,
        *,
        authorizer: Optional[AuthorizerRef] = None,
    ) -> EnforcementArtifact:
        if authorizer is None:
            authorizer = self.authorizer_for(policy, target, gateway)
        return synthesize_artifact(policy, target, gateway, authorizer=authorizer)
