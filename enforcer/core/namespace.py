"""Resolve the control-plane namespace that owns a policy's authorizer."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from enforcer.core.kinds import GATEWAY, HTTP_ROUTE
from enforcer.core.labels import KUADRANT_NAMESPACE_LABEL
from enforcer.core.models import Gateway, Policy, Route
from enforcer.errors import KindNotInstalled, NamespaceResolutionError, NotFound

logger = logging.getLogger(__name__)


def namespace_from_annotations(annotations: Optional[Mapping[str, str]]) -> Optional[str]:
    value = (annotations or {}).get(KUADRANT_NAMESPACE_LABEL) or ""
    return value.strip() or None


def resolve_control_plane_namespace(
    policy: Policy,
    target: Optional[Gateway | Route] = None,
    gateway: Optional[Gateway] = None,
    *,
    client: Any = None,
) -> str:
    """
    Resolution order:
      1. explicit annotation on the policy
      2. the target chain: target annotation, then its gateway's annotation
      3. with a resource client: fetch the target (and a route's parent gateways) and repeat 2

    Raises NamespaceResolutionError when nothing yields a namespace.
    """
    ns = namespace_from_annotations(policy.annotations)
    if ns:
        return ns

    for obj in (target, gateway):
        if obj is None:
            continue
        ns = namespace_from_annotations(obj.annotations)
        if ns:
            return ns

    if client is not None:
        ns = _resolve_from_cluster(client, policy)
        if ns:
            return ns

    raise NamespaceResolutionError(f"cannot determine control-plane namespace for policy {policy.key}")


def _resolve_from_cluster(client: Any, policy: Policy) -> Optional[str]:
    kind = GATEWAY if policy.target_ref.kind == "Gateway" else HTTP_ROUTE
    target_key = policy.target_key
    try:
        obj = client.get(kind, target_key.name, namespace=target_key.namespace)
    except (NotFound, KindNotInstalled):
        logger.debug("policy %s target %s %s not found", policy.key, kind.kind, target_key)
        return None

    ns = namespace_from_annotations(_annotations(obj))
    if ns or kind is GATEWAY:
        return ns

    for gw_namespace, gw_name in _parent_gateways(obj):
        try:
            gw = client.get(GATEWAY, gw_name, namespace=gw_namespace)
        except NotFound:
            continue
        ns = namespace_from_annotations(_annotations(gw))
        if ns:
            return ns
    return None


def _annotations(obj: Dict[str, Any]) -> Dict[str, str]:
    return ((obj or {}).get("metadata") or {}).get("annotations") or {}


def _parent_gateways(route: Dict[str, Any]) -> Iterable[tuple[str, str]]:
    route_ns = ((route.get("metadata") or {}).get("namespace")) or ""
    for ref in (route.get("spec") or {}).get("parentRefs") or []:
        if (ref.get("kind") or "Gateway") != "Gateway":
            continue
        name = ref.get("name")
        if name:
            yield (ref.get("namespace") or route_ns, name)
