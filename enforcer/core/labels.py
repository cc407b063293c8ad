from __future__ import annotations

import hashlib
from typing import Dict, Mapping, Optional

# Control-plane namespace owning the authorizer an artifact points at.
KUADRANT_NAMESPACE_LABEL = "kuadrant.io/namespace"

# Back-reference marker placed on a Gateway/Route by the policy that directly targets it.
# Value: "<policy-namespace>/<policy-name>".
AUTH_POLICY_BACK_REF = "kuadrant.io/authpolicy"

# Artifact ownership labels.
AUTH_POLICY_LABEL = AUTH_POLICY_BACK_REF
AUTH_POLICY_NAMESPACE_LABEL = f"{AUTH_POLICY_BACK_REF}-namespace"
GATEWAY_LABEL = "kuadrant.io/gateway"
GATEWAY_NAMESPACE_LABEL = f"{GATEWAY_LABEL}-namespace"

# Routes whose rules an artifact enforces ("ns/name", sorted, comma separated).
ROUTES_ANNOTATION = "kuadrant.io/routes"

OWNED_LABELS = (
    KUADRANT_NAMESPACE_LABEL,
    AUTH_POLICY_LABEL,
    AUTH_POLICY_NAMESPACE_LABEL,
    GATEWAY_LABEL,
    GATEWAY_NAMESPACE_LABEL,
)
OWNED_ANNOTATIONS = (ROUTES_ANNOTATION,)

MAX_LABEL_VALUE_LENGTH = 63


def label_value(value: str) -> str:
    """Object names may exceed the label value limit; long ones are cut and suffixed with a short hash."""
    if len(value) <= MAX_LABEL_VALUE_LENGTH:
        return value
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:8]
    return f"{value[: MAX_LABEL_VALUE_LENGTH - 9].rstrip('-_.')}-{digest}"


def policy_labels(policy_namespace: str, policy_name: str) -> Dict[str, str]:
    return {AUTH_POLICY_LABEL: label_value(policy_name), AUTH_POLICY_NAMESPACE_LABEL: policy_namespace}


def gateway_labels(gateway_namespace: str, gateway_name: str) -> Dict[str, str]:
    return {GATEWAY_LABEL: label_value(gateway_name), GATEWAY_NAMESPACE_LABEL: gateway_namespace}


def artifact_labels(
    *,
    policy_namespace: str,
    policy_name: str,
    gateway_namespace: str,
    gateway_name: str,
    control_plane_namespace: str,
) -> Dict[str, str]:
    labels = {KUADRANT_NAMESPACE_LABEL: control_plane_namespace}
    labels.update(policy_labels(policy_namespace, policy_name))
    labels.update(gateway_labels(gateway_namespace, gateway_name))
    return labels


def to_selector(labels: Mapping[str, str]) -> str:
    """Equality-based label selector string, stable across calls."""
    return ",".join(f"{k}={labels[k]}" for k in sorted(labels))


def parse_selector(selector: Optional[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for part in (selector or "").split(","):
        part = part.strip()
        if not part:
            continue
        key, _, value = part.partition("=")
        out[key.strip()] = value.strip()
    return out


def matches_selector(labels: Optional[Mapping[str, str]], selector: Optional[str]) -> bool:
    wanted = parse_selector(selector)
    have = labels or {}
    return all(have.get(k) == v for k, v in wanted.items())


def owner_of(labels: Optional[Mapping[str, str]]) -> Optional[str]:
    """Return "ns/name" of the policy owning an artifact, if labelled (names as stored in labels)."""
    have = labels or {}
    name = have.get(AUTH_POLICY_LABEL)
    namespace = have.get(AUTH_POLICY_NAMESPACE_LABEL)
    if not name or not namespace:
        return None
    return f"{namespace}/{name}"
