"""Rate-limit policy helpers: rate unit conversion and limitador limit synthesis."""

from __future__ import annotations

import copy
import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from enforcer.core.kinds import LIMITADOR
from enforcer.errors import LimitadorNotReady

logger = logging.getLogger(__name__)

LIMITADOR_NAME = "limitador"

TIME_UNIT_SECONDS: Dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 60 * 60 * 24,
}

# Limitador spec fields the enforcer owns.
LIMITADOR_SPEC_SUBSET = ("affinity", "pdb", "replicas", "resourceRequirements", "storage")


class Rate(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    limit: int
    duration: int
    unit: str


class Limit(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rates: List[Rate] = Field(default_factory=list)
    counters: List[str] = Field(default_factory=list)


class RateLimitPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    namespace: str
    name: str
    limits: Dict[str, Limit] = Field(default_factory=dict)


def rate_to_seconds(rate: Rate) -> Tuple[int, int]:
    """
    Convert (limit, duration, unit) to limitador's (max_value, seconds).

    Negative limits clamp to 0; a non-positive duration or an unknown unit yields 0 seconds.
    """
    max_value = max(rate.limit, 0)
    unit_seconds = TIME_UNIT_SECONDS.get(rate.unit)
    if unit_seconds is None or rate.duration <= 0:
        return max_value, 0
    return max_value, unit_seconds * rate.duration


def limits_namespace(policy: RateLimitPolicy) -> str:
    return f"{policy.namespace}/{policy.name}"


def limit_name_to_identifier(limit_name: str) -> str:
    """`limit.` + sanitized name + short hash so names differing only in invalid chars stay unique."""
    sanitized = "".join(c if (c.isalnum() or c == "_") else "_" for c in limit_name)
    digest = hashlib.sha256(limit_name.encode("utf-8")).hexdigest()[:8]
    return f"limit.{sanitized}__{digest}"


def limitador_limits_from_policy(policy: RateLimitPolicy) -> List[Dict[str, Any]]:
    namespace = limits_namespace(policy)
    out: List[Dict[str, Any]] = []
    for limit_key in sorted(policy.limits):
        limit = policy.limits[limit_key]
        identifier = limit_name_to_identifier(limit_key)
        for rate in limit.rates:
            max_value, seconds = rate_to_seconds(rate)
            out.append(
                {
                    "namespace": namespace,
                    "max_value": max_value,
                    "seconds": seconds,
                    "conditions": [f'{identifier} == "1"'],
                    "variables": list(limit.counters),
                    "name": namespace,
                }
            )
    return out


def limitador_mutator(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    """Converge owner references and the owned spec subset; leave everything else alone."""
    update = False
    existing_meta = existing.setdefault("metadata", {})
    desired_owners = (desired.get("metadata") or {}).get("ownerReferences")
    if existing_meta.get("ownerReferences") != desired_owners:
        existing_meta["ownerReferences"] = copy.deepcopy(desired_owners)
        update = True

    existing_spec = existing.setdefault("spec", {})
    desired_spec = desired.get("spec") or {}
    for field in LIMITADOR_SPEC_SUBSET:
        if existing_spec.get(field) != desired_spec.get(field):
            if field in desired_spec:
                existing_spec[field] = copy.deepcopy(desired_spec[field])
            else:
                existing_spec.pop(field, None)
            update = True
    return update


def _condition_true(obj: Dict[str, Any], condition_type: str) -> bool:
    for cond in ((obj.get("status") or {}).get("conditions")) or []:
        if cond.get("type") == condition_type:
            return str(cond.get("status")) == "True"
    return False


def limitador_location(client: Any, namespace: str, name: Optional[str] = None) -> Dict[str, Any]:
    """Fetch the limitador CR of a control-plane namespace; it must report Ready."""
    limitador = client.get(LIMITADOR, name or LIMITADOR_NAME, namespace=namespace)
    logger.debug("read limitador %s/%s", namespace, name or LIMITADOR_NAME)
    if not _condition_true(limitador, "Ready"):
        raise LimitadorNotReady(f"limitador {namespace}/{name or LIMITADOR_NAME} status not ready")
    return limitador
