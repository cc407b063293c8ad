"""
Generic create/update/delete convergence.

`reconcile_resource` drives one desired object against the live one:
- absent + desired        -> create ("already exists" from a racing writer counts as success)
- present + desired       -> mutate(existing, desired); update only when it reports a change
- present + tombstoned    -> delete ("not found" counts as success)
- absent + tombstoned     -> nothing

Mutators are field-scoped: they copy only the fields the enforcer owns onto the live object
so other writers' fields survive the update.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Iterable, Literal, Optional

from enforcer.core.kinds import ResourceKind
from enforcer.core.labels import OWNED_ANNOTATIONS, OWNED_LABELS
from enforcer.errors import AlreadyExists, NotFound

logger = logging.getLogger(__name__)

MutateFn = Callable[[Dict[str, Any], Dict[str, Any]], bool]
Action = Literal["created", "updated", "deleted", "unchanged", "absent"]


def _key(obj: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    meta = obj.get("metadata") or {}
    return meta.get("namespace"), meta.get("name")


def reconcile_resource(
    client: Any,
    kind: ResourceKind,
    desired: Dict[str, Any],
    mutate: MutateFn,
    *,
    tombstone: bool = False,
) -> Action:
    namespace, name = _key(desired)
    try:
        existing = client.get(kind, name, namespace=namespace)
    except NotFound:
        existing = None

    if existing is None:
        if tombstone:
            return "absent"
        try:
            client.create(kind, desired)
        except AlreadyExists:
            logger.debug("%s %s/%s created concurrently", kind.kind, namespace, name)
            return "unchanged"
        logger.info("created %s %s/%s", kind.kind, namespace, name)
        return "created"

    if tombstone:
        rv = (existing.get("metadata") or {}).get("resourceVersion")
        try:
            client.delete(kind, name, namespace=namespace, resource_version=rv)
        except NotFound:
            return "absent"
        logger.info("deleted %s %s/%s", kind.kind, namespace, name)
        return "deleted"

    if not mutate(existing, desired):
        return "unchanged"
    client.update(kind, existing)
    logger.info("updated %s %s/%s", kind.kind, namespace, name)
    return "updated"


def delete_by_labels(client: Any, kind: ResourceKind, label_selector: str, namespace: Optional[str] = None) -> int:
    """Delete every object matching the selector. Returns how many were deleted."""
    deleted = 0
    for obj in client.list(kind, namespace=namespace, label_selector=label_selector):
        obj_namespace, obj_name = _key(obj)
        try:
            client.delete(kind, obj_name, namespace=obj_namespace)
        except NotFound:
            continue
        logger.info("deleted %s %s/%s (selector %s)", kind.kind, obj_namespace, obj_name, label_selector)
        deleted += 1
    return deleted


def sync_owned_keys(existing: Dict[str, Any], desired: Dict[str, Any], field: str, keys: Iterable[str]) -> bool:
    """
    Align metadata[field][k] with desired for each owned key k.

    A key the desired object omits is removed from the live object. Unowned keys are untouched.
    """
    existing_meta = existing.setdefault("metadata", {})
    live = existing_meta.get(field) or {}
    want = (desired.get("metadata") or {}).get(field) or {}
    changed = False
    for k in keys:
        if k in want:
            if live.get(k) != want[k]:
                live[k] = want[k]
                changed = True
        elif k in live:
            del live[k]
            changed = True
    if changed or field in existing_meta:
        existing_meta[field] = live
    return changed


def sync_spec_field(existing: Dict[str, Any], desired: Dict[str, Any], field: str) -> bool:
    existing_spec = existing.setdefault("spec", {})
    want = (desired.get("spec") or {}).get(field)
    if existing_spec.get(field) == want:
        return False
    existing_spec[field] = copy.deepcopy(want)
    return True


def security_policy_mutator(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    update = False
    update |= sync_spec_field(existing, desired, "extAuth")
    update |= sync_spec_field(existing, desired, "targetRef")
    update |= sync_owned_keys(existing, desired, "labels", OWNED_LABELS)
    update |= sync_owned_keys(existing, desired, "annotations", OWNED_ANNOTATIONS)
    return update
