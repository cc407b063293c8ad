"""
Cross-namespace grants letting SecurityPolicies reach the shared authorizer service.

One ReferenceGrant lives in each authorizer namespace. Its `from` list names every namespace
holding a live artifact that points at that authorizer. Passes are per policy, so the normal
merge is additive: entries on the live grant are kept, new ones appended, duplicates dropped.

A pass that removed artifacts prunes instead. It reads the grant first, lists every live
artifact referencing the authorizer namespace, and replaces `from` with exactly that set. The
update carries the resourceVersion it read, so a concurrent additive writer surfaces as a
conflict (retried by the caller) rather than a silently revoked entry.

Only SecurityPolicy entries are managed. Entries of any other group/kind are left in place,
and a grant still carrying them is updated rather than deleted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from enforcer.config import EnforcerConfig, load_enforcer_config
from enforcer.core.kinds import ENVOY_GATEWAY_GROUP, REFERENCE_GRANT, SECURITY_POLICY
from enforcer.core.labels import KUADRANT_NAMESPACE_LABEL, owner_of, policy_labels, to_selector
from enforcer.core.models import CrossNamespaceGrant, ReferenceGrantFrom, ReferenceGrantTo
from enforcer.errors import AlreadyExists, NotFound
from enforcer.reconcilers.base import Action, reconcile_resource

logger = logging.getLogger(__name__)


def _from_key(entry: Dict[str, Any]) -> tuple[str, str, str]:
    return (entry.get("group") or "", entry.get("kind") or "", entry.get("namespace") or "")


def _labelled_owner(policy_key: str) -> Optional[str]:
    # Long policy names are hashed in labels; compare in label space.
    namespace, _, name = policy_key.partition("/")
    return owner_of(policy_labels(namespace, name))


def is_live_artifact(artifact: Dict[str, Any], exclude_policy: Optional[str] = None) -> bool:
    meta = artifact.get("metadata") or {}
    if meta.get("deletionTimestamp"):
        return False
    if exclude_policy and owner_of(meta.get("labels")) == _labelled_owner(exclude_policy):
        return False
    return True


def authorizer_namespace_of(artifact: Dict[str, Any]) -> Optional[str]:
    backend = (((artifact.get("spec") or {}).get("extAuth") or {}).get("grpc") or {}).get("backendRef") or {}
    # An unset backendRef namespace means the artifact's own namespace.
    return backend.get("namespace") or (artifact.get("metadata") or {}).get("namespace")


def build_grant(
    authorizer_namespace: str,
    from_namespaces: Iterable[str],
    *,
    authorizer_service: str,
    grant_name: str,
) -> CrossNamespaceGrant:
    froms = [ReferenceGrantFrom(namespace=ns) for ns in from_namespaces if ns != authorizer_namespace]
    return CrossNamespaceGrant(
        name=grant_name,
        namespace=authorizer_namespace,
        from_=froms,
        to=ReferenceGrantTo(name=authorizer_service),
        tombstone=not froms,
    )


def aggregate_grants(
    artifacts: Iterable[Dict[str, Any]],
    *,
    authorizer_service: str,
    grant_name: str,
    exclude_policy: Optional[str] = None,
) -> Dict[str, CrossNamespaceGrant]:
    """Group live artifacts by authorizer namespace into one desired grant each."""
    groups: Dict[str, List[str]] = {}
    for artifact in artifacts:
        if not is_live_artifact(artifact, exclude_policy):
            continue
        auth_ns = authorizer_namespace_of(artifact)
        if not auth_ns:
            continue
        art_ns = (artifact.get("metadata") or {}).get("namespace") or ""
        members = groups.setdefault(auth_ns, [])
        if art_ns and art_ns not in members:
            members.append(art_ns)

    return {
        auth_ns: build_grant(
            auth_ns,
            sorted(members),
            authorizer_service=authorizer_service,
            grant_name=grant_name,
        )
        for auth_ns, members in groups.items()
    }


def _sync_to(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    spec = existing.setdefault("spec", {})
    want = (desired.get("spec") or {}).get("to") or []
    if spec.get("to") == want:
        return False
    spec["to"] = [dict(t) for t in want]
    return True


def additive_grant_mutator(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    spec = existing.setdefault("spec", {})
    current = list(spec.get("from") or [])
    merged: List[Dict[str, Any]] = []
    seen = set()
    for entry in current + list((desired.get("spec") or {}).get("from") or []):
        key = _from_key(entry)
        if key in seen:
            continue
        seen.add(key)
        merged.append(dict(entry))

    update = merged != current
    if update:
        spec["from"] = merged
    update |= _sync_to(existing, desired)
    return update


def is_owned_entry(entry: Dict[str, Any]) -> bool:
    """`from` entries the enforcer manages; entries of other group/kind pairs belong to other writers."""
    return (entry.get("group") or "", entry.get("kind") or "") == (ENVOY_GATEWAY_GROUP, SECURITY_POLICY.kind)


def foreign_entries(grant: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [e for e in ((grant.get("spec") or {}).get("from") or []) if not is_owned_entry(e)]


def replace_grant_mutator(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    spec = existing.setdefault("spec", {})
    want = [dict(e) for e in (desired.get("spec") or {}).get("from") or []]
    owned = [e for e in spec.get("from") or [] if is_owned_entry(e)]
    update = sorted(_from_key(e) for e in owned) != sorted(_from_key(e) for e in want)
    if update:
        spec["from"] = foreign_entries(existing) + want
    update |= _sync_to(existing, desired)
    return update



class GrantAggregator:
    def __init__(self, client: Any, cfg: Optional[EnforcerConfig] = None) -> None:
        self.client = client
        self.cfg = cfg or load_enforcer_config()

    def desired_grant(self, authorizer_namespace: str, *, exclude_policy: Optional[str] = None) -> CrossNamespaceGrant:
        selector = to_selector({KUADRANT_NAMESPACE_LABEL: authorizer_namespace})
        artifacts = self.client.list(SECURITY_POLICY, label_selector=selector)
        grants = aggregate_grants(
            artifacts,
            authorizer_service=self.cfg.authorizer_service_name,
            grant_name=self.cfg.grant_name,
            exclude_policy=exclude_policy,
        )
        grant = grants.get(authorizer_namespace)
        if grant is None:
            grant = build_grant(
                authorizer_namespace,
                [],
                authorizer_service=self.cfg.authorizer_service_name,
                grant_name=self.cfg.grant_name,
            )
        return grant

    def reconcile(
        self,
        authorizer_namespace: str,
        *,
        prune: bool = False,
        exclude_policy: Optional[str] = None,
    ) -> Action:
        if prune:
            return self._prune(authorizer_namespace, exclude_policy=exclude_policy)

        desired = self.desired_grant(authorizer_namespace, exclude_policy=exclude_policy)
        if desired.tombstone:
            logger.debug("no artifacts outside %s reference the authorizer, grant not needed", authorizer_namespace)
            # Entries written by other controllers keep the grant alive.
            return self._prune(authorizer_namespace, exclude_policy=exclude_policy)
        return reconcile_resource(
            self.client,
            REFERENCE_GRANT,
            desired.to_manifest(),
            additive_grant_mutator,
            tombstone=desired.tombstone,
        )

    def _prune(self, authorizer_namespace: str, *, exclude_policy: Optional[str]) -> Action:
        # Read before listing: any artifact created before a concurrent grant write is then listed.
        try:
            existing = self.client.get(REFERENCE_GRANT, self.cfg.grant_name, namespace=authorizer_namespace)
        except NotFound:
            existing = None

        desired = self.desired_grant(authorizer_namespace, exclude_policy=exclude_policy)
        manifest = desired.to_manifest()

        if existing is None:
            if desired.tombstone:
                return "absent"
            try:
                self.client.create(REFERENCE_GRANT, manifest)
            except AlreadyExists:
                return "unchanged"
            logger.info("created ReferenceGrant %s/%s", authorizer_namespace, self.cfg.grant_name)
            return "created"

        if desired.tombstone and not foreign_entries(existing):
            rv = (existing.get("metadata") or {}).get("resourceVersion")
            try:
                self.client.delete(
                    REFERENCE_GRANT, self.cfg.grant_name, namespace=authorizer_namespace, resource_version=rv
                )
            except NotFound:
                return "absent"
            logger.info("deleted ReferenceGrant %s/%s", authorizer_namespace, self.cfg.grant_name)
            return "deleted"

        if not replace_grant_mutator(existing, manifest):
            return "unchanged"
        self.client.update(REFERENCE_GRANT, existing)
        logger.info(
            "pruned ReferenceGrant %s/%s to %s", authorizer_namespace, self.cfg.grant_name, desired.from_namespaces
        )
        return "updated"
