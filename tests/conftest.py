"""
Pytest config.

Local imports like `import enforcer` rely on the repo root being on sys.path. When invoking a
global `pytest` entrypoint without an editable install that doesn't happen reliably during
collection, so we pin it here.

The `cluster` fixture is an in-memory stand-in for the Kubernetes resource layer. It speaks the
same error taxonomy as `DefaultK8sProvider` (NotFound / AlreadyExists / KindNotInstalled /
ConflictError) and tracks resourceVersions so optimistic-concurrency paths can be exercised.
"""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from enforcer.config import EnforcerConfig  # noqa: E402
from enforcer.core.kinds import ResourceKind  # noqa: E402
from enforcer.core.labels import matches_selector  # noqa: E402
from enforcer.errors import AlreadyExists, ConflictError, KindNotInstalled, NotFound  # noqa: E402


class FakeCluster:
    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.uninstalled: Set[ResourceKind] = set()
        self.calls: List[Tuple[str, str, str, str]] = []
        self._failures: Dict[Tuple[str, str, Optional[str]], Exception] = {}
        self._rv = 0

    # --- test helpers -------------------------------------------------------------------

    def add(self, kind: ResourceKind, obj: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(obj)
        stored.setdefault("metadata", {})
        self._bump(stored)
        self.objects[self._key(kind, stored)] = stored
        return copy.deepcopy(stored)

    def peek(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        obj = self.objects.get(self._key_for(kind, name, namespace))
        return copy.deepcopy(obj) if obj is not None else None

    def all(self, kind: ResourceKind) -> List[Dict[str, Any]]:
        out = []
        for (plural, group, _, _), obj in self.objects.items():
            if (plural, group) == (kind.plural, kind.group):
                out.append(copy.deepcopy(obj))
        return out

    def fail(self, verb: str, kind: ResourceKind, exc: Exception, name: Optional[str] = None) -> None:
        self._failures[(verb, kind.kind, name)] = exc

    def clear_failures(self) -> None:
        self._failures.clear()

    def verbs(self, verb: str, kind: Optional[ResourceKind] = None) -> List[Tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] == verb and (kind is None or c[1] == kind.kind)]

    # --- ResourceClient ---------------------------------------------------------------

    def is_installed(self, kind: ResourceKind) -> bool:
        return kind not in self.uninstalled

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self._enter("get", kind, name, namespace)
        obj = self.objects.get(self._key_for(kind, name, namespace))
        if obj is None:
            raise NotFound(f"{kind.kind} {namespace}/{name} not found")
        return copy.deepcopy(obj)

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        self._enter("list", kind, None, namespace)
        out = []
        for obj in self.all(kind):
            meta = obj.get("metadata") or {}
            if namespace and meta.get("namespace") != namespace:
                continue
            if matches_selector(meta.get("labels"), label_selector):
                out.append(obj)
        return out

    def create(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        meta = body.get("metadata") or {}
        self._enter("create", kind, meta.get("name"), meta.get("namespace"))
        key = self._key(kind, body)
        if key in self.objects:
            raise AlreadyExists(f"{kind.kind} {meta.get('namespace')}/{meta.get('name')} already exists")
        stored = copy.deepcopy(body)
        self._bump(stored)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        meta = body.get("metadata") or {}
        self._enter("update", kind, meta.get("name"), meta.get("namespace"))
        key = self._key(kind, body)
        current = self.objects.get(key)
        if current is None:
            raise NotFound(f"{kind.kind} {meta.get('namespace')}/{meta.get('name')} not found")
        rv = meta.get("resourceVersion")
        if rv and rv != current["metadata"].get("resourceVersion"):
            raise ConflictError(f"{kind.kind} {meta.get('name')}: conflict", status=409, reason="Conflict")
        stored = copy.deepcopy(body)
        self._bump(stored)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> None:
        self._enter("delete", kind, name, namespace)
        key = self._key_for(kind, name, namespace)
        current = self.objects.get(key)
        if current is None:
            raise NotFound(f"{kind.kind} {namespace}/{name} not found")
        if resource_version and resource_version != current["metadata"].get("resourceVersion"):
            raise ConflictError(f"{kind.kind} {name}: precondition failed", status=409, reason="Conflict")
        del self.objects[key]

    # --- internals --------------------------------------------------------------------

    def _enter(self, verb: str, kind: ResourceKind, name: Optional[str], namespace: Optional[str]) -> None:
        self.calls.append((verb, kind.kind, namespace or "", name or ""))
        if kind in self.uninstalled:
            raise KindNotInstalled(f"{kind} is not installed")
        exc = self._failures.get((verb, kind.kind, name)) or self._failures.get((verb, kind.kind, None))
        if exc is not None:
            raise exc

    def _bump(self, obj: Dict[str, Any]) -> None:
        self._rv += 1
        obj.setdefault("metadata", {})["resourceVersion"] = str(self._rv)

    def _key(self, kind: ResourceKind, obj: Dict[str, Any]) -> Tuple[str, str, str, str]:
        meta = obj.get("metadata") or {}
        return self._key_for(kind, meta.get("name") or "", meta.get("namespace"))

    @staticmethod
    def _key_for(kind: ResourceKind, name: str, namespace: Optional[str]) -> Tuple[str, str, str, str]:
        return (kind.plural, kind.group, (namespace or "") if kind.namespaced else "", name)


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def cfg() -> EnforcerConfig:
    return EnforcerConfig()
