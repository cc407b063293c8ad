"""
Error taxonomy.

Expected outcomes (`NotFound`, `AlreadyExists`, `KindNotInstalled`, `RepresentationNotInstalled`)
are absorbed where they occur. Everything else propagates to the caller unchanged; callers
retry on the next trigger.
"""

from __future__ import annotations

from typing import Optional


class EnforcerError(Exception):
    """Base class for all enforcer errors."""


class NamespaceResolutionError(EnforcerError):
    """The owning control-plane namespace of a policy could not be determined."""


class TransientClusterError(EnforcerError):
    """API server or network failure. Retryable by the caller."""

    def __init__(self, message: str, *, status: Optional[int] = None, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class ConflictError(TransientClusterError):
    """Optimistic-concurrency conflict (stale resourceVersion) on update."""


class NotFound(EnforcerError):
    """The requested object does not exist."""


class AlreadyExists(EnforcerError):
    """An object with the same key already exists."""


class KindNotInstalled(EnforcerError):
    """The resource kind is not served by the API server (CRD missing)."""


class RepresentationNotInstalled(EnforcerError):
    """A mesh configuration representation is not present in the cluster."""


class ClassificationError(EnforcerError):
    """A gateway was classified into more than one bucket."""


class LimitadorNotReady(EnforcerError):
    """The limitador instance exists but does not report Ready."""
