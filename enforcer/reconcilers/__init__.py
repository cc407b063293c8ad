"""
Convergence of synthesized objects against the cluster.

Every operation here is idempotent: a failed pass is resumed by simply running it again.
"""

from enforcer.reconcilers.authpolicy import AuthPolicyEnforcementReconciler, ReconcileResult
from enforcer.reconcilers.base import delete_by_labels, reconcile_resource, security_policy_mutator
from enforcer.reconcilers.grants import GrantAggregator, aggregate_grants

__all__ = [
    "AuthPolicyEnforcementReconciler",
    "ReconcileResult",
    "GrantAggregator",
    "aggregate_grants",
    "reconcile_resource",
    "delete_by_labels",
    "security_policy_mutator",
]
