"""
One reconciliation pass for one auth policy.

Order:
  1. sweep: delete artifacts of gateways no longer in scope (runs to completion first, so a
     gateway leaving and re-entering scope never collides on its derived name)
  2. upsert: synthesize and converge one artifact per in-scope gateway
  3. grants: converge the shared ReferenceGrant of the authorizer namespace (pruned when
     this pass removed anything)

Each step is idempotent; the first hard error aborts the pass and propagates for retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from enforcer.config import EnforcerConfig, load_enforcer_config
from enforcer.core.kinds import SECURITY_POLICY
from enforcer.core.labels import gateway_labels, policy_labels, to_selector
from enforcer.core.models import Gateway, GatewayClassification, Policy, Route
from enforcer.reconcilers.base import Action, delete_by_labels, reconcile_resource, security_policy_mutator
from enforcer.reconcilers.grants import GrantAggregator
from enforcer.synthesis.artifacts import ArtifactSynthesizer, authorizer_ref

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    control_plane_namespace: str
    swept: int = 0
    artifacts: Dict[str, Action] = field(default_factory=dict)
    grant: Optional[Action] = None

    @property
    def removed_any(self) -> bool:
        return self.swept > 0 or any(a == "deleted" for a in self.artifacts.values())


class AuthPolicyEnforcementReconciler:
    def __init__(
        self,
        client: Any,
        cfg: Optional[EnforcerConfig] = None,
        *,
        grants: Optional[GrantAggregator] = None,
        synthesizer: Optional[ArtifactSynthesizer] = None,
    ) -> None:
        self.client = client
        self.cfg = cfg or load_enforcer_config()
        self.grants = grants or GrantAggregator(client, self.cfg)
        self.synthesizer = synthesizer or ArtifactSynthesizer(self.cfg, client=client)

    def control_plane_namespace(
        self,
        policy: Policy,
        target: Union[Gateway, Route],
        classification: GatewayClassification,
    ) -> str:
        gateways = classification.in_scope + list(classification.invalid)
        return self.synthesizer.control_plane_namespace(policy, target, gateways)

    def reconcile(
        self,
        policy: Policy,
        target: Union[Gateway, Route],
        classification: GatewayClassification,
    ) -> ReconcileResult:
        namespace = self.control_plane_namespace(policy, target, classification)
        result = ReconcileResult(control_plane_namespace=namespace)
        try:
            self._sweep(policy, classification, result)
            self._upsert(policy, target, classification, result)
            result.grant = self.grants.reconcile(
                namespace,
                prune=result.removed_any or policy.deletion_pending,
                exclude_policy=str(policy.key) if policy.deletion_pending else None,
            )
        except Exception as e:
            logger.warning("reconciliation of policy %s aborted: %s", policy.key, e)
            raise
        return result

    def _sweep(self, policy: Policy, classification: GatewayClassification, result: ReconcileResult) -> None:
        for gw in classification.invalid:
            labels = policy_labels(policy.namespace, policy.name)
            labels.update(gateway_labels(gw.namespace, gw.name))
            selector = to_selector(labels)
            result.swept += delete_by_labels(self.client, SECURITY_POLICY, selector)

    def _upsert(
        self,
        policy: Policy,
        target: Union[Gateway, Route],
        classification: GatewayClassification,
        result: ReconcileResult,
    ) -> None:
        authorizer = authorizer_ref(result.control_plane_namespace, self.cfg)
        for gw in classification.in_scope:
            # A gateway-targeted policy sees the classifier's view of its own gateway.
            subject = gw if isinstance(target, Gateway) and gw.key == target.key else target
            artifact = self.synthesizer.synthesize(policy, subject, gw, authorizer=authorizer)
            result.artifacts[f"{artifact.namespace}/{artifact.name}"] = reconcile_resource(
                self.client,
                SECURITY_POLICY,
                artifact.to_manifest(),
                security_policy_mutator,
                tombstone=artifact.tombstone,
            )
