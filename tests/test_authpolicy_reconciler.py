from __future__ import annotations

import pytest

from enforcer.core.kinds import REFERENCE_GRANT, SECURITY_POLICY
from enforcer.core.labels import (
    AUTH_POLICY_BACK_REF,
    GATEWAY_NAMESPACE_LABEL,
    KUADRANT_NAMESPACE_LABEL,
    MAX_LABEL_VALUE_LENGTH,
    artifact_labels,
)
from enforcer.core.models import Gateway, GatewayClassification, Policy, PolicyTargetRef, Route
from enforcer.errors import ClassificationError, NamespaceResolutionError, TransientClusterError
from enforcer.reconcilers import AuthPolicyEnforcementReconciler
from enforcer.synthesis.artifacts import ArtifactSynthesizer

GRANT = "kuadrant-authorization-rg"


def _gateway(name: str = "gw", *, routes=(), policy: str | None = None) -> Gateway:
    annotations = {KUADRANT_NAMESPACE_LABEL: "kuadrant"}
    if policy:
        annotations[AUTH_POLICY_BACK_REF] = policy
    return Gateway(namespace="app", name=name, annotations=annotations, routes=list(routes))


def _route(name: str, *, policy: str | None = None) -> Route:
    annotations = {AUTH_POLICY_BACK_REF: policy} if policy else {}
    return Route(namespace="app", name=name, annotations=annotations, rules=[{"matches": []}])


def _policy(kind: str = "Gateway", target: str = "gw", *, deleting: bool = False, name: str = "p") -> Policy:
    return Policy(
        namespace="app",
        name=name,
        target_ref=PolicyTargetRef(kind=kind, name=target),
        deletion_pending=deleting,
    )


def _index(calls, verb, name):
    return next(i for i, c in enumerate(calls) if c[0] == verb and c[3] == name)


def test_gateway_policy_end_to_end(cluster, cfg):
    gw = _gateway(routes=[_route("r1"), _route("r2")])
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)

    result = rec.reconcile(_policy(), gw, GatewayClassification(valid=[gw]))

    assert result.control_plane_namespace == "kuadrant"
    assert result.artifacts == {"app/on-gw": "created"}
    assert result.grant == "created"
    live = cluster.peek(SECURITY_POLICY, "on-gw", "app")
    assert live["metadata"]["annotations"]["kuadrant.io/routes"] == "app/r1,app/r2"
    grant = cluster.peek(REFERENCE_GRANT, GRANT, "kuadrant")
    assert [f["namespace"] for f in grant["spec"]["from"]] == ["app"]


def test_second_pass_is_a_noop(cluster, cfg):
    gw = _gateway(routes=[_route("r1")])
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)
    rec.reconcile(_policy(), gw, GatewayClassification(valid=[gw]))
    writes_before = len([c for c in cluster.calls if c[0] in ("create", "update", "delete")])

    result = rec.reconcile(_policy(), gw, GatewayClassification(valid=[gw]))

    assert result.artifacts == {"app/on-gw": "unchanged"}
    assert result.grant == "unchanged"
    assert len([c for c in cluster.calls if c[0] in ("create", "update", "delete")]) == writes_before


def test_deleting_policy_removes_artifact_and_grant(cluster, cfg):
    gw = _gateway(routes=[_route("r1")])
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)
    rec.reconcile(_policy(), gw, GatewayClassification(valid=[gw]))

    result = rec.reconcile(_policy(deleting=True), gw, GatewayClassification(valid=[gw]))

    assert result.artifacts == {"app/on-gw": "deleted"}
    assert result.grant == "deleted"
    assert cluster.peek(SECURITY_POLICY, "on-gw", "app") is None
    assert cluster.peek(REFERENCE_GRANT, GRANT, "kuadrant") is None


def test_deleting_policy_keeps_grant_for_other_namespaces(cluster, cfg):
    gw = _gateway(routes=[_route("r1")])
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)
    rec.reconcile(_policy(), gw, GatewayClassification(valid=[gw]))
    other = {
        "metadata": {
            "name": "on-shared",
            "namespace": "other",
            "labels": artifact_labels(
                policy_namespace="other",
                policy_name="q",
                gateway_namespace="other",
                gateway_name="shared",
                control_plane_namespace="kuadrant",
            ),
        },
        "spec": {"extAuth": {"grpc": {"backendRef": {"name": "authz", "namespace": "kuadrant", "port": 50051}}}},
    }
    cluster.add(SECURITY_POLICY, other)
    rec.grants.reconcile("kuadrant")

    result = rec.reconcile(_policy(deleting=True), gw, GatewayClassification(valid=[gw]))

    assert result.grant == "updated"
    grant = cluster.peek(REFERENCE_GRANT, GRANT, "kuadrant")
    assert [f["namespace"] for f in grant["spec"]["from"]] == ["other"]


def test_sweep_runs_before_upsert(cluster, cfg):
    old_gw = _gateway("g-old")
    new_gw = _gateway("g-new", routes=[_route("r1")])
    cluster.add(
        SECURITY_POLICY,
        {
            "metadata": {
                "name": "on-g-old-httproute-r1",
                "namespace": "app",
                "labels": artifact_labels(
                    policy_namespace="app",
                    policy_name="p",
                    gateway_namespace="app",
                    gateway_name="g-old",
                    control_plane_namespace="kuadrant",
                ),
            }
        },
    )
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)

    result = rec.reconcile(
        _policy("HTTPRoute", "r1"),
        _route("r1"),
        GatewayClassification(valid=[new_gw], invalid=[old_gw]),
    )

    assert result.swept == 1
    assert result.artifacts == {"app/on-g-new-httproute-r1": "created"}
    assert cluster.peek(SECURITY_POLICY, "on-g-old-httproute-r1", "app") is None
    assert _index(cluster.calls, "delete", "on-g-old-httproute-r1") < _index(
        cluster.calls, "create", "on-g-new-httproute-r1"
    )


def test_route_policy_shadowed_by_gateway_policy(cluster, cfg):
    route = _route("r1")
    gw = _gateway(routes=[route], policy="app/gateway-policy")

    result = AuthPolicyEnforcementReconciler(cluster, cfg).reconcile(
        _policy("HTTPRoute", "r1"), route, GatewayClassification(valid=[gw])
    )

    assert result.artifacts == {"app/on-gw-httproute-r1": "absent"}
    assert cluster.verbs("create") == []


def test_partial_failure_resumes_on_next_pass(cluster, cfg):
    route = _route("r1")
    g1 = _gateway("g1", routes=[route])
    g2 = _gateway("g2", routes=[route])
    classification = GatewayClassification(valid=[g1, g2])
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)
    cluster.fail("create", SECURITY_POLICY, TransientClusterError("apiserver unavailable"), name="on-g2-httproute-r1")

    with pytest.raises(TransientClusterError):
        rec.reconcile(_policy("HTTPRoute", "r1"), route, classification)

    assert cluster.peek(SECURITY_POLICY, "on-g1-httproute-r1", "app") is not None
    assert cluster.peek(REFERENCE_GRANT, GRANT, "kuadrant") is None

    cluster.clear_failures()
    result = rec.reconcile(_policy("HTTPRoute", "r1"), route, classification)

    assert result.artifacts == {
        "app/on-g1-httproute-r1": "unchanged",
        "app/on-g2-httproute-r1": "created",
    }
    assert result.grant == "created"


def test_unresolvable_namespace_aborts_before_any_write(cluster, cfg):
    gw = Gateway(namespace="app", name="gw", routes=[_route("r1")])

    with pytest.raises(NamespaceResolutionError):
        AuthPolicyEnforcementReconciler(cluster, cfg).reconcile(_policy(), gw, GatewayClassification(valid=[gw]))

    assert [c for c in cluster.calls if c[0] in ("create", "update", "delete")] == []


def test_gateway_in_two_buckets_is_rejected():
    gw = _gateway()
    with pytest.raises(ClassificationError):
        GatewayClassification(valid=[gw], invalid=[gw])


def test_route_policy_with_same_named_gateways_in_two_namespaces(cluster, cfg):
    route = _route("r1")
    annotations = {KUADRANT_NAMESPACE_LABEL: "kuadrant"}
    a = Gateway(namespace="a", name="edge", annotations=annotations, routes=[route])
    b = Gateway(namespace="b", name="edge", annotations=annotations, routes=[route])

    result = AuthPolicyEnforcementReconciler(cluster, cfg).reconcile(
        _policy("HTTPRoute", "r1"), route, GatewayClassification(valid=[a, b])
    )

    assert sorted(result.artifacts.values()) == ["created", "created"]
    live = cluster.all(SECURITY_POLICY)
    assert len(live) == 2
    assert {obj["metadata"]["namespace"] for obj in live} == {"app"}
    assert {obj["metadata"]["labels"][GATEWAY_NAMESPACE_LABEL] for obj in live} == {"a", "b"}


def test_long_policy_name_is_created_and_cleaned_up(cluster, cfg):
    gw = _gateway(routes=[_route("r1")])
    rec = AuthPolicyEnforcementReconciler(cluster, cfg)
    long_name = "p" * 100
    rec.reconcile(_policy(name=long_name), gw, GatewayClassification(valid=[gw]))

    labels = cluster.peek(SECURITY_POLICY, "on-gw", "app")["metadata"]["labels"]
    assert all(len(v) <= MAX_LABEL_VALUE_LENGTH for v in labels.values())

    result = rec.reconcile(_policy(name=long_name, deleting=True), gw, GatewayClassification(valid=[gw]))

    assert result.grant == "deleted"
    assert cluster.all(SECURITY_POLICY) == []
    assert cluster.peek(REFERENCE_GRANT, GRANT, "kuadrant") is None


class _RecordingSynthesizer(ArtifactSynthesizer):
    def __init__(self, cfg):
        super().__init__(cfg)
        self.synthesized = []

    def synthesize(self, policy, target, gateway, *, authorizer=None):
        self.synthesized.append((policy.key, gateway.key, authorizer.namespace if authorizer else None))
        return super().synthesize(policy, target, gateway, authorizer=authorizer)


def test_reconciler_builds_artifacts_through_its_synthesizer(cluster, cfg):
    gw = _gateway(routes=[_route("r1")])
    synthesizer = _RecordingSynthesizer(cfg)
    rec = AuthPolicyEnforcementReconciler(cluster, cfg, synthesizer=synthesizer)

    rec.reconcile(_policy(), gw, GatewayClassification(valid=[gw]))

    assert synthesizer.synthesized == [(_policy().key, gw.key, "kuadrant")]
