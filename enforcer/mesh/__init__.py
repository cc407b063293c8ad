"""
External authorizer registration across mesh implementations.

Representations share one capability interface; the registrar picks them through a
priority-ordered discovery chain and never caches what it read.
"""

from enforcer.mesh.registrar import ISTIO, OSSM, AuthorizerRegistrar, RegistrationState, discover
from enforcer.mesh.representations import (
    IstioOperatorConfig,
    MeshConfigMapConfig,
    MeshConfigRepresentation,
    SailIstioConfig,
    ServiceMeshControlPlaneConfig,
)

__all__ = [
    "AuthorizerRegistrar",
    "RegistrationState",
    "ISTIO",
    "OSSM",
    "discover",
    "MeshConfigRepresentation",
    "IstioOperatorConfig",
    "SailIstioConfig",
    "MeshConfigMapConfig",
    "ServiceMeshControlPlaneConfig",
]
