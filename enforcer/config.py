from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def _env_port(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        port = int(raw)
    except Exception:
        return default
    if port <= 0 or port > 65535:
        return default
    return port


@dataclass(frozen=True)
class EnforcerConfig:
    # Mesh control-plane discovery
    control_plane_name: str = "istiocontrolplane"
    control_plane_namespace: str = "istio-system"
    mesh_config_map_name: str = "istio"
    istio_cr_name: str = "default"  # Sail only processes Gateway API resources for `default`

    # External authorizer coordinates (the namespace is resolved per policy)
    authorizer_service_name: str = "authorino-authorino-authorization"
    authorizer_port: int = 50051
    authorizer_provider_name: str = "kuadrant-authorization"

    # Shared cross-namespace grant, one per authorizer namespace
    grant_name: str = "kuadrant-authorization-rg"


@lru_cache(maxsize=1)
def load_enforcer_config() -> EnforcerConfig:
    """
    Load enforcer settings from environment variables (ConfigMap friendly).

    Recognised vars:
    - ISTIOOPERATOR_NAME / ISTIOOPERATOR_NAMESPACE
    - ISTIOCONFIGMAP_NAME
    - ISTIO_CR_NAME
    - AUTHORIZER_SERVICE_NAME / AUTHORIZER_PORT / AUTHORIZER_PROVIDER_NAME
    - ENFORCER_GRANT_NAME
    """
    defaults = EnforcerConfig()
    return EnforcerConfig(
        control_plane_name=_env_str("ISTIOOPERATOR_NAME", defaults.control_plane_name),
        control_plane_namespace=_env_str("ISTIOOPERATOR_NAMESPACE", defaults.control_plane_namespace),
        mesh_config_map_name=_env_str("ISTIOCONFIGMAP_NAME", defaults.mesh_config_map_name),
        istio_cr_name=_env_str("ISTIO_CR_NAME", defaults.istio_cr_name),
        authorizer_service_name=_env_str("AUTHORIZER_SERVICE_NAME", defaults.authorizer_service_name),
        authorizer_port=_env_port("AUTHORIZER_PORT", defaults.authorizer_port),
        authorizer_provider_name=_env_str("AUTHORIZER_PROVIDER_NAME", defaults.authorizer_provider_name),
        grant_name=_env_str("ENFORCER_GRANT_NAME", defaults.grant_name),
    )
