"""
Envoy Gateway JSON patches that add upstream clusters to the gateway's generated xDS.

Both patches carry a full cluster definition under an `add` operation at the root path:
- rate limit cluster: plaintext gRPC (HTTP/2) to the limitador service
- wasm binary source cluster: the same over TLS, with SNI set to the host
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field

from enforcer.core.kinds import ENVOY_PATCH_POLICY
from enforcer.core.models import Gateway

logger = logging.getLogger(__name__)

CLUSTER_RESOURCE_TYPE = "type.googleapis.com/envoy.config.cluster.v3.Cluster"
UPSTREAM_TLS_CONTEXT_TYPE = "type.googleapis.com/envoy.extensions.transport_sockets.tls.v3.UpstreamTlsContext"

KUADRANT_RATE_LIMIT_CLUSTER_NAME = "kuadrant-rate-limiting-service"
RATE_LIMIT_WASM_SOURCE_CLUSTER_NAME = "kuadrant-ratelimit-wasm-source"


class JSONPatchOperation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    op: Literal["add", "remove", "replace", "move", "copy", "test"]
    path: str = ""
    value: Dict[str, Any] = Field(default_factory=dict)


class EnvoyJSONPatch(BaseModel):
    """One entry of an EnvoyPatchPolicy's `jsonPatches` list."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str
    name: str
    operation: JSONPatchOperation

    def to_manifest(self) -> Dict[str, Any]:
        return self.model_dump()


def is_envoy_patch_policy_installed(client: Any) -> bool:
    installed = client.is_installed(ENVOY_PATCH_POLICY)
    if not installed:
        logger.debug("%s not served by the cluster", ENVOY_PATCH_POLICY)
    return installed


def rate_limit_envoy_patch_policy_name(gateway: Gateway) -> str:
    return f"kuadrant-{gateway.name}"


def _cluster(name: str, host: str, port: int) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "STRICT_DNS",
        "connect_timeout": "1s",
        "lb_policy": "ROUND_ROBIN",
        "http2_protocol_options": {},
        "load_assignment": {
            "cluster_name": name,
            "endpoints": [
                {
                    "lb_endpoints": [
                        {"endpoint": {"address": {"socket_address": {"address": host, "port_value": port}}}}
                    ]
                }
            ],
        },
    }


def _add_cluster(cluster: Dict[str, Any]) -> EnvoyJSONPatch:
    return EnvoyJSONPatch(
        type=CLUSTER_RESOURCE_TYPE,
        name=cluster["name"],
        operation=JSONPatchOperation(op="add", path="", value=cluster),
    )


def limitador_cluster_patch(limitador_host: str, limitador_grpc_port: int) -> EnvoyJSONPatch:
    """Cluster the gateway's rate limit filter calls to reach limitador."""
    return _add_cluster(_cluster(KUADRANT_RATE_LIMIT_CLUSTER_NAME, limitador_host, limitador_grpc_port))


def wasm_binary_source_cluster_patch(host: str, port: int) -> EnvoyJSONPatch:
    """Cluster the gateway fetches the rate limit wasm module from. TLS only."""
    cluster = _cluster(RATE_LIMIT_WASM_SOURCE_CLUSTER_NAME, host, port)
    cluster["dns_lookup_family"] = "V4_ONLY"
    cluster["transport_socket"] = {
        "name": "envoy.transport_sockets.tls",
        "typed_config": {"@type": UPSTREAM_TLS_CONTEXT_TYPE, "sni": host},
    }
    return _add_cluster(cluster)
