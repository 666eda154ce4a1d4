# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/k8s/nodes.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from kubernetes import client
from kubernetes.client.exceptions import ApiException

CONTROL_PLANE_ROLES = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)


@dataclass(frozen=True)
class NodeInfo:
    name: str
    system_uuid: str = ""                  # status.nodeInfo.systemUUID
    labels: Dict[str, str] = field(default_factory=dict)
    taint_keys: Tuple[str, ...] = ()


def node_info_from(node: client.V1Node) -> NodeInfo:
    meta = node.metadata
    spec = node.spec
    status = node.status

    system_uuid = ""
    if status is not None and status.node_info is not None:
        system_uuid = status.node_info.system_uuid or ""

    taints = (spec.taints if spec is not None else None) or []
    return NodeInfo(
        name=meta.name,
        system_uuid=system_uuid,
        labels=dict(meta.labels or {}),
        taint_keys=tuple(t.key for t in taints),
    )


def is_control_plane(node: NodeInfo) -> bool:
    """True when the node carries a control-plane/master role label or taint."""
    if any(role in node.labels for role in CONTROL_PLANE_ROLES):
        return True
    return any(key in CONTROL_PLANE_ROLES for key in node.taint_keys)


class KubeNodeSource:
    """Fetches Node objects straight from the API server on every call."""

    def __init__(self, core_api: client.CoreV1Api):
        self.core_api = core_api

    def get_node(self, name: str) -> Optional[NodeInfo]:
        try:
            node = self.core_api.read_node(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return node_info_from(node)
