# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/controller/interface.py

from __future__ import annotations
from typing import Optional, Protocol

from namesync.k8s.nodes import NodeInfo
from namesync.proxmox.models import VM
from namesync.utils.cancel import CancelToken


class ProxmoxClientInterface(Protocol):
    """
    What the reconciler needs from Proxmox. ClientPool is the real
    implementation; tests pass hand-written fakes.
    """

    def get_vm_by_uuid(self, uuid: str, cancel: Optional[CancelToken] = None) -> Optional[VM]:
        """Raise DiscoveryError when the cluster cannot be listed."""
        ...

    def update_vm_name(self, node: str, vmid: int, new_name: str, cancel: Optional[CancelToken] = None) -> None:
        """Raise MutationError unless the rename task finished successfully."""
        ...


class NodeSource(Protocol):
    def get_node(self, name: str) -> Optional[NodeInfo]:
        """None when the node no longer exists."""
        ...
