# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/controller/reconciler.py

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from namesync.config.models import ControllerSettings
from namesync.controller.interface import NodeSource, ProxmoxClientInterface
from namesync.k8s.nodes import is_control_plane
from namesync.proxmox.errors import DiscoveryError, MutationError
from namesync.utils.cancel import CancelToken, Cancelled

# Observer bits
from namesync.observers.dispatcher import EventBus
from namesync.observers.events import (
    new_ctx,
    NodeGone,
    NodeSkipped,
    VmNotFound,
    VmInSync,
    VmRenamed,
    ReconcileFailed,
)

log = logging.getLogger("namesync")


@dataclass(frozen=True)
class ReconcileResult:
    error: Optional[Exception] = None
    requeue_after: Optional[float] = None   # seconds; None = do not requeue

    @property
    def ok(self) -> bool:
        return self.error is None


class NodeReconciler:
    """
    Keeps the Proxmox VM name equal to the Kubernetes node name.

    One call to reconcile() walks
        fetch node -> classify -> resolve VM by uuid -> compare -> rename
    and always hands back a fixed requeue interval so that drift introduced
    outside the controller (manual renames in the Proxmox UI) is picked up
    on a later pass. Nothing is kept between calls.
    """

    def __init__(
        self,
        nodes: NodeSource,
        proxmox: ProxmoxClientInterface,
        settings: Optional[ControllerSettings] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
    ):
        self.nodes = nodes
        self.proxmox = proxmox
        self.settings = settings or ControllerSettings()
        self.bus = bus or EventBus()
        self.run_id = run_id or str(uuid.uuid4())

    def reconcile(self, name: str, cancel: Optional[CancelToken] = None) -> ReconcileResult:
        cancel = cancel or CancelToken.never()
        ctx = new_ctx(self.run_id, name)
        try:
            return self._reconcile(name, cancel, ctx)
        except Cancelled as e:
            log.info("Reconcile of node %s cancelled: %s", name, e)
            self.bus.emit(ReconcileFailed(stage="cancelled", error=str(e), **ctx))
            return ReconcileResult(error=e, requeue_after=self.settings.error_requeue)
        except Exception as e:
            log.exception("Unexpected error reconciling node %s", name)
            self.bus.emit(ReconcileFailed(stage="unexpected", error=str(e), **ctx))
            return ReconcileResult(error=e, requeue_after=self.settings.error_requeue)

    def _reconcile(self, name: str, cancel: CancelToken, ctx: dict) -> ReconcileResult:
        s = self.settings

        node = self.nodes.get_node(name)
        if node is None:
            log.info("Node %s not found, probably deleted", name)
            self.bus.emit(NodeGone(**ctx))
            return ReconcileResult()

        log.debug("Reconciling node %s", node.name)

        if is_control_plane(node):
            log.debug("Skipping control plane node %s", node.name)
            self.bus.emit(NodeSkipped(reason="control-plane", **ctx))
            return ReconcileResult(requeue_after=s.control_plane_requeue)

        cancel.raise_if_cancelled()

        vm = None
        if node.system_uuid:
            try:
                vm = self.proxmox.get_vm_by_uuid(node.system_uuid, cancel=cancel)
            except DiscoveryError as e:
                log.error("Failed to search for VM in Proxmox for node %s: %s", node.name, e)
                self.bus.emit(ReconcileFailed(stage="resolve", error=str(e), **ctx))
                return ReconcileResult(error=e, requeue_after=s.error_requeue)

        if vm is None:
            log.info("No Proxmox VM with uuid %r for node %s", node.system_uuid, node.name)
            self.bus.emit(VmNotFound(system_uuid=node.system_uuid, **ctx))
            return ReconcileResult(requeue_after=s.not_found_requeue)

        if vm.name == node.name:
            log.debug("VM %s already named %s", vm.id, node.name)
            self.bus.emit(VmInSync(vmid=vm.id, proxmox_node=vm.node, **ctx))
            return ReconcileResult(requeue_after=s.in_sync_requeue)

        log.info(
            "Updating VM name to match node name node=%s vmid=%s current=%s new=%s",
            node.name, vm.id, vm.name, node.name,
        )
        t0 = time.monotonic()
        try:
            self.proxmox.update_vm_name(vm.node, vm.id, node.name, cancel=cancel)
        except MutationError as e:
            log.error("Failed to update VM %s name for node %s: %s", vm.id, node.name, e)
            self.bus.emit(ReconcileFailed(stage="rename", error=str(e), vmid=vm.id, **ctx))
            return ReconcileResult(error=e, requeue_after=s.error_requeue)

        duration_ms = int((time.monotonic() - t0) * 1000)
        self.bus.emit(
            VmRenamed(
                vmid=vm.id,
                proxmox_node=vm.node,
                old_name=vm.name,
                new_name=node.name,
                duration_ms=duration_ms,
                **ctx,
            )
        )
        return ReconcileResult(requeue_after=s.renamed_requeue)
