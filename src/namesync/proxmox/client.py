# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/proxmox/client.py

from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, List, Optional, Sequence

from namesync.config.models import ProxmoxConfig
from namesync.proxmox.errors import DiscoveryError, MutationError, TransportError
from namesync.proxmox.models import VM, extract_uuid
from namesync.proxmox.transport import ProxmoxEndpoint
from namesync.utils.cancel import CancelToken

log = logging.getLogger("namesync")

TASK_INTERVAL_SECONDS = 5.0
TASK_TIMEOUT_SECONDS = 30.0


class ClientPool:
    """
    A Proxmox cluster seen through every configured endpoint.

    The endpoint tuple is fixed at construction. Each operation probes the
    endpoints in configured order and uses the first one that answers; nothing
    about endpoint health is remembered between calls.
    """

    def __init__(
        self,
        endpoints: Sequence[ProxmoxEndpoint],
        *,
        task_interval: float = TASK_INTERVAL_SECONDS,
        task_timeout: float = TASK_TIMEOUT_SECONDS,
    ):
        if not endpoints:
            raise ValueError("at least one Proxmox endpoint is required")
        self._endpoints = tuple(endpoints)
        self.task_interval = task_interval
        self.task_timeout = task_timeout

    @classmethod
    def from_config(
        cls,
        cfg: ProxmoxConfig,
        *,
        task_interval: float = TASK_INTERVAL_SECONDS,
        task_timeout: float = TASK_TIMEOUT_SECONDS,
    ) -> "ClientPool":
        endpoints = []
        for url in cfg.host_urls:
            if cfg.uses_token:
                ep = ProxmoxEndpoint(
                    url,
                    token_id=cfg.token_id,
                    secret=cfg.secret,
                    verify_tls=not cfg.insecure,
                    timeout=cfg.timeout_seconds,
                )
            else:
                ep = ProxmoxEndpoint(
                    url,
                    username=cfg.username,
                    password=cfg.password,
                    verify_tls=not cfg.insecure,
                    timeout=cfg.timeout_seconds,
                )
            endpoints.append(ep)
        return cls(endpoints, task_interval=task_interval, task_timeout=task_timeout)

    @property
    def endpoints(self) -> tuple:
        return self._endpoints

    # -----------------------
    # Failover
    # -----------------------
    def _get_endpoint(self, cancel: CancelToken) -> ProxmoxEndpoint:
        errors: List[Exception] = []
        for ep in self._endpoints:
            try:
                ep.version(cancel=cancel)
            except TransportError as e:
                log.debug("Proxmox endpoint %s did not answer: %s", ep.url, e)
                errors.append(e)
                continue
            return ep
        raise DiscoveryError("no Proxmox endpoint reachable", errors)

    # -----------------------
    # Discovery
    # -----------------------
    def get_vms(self, cancel: Optional[CancelToken] = None) -> List[VM]:
        """
        Every VM in the cluster that carries an SMBIOS uuid.

        Nodes and VMs are walked sequentially through a single live endpoint.
        """
        cancel = cancel or CancelToken.never()
        ep = self._get_endpoint(cancel)

        try:
            nodes = ep.nodes(cancel=cancel)
            all_vms: List[VM] = []
            for node_status in nodes:
                node = node_status["node"]
                for partial in ep.vms(node, cancel=cancel):
                    vm = self._vm_from(ep, node, partial, cancel)
                    if vm is not None:
                        all_vms.append(vm)
        except TransportError as e:
            raise DiscoveryError(f"failed to list VMs via {ep.url}", [e]) from e
        except (KeyError, TypeError, ValueError) as e:
            raise DiscoveryError(f"malformed response from {ep.url}", [e]) from e

        return all_vms

    def _vm_from(self, ep: ProxmoxEndpoint, node: str, partial: Dict[str, Any], cancel: CancelToken) -> Optional[VM]:
        vmid = int(partial["vmid"])
        config = ep.vm_config(node, vmid, cancel=cancel)
        if not config:
            log.info("Skipping VM with no configuration vmid=%s node=%s", vmid, node)
            return None
        if not isinstance(config, dict):
            raise TypeError(f"config of VM {vmid} on node {node} is not an object")

        smbios = config.get("smbios1")
        if smbios is not None and not isinstance(smbios, str):
            raise TypeError(f"smbios1 of VM {vmid} on node {node} is not a string")
        uuid = extract_uuid(smbios)
        if uuid is None:
            log.info("Skipping VM with no uuid vmid=%s node=%s", vmid, node)
            return None

        return VM(
            id=vmid,
            name=config.get("name") or partial.get("name") or "",
            node=node,
            uuid=uuid,
        )

    def get_vm_by_uuid(self, uuid: str, cancel: Optional[CancelToken] = None) -> Optional[VM]:
        """
        The VM whose SMBIOS uuid equals *uuid*, or None.

        Cloned VMs can share a uuid; the first one in discovery order is
        returned and the clash is logged.
        """
        matches = [vm for vm in self.get_vms(cancel=cancel) if vm.uuid == uuid]
        if not matches:
            return None
        if len(matches) > 1:
            log.warning(
                "Duplicate SMBIOS uuid %s on VMs %s, using vmid=%s",
                uuid,
                ", ".join(f"{vm.node}/{vm.id}" for vm in matches),
                matches[0].id,
            )
        return matches[0]

    def get_vm_by_name(self, name: str, cancel: Optional[CancelToken] = None) -> Optional[VM]:
        """
        Deprecated: match a VM by name instead of SMBIOS uuid.

        Per VM, in one pass: exact match, then case-insensitive match, then
        case-insensitive substring in either direction. Substring matching is
        ambiguous ("web" matches "web-backup"); use get_vm_by_uuid instead.
        """
        warnings.warn(
            "get_vm_by_name is deprecated, use get_vm_by_uuid",
            DeprecationWarning,
            stacklevel=2,
        )
        wanted = name.lower()
        for vm in self.get_vms(cancel=cancel):
            current = vm.name.lower()
            if vm.name == name or current == wanted:
                return vm
            if wanted in current or current in wanted:
                return vm
        return None

    # -----------------------
    # Mutation
    # -----------------------
    def update_vm_name(
        self,
        node: str,
        vmid: int,
        new_name: str,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        """
        Rename VM *vmid* on Proxmox node *node* and wait for the task to finish.

        *node* is the owner recorded at discovery time; it is not re-resolved.
        """
        cancel = cancel or CancelToken.never()
        try:
            ep = self._get_endpoint(cancel)
        except DiscoveryError as e:
            raise MutationError(f"failed to rename VM {vmid}: {e}") from e

        try:
            upid = ep.set_vm_name(node, vmid, new_name, cancel=cancel)
        except TransportError as e:
            raise MutationError(f"failed to update VM {vmid} name") from e

        if upid and not isinstance(upid, str):
            raise MutationError(f"failed to update VM {vmid} name: unexpected task id {upid!r}")

        if not upid:
            log.debug("Rename of VM %s on %s returned no task, nothing to wait for", vmid, node)
            return

        try:
            ep.wait_task(node, upid, interval=self.task_interval, timeout=self.task_timeout, cancel=cancel)
        except (TransportError, TimeoutError) as e:
            raise MutationError(f"failed to wait for VM {vmid} name update task: {e}") from e
