# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one controller process
    node: str         # Kubernetes node name being reconciled

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(run_id: str, node: str) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id,
        "node": node,
    }


# ---------------------------------------------------------------------
# Reconcile outcomes (one per reconciliation)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeGone(BaseEvent):
    pass

@dataclass(frozen=True)
class NodeSkipped(BaseEvent):
    reason: str

@dataclass(frozen=True)
class VmNotFound(BaseEvent):
    system_uuid: str

@dataclass(frozen=True)
class VmInSync(BaseEvent):
    vmid: int
    proxmox_node: str

@dataclass(frozen=True)
class VmRenamed(BaseEvent):
    vmid: int
    proxmox_node: str
    old_name: str
    new_name: str
    duration_ms: int

@dataclass(frozen=True)
class ReconcileFailed(BaseEvent):
    stage: str        # "resolve" | "rename" | "cancelled" | "unexpected"
    error: str
    vmid: Optional[int] = None
