# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/proxmox/models.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class VM:
    id: int        # vmid, unique per Proxmox node only
    name: str
    node: str      # Proxmox node hosting the VM at discovery time
    uuid: str      # SMBIOS uuid, matches the kubelet's systemUUID


def extract_uuid(smbios: Optional[str]) -> Optional[str]:
    """
    Pull the uuid out of a Proxmox ``smbios1`` string such as
    ``"manufacturer=foo,uuid=5f1b...,serial=bar"``.

    The first comma-separated token containing ``uuid=`` wins; everything
    after its first ``=`` is returned as-is (no format validation).
    """
    if not smbios:
        return None
    for token in smbios.split(","):
        if "uuid=" in token:
            return token.split("=", 1)[1]
    return None
