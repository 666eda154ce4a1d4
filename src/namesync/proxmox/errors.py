# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/proxmox/errors.py

from __future__ import annotations

from typing import Optional, Sequence


class ProxmoxError(RuntimeError):
    """Base class for Proxmox-related failures."""


class TransportError(ProxmoxError):
    """A single API call against a single endpoint failed."""

    def __init__(self, endpoint: str, operation: str, reason: str, status: Optional[int] = None):
        self.endpoint = endpoint
        self.operation = operation
        self.status = status
        detail = f"HTTP {status}: {reason}" if status is not None else reason
        super().__init__(f"{operation} on {endpoint} failed: {detail}")


class DiscoveryError(ProxmoxError):
    """
    No endpoint answered, or listing nodes/VMs failed on the selected one.
    Retriable.
    """

    def __init__(self, message: str, errors: Sequence[Exception] = ()):
        self.errors = list(errors)
        if self.errors:
            message = message + ": " + "; ".join(str(e) for e in self.errors)
        super().__init__(message)


class MutationError(ProxmoxError):
    """
    The rename request or its completion task failed or timed out.
    Retriable: a timed-out task may still have applied the rename.
    """
