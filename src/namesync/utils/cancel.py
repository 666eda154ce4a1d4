# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/utils/cancel.py

from __future__ import annotations

import threading
import time
from typing import Optional


class Cancelled(RuntimeError):
    """Raised when a reconciliation is cancelled or runs past its deadline."""


class CancelToken:
    """
    Cancellation signal handed down through every Proxmox call.

    Combines an explicit cancel (``cancel()``, e.g. on shutdown) with an
    optional absolute deadline. Both are checked cooperatively: before each
    HTTP request and while sleeping between task polls.
    """

    def __init__(self, *, timeout: Optional[float] = None, event: Optional[threading.Event] = None):
        self._event = event or threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    @classmethod
    def never(cls) -> "CancelToken":
        return cls()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("operation cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise Cancelled("operation deadline exceeded")

    def timeout(self, default: float) -> float:
        """HTTP timeout for the next request, never past the deadline."""
        left = self.remaining()
        if left is None:
            return default
        return max(0.001, min(default, left))

    def wait(self, seconds: float) -> None:
        """Sleep up to *seconds*, raising Cancelled as soon as the token fires."""
        left = self.remaining()
        if left is not None:
            seconds = min(seconds, left)
        self._event.wait(seconds)
        self.raise_if_cancelled()
