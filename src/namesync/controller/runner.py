# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/controller/runner.py

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Dict, List, Optional, Set, Tuple

from kubernetes import client, watch

from namesync.controller.reconciler import NodeReconciler
from namesync.utils.cancel import CancelToken

log = logging.getLogger("namesync")

WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_SECONDS = 5.0


class ShutDown(Exception):
    """The queue was shut down while waiting for work."""


class WorkQueue:
    """
    Work queue keyed by node name, modelled on client-go's workqueue:

      - a key waiting to be processed is queued once, however often it is added
      - a key is handed to one worker at a time; adds while it is being
        processed are parked and re-queued on done()
      - add_after() holds a key back until its delay expires; a key waits at
        most once, at the earliest ready time requested for it
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._queue: List[str] = []
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._delayed: List[Tuple[float, int, str]] = []
        self._waiting: Dict[str, float] = {}    # key -> ready time of its live heap entry
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str) -> None:
        with self._cond:
            # a direct add supersedes any pending delayed add
            self._waiting.pop(key, None)
            self._add_locked(key)

    def _add_locked(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready = time.monotonic() + delay
            current = self._waiting.get(key)
            if current is not None and current <= ready:
                return
            # an earlier ready time replaces the pending one; the old heap
            # entry goes stale and is dropped when popped
            self._waiting[key] = ready
            heapq.heappush(self._delayed, (ready, next(self._seq), key))
            self._cond.notify()

    def waiting(self) -> Dict[str, float]:
        """Snapshot of keys held back by add_after() and their ready times."""
        with self._cond:
            return dict(self._waiting)

    def _promote_due_locked(self) -> Optional[float]:
        """Move expired delayed keys onto the queue; seconds until the next one."""
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            ready, _, key = heapq.heappop(self._delayed)
            if self._waiting.get(key) != ready:
                continue
            del self._waiting[key]
            self._add_locked(key)
        while self._delayed and self._waiting.get(self._delayed[0][2]) != self._delayed[0][0]:
            heapq.heappop(self._delayed)
        if self._delayed:
            return self._delayed[0][0] - now
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Next key to process, or None when *timeout* elapses first.
        Raises ShutDown once shutdown() was called and nothing is left.
        """
        end = time.monotonic() + timeout if timeout is not None else None
        with self._cond:
            while True:
                next_due = self._promote_due_locked()
                if self._queue:
                    key = self._queue.pop(0)
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if self._shutting_down:
                    raise ShutDown()

                wait = next_due
                if end is not None:
                    left = end - time.monotonic()
                    if left <= 0:
                        return None
                    wait = left if wait is None else min(wait, left)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._delayed.clear()
            self._waiting.clear()
            self._cond.notify_all()


class NodeController:
    """
    Runs the reconciler on worker threads.

    Distinct nodes are reconciled concurrently; the queue guarantees that a
    single node is never reconciled twice at the same time.
    """

    def __init__(
        self,
        reconciler: NodeReconciler,
        queue: Optional[WorkQueue] = None,
        *,
        workers: int = 2,
        reconcile_timeout: Optional[float] = None,
    ):
        self.reconciler = reconciler
        self.queue = queue or WorkQueue()
        self.workers = workers
        self.reconcile_timeout = reconcile_timeout
        self.stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._inflight: Dict[str, CancelToken] = {}
        self._lock = threading.Lock()

    def process_next(self) -> bool:
        """Reconcile one key. False once the queue is shut down."""
        try:
            key = self.queue.get()
        except ShutDown:
            return False

        cancel = CancelToken(timeout=self.reconcile_timeout)
        with self._lock:
            self._inflight[key] = cancel
        try:
            result = self.reconciler.reconcile(key, cancel=cancel)
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            self.queue.done(key)

        if result.error is not None:
            log.error("Reconcile of node %s failed, retrying in %ss: %s", key, result.requeue_after, result.error)
        if result.requeue_after is not None and not self.stop_event.is_set():
            self.queue.add_after(key, result.requeue_after)
        return True

    def _worker(self) -> None:
        while self.process_next():
            pass

    def start(self) -> None:
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, name=f"namesync-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        log.info("Started %d reconcile workers", self.workers)

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        self.queue.shutdown()
        with self._lock:
            for token in self._inflight.values():
                token.cancel()
        for t in self._threads:
            t.join(timeout)
        log.info("Reconcile workers stopped")


def watch_nodes(core_api: client.CoreV1Api, queue: WorkQueue, stop: threading.Event) -> None:
    """
    Feed node names into *queue* until *stop* is set.

    The watch is re-established after every stream expiry or API error; each
    (re)start re-lists all nodes, so nothing is missed across gaps.
    """
    while not stop.is_set():
        w = watch.Watch()
        try:
            for event in w.stream(core_api.list_node, timeout_seconds=WATCH_TIMEOUT_SECONDS):
                if stop.is_set():
                    break
                etype = event.get("type")
                obj = event.get("object")
                if etype in ("ADDED", "MODIFIED") and obj is not None and obj.metadata is not None:
                    queue.add(obj.metadata.name)
                elif etype == "ERROR":
                    log.warning("Node watch returned an error event: %s", obj)
                    break
        except Exception as e:
            log.warning("Node watch failed, restarting in %ss: %s", WATCH_RETRY_SECONDS, e)
            stop.wait(WATCH_RETRY_SECONDS)
        finally:
            w.stop()
