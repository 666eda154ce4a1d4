# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/proxmox/transport.py

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
import urllib3

from namesync.proxmox.errors import TransportError
from namesync.utils.cancel import CancelToken

log = logging.getLogger("namesync")

API_PREFIX = "/api2/json"


class ProxmoxEndpoint:
    """
    One Proxmox VE API endpoint (one cluster member).

    Thin wrapper around a ``requests.Session``:
      - API token auth via the ``PVEAPIToken`` header (preferred)
      - ticket auth via ``/access/ticket`` otherwise, refreshed on 401
      - every call unwraps the ``{"data": ...}`` envelope
      - every failure becomes a TransportError naming endpoint + operation
    """

    def __init__(
        self,
        url: str,
        *,
        token_id: Optional[str] = None,
        secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_tls: bool = True,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url.rstrip("/")
        self.base_url = self.url if self.url.endswith(API_PREFIX) else self.url + API_PREFIX
        self.timeout = timeout

        self._username = username
        self._password = password
        self._uses_token = bool(token_id and secret)
        if not self._uses_token and not (username and password):
            raise ValueError(
                "either API token (token_id and secret) or credentials "
                "(username and password) must be provided"
            )

        self._session = session or requests.Session()
        self._session.verify = verify_tls
        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        if self._uses_token:
            self._session.headers["Authorization"] = f"PVEAPIToken={token_id}={secret}"

        self._login_lock = threading.Lock()
        self._ticket: Optional[str] = None

    def __repr__(self) -> str:
        return f"ProxmoxEndpoint({self.url!r})"

    @property
    def uses_token(self) -> bool:
        return self._uses_token

    # -----------------------
    # HTTP helpers
    # -----------------------
    def _send(self, method: str, path: str, operation: str, cancel: CancelToken, **kwargs) -> requests.Response:
        cancel.raise_if_cancelled()
        try:
            return self._session.request(
                method,
                f"{self.base_url}{path}",
                timeout=cancel.timeout(self.timeout),
                **kwargs,
            )
        except requests.RequestException as e:
            raise TransportError(self.url, operation, str(e)) from e

    def _login(self, cancel: CancelToken, *, stale: Optional[str] = None) -> None:
        with self._login_lock:
            # another thread already refreshed the ticket we saw fail
            if self._ticket is not None and self._ticket != stale:
                return
            r = self._send(
                "POST",
                "/access/ticket",
                "login",
                cancel,
                data={"username": self._username, "password": self._password},
            )
            if r.status_code != 200:
                raise TransportError(self.url, "login", r.text or r.reason, status=r.status_code)
            data = self._decode(r, "login") or {}
            if not isinstance(data, dict):
                raise TransportError(self.url, "login", "unexpected login response")
            ticket = data.get("ticket")
            if not ticket:
                raise TransportError(self.url, "login", "response missing ticket")
            self._session.cookies.set("PVEAuthCookie", ticket)
            csrf = data.get("CSRFPreventionToken")
            if csrf:
                self._session.headers["CSRFPreventionToken"] = csrf
            self._ticket = ticket
            log.debug("Obtained Proxmox ticket from %s", self.url)

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        cancel: Optional[CancelToken] = None,
        **kwargs,
    ) -> Any:
        cancel = cancel or CancelToken.never()

        if not self._uses_token and self._ticket is None:
            self._login(cancel)

        ticket = self._ticket
        r = self._send(method, path, operation, cancel, **kwargs)
        if r.status_code == 401 and not self._uses_token:
            log.debug("Proxmox ticket rejected by %s, logging in again", self.url)
            self._login(cancel, stale=ticket)
            r = self._send(method, path, operation, cancel, **kwargs)

        if r.status_code < 200 or r.status_code >= 300:
            raise TransportError(self.url, operation, r.text or r.reason, status=r.status_code)

        return self._decode(r, operation)

    def _decode(self, r: requests.Response, operation: str) -> Any:
        """Unwrap the ``{"data": ...}`` envelope of a successful response."""
        try:
            payload = r.json()
        except ValueError as e:
            raise TransportError(self.url, operation, f"invalid JSON response: {e}") from e
        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise TransportError(self.url, operation, f"unexpected response: {type(payload).__name__}")
        return payload.get("data")

    # -----------------------
    # API operations
    # -----------------------
    def version(self, cancel: Optional[CancelToken] = None) -> Dict[str, Any]:
        return self._request("GET", "/version", "version", cancel=cancel) or {}

    def nodes(self, cancel: Optional[CancelToken] = None) -> List[Dict[str, Any]]:
        return self._request("GET", "/nodes", "list nodes", cancel=cancel) or []

    def vms(self, node: str, cancel: Optional[CancelToken] = None) -> List[Dict[str, Any]]:
        return self._request("GET", f"/nodes/{node}/qemu", f"list VMs on node {node}", cancel=cancel) or []

    def vm_config(self, node: str, vmid: int, cancel: Optional[CancelToken] = None) -> Optional[Dict[str, Any]]:
        return self._request(
            "GET",
            f"/nodes/{node}/qemu/{vmid}/config",
            f"get config of VM {vmid} on node {node}",
            cancel=cancel,
        )

    def set_vm_name(self, node: str, vmid: int, name: str, cancel: Optional[CancelToken] = None) -> Optional[str]:
        """POST (async) config update; returns the task UPID."""
        return self._request(
            "POST",
            f"/nodes/{node}/qemu/{vmid}/config",
            f"rename VM {vmid} on node {node}",
            cancel=cancel,
            data={"name": name},
        )

    def task_status(self, node: str, upid: str, cancel: Optional[CancelToken] = None) -> Dict[str, Any]:
        operation = f"get status of task {upid}"
        status = self._request(
            "GET",
            f"/nodes/{node}/tasks/{quote(upid, safe='')}/status",
            operation,
            cancel=cancel,
        ) or {}
        if not isinstance(status, dict):
            raise TransportError(self.url, operation, "unexpected task status")
        return status

    def wait_task(
        self,
        node: str,
        upid: str,
        *,
        interval: float,
        timeout: float,
        cancel: Optional[CancelToken] = None,
    ) -> Dict[str, Any]:
        """
        Poll a task until it stops.

        Raises:
            TransportError: the task stopped with a failing exit status
            TimeoutError: the task is still running after *timeout* seconds
            Cancelled: the cancel token fired while waiting
        """
        cancel = cancel or CancelToken.never()
        end = time.monotonic() + timeout

        while True:
            status = self.task_status(node, upid, cancel=cancel)
            if status.get("status") == "stopped":
                exitstatus = status.get("exitstatus") or ""
                if exitstatus == "OK":
                    return status
                if exitstatus.startswith("WARNINGS"):
                    log.warning("Task %s on %s finished with %s", upid, node, exitstatus)
                    return status
                raise TransportError(self.url, f"task {upid}", f"finished with exit status {exitstatus!r}")

            left = end - time.monotonic()
            if left <= 0:
                raise TimeoutError(f"Timeout waiting for task {upid} on node {node} after {timeout}s")
            cancel.wait(min(interval, left))
