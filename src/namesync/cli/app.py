# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/cli/app.py
from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Optional

import typer

from namesync.config.loader import ConfigError, load_controller_settings, load_proxmox_config
from namesync.controller.reconciler import NodeReconciler
from namesync.controller.runner import NodeController, WorkQueue, watch_nodes
from namesync.k8s.client import load_core_api
from namesync.k8s.nodes import KubeNodeSource
from namesync.logging.log import init_logging
from namesync.observers.dispatcher import EventBus
from namesync.observers.logger import LoggerObserver
from namesync.proxmox.client import ClientPool
from namesync.proxmox.errors import ProxmoxError, TransportError


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Keep Proxmox VM names in sync with Kubernetes node names")


def _load_or_exit(config: Optional[Path]):
    try:
        return load_proxmox_config(config), load_controller_settings(config)
    except ConfigError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config (defaults to $PROXMOX_CONFIG_PATH, then env vars)"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig", help="Kubeconfig path (in-cluster config when omitted)"),
    context: Optional[str] = typer.Option(None, "--context", help="Kube context to use"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Concurrent reconcile workers"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Also write a debug log file here"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Watch Kubernetes nodes and rename their Proxmox VMs until stopped.
    """
    logger, run_id, _ = init_logging(log_dir=log_dir, verbose=verbose)
    proxmox_cfg, settings = _load_or_exit(config)

    pool = ClientPool.from_config(
        proxmox_cfg,
        task_interval=settings.task_interval_seconds,
        task_timeout=settings.task_timeout_seconds,
    )
    logger.info(
        "Using %d Proxmox endpoint(s) with %s auth",
        len(pool.endpoints),
        "token" if proxmox_cfg.uses_token else "password",
    )

    core_api = load_core_api(kubeconfig, context)
    bus = EventBus(observers=[LoggerObserver(logger)])
    reconciler = NodeReconciler(KubeNodeSource(core_api), pool, settings=settings, bus=bus, run_id=run_id)

    queue = WorkQueue()
    controller = NodeController(
        reconciler,
        queue,
        workers=workers or settings.workers,
        reconcile_timeout=settings.reconcile_timeout_seconds,
    )

    def _stop(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        controller.stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    controller.start()
    watcher = threading.Thread(
        target=watch_nodes,
        args=(core_api, queue, controller.stop_event),
        name="namesync-node-watch",
        daemon=True,
    )
    watcher.start()

    while not controller.stop_event.wait(1.0):
        pass

    controller.stop(timeout=10.0)
    logger.info("=== namesync controller stopped ===")


@app.command("vms")
def list_vms(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    List every Proxmox VM that carries an SMBIOS uuid.
    """
    init_logging(verbose=verbose, banner=None)
    proxmox_cfg, _ = _load_or_exit(config)
    pool = ClientPool.from_config(proxmox_cfg)

    try:
        vms = pool.get_vms()
    except ProxmoxError as e:
        typer.secho(f"Discovery failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.echo(f"{'VMID':>6}  {'NODE':<12}  {'NAME':<32}  UUID")
    for vm in sorted(vms, key=lambda v: (v.node, v.id)):
        typer.echo(f"{vm.id:>6}  {vm.node:<12}  {vm.name:<32}  {vm.uuid}")


@app.command("check-config")
def check_config(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config"),
    probe: bool = typer.Option(True, "--probe/--no-probe", help="Query /version on every endpoint"),
):
    """
    Validate configuration and, optionally, report which endpoints answer.
    """
    proxmox_cfg, settings = _load_or_exit(config)
    typer.echo(f"auth: {'token' if proxmox_cfg.uses_token else 'password'}")
    typer.echo(f"tls verification: {'off' if proxmox_cfg.insecure else 'on'}")
    typer.echo(f"workers: {settings.workers}")

    if not probe:
        for url in proxmox_cfg.host_urls:
            typer.echo(f"endpoint: {url}")
        return

    pool = ClientPool.from_config(proxmox_cfg)
    reachable = 0
    for ep in pool.endpoints:
        try:
            version = ep.version()
        except TransportError as e:
            typer.secho(f"endpoint: {ep.url} UNREACHABLE ({e})", fg=typer.colors.YELLOW)
            continue
        reachable += 1
        typer.echo(f"endpoint: {ep.url} OK (version {version.get('version', '?')})")

    if reachable == 0:
        typer.secho("No Proxmox endpoint reachable", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
