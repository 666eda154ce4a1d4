# tests/controller/test_reconciler.py
from __future__ import annotations

import dataclasses

from namesync.config.models import ControllerSettings
from namesync.controller.reconciler import NodeReconciler, ReconcileResult
from namesync.k8s.nodes import NodeInfo
from namesync.observers.dispatcher import EventBus
from namesync.proxmox.errors import DiscoveryError, MutationError
from namesync.proxmox.models import VM
from namesync.utils.cancel import CancelToken, Cancelled


SETTINGS = ControllerSettings(
    control_plane_requeue=300,
    error_requeue=120,
    not_found_requeue=600,
    in_sync_requeue=1800,
    renamed_requeue=300,
)


class FakeNodes:
    def __init__(self, *nodes):
        self.nodes = {n.name: n for n in nodes}
    def get_node(self, name):
        return self.nodes.get(name)


class FakeProxmox:
    """Keeps VM state so a rename is visible to the next lookup."""
    def __init__(self, vms=(), lookup_error=None, rename_error=None):
        self.vms = list(vms)
        self.lookup_error = lookup_error
        self.rename_error = rename_error
        self.lookups = []
        self.renames = []

    def get_vm_by_uuid(self, uuid, cancel=None):
        self.lookups.append(uuid)
        if self.lookup_error:
            raise self.lookup_error
        return next((vm for vm in self.vms if vm.uuid == uuid), None)

    def update_vm_name(self, node, vmid, new_name, cancel=None):
        self.renames.append((node, vmid, new_name))
        if self.rename_error:
            raise self.rename_error
        self.vms = [
            dataclasses.replace(vm, name=new_name) if (vm.node, vm.id) == (node, vmid) else vm
            for vm in self.vms
        ]


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def _reconciler(nodes, proxmox, cap=None):
    bus = EventBus([cap]) if cap else None
    return NodeReconciler(nodes, proxmox, settings=SETTINGS, bus=bus, run_id="run-1")


def test_scenario_a_names_already_match():
    px = FakeProxmox([VM(id=100, name="worker-01", node="pve1", uuid="uuid-1")])
    r = _reconciler(FakeNodes(NodeInfo(name="worker-01", system_uuid="uuid-1")), px)

    result = r.reconcile("worker-01")

    assert result == ReconcileResult(error=None, requeue_after=1800)
    assert px.renames == []


def test_scenario_b_rename():
    px = FakeProxmox([VM(id=200, name="old-name", node="pve2", uuid="uuid-2")])
    cap = Capture()
    r = _reconciler(FakeNodes(NodeInfo(name="k8s-node-02", system_uuid="uuid-2")), px, cap)

    result = r.reconcile("k8s-node-02")

    assert result == ReconcileResult(error=None, requeue_after=300)
    assert px.renames == [("pve2", 200, "k8s-node-02")]
    renamed = [e for e in cap.events if e.__class__.__name__ == "VmRenamed"]
    assert len(renamed) == 1
    assert renamed[0].old_name == "old-name" and renamed[0].new_name == "k8s-node-02"
    assert renamed[0].node == "k8s-node-02" and renamed[0].run_id == "run-1"


def test_scenario_c_no_vm_for_uuid():
    px = FakeProxmox([VM(id=100, name="other", node="pve1", uuid="uuid-1")])
    r = _reconciler(FakeNodes(NodeInfo(name="worker-03", system_uuid="uuid-3")), px)

    result = r.reconcile("worker-03")

    assert result == ReconcileResult(error=None, requeue_after=600)
    assert px.renames == []


def test_scenario_d_discovery_error():
    err = DiscoveryError("no Proxmox endpoint reachable")
    px = FakeProxmox(lookup_error=err)
    cap = Capture()
    r = _reconciler(FakeNodes(NodeInfo(name="worker-04", system_uuid="uuid-4")), px, cap)

    result = r.reconcile("worker-04")

    assert isinstance(result.error, DiscoveryError)
    assert result.requeue_after == 120
    assert not result.ok
    assert px.renames == []
    failed = [e for e in cap.events if e.__class__.__name__ == "ReconcileFailed"]
    assert failed and failed[0].stage == "resolve"


def test_mutation_error_is_returned_with_fixed_requeue():
    px = FakeProxmox(
        [VM(id=200, name="old-name", node="pve2", uuid="uuid-2")],
        rename_error=MutationError("task timed out"),
    )
    r = _reconciler(FakeNodes(NodeInfo(name="k8s-node-02", system_uuid="uuid-2")), px)

    result = r.reconcile("k8s-node-02")

    assert isinstance(result.error, MutationError)
    assert result.requeue_after == 120


def test_reconcile_twice_renames_once():
    px = FakeProxmox([VM(id=200, name="old-name", node="pve2", uuid="uuid-2")])
    r = _reconciler(FakeNodes(NodeInfo(name="k8s-node-02", system_uuid="uuid-2")), px)

    first = r.reconcile("k8s-node-02")
    second = r.reconcile("k8s-node-02")

    assert len(px.renames) == 1
    assert first.requeue_after == 300
    assert second.requeue_after == 1800


def test_node_gone_is_not_requeued():
    px = FakeProxmox()
    cap = Capture()
    r = _reconciler(FakeNodes(), px, cap)

    result = r.reconcile("deleted-node")

    assert result == ReconcileResult(error=None, requeue_after=None)
    assert px.lookups == []
    assert [e.__class__.__name__ for e in cap.events] == ["NodeGone"]


def test_control_plane_node_skips_proxmox():
    px = FakeProxmox([VM(id=101, name="vm-cp-1", node="pve1", uuid="uuid-cp")])
    nodes = FakeNodes(
        NodeInfo(name="cp-1", system_uuid="uuid-cp", labels={"node-role.kubernetes.io/control-plane": ""}),
        NodeInfo(name="cp-2", system_uuid="uuid-cp", taint_keys=("node-role.kubernetes.io/master",)),
    )
    r = _reconciler(nodes, px)

    assert r.reconcile("cp-1") == ReconcileResult(error=None, requeue_after=300)
    assert r.reconcile("cp-2") == ReconcileResult(error=None, requeue_after=300)
    assert px.lookups == []
    assert px.renames == []


def test_empty_system_uuid_counts_as_no_vm():
    px = FakeProxmox([VM(id=1, name="x", node="pve1", uuid="")])
    r = _reconciler(FakeNodes(NodeInfo(name="worker-05")), px)

    assert r.reconcile("worker-05").requeue_after == 600
    assert px.lookups == []


def test_cancellation_is_retryable():
    token = CancelToken()
    token.cancel()
    px = FakeProxmox([VM(id=200, name="old", node="pve2", uuid="uuid-2")])
    r = _reconciler(FakeNodes(NodeInfo(name="n", system_uuid="uuid-2")), px)

    result = r.reconcile("n", cancel=token)

    assert isinstance(result.error, Cancelled)
    assert result.requeue_after == 120
    assert px.renames == []


def test_unexpected_error_does_not_escape():
    class BrokenNodes:
        def get_node(self, name):
            raise RuntimeError("api server unavailable")

    r = _reconciler(BrokenNodes(), FakeProxmox())
    result = r.reconcile("n")

    assert isinstance(result.error, RuntimeError)
    assert result.requeue_after == 120
