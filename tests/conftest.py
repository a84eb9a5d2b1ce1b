"""
Shared fixtures and builders for the balancer tests.
Provides an in-memory Proxmox client that counts calls per method.
"""

import threading
from collections import Counter, defaultdict

import pytest

from proxmox_balancer.client import ProxmoxClient
from proxmox_balancer.exceptions import ResourceError
from proxmox_balancer.models import (
    VM, Cluster, Node, NodeStatus, StorageContentItem, StorageInfo, VMStatus,
    parse_cluster_resources,
)

GIB = 1024 ** 3
TIB = 1024 ** 4


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeProxmoxClient(ProxmoxClient):
    """Serves canned API records; ``fail`` makes one call raise ResourceError."""

    def __init__(self, resources=None):
        self.resources = list(resources or [])
        self.resource_sequence = []  # Successive get_cluster_resources answers
        self.node_status = {}
        self.vm_status = {}
        self.vm_configs = {}
        self.vm_config_texts = {}
        self.node_config_texts = {}
        self.storages = {}
        self.storage_content = {}
        self.failures = set()
        self.calls = Counter()
        self.call_args = defaultdict(list)
        self._lock = threading.Lock()

    def fail(self, method, key=None):
        self.failures.add((method, key))

    def _record(self, method, key=None):
        with self._lock:
            self.calls[method] += 1
            self.call_args[method].append(key)
        if (method, key) in self.failures:
            raise ResourceError(f"{method} failed for {key}")

    def get_cluster_resources(self):
        self._record("get_cluster_resources")
        records = self.resource_sequence.pop(0) if self.resource_sequence else self.resources
        return parse_cluster_resources(records)

    def get_node_status(self, node):
        self._record("get_node_status", node)
        return NodeStatus.from_api(self.node_status.get(node, {}))

    def get_vm_status(self, node, vmid, vm_type="qemu"):
        self._record("get_vm_status", vmid)
        return VMStatus.from_api(self.vm_status.get(vmid, {}))

    def get_vm_config(self, node, vmid, vm_type="qemu"):
        self._record("get_vm_config", vmid)
        return dict(self.vm_configs.get(vmid, {}))

    def get_vm_config_text(self, node, vmid, vm_type="qemu"):
        self._record("get_vm_config_text", vmid)
        return self.vm_config_texts.get(vmid, "")

    def get_node_config_text(self, node):
        self._record("get_node_config_text", node)
        return self.node_config_texts.get(node, "")

    def get_node_storages(self, node):
        self._record("get_node_storages", node)
        return [StorageInfo.from_api(s) for s in self.storages.get(node, [])]

    def get_storage_content(self, node, storage):
        self._record("get_storage_content", (node, storage))
        return [StorageContentItem.from_api(i) for i in self.storage_content.get((node, storage), [])]

    def ping(self):
        self._record("ping")

    def authenticate(self):
        self._record("authenticate")


def node_record(name, status="online", maxcpu=32, cpu=0.2, maxmem=256 * GIB,
                mem=64 * GIB, maxdisk=100 * GIB, disk=10 * GIB, uptime=86400):
    return {
        "type": "node", "node": name, "status": status, "maxcpu": maxcpu, "cpu": cpu,
        "maxmem": maxmem, "mem": mem, "maxdisk": maxdisk, "disk": disk, "uptime": uptime,
    }


def storage_record(node, storage, maxdisk=2 * TIB, disk=500 * GIB):
    return {
        "type": "storage", "node": node, "storage": storage, "status": "available",
        "maxdisk": maxdisk, "disk": disk,
    }


def vm_record(vmid, name, node, status="running", maxcpu=2, cpu=0.1, maxmem=4 * GIB,
              mem=2 * GIB, maxdisk=32 * GIB, disk=0, template=0, vm_type="qemu"):
    return {
        "type": vm_type, "vmid": vmid, "name": name, "node": node, "status": status,
        "maxcpu": maxcpu, "cpu": cpu, "maxmem": maxmem, "mem": mem,
        "maxdisk": maxdisk, "disk": disk, "uptime": 3600, "template": template,
    }


def make_vm(vmid, name=None, cpus=2, cpu_usage=10.0, max_mem=4 * GIB, used_mem=None,
            max_disk=32 * GIB, used_disk=0, status="running", **kwargs):
    return VM(
        vmid=vmid,
        name=name or f"vm{vmid}",
        node="",
        status=status,
        cpus=cpus,
        cpu_usage=cpu_usage,
        max_mem=max_mem,
        used_mem=max_mem // 2 if used_mem is None else used_mem,
        max_disk=max_disk,
        used_disk=used_disk,
        **kwargs
    )


def make_node(name, vms=(), cpu_cores=32, cpu_usage=0.2, max_mem=256 * GIB, used_mem=64 * GIB,
              max_disk=4 * TIB, used_disk=1 * TIB, status="online",
              cpu_model="AMD EPYC 7543 32-Core Processor", **kwargs):
    node = Node(
        name=name,
        status=status,
        cpu_cores=cpu_cores,
        cpu_usage=cpu_usage,
        max_mem=max_mem,
        used_mem=used_mem,
        max_disk=max_disk,
        used_disk=used_disk,
        cpu_model=cpu_model,
        **kwargs
    )
    for vm in vms:
        vm.node = name
        node.vms.append(vm)
    return node


def make_cluster(*nodes):
    return Cluster.from_nodes(list(nodes))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeProxmoxClient()
