# models.py

"""Data models for Proxmox VM Balancer."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import BLOCKING_HOST_STATES, HOST_STATE_UNSET

logger = logging.getLogger(__name__)

RUNNING = "running"
ONLINE = "online"


def _int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class VM:
    """A guest (qemu VM or lxc container) resident on one node."""
    vmid: int
    name: str
    node: str
    status: str
    type: str = "qemu"
    cpus: int = 0
    cpu_usage: float = 0.0  # Percentage 0-100 of the VM's own vCPUs
    max_mem: int = 0
    used_mem: int = 0
    max_disk: int = 0
    used_disk: int = 0
    uptime: int = 0
    creation_time: int = 0  # Unix timestamp, 0 when unknown

    # Migration constraints parsed from config comments
    no_migrate: bool = False
    host_cpu_model: str = ""
    with_vms: List[str] = field(default_factory=list)
    without_vms: List[str] = field(default_factory=list)
    config_meta: Dict[str, str] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING

    @property
    def mem_percent(self) -> float:
        return self.used_mem / self.max_mem * 100 if self.max_mem > 0 else 0.0

    @property
    def storage_bytes(self) -> int:
        """Allocated disk, falling back to used disk when allocation is unknown."""
        return self.max_disk if self.max_disk > 0 else self.used_disk

    @property
    def ram_bytes(self) -> int:
        """Used RAM, falling back to allocated RAM when usage is unknown."""
        return self.used_mem if self.used_mem > 0 else self.max_mem


@dataclass
class Node:
    """One hypervisor host in the cluster."""
    name: str
    status: str
    cpu_cores: int = 0  # Logical CPUs (threads)
    cpu_sockets: int = 0
    cpu_model: str = ""
    cpu_mhz: float = 0.0
    cpu_usage: float = 0.0  # Fraction 0-1
    load_average: List[float] = field(default_factory=list)
    max_mem: int = 0
    used_mem: int = 0
    max_disk: int = 0
    used_disk: int = 0
    swap_total: int = 0
    swap_used: int = 0
    uptime: int = 0
    pve_version: str = ""
    vms: List[VM] = field(default_factory=list)

    # Flags derived from node config comments and resident VMs
    has_osd: bool = False
    allow_provisioning: bool = False
    has_old_vms: bool = False
    host_state: int = HOST_STATE_UNSET
    config_meta: Dict[str, str] = field(default_factory=dict)

    @property
    def is_online(self) -> bool:
        return self.status == ONLINE

    @property
    def cpu_percent(self) -> float:
        return self.cpu_usage * 100

    @property
    def mem_percent(self) -> float:
        return self.used_mem / self.max_mem * 100 if self.max_mem > 0 else 0.0

    @property
    def disk_percent(self) -> float:
        return self.used_disk / self.max_disk * 100 if self.max_disk > 0 else 0.0

    @property
    def total_vcpus(self) -> int:
        return sum(vm.cpus for vm in self.vms)

    @property
    def is_migration_blocked(self) -> bool:
        return self.host_state in BLOCKING_HOST_STATES

    @property
    def has_active_swap(self) -> bool:
        return self.swap_total > 0 and self.swap_used > 0

    def status_indicators(self) -> str:
        """Letters for node flags: O (OSD), P (provisioning), C (old VMs)."""
        indicators = ""
        if self.has_osd:
            indicators += "O"
        if self.allow_provisioning:
            indicators += "P"
        if self.has_old_vms:
            indicators += "C"
        return indicators

    def status_with_indicators(self) -> str:
        status = self.status
        if self.host_state == 1:
            status = "maint"
        elif self.host_state != HOST_STATE_UNSET:
            status = f"{self.status}/{self.host_state}"
        indicators = self.status_indicators()
        return f"{status} ({indicators})" if indicators else status


@dataclass(frozen=True)
class Cluster:
    """Immutable snapshot produced by one collection cycle."""
    nodes: Tuple[Node, ...]
    total_vms: int = 0
    running_vms: int = 0
    stopped_vms: int = 0
    total_vcpus: int = 0
    total_cpus: int = 0
    total_ram: int = 0
    total_storage: int = 0
    used_storage: int = 0

    @classmethod
    def from_nodes(cls, nodes: List[Node]) -> "Cluster":
        """Build a snapshot with totals recomputed from the given nodes."""
        ordered = tuple(sorted(nodes, key=lambda n: n.name))
        vms = [vm for node in ordered for vm in node.vms]
        running = sum(1 for vm in vms if vm.is_running)
        return cls(
            nodes=ordered,
            total_vms=len(vms),
            running_vms=running,
            stopped_vms=len(vms) - running,
            total_vcpus=sum(vm.cpus for vm in vms),
            total_cpus=sum(node.cpu_cores for node in ordered),
            total_ram=sum(node.max_mem for node in ordered),
            total_storage=sum(node.max_disk for node in ordered),
            used_storage=sum(node.used_disk for node in ordered),
        )

    def get_node(self, name: str) -> Optional[Node]:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def get_vm(self, vmid: int) -> Optional[VM]:
        for node in self.nodes:
            for vm in node.vms:
                if vm.vmid == vmid:
                    return vm
        return None

    def all_vms(self) -> List[VM]:
        return [vm for node in self.nodes for vm in node.vms]


@dataclass(frozen=True)
class DiskCacheEntry:
    """Last known disk usage of a VM."""
    vmid: int
    node: str
    max_disk: int
    used_disk: int
    updated_at: float = 0.0


# Records at the transport boundary. /cluster/resources returns one
# polymorphic list; it is narrowed into these variants before ingestion.

@dataclass(frozen=True)
class NodeResource:
    node: str
    status: str
    maxcpu: int = 0
    cpu: float = 0.0
    maxmem: int = 0
    mem: int = 0
    maxdisk: int = 0
    disk: int = 0
    uptime: int = 0


@dataclass(frozen=True)
class StorageResource:
    node: str
    storage: str
    status: str = ""
    maxdisk: int = 0
    disk: int = 0


@dataclass(frozen=True)
class GuestResource:
    vmid: int
    name: str
    node: str
    status: str
    type: str
    maxcpu: int = 0
    cpu: float = 0.0  # Fraction 0-1
    maxmem: int = 0
    mem: int = 0
    maxdisk: int = 0
    disk: int = 0
    uptime: int = 0
    template: bool = False


ClusterResource = Union[NodeResource, StorageResource, GuestResource]


def parse_cluster_resource(record: Dict[str, Any]) -> Optional[ClusterResource]:
    """Narrow one /cluster/resources record by its type discriminator."""
    kind = record.get("type")
    if kind == "node":
        return NodeResource(
            node=record.get("node", ""),
            status=record.get("status", ""),
            maxcpu=_int(record.get("maxcpu")),
            cpu=_float(record.get("cpu")),
            maxmem=_int(record.get("maxmem")),
            mem=_int(record.get("mem")),
            maxdisk=_int(record.get("maxdisk")),
            disk=_int(record.get("disk")),
            uptime=_int(record.get("uptime")),
        )
    if kind == "storage":
        return StorageResource(
            node=record.get("node", ""),
            storage=record.get("storage", ""),
            status=record.get("status", ""),
            maxdisk=_int(record.get("maxdisk")),
            disk=_int(record.get("disk")),
        )
    if kind in ("qemu", "lxc"):
        return GuestResource(
            vmid=_int(record.get("vmid")),
            name=record.get("name", ""),
            node=record.get("node", ""),
            status=record.get("status", ""),
            type=kind,
            maxcpu=_int(record.get("maxcpu")),
            cpu=_float(record.get("cpu")),
            maxmem=_int(record.get("maxmem")),
            mem=_int(record.get("mem")),
            maxdisk=_int(record.get("maxdisk")),
            disk=_int(record.get("disk")),
            uptime=_int(record.get("uptime")),
            template=_int(record.get("template")) == 1,
        )
    logger.debug(f"Ignoring cluster resource of type {kind!r}")
    return None


def parse_cluster_resources(records: List[Dict[str, Any]]) -> List[ClusterResource]:
    resources = []
    for record in records:
        resource = parse_cluster_resource(record)
        if resource is not None:
            resources.append(resource)
    return resources


@dataclass(frozen=True)
class NodeStatus:
    """Detailed status of one node."""
    uptime: int = 0
    cpu_model: str = ""
    cpu_sockets: int = 0
    cpu_cores: int = 0
    cpus: int = 0
    cpu_mhz: float = 0.0
    load_average: Tuple[float, ...] = ()
    swap_total: int = 0
    swap_used: int = 0
    pve_version: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "NodeStatus":
        cpuinfo = data.get("cpuinfo") or {}
        swap = data.get("swap") or {}
        # mhz and loadavg entries arrive as numbers or strings depending on version
        return cls(
            uptime=_int(data.get("uptime")),
            cpu_model=cpuinfo.get("model", "") or "",
            cpu_sockets=_int(cpuinfo.get("sockets")),
            cpu_cores=_int(cpuinfo.get("cores")),
            cpus=_int(cpuinfo.get("cpus")),
            cpu_mhz=_float(cpuinfo.get("mhz")),
            load_average=tuple(_float(v) for v in data.get("loadavg") or []),
            swap_total=_int(swap.get("total")),
            swap_used=_int(swap.get("used")),
            pve_version=data.get("pveversion", "") or "",
        )


@dataclass(frozen=True)
class VMStatus:
    """Detailed live status of one VM."""
    vmid: int = 0
    status: str = ""
    cpus: int = 0
    cpu: float = 0.0
    maxmem: int = 0
    mem: int = 0
    maxdisk: int = 0
    disk: int = 0
    uptime: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "VMStatus":
        return cls(
            vmid=_int(data.get("vmid")),
            status=data.get("status", "") or "",
            cpus=_int(data.get("cpus")),
            cpu=_float(data.get("cpu")),
            maxmem=_int(data.get("maxmem")),
            mem=_int(data.get("mem")),
            maxdisk=_int(data.get("maxdisk")),
            disk=_int(data.get("disk")),
            uptime=_int(data.get("uptime")),
        )


@dataclass(frozen=True)
class StorageInfo:
    """One storage pool as seen from a node."""
    storage: str
    type: str = ""
    content: str = ""
    total: int = 0
    used: int = 0
    avail: int = 0
    active: bool = True
    shared: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StorageInfo":
        return cls(
            storage=data.get("storage", "") or "",
            type=data.get("type", "") or "",
            content=data.get("content", "") or "",
            total=_int(data.get("total")),
            used=_int(data.get("used")),
            avail=_int(data.get("avail")),
            active=_int(data.get("active", 1)) == 1,
            shared=_int(data.get("shared")) == 1,
        )


@dataclass(frozen=True)
class StorageContentItem:
    """One volume in a storage pool."""
    volid: str
    content: str = ""
    format: str = ""
    vmid: int = 0
    size: int = 0  # Provisioned bytes
    used: int = 0  # Actually written bytes (thin provisioning)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StorageContentItem":
        return cls(
            volid=data.get("volid", "") or "",
            content=data.get("content", "") or "",
            format=data.get("format", "") or "",
            vmid=_int(data.get("vmid")),
            size=_int(data.get("size")),
            used=_int(data.get("used")),
        )
