# collector.py

"""Cluster inventory collection."""

import logging
import time
from typing import Callable, Dict, List, Optional, Set

from .cache import DiskCache, build_entries
from .client import ProxmoxClient
from .config import (
    CPU_RETRY_ATTEMPTS, CPU_RETRY_DELAY, IMAGES_CONTENT, LOCAL_STORAGE_MARKER,
    LOCAL_STORAGE_PREFIX, MAX_CONCURRENT_FETCHES, OLD_VM_THRESHOLD_DAYS,
    OSD_VM_DOMAIN, OSD_VM_PREFIX,
)
from .config_parser import (
    GuestConfigMeta, node_allows_provisioning, node_host_state,
    parse_disk_sizes_from_config, parse_disk_sizes_from_text, parse_guest_config,
    parse_node_config,
)
from .exceptions import CollectionError, ProxmoxError
from .executor import ProgressCallback, run_bounded
from .models import (
    VM, Cluster, GuestResource, Node, NodeResource, NodeStatus, StorageResource,
    VMStatus,
)

STAGE_RESOURCES = "Fetching cluster resources"
STAGE_VM_STATUS = "Fetching VM storage details"
STAGE_VM_CONFIG_DISKS = "Parsing VM configs for storage"
STAGE_VM_META = "Reading VM config metadata"
STAGE_DISK_USAGE = "Fetching storage disk usage"
STAGE_CACHED_DISK = "Using cached disk usage"
STAGE_NODE_META = "Reading node config metadata"
STAGE_CPU_RETRY = "Retrying stale CPU data"
STAGE_NODE_DETAILS = "Fetching node details"


def is_local_storage_pool(name: str) -> bool:
    """Per-node local pools follow the kv<id>...storage naming convention."""
    return name.startswith(LOCAL_STORAGE_PREFIX) and LOCAL_STORAGE_MARKER in name


def node_prefix(node_name: str) -> str:
    """kv0078-63-250-62-88 -> kv0078; local pools on that host start with it."""
    return node_name.split("-", 1)[0] if "-" in node_name else node_name


def is_osd_vm(vm: VM) -> bool:
    name = vm.name.lower()
    return name.startswith(OSD_VM_PREFIX) and OSD_VM_DOMAIN in name


class ClusterCollector:
    """
    Builds one consistent Cluster snapshot from many slow per-object calls.

    Remote calls run on bounded worker pools; their results are merged by the
    calling thread only. A failed call for one node or VM is logged and the
    item keeps its best-known values. Only a failure of the initial resource
    enumeration aborts the collection.
    """

    def __init__(self, client: ProxmoxClient, cache: Optional[DiskCache] = None,
                 logger: Optional[logging.Logger] = None,
                 max_workers: int = MAX_CONCURRENT_FETCHES,
                 retry_attempts: int = CPU_RETRY_ATTEMPTS,
                 retry_delay: float = CPU_RETRY_DELAY,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)
        self.max_workers = max_workers
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep

    def collect_snapshot(self, progress: Optional[ProgressCallback] = None) -> Cluster:
        """Run the full collection pipeline and return an immutable snapshot."""
        self.logger.info("=== Starting cluster data collection ===")

        node_map, vms = self._enumerate_resources(progress)
        self._backfill_missing_storage(vms, progress)
        self._fetch_vm_config_meta(vms, progress)
        self._reconcile_disk_usage(vms, progress)
        self._fetch_node_config_meta(node_map, progress)
        self._retry_stale_cpu(node_map, vms, progress)
        self._fetch_node_details(node_map, progress)
        self._assign_vms(node_map, vms)

        cluster = Cluster.from_nodes(list(node_map.values()))

        if self.cache is not None:
            self.cache.cleanup_async()

        missing = sum(1 for vm in vms if vm.max_disk == 0 and vm.is_running)
        self.logger.info(
            f"=== Collection complete: {len(cluster.nodes)} nodes, {cluster.total_vms} VMs "
            f"({cluster.running_vms} running, {cluster.stopped_vms} stopped), "
            f"{missing} VMs with missing storage ==="
        )
        return cluster

    # Stage 1

    def _enumerate_resources(self, progress):
        if progress:
            progress(STAGE_RESOURCES, 0, 1)

        try:
            resources = self.client.get_cluster_resources()
        except ProxmoxError as e:
            raise CollectionError(f"failed to get cluster resources: {e}") from e

        if progress:
            progress(STAGE_RESOURCES, 1, 1)

        node_map: Dict[str, Node] = {}
        vms: List[VM] = []
        seen_vmids: Set[int] = set()
        storage_totals: Dict[str, List[int]] = {}

        for res in resources:
            if isinstance(res, NodeResource):
                node_map[res.node] = Node(
                    name=res.node,
                    status=res.status,
                    cpu_cores=res.maxcpu,
                    cpu_usage=res.cpu,
                    max_mem=res.maxmem,
                    used_mem=res.mem,
                    max_disk=res.maxdisk,  # rootfs only until storage totals apply
                    used_disk=res.disk,
                    uptime=res.uptime,
                )
            elif isinstance(res, StorageResource):
                if not is_local_storage_pool(res.storage):
                    continue
                totals = storage_totals.setdefault(res.node, [0, 0])
                totals[0] += res.maxdisk
                totals[1] += res.disk
            elif isinstance(res, GuestResource):
                if res.template:
                    continue
                if res.vmid in seen_vmids:
                    self.logger.warning(f"Duplicate VMID {res.vmid} on {res.node}; keeping first record")
                    continue
                seen_vmids.add(res.vmid)
                vms.append(VM(
                    vmid=res.vmid,
                    name=res.name,
                    node=res.node,
                    status=res.status,
                    type=res.type,
                    cpus=res.maxcpu,
                    cpu_usage=res.cpu * 100,
                    max_mem=res.maxmem,
                    used_mem=res.mem,
                    max_disk=res.maxdisk,
                    used_disk=res.disk,
                    uptime=res.uptime,
                ))

        for node_name, (max_disk, used_disk) in storage_totals.items():
            node = node_map.get(node_name)
            if node is not None and max_disk > 0:
                node.max_disk = max_disk
                node.used_disk = used_disk

        return node_map, vms

    # Stage 2

    def _backfill_missing_storage(self, vms: List[VM], progress) -> None:
        missing = [vm for vm in vms if vm.max_disk == 0 and vm.is_running]
        if not missing:
            return

        needs_config: List[VM] = []

        def fetch_status(vm: VM) -> VMStatus:
            return self.client.get_vm_status(vm.node, vm.vmid, vm.type)

        def apply_status(vm: VM, status: Optional[VMStatus], error: Optional[Exception]) -> None:
            if error is not None:
                self.logger.warning(f"VM {vm.vmid} ({vm.name}): status fetch failed: {error}")
                needs_config.append(vm)
                return
            if status.maxdisk > 0:
                vm.max_disk = status.maxdisk
                self.logger.info(f"VM {vm.vmid} ({vm.name}): Got storage from status: MaxDisk={status.maxdisk}")
            else:
                needs_config.append(vm)
            if status.disk > 0:
                vm.used_disk = status.disk

        run_bounded(missing, fetch_status, apply_status, STAGE_VM_STATUS, progress, self.max_workers)

        def apply_config_size(vm: VM, size: Optional[int], error: Optional[Exception]) -> None:
            if error is not None:
                self.logger.warning(f"VM {vm.vmid} ({vm.name}): config fetch failed: {error}")
                return
            if size > 0:
                vm.max_disk = size
                self.logger.info(
                    f"VM {vm.vmid} ({vm.name}): Parsed storage from config: "
                    f"MaxDisk={size} bytes ({size / 1024 ** 3:.1f} GB)"
                )

        run_bounded(needs_config, self._config_disk_size, apply_config_size,
                    STAGE_VM_CONFIG_DISKS, progress, self.max_workers)

        for vm in vms:
            if vm.max_disk == 0 and vm.is_running:
                self.logger.warning(
                    f"VM with missing storage: VMID={vm.vmid} Name={vm.name} Node={vm.node} "
                    f"Type={vm.type} Status={vm.status} MaxDisk={vm.max_disk} Disk={vm.used_disk}"
                )

    def _config_disk_size(self, vm: VM) -> int:
        try:
            text = self.client.get_vm_config_text(vm.node, vm.vmid, vm.type)
            size = parse_disk_sizes_from_text(text)
        except ProxmoxError as e:
            self.logger.debug(f"VM {vm.vmid}: config text unavailable ({e}), using config API")
            size = 0
        if size == 0:
            size = parse_disk_sizes_from_config(self.client.get_vm_config(vm.node, vm.vmid, vm.type))
        return size

    # Stage 3

    def _fetch_vm_config_meta(self, vms: List[VM], progress) -> None:
        def fetch(vm: VM) -> GuestConfigMeta:
            return parse_guest_config(self.client.get_vm_config_text(vm.node, vm.vmid, vm.type))

        def apply(vm: VM, result: Optional[GuestConfigMeta], error: Optional[Exception]) -> None:
            if error is not None:
                self.logger.warning(f"VM {vm.vmid} ({vm.name}): config metadata unavailable: {error}")
                return
            vm.config_meta = result.meta
            vm.creation_time = result.creation_time
            vm.no_migrate = result.no_migrate
            vm.host_cpu_model = result.host_cpu_model
            vm.with_vms = result.with_vms
            vm.without_vms = result.without_vms
            if vm.no_migrate:
                self.logger.info(f"VM {vm.vmid} ({vm.name}): NoMigrate=true detected")

        run_bounded(vms, fetch, apply, STAGE_VM_META, progress, self.max_workers)

    # Stage 4

    def _reconcile_disk_usage(self, vms: List[VM], progress) -> None:
        if not vms:
            return

        cached = self.cache.get_batch(vms) if self.cache is not None else {}
        usage = {vmid: entry.used_disk for vmid, entry in cached.items()}
        pending = [vm for vm in vms if vm.vmid not in cached]
        self.logger.info(f"Disk cache: {len(cached)} hits, {len(pending)} misses")

        if not pending:
            if progress:
                progress(STAGE_CACHED_DISK, 1, 1)
            self._apply_disk_usage(vms, usage)
            self.logger.info(f"All {len(cached)} VMs served from cache")
            return

        need = {vm.vmid for vm in pending}
        nodes = sorted({vm.node for vm in pending})
        fresh: Dict[int, int] = {}

        def merge(node: str, result: Optional[Dict[int, int]], error: Optional[Exception]) -> None:
            if error is not None:
                self.logger.warning(f"Failed to get storages for node {node}: {error}")
                return
            for vmid, used in result.items():
                fresh[vmid] = fresh.get(vmid, 0) + used

        run_bounded(nodes, lambda node: self._node_disk_usage(node, need), merge,
                    STAGE_DISK_USAGE, progress, self.max_workers)

        if self.cache is not None:
            entries = build_entries(fresh, {vm.vmid: vm for vm in pending})
            if entries and self.cache.set_batch(entries):
                self.logger.info(f"Cached disk usage for {len(entries)} VMs")

        usage.update(fresh)
        updated = self._apply_disk_usage(vms, usage)
        self.logger.info(f"Updated UsedDisk for {updated} VMs ({len(cached)} from cache, {len(fresh)} fresh)")

    def _node_disk_usage(self, node: str, need: Set[int]) -> Dict[int, int]:
        """Sum used bytes per VMID over the node's local image-capable pools."""
        prefix = node_prefix(node)
        usage: Dict[int, int] = {}
        for storage in self.client.get_node_storages(node):
            # Shared or remote pools would be counted from the wrong node
            if not storage.storage.startswith(prefix):
                continue
            if IMAGES_CONTENT not in storage.content:
                continue
            try:
                content = self.client.get_storage_content(node, storage.storage)
            except ProxmoxError as e:
                self.logger.warning(f"Failed to get content for storage {storage.storage} on node {node}: {e}")
                continue
            for item in content:
                if item.content != IMAGES_CONTENT or item.vmid == 0 or item.vmid not in need:
                    continue
                usage[item.vmid] = usage.get(item.vmid, 0) + item.used
                self.logger.debug(
                    f"Storage content: VMID={item.vmid} Storage={storage.storage} Used={item.used} Size={item.size}"
                )
        return usage

    @staticmethod
    def _apply_disk_usage(vms: List[VM], usage: Dict[int, int]) -> int:
        updated = 0
        for vm in vms:
            used = usage.get(vm.vmid, 0)
            if used > 0:
                vm.used_disk = used
                updated += 1
        return updated

    # Stage 5

    def _fetch_node_config_meta(self, node_map: Dict[str, Node], progress) -> None:
        def fetch(name: str) -> Dict[str, str]:
            return parse_node_config(self.client.get_node_config_text(name))

        def apply(name: str, meta: Optional[Dict[str, str]], error: Optional[Exception]) -> None:
            if error is not None:
                self.logger.warning(f"Node {name}: config metadata unavailable: {error}")
                return
            node = node_map[name]
            node.config_meta = meta
            node.allow_provisioning = node_allows_provisioning(meta)
            node.host_state = node_host_state(meta)
            if meta:
                self.logger.info(
                    f"Node {name}: AllowProvisioning={node.allow_provisioning}, HostState={node.host_state}"
                )

        run_bounded(sorted(node_map), fetch, apply, STAGE_NODE_META, progress, self.max_workers)

    # Stage 6

    @staticmethod
    def _nodes_needing_cpu_retry(node_map: Dict[str, Node], vms: List[VM]) -> List[str]:
        """Online nodes reporting 0% CPU while running VMs, i.e. stale data."""
        running = {vm.node for vm in vms if vm.is_running}
        return sorted(
            name for name, node in node_map.items()
            if node.is_online and node.cpu_usage == 0 and name in running
        )

    def _retry_stale_cpu(self, node_map: Dict[str, Node], vms: List[VM], progress) -> None:
        stale = self._nodes_needing_cpu_retry(node_map, vms)
        attempt = 0
        while stale and attempt < self.retry_attempts:
            attempt += 1
            self.logger.info(
                f"Retrying CPU data for {len(stale)} nodes (attempt {attempt}/{self.retry_attempts}): {stale}"
            )
            if progress:
                progress(STAGE_CPU_RETRY, 0, 0)
            self._sleep(self.retry_delay)

            try:
                resources = self.client.get_cluster_resources()
            except ProxmoxError as e:
                self.logger.warning(f"CPU retry failed: {e}")
                break

            for res in resources:
                if isinstance(res, NodeResource) and res.node in stale and res.cpu > 0:
                    node_map[res.node].cpu_usage = res.cpu
                    self.logger.info(f"Updated CPU for {res.node}: {res.cpu * 100:.2f}%")

            stale = self._nodes_needing_cpu_retry(node_map, vms)

        if stale:
            self.logger.warning(f"Nodes still reporting 0% CPU with running VMs: {stale}")

    # Stage 7

    def _fetch_node_details(self, node_map: Dict[str, Node], progress) -> None:
        online = sorted(name for name, node in node_map.items() if node.is_online)

        def apply(name: str, status: Optional[NodeStatus], error: Optional[Exception]) -> None:
            if error is not None:
                self.logger.warning(f"Node {name}: status fetch failed: {error}")
                return
            node = node_map[name]
            node.cpu_model = status.cpu_model
            node.cpu_sockets = status.cpu_sockets
            node.cpu_mhz = status.cpu_mhz
            node.load_average = list(status.load_average)
            if status.cpus > 0:
                node.cpu_cores = status.cpus
            node.swap_total = status.swap_total
            node.swap_used = status.swap_used
            node.pve_version = status.pve_version
            if status.uptime > 0:
                node.uptime = status.uptime

        run_bounded(online, self.client.get_node_status, apply, STAGE_NODE_DETAILS, progress, self.max_workers)

    # Stage 8

    def _assign_vms(self, node_map: Dict[str, Node], vms: List[VM]) -> None:
        for vm in sorted(vms, key=lambda v: v.vmid):
            node = node_map.get(vm.node)
            if node is None:
                self.logger.warning(f"VM {vm.vmid} ({vm.name}) references unknown node {vm.node}")
                continue
            node.vms.append(vm)

        threshold = self._clock() - OLD_VM_THRESHOLD_DAYS * 24 * 60 * 60
        for name, node in node_map.items():
            node.has_osd = any(is_osd_vm(vm) for vm in node.vms)
            if node.has_osd:
                self.logger.info(f"Node {name}: HasOSD=true (found OSD VM among {len(node.vms)} VMs)")
            # Old VMs only matter on hosts that accept new provisioning
            if node.allow_provisioning:
                node.has_old_vms = any(0 < vm.creation_time < threshold for vm in node.vms)
