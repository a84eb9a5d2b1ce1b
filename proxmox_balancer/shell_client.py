# shell_client.py

"""Proxmox client backed by local pvesh commands.

Runs on a cluster member as root: no credentials are needed, and config files
are read straight from the cluster filesystem under /etc/pve.
"""

import json
import logging
import os
import shutil
import subprocess
from typing import Any, Dict, List

from .client import ProxmoxClient
from .config import PVE_CONFIG_DIR, PVESH_BINARY, REQUEST_TIMEOUT
from .exceptions import ResourceError
from .models import (
    ClusterResource, NodeStatus, StorageContentItem, StorageInfo, VMStatus,
    parse_cluster_resources,
)

logger = logging.getLogger(__name__)

CONFIG_DIRS = {"qemu": "qemu-server", "lxc": "lxc"}


def is_proxmox_host() -> bool:
    """True when the cluster filesystem and pvesh are both present."""
    return os.path.isdir(PVE_CONFIG_DIR) and shutil.which(PVESH_BINARY) is not None


class ShellClient(ProxmoxClient):
    def __init__(self, timeout: float = REQUEST_TIMEOUT, config_dir: str = PVE_CONFIG_DIR):
        self.timeout = timeout
        self.config_dir = config_dir

    def _pvesh(self, path: str) -> Any:
        cmd = [PVESH_BINARY, "get", path, "--output-format", "json"]
        try:
            completed = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout, check=False
            )
        except subprocess.TimeoutExpired:
            raise ResourceError(f"pvesh get {path} timed out after {self.timeout}s")
        except OSError as e:
            raise ResourceError(f"failed to run pvesh: {e}")

        if completed.returncode != 0:
            raise ResourceError(
                f"pvesh get {path} failed (exit {completed.returncode}): {completed.stderr.strip()}"
            )

        try:
            return json.loads(completed.stdout)
        except ValueError as e:
            raise ResourceError(f"failed to decode pvesh output for {path}: {e}")

    def _read_config(self, *parts: str) -> str:
        path = os.path.join(self.config_dir, "nodes", *parts)
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            raise ResourceError(f"cannot read config file {path}: {e}")

    def get_cluster_resources(self) -> List[ClusterResource]:
        data = self._pvesh("/cluster/resources")
        if not isinstance(data, list):
            raise ResourceError("unexpected pvesh output for /cluster/resources")
        return parse_cluster_resources(data)

    def get_node_status(self, node: str) -> NodeStatus:
        return NodeStatus.from_api(self._pvesh(f"/nodes/{node}/status") or {})

    def get_vm_status(self, node: str, vmid: int, vm_type: str = "qemu") -> VMStatus:
        return VMStatus.from_api(self._pvesh(f"/nodes/{node}/{vm_type}/{vmid}/status/current") or {})

    def get_vm_config(self, node: str, vmid: int, vm_type: str = "qemu") -> Dict[str, Any]:
        return self._pvesh(f"/nodes/{node}/{vm_type}/{vmid}/config") or {}

    def get_vm_config_text(self, node: str, vmid: int, vm_type: str = "qemu") -> str:
        return self._read_config(node, CONFIG_DIRS.get(vm_type, "qemu-server"), f"{vmid}.conf")

    def get_node_config_text(self, node: str) -> str:
        return self._read_config(node, "config")

    def get_node_storages(self, node: str) -> List[StorageInfo]:
        return [StorageInfo.from_api(item) for item in self._pvesh(f"/nodes/{node}/storage") or []]

    def get_storage_content(self, node: str, storage: str) -> List[StorageContentItem]:
        items = self._pvesh(f"/nodes/{node}/storage/{storage}/content") or []
        return [StorageContentItem.from_api(item) for item in items]

    def ping(self) -> None:
        self._pvesh("/version")

    def authenticate(self) -> None:
        pass
