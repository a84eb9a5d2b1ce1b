# client.py

"""Proxmox data source interface and HTTP API client."""

import abc
import logging
from typing import Any, Dict, List, Optional

import requests
import urllib3

from .config import REQUEST_TIMEOUT
from .config_parser import render_config_text
from .exceptions import AuthenticationError, ResourceError
from .models import (
    ClusterResource, NodeStatus, StorageContentItem, StorageInfo, VMStatus,
    parse_cluster_resources,
)

logger = logging.getLogger(__name__)


class ProxmoxClient(abc.ABC):
    """Capabilities the collector needs from a Proxmox transport."""

    @abc.abstractmethod
    def get_cluster_resources(self) -> List[ClusterResource]:
        """List all nodes, guests and storages in one call."""

    @abc.abstractmethod
    def get_node_status(self, node: str) -> NodeStatus:
        """Detailed status of one node."""

    @abc.abstractmethod
    def get_vm_status(self, node: str, vmid: int, vm_type: str = "qemu") -> VMStatus:
        """Detailed live status of one guest."""

    @abc.abstractmethod
    def get_vm_config(self, node: str, vmid: int, vm_type: str = "qemu") -> Dict[str, Any]:
        """Guest configuration as a key/value mapping."""

    @abc.abstractmethod
    def get_vm_config_text(self, node: str, vmid: int, vm_type: str = "qemu") -> str:
        """Guest configuration as file text, comment lines included."""

    @abc.abstractmethod
    def get_node_config_text(self, node: str) -> str:
        """Node configuration as file text, comment lines included."""

    @abc.abstractmethod
    def get_node_storages(self, node: str) -> List[StorageInfo]:
        """Storage pools visible from a node."""

    @abc.abstractmethod
    def get_storage_content(self, node: str, storage: str) -> List[StorageContentItem]:
        """Volumes in one storage pool."""

    @abc.abstractmethod
    def ping(self) -> None:
        """Raise ResourceError when the data source is unreachable."""

    @abc.abstractmethod
    def authenticate(self) -> None:
        """Establish a session where the transport needs one."""


class ApiClient(ProxmoxClient):
    """Client for the Proxmox VE REST API (/api2/json)."""

    def __init__(self, base_url: str, api_token: str = "", username: str = "",
                 password: str = "", verify_ssl: bool = False,
                 timeout: float = REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.username = username
        self.password = password
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify_ssl
        self._ticket = ""
        self._csrf_token = ""

        if not verify_ssl:
            # Self-signed certificates are the norm on Proxmox hosts
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def authenticate(self) -> None:
        if self.api_token:
            self.session.headers["Authorization"] = f"PVEAPIToken={self.api_token}"
            return
        if not self.username or not self.password:
            raise AuthenticationError("username and password required for authentication")

        try:
            response = self.session.post(
                f"{self.base_url}/api2/json/access/ticket",
                data={"username": self.username, "password": self.password},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ResourceError(f"authentication request failed: {e}")

        if response.status_code != 200:
            raise AuthenticationError(f"authentication failed: status {response.status_code}")

        try:
            data = response.json()["data"]
            self._ticket = data["ticket"]
            self._csrf_token = data["CSRFPreventionToken"]
        except (ValueError, KeyError, TypeError) as e:
            raise ResourceError(f"failed to decode auth response: {e}")

        self.session.cookies.set("PVEAuthCookie", self._ticket)
        self.session.headers["CSRFPreventionToken"] = self._csrf_token

    def _get(self, path: str) -> Any:
        url = f"{self.base_url}/api2/json{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ResourceError(f"request to {path} failed: {e}")

        if response.status_code == 401:
            raise AuthenticationError("unauthorized: check credentials or token")
        if response.status_code >= 400:
            raise ResourceError(f"API error (status {response.status_code}) for {path}: {response.text}")

        try:
            return response.json()["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise ResourceError(f"failed to decode response from {path}: {e}")

    def _get_list(self, path: str) -> List[Dict[str, Any]]:
        data = self._get(path)
        if not isinstance(data, list):
            raise ResourceError(f"unexpected response format from {path}")
        return data

    def _get_dict(self, path: str) -> Dict[str, Any]:
        data = self._get(path)
        if not isinstance(data, dict):
            raise ResourceError(f"unexpected response format from {path}")
        return data

    def get_cluster_resources(self) -> List[ClusterResource]:
        return parse_cluster_resources(self._get_list("/cluster/resources"))

    def get_node_status(self, node: str) -> NodeStatus:
        return NodeStatus.from_api(self._get_dict(f"/nodes/{node}/status"))

    def get_vm_status(self, node: str, vmid: int, vm_type: str = "qemu") -> VMStatus:
        return VMStatus.from_api(self._get_dict(f"/nodes/{node}/{vm_type}/{vmid}/status/current"))

    def get_vm_config(self, node: str, vmid: int, vm_type: str = "qemu") -> Dict[str, Any]:
        return self._get_dict(f"/nodes/{node}/{vm_type}/{vmid}/config")

    def get_vm_config_text(self, node: str, vmid: int, vm_type: str = "qemu") -> str:
        return render_config_text(self.get_vm_config(node, vmid, vm_type))

    def get_node_config_text(self, node: str) -> str:
        return render_config_text(self._get_dict(f"/nodes/{node}/config"))

    def get_node_storages(self, node: str) -> List[StorageInfo]:
        return [StorageInfo.from_api(item) for item in self._get_list(f"/nodes/{node}/storage")]

    def get_storage_content(self, node: str, storage: str) -> List[StorageContentItem]:
        items = self._get_list(f"/nodes/{node}/storage/{storage}/content")
        return [StorageContentItem.from_api(item) for item in items]

    def ping(self) -> None:
        self._get("/version")
