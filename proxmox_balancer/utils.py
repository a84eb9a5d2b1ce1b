# utils.py

"""Utility functions for Proxmox VM Balancer."""

import logging
import os
from typing import Dict, Optional

from .client import ApiClient, ProxmoxClient
from .config import (
    DEFAULT_API_HOST, ENV_API_HOST, ENV_API_TOKEN, ENV_PASSWORD, ENV_USERNAME,
    ENV_VERIFY_SSL, LOG_DATE_FORMAT, LOG_FORMAT, REQUEST_TIMEOUT,
)
from .exceptions import ConfigurationError
from .models import Cluster, Node
from .shell_client import ShellClient, is_proxmox_host

STORAGE_LOGGER_NAME = "proxmox_balancer.storage"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with appropriate level and format."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT
    )


def setup_storage_logger(path: str, name: str = STORAGE_LOGGER_NAME) -> logging.Logger:
    """
    Create the file logger for collection and cache details.

    The caller owns the returned logger and passes it to the collector and
    the disk cache; records do not propagate to the console handlers.
    """
    storage_logger = logging.getLogger(name)
    storage_logger.setLevel(logging.DEBUG)
    storage_logger.propagate = False

    for handler in list(storage_logger.handlers):
        storage_logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    storage_logger.addHandler(handler)
    return storage_logger


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def get_proxmox_client(api_host: Optional[str] = None, api_token: Optional[str] = None,
                       username: Optional[str] = None, password: Optional[str] = None,
                       verify_ssl: Optional[bool] = None, force_api: bool = False,
                       timeout: float = REQUEST_TIMEOUT) -> ProxmoxClient:
    """
    Pick a transport for the current environment.

    On a cluster member the local pvesh client is used. Elsewhere the API
    client is built from the arguments, falling back to environment
    variables. Raises ConfigurationError when no credentials are available.
    """
    if not force_api and is_proxmox_host():
        logging.getLogger(__name__).info("Running on a Proxmox host, using local pvesh client")
        return ShellClient(timeout=timeout)

    api_token = api_token or os.environ.get(ENV_API_TOKEN, "")
    username = username or os.environ.get(ENV_USERNAME, "")
    password = password or os.environ.get(ENV_PASSWORD, "")
    if not api_token and not (username and password):
        raise ConfigurationError(
            f"Missing credentials: set {ENV_API_TOKEN} or both {ENV_USERNAME} and {ENV_PASSWORD}"
        )

    if verify_ssl is None:
        verify_ssl = _env_flag(os.environ.get(ENV_VERIFY_SSL))

    client = ApiClient(
        base_url=api_host or os.environ.get(ENV_API_HOST) or DEFAULT_API_HOST,
        api_token=api_token,
        username=username,
        password=password,
        verify_ssl=verify_ssl,
        timeout=timeout,
    )
    client.authenticate()
    return client


def format_bytes(num: float) -> str:
    """Human readable size using binary units."""
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(num) < 1024 or unit == "TiB":
            return f"{num:.1f} {unit}" if unit != "B" else f"{int(num)} B"
        num /= 1024
    return f"{num:.1f} TiB"


def cluster_summary(cluster: Cluster) -> Dict[str, float]:
    """Cluster-wide averages over online nodes, plus the snapshot totals."""
    online = [n for n in cluster.nodes if n.is_online]
    count = len(online)
    return {
        "nodes": len(cluster.nodes),
        "online_nodes": count,
        "total_vms": cluster.total_vms,
        "running_vms": cluster.running_vms,
        "stopped_vms": cluster.stopped_vms,
        "total_vcpus": cluster.total_vcpus,
        "total_cpus": cluster.total_cpus,
        "total_ram": cluster.total_ram,
        "total_storage": cluster.total_storage,
        "used_storage": cluster.used_storage,
        "avg_cpu_percent": sum(n.cpu_percent for n in online) / count if count else 0.0,
        "avg_mem_percent": sum(n.mem_percent for n in online) / count if count else 0.0,
        "avg_disk_percent": sum(n.disk_percent for n in online) / count if count else 0.0,
    }


def describe_node(node: Node) -> str:
    """One-line resource view of a node."""
    return (
        f"{node.name:<24} {node.status_with_indicators():<16} "
        f"VMs {len(node.vms):>4}  vCPUs {node.total_vcpus:>4}/{node.cpu_cores:<4} "
        f"CPU {node.cpu_percent:5.1f}%  "
        f"RAM {format_bytes(node.used_mem)}/{format_bytes(node.max_mem)} ({node.mem_percent:.1f}%)  "
        f"Disk {format_bytes(node.used_disk)}/{format_bytes(node.max_disk)} ({node.disk_percent:.1f}%)"
    )
