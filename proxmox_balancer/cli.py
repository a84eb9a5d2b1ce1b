# cli.py

"""Command-line interface for Proxmox VM Balancer."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .cache import DiskCache
from .collector import ClusterCollector
from .config import DEFAULT_CACHE_PATH, DEFAULT_STORAGE_LOG, GIB
from .exceptions import ProxmoxError, ValidationError
from .migration_planner import (
    AnalysisResult, MigrationMode, MigrationPlanner, PlacementConstraints, validate_request,
)
from .models import Cluster
from .utils import (
    cluster_summary, describe_node, format_bytes, get_proxmox_client, setup_logging,
    setup_storage_logger,
)

logger = logging.getLogger(__name__)

# Command-line targets for these modes are given in GiB
BYTE_TARGET_MODES = (MigrationMode.RAM, MigrationMode.STORAGE)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Suggest VM migrations away from a Proxmox node"
    )
    parser.add_argument("--source", help="Node to move VMs away from")
    parser.add_argument(
        "--mode",
        default=MigrationMode.VM_COUNT.value,
        help="One of: " + ", ".join(m.value for m in MigrationMode),
    )
    parser.add_argument(
        "--target",
        type=float,
        help="Amount to move: VMs, vCPUs, CPU %%, GiB of RAM or storage, or age in days"
    )
    parser.add_argument("--vms", default="", help="Comma-separated VMIDs for specific_vms mode")
    parser.add_argument("--exclude", default="", help="Comma-separated nodes never used as targets")
    parser.add_argument("--max-vms-per-host", type=int, default=0, help="Upper bound of VMs on a target")
    parser.add_argument("--min-free-ram-gb", type=float, default=0.0, help="RAM that must stay free on a target")
    parser.add_argument("--min-free-cpu", type=float, default=0.0, help="CPU %% that must stay free on a target")
    parser.add_argument(
        "--cache-path",
        default=DEFAULT_CACHE_PATH,
        help=f"Disk usage cache database (default: {DEFAULT_CACHE_PATH})"
    )
    parser.add_argument(
        "--storage-log",
        default=DEFAULT_STORAGE_LOG,
        help=f"File receiving collection details (default: {DEFAULT_STORAGE_LOG})"
    )
    parser.add_argument("--api-host", help="Proxmox API URL, e.g. https://pve1:8006")
    parser.add_argument("--api-token", help="API token as user@realm!tokenid=secret")
    parser.add_argument("--username", help="API user, e.g. root@pam")
    parser.add_argument("--password", help="API password")
    parser.add_argument("--verify-ssl", action="store_true", default=None, help="Verify TLS certificates")
    parser.add_argument("--use-api", action="store_true", help="Use the API even on a Proxmox host")
    parser.add_argument(
        "--show-resources",
        action="store_true",
        help="Show resources for all nodes"
    )
    parser.add_argument("--json", action="store_true", help="Print the plan as JSON")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    return parser.parse_args(argv)


def split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_vmids(value: str) -> List[int]:
    vmids = []
    for item in split_list(value):
        try:
            vmids.append(int(item))
        except ValueError:
            raise ValidationError("vms", f"invalid VMID {item!r}")
    return vmids


def build_request(args):
    """Turn arguments into (mode, target, vmids, constraints); raises ValidationError."""
    mode = MigrationMode.parse(args.mode)
    target = args.target
    if target is not None and mode in BYTE_TARGET_MODES:
        target = target * GIB

    vmids = parse_vmids(args.vms)
    if mode == MigrationMode.SPECIFIC_VMS and not vmids:
        raise ValidationError("vms", "specific_vms mode needs at least one VMID")

    constraints = PlacementConstraints(
        excluded_nodes=set(split_list(args.exclude)),
        max_vms_per_host=args.max_vms_per_host,
        min_free_ram=int(args.min_free_ram_gb * GIB),
        min_free_cpu_percent=args.min_free_cpu,
    )
    validate_request(mode, target, constraints)
    return mode, target, vmids, constraints


def log_progress(stage: str, completed: int, total: int) -> None:
    if total:
        logger.debug(f"{stage}: {completed}/{total}")
    else:
        logger.debug(f"{stage}...")


def print_resources(cluster: Cluster) -> None:
    summary = cluster_summary(cluster)
    logger.info("\nCurrent node resources:")
    for node in cluster.nodes:
        logger.info(describe_node(node))
    logger.info(
        f"\nCluster: {summary['online_nodes']}/{summary['nodes']} nodes online, "
        f"{summary['total_vms']} VMs ({summary['running_vms']} running), "
        f"{summary['total_vcpus']} vCPUs on {summary['total_cpus']} CPUs, "
        f"avg CPU {summary['avg_cpu_percent']:.1f}%, avg RAM {summary['avg_mem_percent']:.1f}%"
    )


def print_result(result: AnalysisResult) -> None:
    logger.info(f"\nMigration plan for {result.source_node} ({result.mode.value}):")
    for suggestion in result.suggestions:
        logger.info(
            f"  {suggestion.vmid} {suggestion.name}: {suggestion.source_node} -> {suggestion.target_node} "
            f"[{suggestion.placement}, score {suggestion.score:.1f}] "
            f"{suggestion.vcpus} vCPUs, {format_bytes(suggestion.ram_bytes)} RAM, "
            f"{format_bytes(suggestion.storage_bytes)} storage ({suggestion.status})"
        )
        logger.info(f"    {suggestion.reason}")
        if suggestion.alternatives:
            alternatives = ", ".join(f"{a.node} ({a.score:.1f})" for a in suggestion.alternatives)
            logger.info(f"    Alternatives: {alternatives}")

    for omission in result.omissions:
        logger.info(f"  Not moved: {omission.vmid} {omission.name}: {omission.reason}")
        for rejection in omission.rejections:
            detail = f" ({rejection.detail})" if rejection.detail else ""
            logger.info(f"    {rejection.node}: {rejection.reason}{detail}")

    logger.info("\nNode states (before -> after):")
    for name, before in result.before.items():
        after = result.after[name]
        logger.info(
            f"  {name}: VMs {before.vm_count} -> {after.vm_count}, "
            f"vCPUs {before.vcpus} -> {after.vcpus}, "
            f"CPU {before.cpu_percent:.1f}% -> {after.cpu_percent:.1f}%, "
            f"RAM {before.ram_percent:.1f}% -> {after.ram_percent:.1f}%, "
            f"Storage {before.storage_percent:.1f}% -> {after.storage_percent:.1f}%"
        )

    logger.info(
        f"\nTotal: {result.total_vms} VMs, {result.total_vcpus} vCPUs, "
        f"{format_bytes(result.total_ram)} RAM, {format_bytes(result.total_storage)} storage; "
        f"source CPU -{result.cpu_improvement:.1f}%, RAM -{result.ram_improvement:.1f}%"
    )


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)

    cache = None
    try:
        if not args.show_resources and not args.source:
            raise ValidationError("source", "--source is required unless --show-resources is given")
        request = build_request(args) if args.source else None

        client = get_proxmox_client(
            api_host=args.api_host,
            api_token=args.api_token,
            username=args.username,
            password=args.password,
            verify_ssl=args.verify_ssl,
            force_api=args.use_api,
        )
        storage_logger = setup_storage_logger(args.storage_log)
        cache = DiskCache(args.cache_path, logger=storage_logger)
        collector = ClusterCollector(client, cache=cache, logger=storage_logger)
        cluster = collector.collect_snapshot(progress=log_progress)

        if args.show_resources:
            print_resources(cluster)
            if request is None:
                return 0

        mode, target, vmids, constraints = request
        result = MigrationPlanner().plan(cluster, args.source, mode, target, vmids, constraints)

        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print_result(result)
        return 0

    except ProxmoxError as e:
        logger.error(f"Proxmox error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        if cache is not None:
            cache.close()

if __name__ == "__main__":
    sys.exit(main())
