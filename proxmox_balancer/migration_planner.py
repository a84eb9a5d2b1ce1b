# migration_planner.py

"""Migration planning and simulation functionality."""

import logging
import statistics
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .config import (
    BALANCE_STDDEV_PENALTY, BALANCE_WEIGHT, CPU_SCORE_WEIGHT, EVACUATION_BALANCE_WEIGHT,
    EVACUATION_CPU_HEADROOM_WEIGHT, EVACUATION_MARGIN, EVACUATION_RAM_HEADROOM_WEIGHT,
    GIB, MAX_ALTERNATIVES, RAM_SCORE_WEIGHT, STORAGE_SCORE_WEIGHT, UTILIZATION_WEIGHT,
)
from .exceptions import ValidationError
from .models import VM, Cluster, Node

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# Rejection reasons for filtered-out targets
REASON_OFFLINE = "node offline"
REASON_EXCLUDED = "excluded by user"
REASON_HOST_STATE = "host state blocks migrations"
REASON_CPU_MODEL = "CPU-model mismatch"
REASON_AFFINITY = "affinity violation"
REASON_RAM_CAPACITY = "insufficient RAM capacity"
REASON_STORAGE_CAPACITY = "insufficient storage capacity"
REASON_VM_LIMIT = "host VM-count limit reached"
REASON_MIN_FREE_RAM = "would violate min-free-RAM"
REASON_MIN_FREE_CPU = "would violate min-free-CPU"

# Reasons a VM does not make it into the plan
OMIT_NO_MIGRATE = "marked nomigrate"
OMIT_NOT_ON_SOURCE = "not found on source node"
OMIT_NO_TARGET = "no valid target"

PLACEMENT_SCORED = "scored"
PLACEMENT_BALANCED = "balanced"
PLACEMENT_BEST_AVAILABLE = "best-available"


class MigrationMode(Enum):
    VM_COUNT = "vm_count"
    VCPU = "vcpu"
    CPU_PERCENT = "cpu_percent"
    RAM = "ram"
    STORAGE = "storage"
    SPECIFIC_VMS = "specific_vms"
    EVACUATE_ALL = "evacuate_all"
    CREATION_AGE = "creation_age"

    @property
    def needs_target(self) -> bool:
        return self not in (MigrationMode.SPECIFIC_VMS, MigrationMode.EVACUATE_ALL)

    @classmethod
    def parse(cls, value: str) -> "MigrationMode":
        normalized = value.strip().lower().replace("-", "_")
        for mode in cls:
            if mode.value == normalized:
                return mode
        choices = ", ".join(m.value for m in cls)
        raise ValidationError("mode", f"unknown mode {value!r} (choose from {choices})")


@dataclass
class PlacementConstraints:
    """User limits applied to every candidate target."""
    excluded_nodes: Set[str] = field(default_factory=set)
    max_vms_per_host: int = 0  # 0 means unlimited
    min_free_ram: int = 0  # Bytes that must stay free after the move
    min_free_cpu_percent: float = 0.0


@dataclass(frozen=True)
class NodeState:
    """Reported resource figures of one node at a point in the plan."""
    name: str
    vm_count: int
    vcpus: int
    cpu_percent: float
    ram_used: int
    ram_total: int
    ram_percent: float
    storage_used: int
    storage_total: int
    storage_percent: float
    migrations_in: int = 0
    migrations_out: int = 0


@dataclass
class SimulatedState:
    """Tracks projected node state during migration planning."""
    name: str
    cpu_cores: int
    cpu_percent: float
    ram_total: int
    ram_used: int
    storage_total: int
    storage_used: int
    vm_count: int
    vcpus: int
    planned_migrations_in: Set[int] = field(default_factory=set)
    planned_migrations_out: Set[int] = field(default_factory=set)

    @classmethod
    def from_node(cls, node: Node) -> "SimulatedState":
        return cls(
            name=node.name,
            cpu_cores=node.cpu_cores,
            cpu_percent=node.cpu_percent,
            ram_total=node.max_mem,
            ram_used=node.used_mem,
            storage_total=node.max_disk,
            storage_used=node.used_disk,
            vm_count=len(node.vms),
            vcpus=node.total_vcpus,
        )

    @property
    def ram_percent(self) -> float:
        return self.ram_used / self.ram_total * 100 if self.ram_total > 0 else 0.0

    @property
    def storage_percent(self) -> float:
        return self.storage_used / self.storage_total * 100 if self.storage_total > 0 else 0.0

    @property
    def free_ram(self) -> int:
        return self.ram_total - self.ram_used

    @property
    def free_storage(self) -> int:
        return self.storage_total - self.storage_used

    def cpu_contribution(self, vm: VM) -> float:
        """Percentage points of this host's CPU the VM accounts for."""
        if self.cpu_cores <= 0:
            return 0.0
        return vm.cpu_usage * vm.cpus / self.cpu_cores

    def projected_with(self, vm: VM) -> Tuple[float, float, float]:
        """CPU%, RAM% and storage% after placing the VM here."""
        cpu = self.cpu_percent + self.cpu_contribution(vm)
        ram = (self.ram_used + vm.max_mem) / self.ram_total * 100 if self.ram_total > 0 else 100.0
        storage = (
            (self.storage_used + vm.storage_bytes) / self.storage_total * 100
            if self.storage_total > 0 else 0.0
        )
        return cpu, ram, storage

    def add_vm(self, vm: VM) -> None:
        self.cpu_percent += self.cpu_contribution(vm)
        self.ram_used += vm.max_mem
        self.storage_used += vm.storage_bytes
        self.vm_count += 1
        self.vcpus += vm.cpus
        self.planned_migrations_in.add(vm.vmid)

    def remove_vm(self, vm: VM) -> None:
        self.cpu_percent = max(0.0, self.cpu_percent - self.cpu_contribution(vm))
        self.ram_used = max(0, self.ram_used - vm.max_mem)
        self.storage_used = max(0, self.storage_used - vm.storage_bytes)
        self.vm_count = max(0, self.vm_count - 1)
        self.vcpus = max(0, self.vcpus - vm.cpus)
        self.planned_migrations_out.add(vm.vmid)

    def to_node_state(self) -> NodeState:
        return NodeState(
            name=self.name,
            vm_count=self.vm_count,
            vcpus=self.vcpus,
            cpu_percent=self.cpu_percent,
            ram_used=self.ram_used,
            ram_total=self.ram_total,
            ram_percent=self.ram_percent,
            storage_used=self.storage_used,
            storage_total=self.storage_total,
            storage_percent=self.storage_percent,
            migrations_in=len(self.planned_migrations_in),
            migrations_out=len(self.planned_migrations_out),
        )


@dataclass(frozen=True)
class TargetScore:
    node: str
    score: float


@dataclass(frozen=True)
class RejectedTarget:
    node: str
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class MigrationSuggestion:
    vmid: int
    name: str
    source_node: str
    target_node: str
    vcpus: int
    ram_bytes: int
    storage_bytes: int
    status: str
    cpu_usage: float
    score: float
    reason: str
    placement: str = PLACEMENT_SCORED
    alternatives: Tuple[TargetScore, ...] = ()
    rejections: Tuple[RejectedTarget, ...] = ()


@dataclass(frozen=True)
class VMOmission:
    """A candidate VM that the plan leaves where it is."""
    vmid: int
    name: str
    reason: str
    rejections: Tuple[RejectedTarget, ...] = ()


@dataclass
class AnalysisResult:
    source_node: str
    mode: MigrationMode
    target_quantity: Optional[float]
    suggestions: List[MigrationSuggestion] = field(default_factory=list)
    omissions: List[VMOmission] = field(default_factory=list)
    before: Dict[str, NodeState] = field(default_factory=dict)
    after: Dict[str, NodeState] = field(default_factory=dict)
    total_vms: int = 0
    total_vcpus: int = 0
    total_ram: int = 0
    total_storage: int = 0

    @property
    def cpu_improvement(self) -> float:
        """Drop in source CPU percentage points."""
        before, after = self.before.get(self.source_node), self.after.get(self.source_node)
        return before.cpu_percent - after.cpu_percent if before and after else 0.0

    @property
    def ram_improvement(self) -> float:
        before, after = self.before.get(self.source_node), self.after.get(self.source_node)
        return before.ram_percent - after.ram_percent if before and after else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["cpu_improvement"] = self.cpu_improvement
        data["ram_improvement"] = self.ram_improvement
        return data


@dataclass
class _Candidate:
    """A target that passed every filter, with its score for one VM."""
    node: str
    score: float
    in_bounds: bool = True


def utilization_score(cpu: float, ram: float, storage: float) -> float:
    return 100 - (CPU_SCORE_WEIGHT * cpu + RAM_SCORE_WEIGHT * ram + STORAGE_SCORE_WEIGHT * storage)


def balance_score(cpu: float, ram: float, storage: float) -> float:
    """100 for a node whose three utilizations are equal, lower as they diverge."""
    return 100 - BALANCE_STDDEV_PENALTY * statistics.pstdev([cpu, ram, storage])


def standard_score(cpu: float, ram: float, storage: float) -> float:
    return UTILIZATION_WEIGHT * utilization_score(cpu, ram, storage) + BALANCE_WEIGHT * balance_score(cpu, ram, storage)


def evacuation_score(cpu: float, ram: float, storage: float, avg_cpu: float, avg_ram: float) -> float:
    headroom = (
        EVACUATION_CPU_HEADROOM_WEIGHT * (avg_cpu - cpu)
        + EVACUATION_RAM_HEADROOM_WEIGHT * (avg_ram - ram)
    )
    return EVACUATION_BALANCE_WEIGHT * balance_score(cpu, ram, storage) + headroom


def vm_impact_score(vm: VM) -> float:
    """Combined CPU and memory pressure of a VM, used to order VM_COUNT candidates."""
    return 0.5 * vm.cpu_usage + 0.5 * vm.mem_percent


def vm_size_score(vm: VM) -> float:
    """Rough VM footprint; evacuation places the largest VMs first."""
    return vm.cpus * 10 + vm.cpu_usage + vm.max_mem / GIB


def validate_request(mode: MigrationMode, target_quantity: Optional[float],
                     constraints: Optional[PlacementConstraints] = None) -> None:
    """Reject malformed planning input before any work is done."""
    if mode.needs_target:
        if target_quantity is None:
            raise ValidationError("target", f"a target quantity is required for mode {mode.value}")
        if target_quantity <= 0:
            raise ValidationError("target", f"target quantity must be positive, got {target_quantity}")
        if mode == MigrationMode.CPU_PERCENT and target_quantity > 100:
            raise ValidationError("target", f"CPU percentage must be within (0, 100], got {target_quantity}")
        if mode in (MigrationMode.VM_COUNT, MigrationMode.VCPU) and target_quantity != int(target_quantity):
            raise ValidationError("target", f"{mode.value} target must be a whole number, got {target_quantity}")

    if constraints is not None:
        if constraints.max_vms_per_host < 0:
            raise ValidationError("max_vms_per_host", "must not be negative")
        if constraints.min_free_ram < 0:
            raise ValidationError("min_free_ram", "must not be negative")
        if not 0 <= constraints.min_free_cpu_percent < 100:
            raise ValidationError("min_free_cpu_percent", "must be within [0, 100)")


class MigrationPlanner:
    """
    Sequential greedy placement of VMs away from one source node.

    Candidates are processed in a fixed order; every accepted move updates
    the projected state of its source and target before the next VM is
    scored, so earlier moves shape later choices.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.simulated_states: Dict[str, SimulatedState] = {}
        self.vm_locations: Dict[str, str] = {}
        self.residents: Dict[str, List[VM]] = {}
        self.omissions: List[VMOmission] = []

    def init_simulation(self, cluster: Cluster) -> None:
        """Initialize simulation state from the snapshot."""
        self.simulated_states = {node.name: SimulatedState.from_node(node) for node in cluster.nodes}
        self.residents = {node.name: list(node.vms) for node in cluster.nodes}
        self.vm_locations = {vm.name: vm.node for vm in cluster.all_vms() if vm.name}
        self.omissions = []

    def plan(self, cluster: Cluster, source_node_name: str, mode: MigrationMode,
             target_quantity: Optional[float] = None,
             explicit_vmids: Optional[Iterable[int]] = None,
             constraints: Optional[PlacementConstraints] = None) -> AnalysisResult:
        """Plan migrations off ``source_node_name`` for the given mode."""
        constraints = constraints or PlacementConstraints()
        validate_request(mode, target_quantity, constraints)

        source = cluster.get_node(source_node_name)
        if source is None:
            raise ValidationError("source", f"node {source_node_name!r} not found in cluster")
        if mode == MigrationMode.CPU_PERCENT and source.cpu_cores <= 0:
            raise ValidationError(
                "source", f"CPU thread count of {source.name} is unknown, cannot plan by CPU percentage"
            )

        self.init_simulation(cluster)
        result = AnalysisResult(source_node=source.name, mode=mode, target_quantity=target_quantity)

        candidates = self.select_candidates(source, mode, target_quantity, explicit_vmids, result)
        logger.info(f"Planning migrations from {source.name} ({mode.value}): {len(candidates)} candidates")

        averages = self.evacuation_averages(cluster, source.name) if mode == MigrationMode.EVACUATE_ALL else None
        if averages is not None:
            logger.info(f"Evacuation targets: avg CPU {averages[0]:.1f}%, avg RAM {averages[1]:.1f}%")

        reason = self.selection_reason(mode, target_quantity)
        for vm in candidates:
            suggestion = self.place_vm(vm, source, cluster, constraints, averages, reason)
            if suggestion is None:
                continue
            result.suggestions.append(suggestion)
            logger.info(f"Planned: {vm.name} ({vm.vmid}) from {source.name} to {suggestion.target_node}")
            logger.debug(f"  Score {suggestion.score:.2f}, {vm.cpus} vCPUs, {vm.max_mem / GIB:.1f} GiB RAM")

        result.omissions.extend(self.omissions)
        self._summarize(cluster, source.name, result)
        return result

    # Candidate selection

    def select_candidates(self, source: Node, mode: MigrationMode, target_quantity: Optional[float],
                          explicit_vmids: Optional[Iterable[int]], result: AnalysisResult) -> List[VM]:
        """Ordered list of VMs the planner will try to place."""
        if mode == MigrationMode.SPECIFIC_VMS:
            return self._explicit_candidates(source, explicit_vmids or [], result)

        eligible = [vm for vm in source.vms if not vm.no_migrate]

        if mode == MigrationMode.EVACUATE_ALL:
            for vm in source.vms:
                if vm.no_migrate:
                    result.omissions.append(VMOmission(vm.vmid, vm.name, OMIT_NO_MIGRATE))
            return sorted(eligible, key=lambda v: (not v.is_running, -vm_size_score(v), v.vmid))

        if mode == MigrationMode.CREATION_AGE:
            cutoff = self._clock() - target_quantity * SECONDS_PER_DAY
            old = [vm for vm in eligible if 0 < vm.creation_time < cutoff]
            return sorted(old, key=lambda v: (v.creation_time, v.vmid))

        if mode == MigrationMode.VM_COUNT:
            ordered = sorted(eligible, key=lambda v: (vm_impact_score(v), v.vmid))
            return self._accumulate(ordered, lambda v: 1, target_quantity)
        if mode == MigrationMode.VCPU:
            metric = lambda v: v.cpus
        elif mode == MigrationMode.CPU_PERCENT:
            metric = lambda v: v.cpu_usage * v.cpus / source.cpu_cores
        elif mode == MigrationMode.RAM:
            metric = lambda v: v.ram_bytes
        else:
            metric = lambda v: v.storage_bytes

        ordered = sorted(eligible, key=lambda v: (metric(v), v.vmid))
        return self._accumulate(ordered, metric, target_quantity)

    @staticmethod
    def _accumulate(ordered: List[VM], metric: Callable[[VM], float], target: float) -> List[VM]:
        """Take VMs in order until the running total reaches the target."""
        selected: List[VM] = []
        total = 0.0
        for vm in ordered:
            if total >= target:
                break
            selected.append(vm)
            total += metric(vm)
        return selected

    @staticmethod
    def _explicit_candidates(source: Node, vmids: Iterable[int], result: AnalysisResult) -> List[VM]:
        on_source = {vm.vmid: vm for vm in source.vms}
        selected: List[VM] = []
        seen: Set[int] = set()
        for vmid in vmids:
            if vmid in seen:
                continue
            seen.add(vmid)
            vm = on_source.get(vmid)
            if vm is None:
                result.omissions.append(VMOmission(vmid, "", OMIT_NOT_ON_SOURCE))
            elif vm.no_migrate:
                logger.warning(f"VM {vm.vmid} ({vm.name}) is marked nomigrate and will not be moved")
                result.omissions.append(VMOmission(vm.vmid, vm.name, OMIT_NO_MIGRATE))
            else:
                selected.append(vm)
        return selected

    @staticmethod
    def selection_reason(mode: MigrationMode, target_quantity: Optional[float]) -> str:
        if mode == MigrationMode.VM_COUNT:
            return f"Selected to reduce VM count by {int(target_quantity)}"
        if mode == MigrationMode.VCPU:
            return f"Selected to free up {int(target_quantity)} vCPUs from source host"
        if mode == MigrationMode.CPU_PERCENT:
            return f"Selected to reduce source CPU usage by {target_quantity:.1f}%"
        if mode == MigrationMode.RAM:
            return f"Selected to free up {target_quantity / GIB:.1f} GiB RAM from source host"
        if mode == MigrationMode.STORAGE:
            return f"Selected to free up {target_quantity / GIB:.1f} GiB storage from source host"
        if mode == MigrationMode.CREATION_AGE:
            return f"Created more than {int(target_quantity)} days ago"
        if mode == MigrationMode.EVACUATE_ALL:
            return "Evacuating source host"
        return "Explicitly requested"

    # Target selection

    @staticmethod
    def evacuation_averages(cluster: Cluster, source_name: str) -> Tuple[float, float]:
        """Average CPU% and RAM% over the online nodes other than the source."""
        others = [n for n in cluster.nodes if n.is_online and n.name != source_name]
        if not others:
            return 0.0, 0.0
        avg_cpu = sum(n.cpu_percent for n in others) / len(others)
        avg_ram = sum(n.mem_percent for n in others) / len(others)
        return avg_cpu, avg_ram

    def check_target(self, vm: VM, node: Node,
                     constraints: PlacementConstraints) -> Optional[RejectedTarget]:
        """Return why ``node`` cannot take ``vm``, or None when it can."""
        state = self.simulated_states[node.name]

        if not node.is_online:
            return RejectedTarget(node.name, REASON_OFFLINE)
        if node.name in constraints.excluded_nodes:
            return RejectedTarget(node.name, REASON_EXCLUDED)
        if node.is_migration_blocked:
            return RejectedTarget(node.name, REASON_HOST_STATE, f"hoststate={node.host_state}")
        if vm.host_cpu_model and vm.host_cpu_model.lower() not in node.cpu_model.lower():
            return RejectedTarget(node.name, REASON_CPU_MODEL, f"requires {vm.host_cpu_model!r}")

        affinity = self._affinity_violation(vm, node.name)
        if affinity:
            return RejectedTarget(node.name, REASON_AFFINITY, affinity)

        if state.free_ram < vm.max_mem:
            return RejectedTarget(
                node.name, REASON_RAM_CAPACITY,
                f"needs {vm.max_mem / GIB:.1f} GiB, {max(state.free_ram, 0) / GIB:.1f} GiB free",
            )
        if state.free_storage < vm.storage_bytes:
            return RejectedTarget(
                node.name, REASON_STORAGE_CAPACITY,
                f"needs {vm.storage_bytes / GIB:.1f} GiB, {max(state.free_storage, 0) / GIB:.1f} GiB free",
            )
        if constraints.max_vms_per_host and state.vm_count >= constraints.max_vms_per_host:
            return RejectedTarget(node.name, REASON_VM_LIMIT, f"{state.vm_count} VMs")
        if constraints.min_free_ram and state.free_ram - vm.max_mem < constraints.min_free_ram:
            return RejectedTarget(node.name, REASON_MIN_FREE_RAM)
        if constraints.min_free_cpu_percent:
            projected_cpu = state.cpu_percent + state.cpu_contribution(vm)
            if 100 - projected_cpu < constraints.min_free_cpu_percent:
                return RejectedTarget(node.name, REASON_MIN_FREE_CPU, f"projected CPU {projected_cpu:.1f}%")
        return None

    def _affinity_violation(self, vm: VM, target: str) -> str:
        for name in vm.with_vms:
            location = self.vm_locations.get(name)
            if location is not None and location != target:
                return f"must run with {name} (on {location})"
        for name in vm.without_vms:
            if self.vm_locations.get(name) == target:
                return f"must not run with {name}"
        for resident in self.residents.get(target, []):
            if vm.name and vm.name in resident.without_vms:
                return f"{resident.name} must not run with {vm.name}"
        return ""

    def score_target(self, vm: VM, node_name: str,
                     averages: Optional[Tuple[float, float]]) -> _Candidate:
        cpu, ram, storage = self.simulated_states[node_name].projected_with(vm)
        if averages is None:
            return _Candidate(node_name, standard_score(cpu, ram, storage))
        avg_cpu, avg_ram = averages
        in_bounds = cpu <= avg_cpu + EVACUATION_MARGIN and ram <= avg_ram + EVACUATION_MARGIN
        return _Candidate(node_name, evacuation_score(cpu, ram, storage, avg_cpu, avg_ram), in_bounds)

    def place_vm(self, vm: VM, source: Node, cluster: Cluster, constraints: PlacementConstraints,
                 averages: Optional[Tuple[float, float]], reason: str) -> Optional[MigrationSuggestion]:
        """Pick a target for one VM and apply the move to the simulation."""
        rejections: List[RejectedTarget] = []
        valid: List[_Candidate] = []

        for node in cluster.nodes:
            if node.name == source.name:
                continue
            rejection = self.check_target(vm, node, constraints)
            if rejection is not None:
                rejections.append(rejection)
                continue
            valid.append(self.score_target(vm, node.name, averages))

        if not valid:
            logger.debug(f"No suitable target found for VM {vm.name} ({vm.vmid})")
            self._omit(vm, rejections)
            return None

        ranked = sorted(valid, key=lambda c: (-c.score, c.node))
        if averages is None:
            chosen, placement = ranked[0], PLACEMENT_SCORED
        else:
            in_bounds = [c for c in ranked if c.in_bounds]
            if in_bounds:
                chosen, placement = in_bounds[0], PLACEMENT_BALANCED
            else:
                chosen, placement = ranked[0], PLACEMENT_BEST_AVAILABLE
                logger.warning(f"VM {vm.name}: no in-bounds target, using best available {chosen.node}")

        alternatives = tuple(
            TargetScore(c.node, c.score) for c in ranked if c is not chosen
        )[:MAX_ALTERNATIVES]

        self.register_migration(vm, source.name, chosen.node)

        return MigrationSuggestion(
            vmid=vm.vmid,
            name=vm.name,
            source_node=source.name,
            target_node=chosen.node,
            vcpus=vm.cpus,
            ram_bytes=vm.max_mem,
            storage_bytes=vm.storage_bytes,
            status=vm.status,
            cpu_usage=vm.cpu_usage,
            score=chosen.score,
            reason=reason,
            placement=placement,
            alternatives=alternatives,
            rejections=tuple(rejections),
        )

    def _omit(self, vm: VM, rejections: List[RejectedTarget]) -> None:
        self.omissions.append(VMOmission(vm.vmid, vm.name, OMIT_NO_TARGET, tuple(rejections)))

    def register_migration(self, vm: VM, source: str, target: str) -> None:
        """Register a planned migration in the simulation."""
        self.simulated_states[source].remove_vm(vm)
        self.simulated_states[target].add_vm(vm)

        self.residents[source] = [v for v in self.residents[source] if v.vmid != vm.vmid]
        self.residents[target].append(vm)
        if vm.name:
            self.vm_locations[vm.name] = target

    def _summarize(self, cluster: Cluster, source_name: str, result: AnalysisResult) -> None:
        touched = [source_name] + sorted({s.target_node for s in result.suggestions})
        for name in touched:
            node = cluster.get_node(name)
            result.before[name] = SimulatedState.from_node(node).to_node_state()
            result.after[name] = self.simulated_states[name].to_node_state()

        result.total_vms = len(result.suggestions)
        result.total_vcpus = sum(s.vcpus for s in result.suggestions)
        result.total_ram = sum(s.ram_bytes for s in result.suggestions)
        result.total_storage = sum(s.storage_bytes for s in result.suggestions)

        if result.suggestions:
            logger.info(
                f"Plan: {result.total_vms} VMs, {result.total_vcpus} vCPUs, "
                f"{result.total_ram / GIB:.1f} GiB RAM, {result.total_storage / GIB:.1f} GiB storage"
            )
            logger.info(
                f"Source {source_name}: CPU -{result.cpu_improvement:.1f}%, RAM -{result.ram_improvement:.1f}%"
            )
            for name, state in result.after.items():
                logger.info(f"  Node {name}: migrations in {state.migrations_in}, out {state.migrations_out}")
        else:
            logger.info("No migrations planned")
