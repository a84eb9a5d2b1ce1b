"""
Tests for candidate selection and target placement.
"""

import json

import pytest

from proxmox_balancer.exceptions import ValidationError
from proxmox_balancer.migration_planner import (
    OMIT_NO_MIGRATE, OMIT_NO_TARGET, OMIT_NOT_ON_SOURCE, PLACEMENT_BALANCED,
    PLACEMENT_BEST_AVAILABLE, PLACEMENT_SCORED, REASON_AFFINITY, REASON_CPU_MODEL,
    REASON_EXCLUDED, REASON_HOST_STATE, REASON_MIN_FREE_CPU, REASON_MIN_FREE_RAM,
    REASON_OFFLINE, REASON_RAM_CAPACITY, REASON_STORAGE_CAPACITY, REASON_VM_LIMIT,
    MigrationMode, MigrationPlanner, PlacementConstraints, balance_score,
    standard_score, utilization_score,
)

from conftest import GIB, FakeClock, make_cluster, make_node, make_vm

DAY = 24 * 60 * 60


def rejection_reasons(result, vmid):
    for item in list(result.suggestions) + list(result.omissions):
        if item.vmid == vmid:
            return {r.node: r.reason for r in item.rejections}
    raise AssertionError(f"VM {vmid} not in result")


def moved_vmids(result):
    return [s.vmid for s in result.suggestions]


class TestScoring:
    def test_idle_node_scores_full(self):
        assert standard_score(0, 0, 0) == pytest.approx(100.0)

    def test_utilization_weights(self):
        assert utilization_score(50, 50, 0) == pytest.approx(60.0)

    def test_balance_penalizes_spread(self):
        assert balance_score(30, 30, 30) == pytest.approx(100.0)
        assert balance_score(0, 0, 90) < balance_score(30, 30, 30)


class TestValidation:
    """Input checks happen before planning"""

    def setup_method(self):
        self.cluster = make_cluster(make_node("kv01", [make_vm(101)]), make_node("kv02"))
        self.planner = MigrationPlanner()

    def test_unknown_source(self):
        with pytest.raises(ValidationError) as exc:
            self.planner.plan(self.cluster, "kv99", MigrationMode.VCPU, 4)
        assert exc.value.field == "source"

    def test_missing_target(self):
        with pytest.raises(ValidationError) as exc:
            self.planner.plan(self.cluster, "kv01", MigrationMode.RAM)
        assert exc.value.field == "target"

    def test_non_positive_target(self):
        with pytest.raises(ValidationError):
            self.planner.plan(self.cluster, "kv01", MigrationMode.VM_COUNT, 0)

    def test_cpu_percent_range(self):
        with pytest.raises(ValidationError):
            self.planner.plan(self.cluster, "kv01", MigrationMode.CPU_PERCENT, 150)

    def test_fractional_count_targets(self):
        cluster = make_cluster(make_node("kv01", [make_vm(vmid) for vmid in range(101, 106)]), make_node("kv02"))
        with pytest.raises(ValidationError) as exc:
            self.planner.plan(cluster, "kv01", MigrationMode.VM_COUNT, 2.5)
        assert exc.value.field == "target"
        with pytest.raises(ValidationError):
            self.planner.plan(cluster, "kv01", MigrationMode.VCPU, 1.5)
        assert len(self.planner.plan(cluster, "kv01", MigrationMode.VM_COUNT, 2.0).suggestions) == 2

    def test_cpu_percent_needs_source_threads(self):
        cluster = make_cluster(make_node("kv01", [make_vm(101), make_vm(102)], cpu_cores=0), make_node("kv02"))
        with pytest.raises(ValidationError) as exc:
            self.planner.plan(cluster, "kv01", MigrationMode.CPU_PERCENT, 10)
        assert exc.value.field == "source"

    def test_bad_constraints(self):
        with pytest.raises(ValidationError):
            self.planner.plan(self.cluster, "kv01", MigrationMode.EVACUATE_ALL,
                              constraints=PlacementConstraints(min_free_cpu_percent=120))

    def test_mode_parsing(self):
        assert MigrationMode.parse("evacuate-all") == MigrationMode.EVACUATE_ALL
        assert MigrationMode.parse(" VCPU ") == MigrationMode.VCPU
        with pytest.raises(ValidationError):
            MigrationMode.parse("bogus")


class TestCandidateSelection:
    """Which VMs each mode picks"""

    def setup_method(self):
        self.planner = MigrationPlanner()

    def plan(self, source_vms, mode, target=None, vmids=None, source_kwargs=None):
        cluster = make_cluster(
            make_node("kv01", source_vms, **(source_kwargs or {})),
            make_node("kv02"),
            make_node("kv03"),
        )
        return self.planner.plan(cluster, "kv01", mode, target, vmids)

    def test_vcpu_target_scenario(self):
        vms = [
            make_vm(101, cpus=2, max_mem=4 * GIB),
            make_vm(102, cpus=4, max_mem=8 * GIB),
            make_vm(103, cpus=8, max_mem=16 * GIB),
        ]
        result = self.plan(vms, MigrationMode.VCPU, 5)
        assert moved_vmids(result) == [101, 102]
        assert result.total_vcpus == 6

    def test_no_migrate_is_never_a_candidate(self):
        vms = [
            make_vm(101, cpus=1, no_migrate=True),
            make_vm(102, cpus=2),
            make_vm(103, cpus=4),
        ]
        for mode, target in [(MigrationMode.VCPU, 3), (MigrationMode.VM_COUNT, 3),
                             (MigrationMode.RAM, 100 * GIB), (MigrationMode.EVACUATE_ALL, None)]:
            assert 101 not in moved_vmids(self.plan(vms, mode, target))

    def test_explicit_no_migrate_is_rejected(self):
        vms = [make_vm(101, no_migrate=True), make_vm(102)]
        result = self.plan(vms, MigrationMode.SPECIFIC_VMS, vmids=[101, 102])
        assert moved_vmids(result) == [102]
        assert [(o.vmid, o.reason) for o in result.omissions] == [(101, OMIT_NO_MIGRATE)]

    def test_explicit_vm_not_on_source(self):
        result = self.plan([make_vm(101)], MigrationMode.SPECIFIC_VMS, vmids=[555, 101, 101])
        assert moved_vmids(result) == [101]
        assert result.omissions[0].vmid == 555
        assert result.omissions[0].reason == OMIT_NOT_ON_SOURCE

    def test_empty_explicit_set(self):
        result = self.plan([make_vm(101)], MigrationMode.SPECIFIC_VMS, vmids=[])
        assert result.suggestions == []
        assert result.total_vms == 0

    def test_ram_accumulation_boundary(self):
        sizes = [2, 3, 5, 8, 13]
        vms = [make_vm(100 + i, max_mem=32 * GIB, used_mem=s * GIB) for i, s in enumerate(sizes)]
        for target_gib in [1, 4, 6, 10, 11, 20]:
            target = target_gib * GIB
            result = self.plan(vms, MigrationMode.RAM, target)
            picked = [v.ram_bytes for v in vms if v.vmid in moved_vmids(result)]
            assert sum(picked) >= target
            assert sum(picked) - picked[-1] < target

    def test_ram_falls_back_to_allocated(self):
        vms = [make_vm(101, max_mem=6 * GIB, used_mem=0), make_vm(102, max_mem=8 * GIB, used_mem=4 * GIB)]
        result = self.plan(vms, MigrationMode.RAM, 1 * GIB)
        assert moved_vmids(result) == [102]

    def test_storage_prefers_allocated(self):
        vms = [
            make_vm(101, max_disk=100 * GIB, used_disk=10 * GIB),
            make_vm(102, max_disk=0, used_disk=20 * GIB),
        ]
        result = self.plan(vms, MigrationMode.STORAGE, 15 * GIB)
        assert moved_vmids(result) == [102]

    def test_cpu_percent_is_host_normalized(self):
        vms = [
            make_vm(101, cpus=2, cpu_usage=50.0),   # 10% of a 10-thread host
            make_vm(102, cpus=4, cpu_usage=10.0),   # 4%
            make_vm(103, cpus=8, cpu_usage=100.0),  # 80%
        ]
        result = self.plan(vms, MigrationMode.CPU_PERCENT, 12, source_kwargs={"cpu_cores": 10})
        assert moved_vmids(result) == [102, 101]

    def test_vm_count_picks_lowest_impact(self):
        vms = [
            make_vm(101, cpu_usage=90.0),
            make_vm(102, cpu_usage=5.0),
            make_vm(103, cpu_usage=20.0),
        ]
        result = self.plan(vms, MigrationMode.VM_COUNT, 2)
        assert moved_vmids(result) == [102, 103]

    def test_creation_age(self):
        clock = FakeClock()
        self.planner = MigrationPlanner(clock=clock)
        vms = [
            make_vm(101, creation_time=int(clock.now - 10 * DAY)),
            make_vm(102, creation_time=int(clock.now - 200 * DAY)),
            make_vm(103, creation_time=0),
            make_vm(104, creation_time=int(clock.now - 100 * DAY)),
        ]
        result = self.plan(vms, MigrationMode.CREATION_AGE, 30)
        assert moved_vmids(result) == [102, 104]
        assert "30 days" in result.suggestions[0].reason


class TestTargetFiltering:
    """Each filter and its rejection reason"""

    def test_rejection_reasons(self):
        vm = make_vm(101, max_mem=4 * GIB, max_disk=32 * GIB, host_cpu_model="EPYC")
        cluster = make_cluster(
            make_node("kv01", [vm]),
            make_node("good"),
            make_node("off", status="offline"),
            make_node("excl"),
            make_node("maint", host_state=0),
            make_node("intel", cpu_model="Intel Xeon Gold 6338"),
            make_node("small", max_mem=8 * GIB, used_mem=6 * GIB),
            make_node("full-disk", max_disk=100 * GIB, used_disk=90 * GIB),
            make_node("busy", [make_vm(201), make_vm(202), make_vm(203)]),
            make_node("tight-ram", max_mem=64 * GIB, used_mem=56 * GIB),
            make_node("hot", cpu_usage=0.95),
        )
        constraints = PlacementConstraints(
            excluded_nodes={"excl"},
            max_vms_per_host=3,
            min_free_ram=6 * GIB,
            min_free_cpu_percent=10,
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.SPECIFIC_VMS,
                                         explicit_vmids=[101], constraints=constraints)

        assert result.suggestions[0].target_node == "good"
        assert rejection_reasons(result, 101) == {
            "off": REASON_OFFLINE,
            "excl": REASON_EXCLUDED,
            "maint": REASON_HOST_STATE,
            "intel": REASON_CPU_MODEL,
            "small": REASON_RAM_CAPACITY,
            "full-disk": REASON_STORAGE_CAPACITY,
            "busy": REASON_VM_LIMIT,
            "tight-ram": REASON_MIN_FREE_RAM,
            "hot": REASON_MIN_FREE_CPU,
        }

    def test_ram_rejection_is_monotonic(self):
        for size_gib in [11, 12, 16, 24, 64]:
            vm = make_vm(101, max_mem=size_gib * GIB)
            cluster = make_cluster(make_node("kv01", [vm]), make_node("mid", max_mem=32 * GIB, used_mem=22 * GIB))
            result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.SPECIFIC_VMS, explicit_vmids=[101])
            assert rejection_reasons(result, 101) == {"mid": REASON_RAM_CAPACITY}

        vm = make_vm(101, max_mem=8 * GIB)
        cluster = make_cluster(make_node("kv01", [vm]), make_node("mid", max_mem=32 * GIB, used_mem=22 * GIB))
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.SPECIFIC_VMS, explicit_vmids=[101])
        assert moved_vmids(result) == [101]

    def test_no_valid_target_is_an_omission(self):
        vm = make_vm(101, max_mem=64 * GIB)
        cluster = make_cluster(make_node("kv01", [vm]), make_node("kv02", max_mem=32 * GIB, used_mem=8 * GIB))
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        assert result.suggestions == []
        assert result.omissions[0].reason == OMIT_NO_TARGET
        assert result.omissions[0].rejections[0].reason == REASON_RAM_CAPACITY

    def test_earlier_moves_consume_capacity(self):
        vms = [make_vm(101, max_mem=6 * GIB), make_vm(102, max_mem=6 * GIB)]
        cluster = make_cluster(make_node("kv01", vms), make_node("kv02", max_mem=32 * GIB, used_mem=22 * GIB))
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 2)
        assert moved_vmids(result) == [101]
        assert rejection_reasons(result, 102) == {"kv02": REASON_RAM_CAPACITY}

    def test_vm_limit_counts_planned_moves(self):
        vms = [make_vm(101), make_vm(102), make_vm(103)]
        cluster = make_cluster(make_node("kv01", vms), make_node("kv02"), make_node("kv03"))
        constraints = PlacementConstraints(max_vms_per_host=1)
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 3, constraints=constraints)
        assert sorted(s.target_node for s in result.suggestions) == ["kv02", "kv03"]
        assert result.omissions[0].reason == OMIT_NO_TARGET


class TestTargetSelection:
    """Scores, tie-breaks and alternatives"""

    def test_prefers_less_loaded_node(self):
        cluster = make_cluster(
            make_node("kv01", [make_vm(101)]),
            make_node("kv02", cpu_usage=0.8, used_mem=200 * GIB),
            make_node("kv03", cpu_usage=0.2, used_mem=60 * GIB),
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        suggestion = result.suggestions[0]
        assert suggestion.target_node == "kv03"
        assert suggestion.placement == PLACEMENT_SCORED
        assert suggestion.alternatives[0].node == "kv02"
        assert suggestion.alternatives[0].score < suggestion.score

    def test_ties_broken_by_name(self):
        cluster = make_cluster(make_node("kv01", [make_vm(101)]), make_node("kv09"), make_node("kv02"))
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        assert result.suggestions[0].target_node == "kv02"
        assert result.suggestions[0].alternatives[0].node == "kv09"

    def test_at_most_three_alternatives(self):
        nodes = [make_node(f"kv1{i}") for i in range(6)]
        cluster = make_cluster(make_node("kv01", [make_vm(101)]), *nodes)
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        assert len(result.suggestions[0].alternatives) == 3


class TestAffinity:
    """Co-location and anti-co-location tags"""

    def test_with_vm_pulls_to_partner_node(self):
        vm = make_vm(101, name="app01", with_vms=["db01"])
        cluster = make_cluster(
            make_node("kv01", [vm]),
            make_node("kv02"),
            make_node("kv03", [make_vm(301, name="db01")], cpu_usage=0.6),
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        assert result.suggestions[0].target_node == "kv03"
        assert rejection_reasons(result, 101) == {"kv02": REASON_AFFINITY}

    def test_without_vm_avoids_node(self):
        vm = make_vm(101, name="web01", without_vms=["web02"])
        cluster = make_cluster(
            make_node("kv01", [vm]),
            make_node("kv02", [make_vm(201, name="web02")]),
            make_node("kv03", cpu_usage=0.6),
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        assert result.suggestions[0].target_node == "kv03"

    def test_resident_anti_affinity_is_honoured(self):
        vm = make_vm(101, name="web01")
        cluster = make_cluster(
            make_node("kv01", [vm]),
            make_node("kv02", [make_vm(201, name="web02", without_vms=["web01"])]),
            make_node("kv03", cpu_usage=0.6),
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.VM_COUNT, 1)
        assert result.suggestions[0].target_node == "kv03"
        assert rejection_reasons(result, 101) == {"kv02": REASON_AFFINITY}

    def test_affinity_cycle_yields_no_target(self):
        a = make_vm(101, name="a", with_vms=["b"])
        b = make_vm(201, name="b", without_vms=["a"])
        cluster = make_cluster(make_node("kv01", [a]), make_node("kv02", [b]), make_node("kv03"))
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.SPECIFIC_VMS, explicit_vmids=[101])
        assert result.suggestions == []
        assert result.omissions[0].reason == OMIT_NO_TARGET
        assert set(rejection_reasons(result, 101).values()) == {REASON_AFFINITY}

    def test_planned_moves_update_locations(self):
        big = make_vm(101, name="a", cpus=8, max_mem=16 * GIB)
        small = make_vm(102, name="b", cpus=1, max_mem=2 * GIB, with_vms=["a"])
        cluster = make_cluster(make_node("kv01", [big, small]), make_node("kv02"), make_node("kv03"))
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.EVACUATE_ALL)
        targets = {s.vmid: s.target_node for s in result.suggestions}
        assert targets[102] == targets[101]


class TestEvacuation:
    """EVACUATE_ALL ordering and balance bounds"""

    def test_all_eligible_vms_are_placed_within_bounds(self):
        vms = [
            make_vm(101, cpus=2, cpu_usage=20.0, max_mem=4 * GIB),
            make_vm(102, cpus=4, cpu_usage=30.0, max_mem=8 * GIB, status="stopped"),
            make_vm(103, cpus=8, cpu_usage=10.0, max_mem=8 * GIB),
            make_vm(104, no_migrate=True),
        ]
        nodes = [
            make_node("kv01", vms, cpu_usage=0.6, used_mem=200 * GIB),
            make_node("kv02", cpu_usage=0.30, used_mem=100 * GIB),
            make_node("kv03", cpu_usage=0.40, used_mem=120 * GIB),
            make_node("kv04", cpu_usage=0.50, used_mem=140 * GIB),
        ]
        cluster = make_cluster(*nodes)
        planner = MigrationPlanner()
        avg_cpu, avg_ram = planner.evacuation_averages(cluster, "kv01")
        assert avg_cpu == pytest.approx(40.0)

        result = planner.plan(cluster, "kv01", MigrationMode.EVACUATE_ALL)

        # Running VMs go first, largest first
        assert moved_vmids(result) == [103, 101, 102]
        assert all(s.placement == PLACEMENT_BALANCED for s in result.suggestions)
        assert [(o.vmid, o.reason) for o in result.omissions] == [(104, OMIT_NO_MIGRATE)]
        for name, state in result.after.items():
            if name != "kv01":
                assert state.cpu_percent <= avg_cpu + 5
                assert state.ram_percent <= avg_ram + 5

    def test_best_available_when_nothing_is_in_bounds(self):
        vm = make_vm(101, cpus=4, cpu_usage=50.0, max_mem=8 * GIB)
        cluster = make_cluster(
            make_node("kv01", [vm]),
            make_node("kv02", cpu_usage=0.5, max_mem=64 * GIB, used_mem=32 * GIB),
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.EVACUATE_ALL)
        assert result.suggestions[0].target_node == "kv02"
        assert result.suggestions[0].placement == PLACEMENT_BEST_AVAILABLE

    def test_best_available_tie_break(self):
        vm = make_vm(101, max_mem=8 * GIB)
        cluster = make_cluster(
            make_node("kv01", [vm]),
            make_node("kv05", max_mem=64 * GIB, used_mem=32 * GIB),
            make_node("kv04", max_mem=64 * GIB, used_mem=32 * GIB),
        )
        result = MigrationPlanner().plan(cluster, "kv01", MigrationMode.EVACUATE_ALL)
        assert result.suggestions[0].placement == PLACEMENT_BEST_AVAILABLE
        assert result.suggestions[0].target_node == "kv04"


class TestResult:
    """Projections, totals and export"""

    def setup_method(self):
        vms = [
            make_vm(101, cpus=2, cpu_usage=40.0, max_mem=8 * GIB, max_disk=50 * GIB),
            make_vm(102, cpus=4, cpu_usage=40.0, max_mem=16 * GIB, max_disk=100 * GIB),
            make_vm(103, cpus=8, cpu_usage=40.0, max_mem=32 * GIB, max_disk=200 * GIB),
        ]
        self.cluster = make_cluster(
            make_node("kv01", vms, cpu_cores=16, cpu_usage=0.7, used_mem=150 * GIB),
            make_node("kv02"),
        )
        self.result = MigrationPlanner().plan(self.cluster, "kv01", MigrationMode.VCPU, 6)

    def test_totals(self):
        assert self.result.total_vms == 2
        assert self.result.total_vcpus == 6
        assert self.result.total_ram == 24 * GIB
        assert self.result.total_storage == 150 * GIB

    def test_before_and_after_states(self):
        before, after = self.result.before["kv01"], self.result.after["kv01"]
        assert before.vm_count == 3 and after.vm_count == 1
        assert before.vcpus == 14 and after.vcpus == 8
        # 40% of 2 + 4 vCPUs on a 16-thread host
        assert before.cpu_percent - after.cpu_percent == pytest.approx(15.0)
        assert after.ram_used == 126 * GIB
        assert self.result.after["kv02"].vm_count == 2
        assert set(self.result.before) == {"kv01", "kv02"}

    def test_migration_counts_per_node(self):
        assert self.result.after["kv01"].migrations_out == 2
        assert self.result.after["kv01"].migrations_in == 0
        assert self.result.after["kv02"].migrations_in == 2
        assert self.result.before["kv02"].migrations_in == 0

    def test_improvement(self):
        assert self.result.cpu_improvement == pytest.approx(15.0)
        assert self.result.ram_improvement > 0

    def test_suggestion_details(self):
        suggestion = self.result.suggestions[0]
        assert suggestion.source_node == "kv01"
        assert suggestion.reason == "Selected to free up 6 vCPUs from source host"
        assert suggestion.status == "running"

    def test_snapshot_is_not_modified(self):
        assert len(self.cluster.get_node("kv01").vms) == 3
        assert self.cluster.get_node("kv02").vms == []

    def test_json_export(self):
        data = json.loads(json.dumps(self.result.to_dict()))
        assert data["mode"] == "vcpu"
        assert len(data["suggestions"]) == 2
        assert data["cpu_improvement"] == pytest.approx(15.0)
