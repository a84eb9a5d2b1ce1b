"""
Unit tests for config comment metadata and disk size parsing.
"""

from proxmox_balancer.config_parser import (
    disk_size_from_value, node_allows_provisioning, node_host_state,
    parse_comment_meta, parse_comment_pairs, parse_disk_sizes_from_config,
    parse_disk_sizes_from_text, parse_guest_config, parse_node_config,
    render_config_text,
)

GIB = 1024 ** 3
MIB = 1024 ** 2

GUEST_CONFIG = """#nomigrate=true,hostcpumodel=EPYC
#withvm=db01.example.com,cache01.example.com,without=web02.example.com
boot: order=scsi0
cores: 4
memory: 8192
meta: creation-qemu=8.1.2,ctime=1700000000
scsi0: kv01-storage1:vm-101-disk-0,size=40G
ide2: none,media=cdrom

[before-upgrade]
#nomigrate=false
scsi0: kv01-storage1:vm-101-disk-0,size=40G
"""


class TestCommentPairs:
    """Comment line key=value parsing"""

    def test_simple_pairs(self):
        assert parse_comment_pairs("a=1,b=2") == {"a": "1", "b": "2"}

    def test_keys_are_lowercased_and_values_trimmed(self):
        assert parse_comment_pairs(" NoMigrate = true ") == {"nomigrate": "true"}

    def test_list_value_continues_across_commas(self):
        pairs = parse_comment_pairs("withvm=a,b,nomigrate=true")
        assert pairs == {"withvm": "a,b", "nomigrate": "true"}

    def test_leading_garbage_is_ignored(self):
        assert parse_comment_pairs("just a note,x=1") == {"x": "1"}

    def test_comment_meta_skips_plain_comments(self):
        meta = parse_comment_meta("# owned by team blue\n#tier=gold\ncores: 2\n")
        assert meta == {"tier": "gold"}


class TestGuestConfig:
    """Guest config metadata"""

    def setup_method(self):
        self.meta = parse_guest_config(GUEST_CONFIG)

    def test_no_migrate(self):
        assert self.meta.no_migrate is True

    def test_host_cpu_model(self):
        assert self.meta.host_cpu_model == "EPYC"

    def test_affinity_lists(self):
        assert self.meta.with_vms == ["db01.example.com", "cache01.example.com"]
        assert self.meta.without_vms == ["web02.example.com"]

    def test_creation_time(self):
        assert self.meta.creation_time == 1700000000

    def test_snapshot_section_is_not_parsed(self):
        assert self.meta.meta["nomigrate"] == "true"

    def test_empty_config(self):
        meta = parse_guest_config("")
        assert meta.no_migrate is False
        assert meta.with_vms == []
        assert meta.creation_time == 0

    def test_malformed_ctime_is_ignored(self):
        assert parse_guest_config("meta: ctime=yesterday\n").creation_time == 0


class TestNodeConfig:
    """Node config flags"""

    def test_provisioning_and_host_state(self):
        meta = parse_node_config("#hostprovision=true,hoststate=3\n")
        assert node_allows_provisioning(meta) is True
        assert node_host_state(meta) == 3

    def test_defaults_when_absent(self):
        meta = parse_node_config("acme: domains=pve1.example.com\n")
        assert node_allows_provisioning(meta) is False
        assert node_host_state(meta) == -1

    def test_invalid_host_state(self):
        assert node_host_state({"hoststate": "busy"}) == -1
        assert node_host_state({"hoststate": "7"}) == -1


class TestDiskSizes:
    """Allocated disk size parsing"""

    def test_units(self):
        assert disk_size_from_value("local:vm-1-disk-0,size=512M") == 512 * MIB
        assert disk_size_from_value("local:vm-1-disk-0,size=2T") == 2 * 1024 * GIB
        assert disk_size_from_value("local:vm-1-disk-0,size=4K") == 4096

    def test_missing_unit_means_gigabytes(self):
        assert disk_size_from_value("local:vm-1-disk-0,size=10") == 10 * GIB

    def test_cdrom_and_none_are_skipped(self):
        assert disk_size_from_value("local:iso/debian.iso,media=cdrom,size=600M") == 0
        assert disk_size_from_value("none") == 0

    def test_text_sums_disks_and_stops_at_snapshot(self):
        assert parse_disk_sizes_from_text(GUEST_CONFIG) == 40 * GIB

    def test_text_counts_every_disk_kind(self):
        text = (
            "scsi0: s:vm-1-disk-0,size=32G\n"
            "virtio1: s:vm-1-disk-1,size=8G\n"
            "sata2: s:vm-1-disk-2,size=1G\n"
            "efidisk0: s:vm-1-disk-3,size=4M\n"
            "tpmstate0: s:vm-1-disk-4,size=4M\n"
            "unused0: s:vm-1-disk-5\n"
            "net0: virtio=AA:BB:CC:DD:EE:FF,bridge=vmbr0\n"
        )
        assert parse_disk_sizes_from_text(text) == 41 * GIB + 8 * MIB

    def test_container_disks(self):
        text = "rootfs: s:subvol-200-disk-0,size=8G\nmp0: s:subvol-200-disk-1,mp=/data,size=20G\n"
        assert parse_disk_sizes_from_text(text) == 28 * GIB

    def test_config_mapping(self):
        config = {
            "scsi0": "s:vm-1-disk-0,size=16G",
            "ide2": "none,media=cdrom",
            "cores": 4,
            "name": "web01",
        }
        assert parse_disk_sizes_from_config(config) == 16 * GIB


class TestRenderConfigText:
    """Config text rebuilt from the API mapping"""

    def test_description_becomes_comments(self):
        text = render_config_text({
            "description": "nomigrate=true\nwithvm=db01",
            "digest": "abc",
            "scsi0": "s:vm-1-disk-0,size=16G",
            "meta": "creation-qemu=8.1.2,ctime=1690000000",
        })
        meta = parse_guest_config(text)
        assert meta.no_migrate is True
        assert meta.with_vms == ["db01"]
        assert meta.creation_time == 1690000000
        assert "digest" not in text
        assert parse_disk_sizes_from_text(text) == 16 * GIB
