"""Tests for domain/models.py."""

import pytest

from oem_seal.domain import (
    BuildSizeBudget,
    DmDevice,
    DmTable,
    OEMExtensionPlan,
    Partition,
    PartitionTable,
    SizeSpec,
    VerityParameters,
)
from oem_seal.storage.exceptions import InvalidFormatError, PartitionTableError


class TestSizeSpec:
    """Tests for SizeSpec."""

    def test_parse_absolute(self):
        spec = SizeSpec.parse("16M")
        assert spec == SizeSpec(value=16, unit="M")
        assert not spec.is_relative
        assert spec.to_bytes() == 16 * 1024 * 1024

    def test_parse_relative(self):
        spec = SizeSpec.parse("+5G")
        assert spec.is_relative
        assert str(spec) == "+5G"

    def test_relative_has_no_byte_value(self):
        with pytest.raises(ValueError):
            SizeSpec.parse("-200M").to_bytes()

    def test_bare_number_is_sectors(self):
        assert SizeSpec.parse("2048").to_bytes() == 2048 * 512

    def test_parse_invalid(self):
        with pytest.raises(InvalidFormatError):
            SizeSpec.parse("five")


class TestPartition:
    """Tests for Partition."""

    def test_from_sfdisk_dict(self):
        entry = {
            "node": "/dev/sda8",
            "start": 86016,
            "size": 32768,
            "uuid": "8ac60384-1187-9e49-91ce-3abd8da295a7",
            "name": "OEM",
        }
        partition = Partition.from_sfdisk_dict(entry, 8)

        assert partition.index == 8
        assert partition.end == 118784
        assert partition.size_bytes == 16 * 1024 * 1024
        assert partition.uuid == "8AC60384-1187-9E49-91CE-3ABD8DA295A7"
        assert partition.name == "OEM"

    def test_from_sfdisk_dict_without_uuid(self):
        partition = Partition.from_sfdisk_dict({"node": "/dev/sda1", "start": 1, "size": 2}, 1)
        assert partition.uuid == ""

    def test_from_sfdisk_dict_missing_size(self):
        with pytest.raises(KeyError):
            Partition.from_sfdisk_dict({"node": "/dev/sda1", "start": 1}, 1)


class TestPartitionTable:
    """Tests for PartitionTable."""

    @pytest.fixture
    def table(self):
        return PartitionTable(
            device="/dev/sda",
            label="gpt",
            partitions=(
                Partition(12, "/dev/sda12", 4096, 65536),
                Partition(8, "/dev/sda8", 86016, 32768),
                Partition(1, "/dev/sda1", 118784, 1000),
            ),
        )

    def test_get(self, table):
        assert table.get(8).node == "/dev/sda8"

    def test_get_missing(self, table):
        with pytest.raises(PartitionTableError, match="partition 3 not found"):
            table.get(3)

    def test_next_after(self, table):
        assert table.next_after(table.get(8)).index == 1
        assert table.next_after(table.get(1)) is None


class TestOEMExtensionPlan:
    """Tests for OEMExtensionPlan."""

    def test_target_state_start_and_growth(self):
        plan = OEMExtensionPlan(
            disk="/dev/sda",
            oem_index=8,
            state_index=1,
            oem_start=86016,
            current_oem_size=32768,
            target_oem_size=2095104,
            state_start=118784,
            state_size=1000,
        )
        assert plan.target_state_start == 2181120
        assert plan.growth == 2062336


class TestVerityParameters:
    """Tests for VerityParameters."""

    def test_offsets(self):
        params = VerityParameters(data_blocks=4096, root_hash="aa", salt="bb")
        assert params.hash_offset == 16 * 1024 * 1024
        assert params.data_sectors == 32768
        assert params.algorithm == "sha256"


class TestDmTable:
    """Tests for DmDevice and DmTable."""

    @pytest.fixture
    def table(self):
        return DmTable(devices=(DmDevice("vroot none ro 1", ("0 100 verity a",)),))

    def test_render_keeps_segments(self, table):
        assert table.render() == "1 vroot none ro 1,0 100 verity a"

    def test_with_device_appends(self, table):
        new = table.with_device(DmDevice("oemroot none ro 1", (" 0 8 verity b",)))
        assert new.count == 2
        assert new.render() == "2 vroot none ro 1,0 100 verity a,oemroot none ro 1, 0 8 verity b"
        assert table.count == 1

    def test_with_device_replaces_same_name(self, table):
        new = table.with_device(DmDevice("vroot none ro 1", ("0 200 verity c",)))
        assert new.count == 1
        assert new.render() == "1 vroot none ro 1,0 200 verity c"

    def test_find(self, table):
        assert table.find("vroot") == 0
        assert table.find("oemroot") is None


class TestBuildSizeBudget:
    """Tests for BuildSizeBudget."""

    def test_extends_oem(self):
        assert not BuildSizeBudget(image_size_gb=10).extends_oem
        assert BuildSizeBudget(image_size_gb=10, oem_size="1023M").extends_oem
