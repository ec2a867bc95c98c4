"""Tests for storage/units.py - synchronized size representations."""

import math

import pytest

from driveassist.domain.models import GIB, MIB, align_to_mib
from driveassist.storage.units import UnitConversionModel, mib_to_sectors, parse_number


class TestSetBytes:
    """Tests for set_bytes() conversions."""

    @pytest.mark.parametrize("size_bytes", [1, 511, 512, 513, MIB - 1, MIB, 3 * GIB + 7])
    @pytest.mark.parametrize("sector_size", [512, 4096])
    def test_sectors_round_up_and_mib_truncates(self, size_bytes, sector_size):
        """Test sectors == ceil(b/s) and mib == b // 2^20."""
        model = UnitConversionModel(sector_size)
        model.set_bytes(size_bytes)

        state = model.state
        assert state.sectors == math.ceil(size_bytes / sector_size)
        assert state.mib == size_bytes // MIB
        assert state.bytes == size_bytes

    def test_gib_is_display_only(self):
        """Test GiB renders with two decimals."""
        model = UnitConversionModel(512)
        model.set_mib(1536)
        assert model.display()["gib"] == "1.50"
        assert model.state.bytes == 1536 * MIB


class TestSetMib:
    """Tests for set_mib()."""

    def test_idempotent(self):
        """Test applying set_mib twice equals applying it once."""
        once = UnitConversionModel(512, start_sector=2048)
        once.set_mib(100)
        twice = UnitConversionModel(512, start_sector=2048)
        twice.set_mib(100)
        twice.set_mib(100)
        assert once.state == twice.state

    def test_moves_end_sector_when_start_known(self):
        """Test end = start + sectors - 1."""
        model = UnitConversionModel(512, start_sector=2048)
        model.set_mib(100)
        assert model.state.sectors == 204800
        assert model.state.end_sector == 2048 + 204800 - 1


class TestSetGib:
    def test_converts_through_bytes(self):
        model = UnitConversionModel(4096)
        model.set_gib("2")
        assert model.state.bytes == 2 * GIB
        assert model.state.mib == 2048
        assert model.state.sectors == 2 * GIB // 4096


class TestRangeSetters:
    """Tests for set_start_sector() / set_end_sector()."""

    def test_end_sector_recomputes_size(self):
        """Test size comes from end - start + 1."""
        model = UnitConversionModel(512, start_sector=2048, end_sector=4095)
        assert model.state.sectors == 2048
        model.set_end_sector(2048 + 4096 - 1)
        assert model.state.sectors == 4096
        assert model.state.bytes == 4096 * 512
        assert model.state.mib == 2

    def test_start_sector_keeps_size(self):
        """Test moving the start carries the end along."""
        model = UnitConversionModel(512, start_sector=2048, end_sector=4095)
        model.set_start_sector(8192)
        assert model.state.end_sector == 8192 + 2048 - 1
        assert model.state.sectors == 2048

    def test_end_before_start_clamps_to_zero(self):
        """Test negative results clamp to zero."""
        model = UnitConversionModel(512, start_sector=2048, end_sector=4095)
        model.set_end_sector(100)
        assert model.state.sectors == 0
        assert model.state.bytes == 0


class TestInputHandling:
    """Tests for ignored input and the re-entrancy guard."""

    @pytest.mark.parametrize("value", ["", "   ", "abc", None, "1e999"])
    def test_invalid_input_leaves_model_unchanged(self, value):
        """Test empty or non-numeric input is ignored silently."""
        model = UnitConversionModel(512)
        model.set_mib(10)
        before = model.state
        assert model.set_mib(value) is False
        assert model.set_bytes(value) is False
        assert model.state == before

    def test_negative_input_clamps(self):
        model = UnitConversionModel(512)
        model.set_mib(-5)
        assert model.state.mib == 0
        assert model.state.sectors == 0

    def test_listener_cannot_reenter(self):
        """Test setters called from a listener are suppressed."""
        model = UnitConversionModel(512)
        calls = []

        def listener(state):
            calls.append(state.mib)
            assert model.set_bytes(1) is False

        model.subscribe(listener)
        assert model.set_mib(10) is True
        assert calls == [10]
        assert model.state.mib == 10

    def test_instances_do_not_share_guard(self):
        """Test two dialogs can update independently."""
        first = UnitConversionModel(512)
        second = UnitConversionModel(512)
        first.subscribe(lambda state: second.set_mib(state.mib * 2))
        first.set_mib(4)
        assert second.state.mib == 8

    def test_invalid_sector_size(self):
        with pytest.raises(ValueError):
            UnitConversionModel(0)


class TestHelpers:
    def test_parse_number(self):
        assert parse_number(" 42 ") == 42
        assert parse_number("1.5", integer=False) == 1.5
        assert parse_number(True) is None

    def test_align_to_mib(self):
        """Test sector 34 on a 512-byte disk aligns to 2048."""
        assert align_to_mib(34, 512) == 2048
        assert align_to_mib(2048, 512) == 2048
        assert align_to_mib(2049, 512) == 4096
        assert align_to_mib(0, 4096) == 256

    def test_mib_to_sectors(self):
        assert mib_to_sectors(1, 512) == 2048
