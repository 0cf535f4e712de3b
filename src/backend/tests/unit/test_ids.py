"""
Unit tests for row id generation.

Tests cover:
- Base36 conversion
- Fixed-width timestamp part
- Prefix and random part layout
- Creation-time ordering
"""

import pytest

from core.ids import IdGenerator, to_base36


class TestToBase36:
    """Tests for to_base36()."""

    def test_zero(self):
        assert to_base36(0) == "0"

    def test_single_digits(self):
        assert to_base36(9) == "9"
        assert to_base36(35) == "z"

    def test_carries_into_second_digit(self):
        assert to_base36(36) == "10"
        assert to_base36(1000) == "rs"

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            to_base36(-1)


class TestIdGenerator:
    """Tests for IdGenerator."""

    def test_timestamp_part_is_zero_padded(self):
        """Milliseconds are encoded in base36 and left padded to nine characters."""
        generator = IdGenerator(clock=lambda: 1.0)
        assert generator.timestamp_part() == "0000000rs"

    def test_layout(self):
        """Id is prefix, timestamp part, then random hex."""
        generator = IdGenerator(prefix="tim_", random_bytes=6, clock=lambda: 1.0)
        value = generator()

        assert value.startswith("tim_0000000rs")
        random_part = value[len("tim_0000000rs"):]
        assert len(random_part) == 12
        int(random_part, 16)

    def test_ids_are_unique(self):
        generator = IdGenerator(clock=lambda: 1.0)
        assert len({generator() for _ in range(100)}) == 100

    def test_ids_sort_by_creation_time(self):
        """Later clock readings give lexicographically greater ids."""
        ticks = iter([1_600_000_000.0, 1_700_000_000.0, 1_800_000_000.0])
        generator = IdGenerator(clock=lambda: next(ticks))
        ids = [generator() for _ in range(3)]
        assert ids == sorted(ids)
