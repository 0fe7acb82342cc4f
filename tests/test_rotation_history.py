"""Tests for identifier parsing and the history log."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from tools.backup_rotator.exceptions import HistoryCorrupt
from tools.backup_rotator.history import (
    HistoryLog,
    format_entry,
    latest,
    parse_entries,
    parse_entry,
    parse_timestamp,
)
from tools.backup_rotator.position import (
    BackupRecord,
    Position,
    format_identifier,
    parse_identifier,
)


class TestIdentifiers:
    """Test the identifier codec."""

    def test_canonical(self):
        """Test parsing a canonical identifier."""
        position, unit = parse_identifier("set2-l7-n13")

        assert position == Position(2, 7, 13)
        assert unit is None

    def test_snapshot_name(self):
        """Test parsing a snapshot-style name with a dataset prefix."""
        position, unit = parse_identifier("tank/home@set1-l0-n23")

        assert position == Position(1, 0, 23)
        assert unit == "tank/home"

    def test_format_with_unit(self):
        """Test that a unit is written as a snapshot-style prefix."""
        assert format_identifier(Position(3, 1, 2)) == "set3-l1-n2"
        assert format_identifier(Position(3, 1, 2), "tank/home") == "tank/home@set3-l1-n2"

    @pytest.mark.parametrize(
        "identifier", ["set1-l2", "set1-l2-nX", "backup_full_20240101", "tank@", "xset1-l2-n3"]
    )
    def test_invalid(self, identifier):
        """Test that unknown encodings are rejected."""
        with pytest.raises(ValueError):
            parse_identifier(identifier)

    def test_position_ordering(self):
        """Test that positions order by set, level, then sequence."""
        assert Position(0, 9, 23) < Position(1, 0, 0)
        assert Position(1, 2, 3) < Position(1, 3, 0)


class TestTimestamps:
    """Test timestamp parsing."""

    def test_iso(self):
        """Test that ISO 8601 timestamps without an offset are local time."""
        expected = datetime(2026, 10, 19, 14, 5, 3).astimezone()
        assert parse_timestamp("2026-10-19T14:05:03") == expected

    def test_iso_with_offset(self):
        """Test that an explicit offset is honored and converted to UTC."""
        parsed = parse_timestamp("2026-10-19T14:05:03+02:00")

        assert parsed == datetime(2026, 10, 19, 12, 5, 3, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_epoch(self):
        """Test epoch seconds as printed by zfs list -p."""
        assert parse_timestamp("1700000000") == datetime.fromtimestamp(1700000000, timezone.utc)

    def test_date_output(self):
        """Test the C-locale output of date."""
        expected = datetime(2026, 10, 19, 14, 5, 3, tzinfo=timezone.utc)
        assert parse_timestamp("Mon Oct 19 14:05:03 UTC 2026") == expected

    def test_dst_fall_back_order(self):
        """Test that wall-clock repeats across a DST change keep real order."""
        earlier = parse_timestamp("2026-11-01T01:45:00-04:00")
        later = parse_timestamp("2026-11-01T01:15:00-05:00")

        assert earlier < later
        records = parse_entries(
            [
                "set0-l1-n2\t2026-11-01T01:15:00-05:00\n",
                "set0-l1-n3\t2026-11-01T01:45:00-04:00\n",
            ]
        )
        assert latest(records).position == Position(0, 1, 2)

    def test_invalid(self):
        """Test that garbage is rejected."""
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestEntries:
    """Test history line parsing."""

    def test_parse_entry(self):
        """Test a canonical log line."""
        record = parse_entry("set0-l1-n2\t2026-10-19T14:05:03\tset0-l1-n1\n")

        assert record.identifier == "set0-l1-n2"
        assert record.position == Position(0, 1, 2)
        assert record.timestamp == datetime(2026, 10, 19, 14, 5, 3).astimezone()
        assert record.diff_base == "set0-l1-n1"
        assert record.is_full is False

    def test_parse_legacy_entry(self):
        """Test a line with double tabs and a date timestamp."""
        record = parse_entry("tank/home@set0-l0-n0\t\tMon Oct 19 14:05:03 UTC 2026\n")

        assert record.unit == "tank/home"
        assert record.position == Position(0, 0, 0)
        assert record.diff_base is None

    @pytest.mark.parametrize(
        "line", ["set0-l0-n0", "set0-l0-n0\tnot a date", "garbage\t2026-10-19T14:05:03"]
    )
    def test_parse_entry_corrupt(self, line):
        """Test that bad lines raise HistoryCorrupt."""
        with pytest.raises(HistoryCorrupt):
            parse_entry(line)

    def test_parse_entries_skips_corrupt(self, caplog):
        """Test that corrupt lines are skipped with a warning."""
        lines = [
            "# comment\n",
            "set0-l0-n0\t2026-10-19T10:00:00\n",
            "\n",
            "set0-l0-n1\tgarbage\n",
            "set0-l0-n2\t2026-10-19T12:00:00\n",
        ]
        with caplog.at_level(logging.WARNING):
            records = parse_entries(lines)

        assert [r.identifier for r in records] == ["set0-l0-n0", "set0-l0-n2"]
        assert "line 4" in caplog.text

    def test_format_entry(self):
        """Test that formatted entries parse back to the same record."""
        record = BackupRecord(
            identifier="set1-l2-n3",
            position=Position(1, 2, 3),
            timestamp=datetime(2026, 10, 19, 14, 5, 3, 250, tzinfo=timezone.utc),
            diff_base="set1-l2-n2",
        )
        assert format_entry(record) == "set1-l2-n3\t2026-10-19T14:05:03.000250+00:00\tset1-l2-n2"
        assert parse_entry(format_entry(record)) == record


class TestLatest:
    """Test state derivation."""

    def test_latest_by_timestamp(self):
        """Test that the newest timestamp wins over position order."""
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        records = parse_entries(
            [
                f"set3-l9-n23\t{base.isoformat()}\n",
                f"set0-l0-n0\t{(base + timedelta(hours=1)).isoformat()}\n",
            ]
        )
        assert latest(records).position == Position(0, 0, 0)

    def test_latest_tie_breaks_on_position(self):
        """Test that equal timestamps fall back to position order."""
        records = parse_entries(
            ["set0-l1-n5\t2026-01-01T00:00:00\n", "set0-l1-n4\t2026-01-01T00:00:00\n"]
        )
        assert latest(records).position == Position(0, 1, 5)

    def test_latest_empty(self):
        """Test that no records means no state."""
        assert latest([]) is None


class TestHistoryLog:
    """Test the history file."""

    def test_read_missing(self, tmp_path):
        """Test that a missing file is empty history."""
        log = HistoryLog(tmp_path / "rotation.history")

        assert log.read() == []
        assert log.latest() is None

    def test_append_and_read(self, tmp_path):
        """Test that appended records are read back in order."""
        log = HistoryLog(tmp_path / "nested" / "rotation.history")
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for n in range(3):
            position = Position(0, 0, n)
            log.append(
                BackupRecord(
                    identifier=position.slug,
                    position=position,
                    timestamp=base + timedelta(hours=n),
                )
            )

        records = log.read()
        assert [r.position.sequence for r in records] == [0, 1, 2]
        assert log.latest().position == Position(0, 0, 2)

    def test_purge(self, tmp_path):
        """Test that purge removes matching records and keeps other lines."""
        path = tmp_path / "rotation.history"
        path.write_text(
            "set0-l0-n0\t2026-01-01T00:00:00\n"
            "broken line\n"
            "set1-l0-n0\t2026-01-02T00:00:00\n"
            "set10-l0-n0\t2026-01-03T00:00:00\n"
            "tank@set1-l0-n1\t2026-01-04T00:00:00\n"
        )
        log = HistoryLog(path)

        removed = log.purge(lambda record: record.position.set == 1)

        assert removed == 2
        assert path.read_text() == (
            "set0-l0-n0\t2026-01-01T00:00:00\n"
            "broken line\n"
            "set10-l0-n0\t2026-01-03T00:00:00\n"
        )

    def test_purge_missing_file(self, tmp_path):
        """Test that purging absent history is a no-op."""
        assert HistoryLog(tmp_path / "none").purge(lambda record: True) == 0
