"""
Unit tests for the journal file format.

Tests cover:
- Record serialization
- Atomic whole-file writes
- Load errors (missing, malformed, wrong shape)
"""

import json
import os
import tempfile
from pathlib import Path

import pytest

from kubesim.resource_sync.errors import JournalError
from kubesim.resource_sync.journal import JournalRecord, load_journal, write_journal
from kubesim.resource_sync.store.base import EventType
from tests.factories import make_node, make_pod


class TestJournalRecord:
    """Tests for JournalRecord."""

    def test_to_dict(self):
        """Test record serialization."""
        record = JournalRecord(event=EventType.UPDATE, resource=make_node("node-1"))
        data = record.to_dict()

        assert data["event"] == "Update"
        assert data["resource"]["metadata"]["name"] == "node-1"

    def test_from_dict(self):
        """Test record deserialization."""
        record = JournalRecord.from_dict({"event": "Delete", "resource": make_pod("web")})

        assert record.event is EventType.DELETE
        assert record.resource["kind"] == "Pod"

    @pytest.mark.parametrize(
        "data",
        [
            {"resource": {}},
            {"event": "Add"},
            {"event": "Patch", "resource": {}},
            {"event": "Add", "resource": "pod"},
            ["Add", {}],
        ],
    )
    def test_from_dict_malformed(self, data):
        """Test malformed records."""
        with pytest.raises(ValueError):
            JournalRecord.from_dict(data)

    def test_check_serializable(self):
        """Test serializability check."""
        JournalRecord(event=EventType.ADD, resource=make_node("node-1")).check_serializable()

        bad = make_node("node-2")
        bad["metadata"]["annotations"] = {"raw": object()}
        with pytest.raises(JournalError):
            JournalRecord(event=EventType.ADD, resource=bad).check_serializable()


class TestJournalFile:
    """Tests for write_journal / load_journal."""

    @pytest.fixture
    def journal_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_write_then_load_preserves_order(self, journal_dir):
        """Test record order survives a write."""
        path = journal_dir / "record.json"
        records = [
            JournalRecord(EventType.ADD, make_pod("a")),
            JournalRecord(EventType.UPDATE, make_pod("a", image="nginx:1.26")),
            JournalRecord(EventType.DELETE, make_pod("a")),
        ]

        write_journal(path, records)
        loaded = load_journal(path)

        assert [r.event for r in loaded] == [EventType.ADD, EventType.UPDATE, EventType.DELETE]
        assert loaded[1].resource["spec"]["containers"][0]["image"] == "nginx:1.26"

    def test_file_is_json_array(self, journal_dir):
        """Test the file is a JSON array."""
        path = journal_dir / "record.json"
        write_journal(path, [JournalRecord(EventType.ADD, make_node("node-1"))])

        with open(path) as f:
            data = json.load(f)

        assert data == [{"event": "Add", "resource": make_node("node-1")}]

    def test_write_replaces_whole_file(self, journal_dir):
        """Test writes replace the file."""
        path = journal_dir / "record.json"
        write_journal(path, [JournalRecord(EventType.ADD, make_pod(f"p{i}")) for i in range(5)])
        write_journal(path, [JournalRecord(EventType.ADD, make_pod("only"))])

        loaded = load_journal(path)
        assert len(loaded) == 1
        assert not [name for name in os.listdir(journal_dir) if name.endswith(".tmp")]

    def test_write_creates_parent_directory(self, journal_dir):
        """Test parent directory creation."""
        path = journal_dir / "record" / "record.json"
        write_journal(path, [])

        assert load_journal(path) == []

    def test_write_unserializable_raises(self, journal_dir):
        """Test unserializable records."""
        path = journal_dir / "record.json"
        bad = make_pod("web")
        bad["metadata"]["labels"] = {"x": object()}

        with pytest.raises(JournalError):
            write_journal(path, [JournalRecord(EventType.ADD, bad)])

        assert not path.exists()

    def test_load_missing_file(self, journal_dir):
        """Test loading a missing file."""
        with pytest.raises(JournalError) as exc_info:
            load_journal(journal_dir / "missing.json")

        assert exc_info.value.path.endswith("missing.json")

    def test_load_invalid_json(self, journal_dir):
        """Test loading invalid JSON."""
        path = journal_dir / "record.json"
        path.write_text('[{"event": "Add", ')

        with pytest.raises(JournalError):
            load_journal(path)

    def test_load_not_an_array(self, journal_dir):
        """Test loading a non-array document."""
        path = journal_dir / "record.json"
        path.write_text('{"event": "Add", "resource": {}}')

        with pytest.raises(JournalError):
            load_journal(path)

    def test_load_malformed_record(self, journal_dir):
        """Test loading a malformed record."""
        path = journal_dir / "record.json"
        path.write_text('[{"event": "Add", "resource": {}}, {"event": "Unknown", "resource": {}}]')

        with pytest.raises(JournalError):
            load_journal(path)
