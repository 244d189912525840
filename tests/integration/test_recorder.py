"""
Integration tests for the Recorder with an in-memory source.

Tests cover:
- Write-through journaling of Add/Update/Delete
- Arrival order across kinds
- Kind selection
- Flush failure handling
- Unserializable events
"""

import tempfile
from datetime import datetime
from pathlib import Path
from unittest import mock

import pytest

from kubesim.resource_sync.errors import JournalError
from kubesim.resource_sync.journal import Recorder, load_journal
from kubesim.resource_sync.journal import recorder as recorder_module
from kubesim.resource_sync.kinds import NAMESPACES, NODES, PODS
from kubesim.resource_sync.store import InMemoryObjectStore
from kubesim.resource_sync.store.base import EventType, WatchEvent
from tests.factories import make_namespace, make_node, make_pod


class TestRecorderIntegration:
    """Integration tests for Recorder."""

    @pytest.fixture
    def journal_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "record" / "record.json"

    @pytest.fixture
    def source(self):
        return InMemoryObjectStore(name="source")

    @pytest.fixture
    async def recorder(self, source, journal_path):
        recorder = Recorder(source, journal_path)
        yield recorder
        await recorder.stop()

    @pytest.mark.asyncio
    async def test_records_add_update_delete(self, source, journal_path, recorder):
        """Test journaling of every event type."""
        await recorder.run()

        await source.create(PODS, "default", make_pod("web"))
        await recorder.wait_idle()
        await source.update(PODS, "default", make_pod("web", image="nginx:1.26"))
        await recorder.wait_idle()
        await source.delete(PODS, "default", "web")
        await recorder.wait_idle()

        records = load_journal(journal_path)
        assert [r.event for r in records] == [EventType.ADD, EventType.UPDATE, EventType.DELETE]
        assert records[1].resource["spec"]["containers"][0]["image"] == "nginx:1.26"

    @pytest.mark.asyncio
    async def test_resources_stored_as_observed(self, source, journal_path, recorder):
        """Test resources are journaled unmodified."""
        await recorder.run()

        created = await source.create(PODS, "default", make_pod("web", service_account="ci"))
        await recorder.wait_idle()

        record = load_journal(journal_path)[0]
        # no pipeline: identity and service account are untouched
        assert record.resource == created
        assert record.resource["spec"]["serviceAccountName"] == "ci"

    @pytest.mark.asyncio
    async def test_initial_listing_recorded(self, source, journal_path, recorder):
        """Test pre-existing objects are journaled as Adds."""
        await source.create(NODES, None, make_node("node-1"))
        await source.create(NAMESPACES, None, make_namespace("shop"))

        await recorder.run()

        records = load_journal(journal_path)
        assert {r.resource["metadata"]["name"] for r in records} == {"node-1", "shop"}
        assert all(r.event is EventType.ADD for r in records)

    @pytest.mark.asyncio
    async def test_file_order_matches_arrival_order(self, source, journal_path, recorder):
        """Test file order across kinds."""
        await recorder.run()

        # alternate kinds so several consumer tasks are involved
        await source.create(NODES, None, make_node("node-1"))
        await recorder.wait_idle()
        await source.create(PODS, "default", make_pod("web"))
        await recorder.wait_idle()
        await source.create(NAMESPACES, None, make_namespace("shop"))
        await recorder.wait_idle()
        await source.update(NODES, None, make_node("node-1", cpu="8"))
        await recorder.wait_idle()

        records = load_journal(journal_path)
        observed = [(r.event, r.resource["kind"]) for r in records]
        assert observed == [
            (EventType.ADD, "Node"),
            (EventType.ADD, "Pod"),
            (EventType.ADD, "Namespace"),
            (EventType.UPDATE, "Node"),
        ]
        assert [r.event for r in recorder.records] == [r.event for r in records]

    @pytest.mark.asyncio
    async def test_only_selected_kinds_recorded(self, source, journal_path):
        """Test kind selection."""
        recorder = Recorder(source, journal_path, kinds=[NODES])
        try:
            await recorder.run()

            await source.create(PODS, "default", make_pod("web"))
            await source.create(NODES, None, make_node("node-1"))
            await recorder.wait_idle()

            records = load_journal(journal_path)
            assert [r.resource["kind"] for r in records] == ["Node"]
        finally:
            await recorder.stop()

    @pytest.mark.asyncio
    async def test_empty_kinds_means_all(self, source, journal_path):
        """Test empty kinds selects every kind."""
        recorder = Recorder(source, journal_path, kinds=[])

        assert PODS in recorder.kinds
        assert NODES in recorder.kinds

    @pytest.mark.asyncio
    async def test_flush_failure_repaired_by_next_flush(self, source, journal_path, recorder):
        """Test a failed flush is repaired by the next one."""
        await recorder.run()

        real_write = recorder_module.write_journal
        calls = {"count": 0}

        def flaky_write(path, records):
            calls["count"] += 1
            if calls["count"] == 1:
                raise JournalError("disk full", path=str(path))
            real_write(path, records)

        with mock.patch.object(recorder_module, "write_journal", flaky_write):
            await source.create(NODES, None, make_node("node-1"))
            await recorder.wait_idle()
            assert not journal_path.exists()
            assert recorder.stats["flush_error_count"] == 1

            await source.create(NODES, None, make_node("node-2"))
            await recorder.wait_idle()

        names = [r.resource["metadata"]["name"] for r in load_journal(journal_path)]
        assert names == ["node-1", "node-2"]

    @pytest.mark.asyncio
    async def test_unserializable_event_dropped(self, source, journal_path, recorder):
        """Test a non-JSON resource does not block later flushes."""
        await recorder.run()

        bad = make_node("node-bad")
        bad["metadata"]["annotations"] = {"seen-at": datetime(2026, 1, 1)}
        await recorder.record(WatchEvent(type=EventType.ADD, gvr=NODES, obj=bad))
        assert recorder.stats["rejected_count"] == 1
        assert recorder.records == []

        await source.create(NODES, None, make_node("node-1"))
        await recorder.wait_idle()

        names = [r.resource["metadata"]["name"] for r in load_journal(journal_path)]
        assert names == ["node-1"]
        assert recorder.stats["flush_error_count"] == 0

    @pytest.mark.asyncio
    async def test_stop_stops_recording(self, source, journal_path, recorder):
        """Test nothing is journaled after stop."""
        await recorder.run()
        await source.create(NODES, None, make_node("node-1"))
        await recorder.wait_idle()

        await recorder.stop()
        await source.create(NODES, None, make_node("node-2"))

        names = [r.resource["metadata"]["name"] for r in load_journal(journal_path)]
        assert names == ["node-1"]
        assert not recorder.stats["running"]
