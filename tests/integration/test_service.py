"""
Integration tests for the service orchestrator.

Tests cover:
- Startup ordering (import, replay, then watchers)
- Fatal replay failures
- Graceful shutdown
- Logging setup
"""

import asyncio
import logging
import tempfile
from pathlib import Path

import json_log_formatter
import pytest

from kubesim.resource_sync.config import (
    ImporterConfig,
    ObservabilityConfig,
    RecorderConfig,
    ReplayerConfig,
    ServiceConfig,
    SyncerConfig,
)
from kubesim.resource_sync.errors import JournalError
from kubesim.resource_sync.journal import JournalRecord, load_journal, write_journal
from kubesim.resource_sync.kinds import NAMESPACES, NODES, PODS
from kubesim.resource_sync.main import Service, setup_logging
from kubesim.resource_sync.store import InMemoryObjectStore
from kubesim.resource_sync.store.base import EventType
from tests.factories import make_namespace, make_node, make_pod


class TestService:
    """Integration tests for Service."""

    @pytest.fixture
    def journal_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def source(self):
        return InMemoryObjectStore(name="source")

    @pytest.fixture
    def destination(self):
        return InMemoryObjectStore(name="destination")

    async def _run(self, service):
        task = asyncio.create_task(service.start())
        await asyncio.wait_for(service.wait_started(), timeout=5.0)
        return task

    async def _shutdown(self, service, task):
        service.request_shutdown()
        await asyncio.wait_for(task, timeout=5.0)
        await service.stop()

    @pytest.mark.asyncio
    async def test_import_then_sync(self, source, destination):
        """Test startup import followed by live sync."""
        await source.create(NODES, None, make_node("node-1"))
        config = ServiceConfig(
            importer=ImporterConfig(enabled=True),
            syncer=SyncerConfig(enabled=True),
        )
        service = Service(config, source=source, destination=destination)

        task = await self._run(service)
        try:
            assert service.import_stats.created == 1
            assert destination.peek(NODES, None, "node-1") is not None

            await source.create(PODS, "default", make_pod("web"))
            assert await destination.wait_for(PODS, "default", "web")
        finally:
            await self._shutdown(service, task)

        assert not service.running

    @pytest.mark.asyncio
    async def test_replay_before_watchers(self, source, destination, journal_dir):
        """Test replay completes before watchers start."""
        replay_path = journal_dir / "old.json"
        write_journal(replay_path, [JournalRecord(EventType.ADD, make_namespace("replayed"))])
        config = ServiceConfig(
            replayer=ReplayerConfig(enabled=True, path=str(replay_path)),
            syncer=SyncerConfig(enabled=True),
        )
        service = Service(config, source=source, destination=destination)

        task = await self._run(service)
        try:
            assert service.replay_stats.created == 1
            assert destination.calls("create")[0][1] == NAMESPACES
        finally:
            await self._shutdown(service, task)

    @pytest.mark.asyncio
    async def test_replay_failure_is_fatal(self, source, destination, journal_dir):
        """Test a failed replay aborts startup."""
        config = ServiceConfig(
            replayer=ReplayerConfig(enabled=True, path=str(journal_dir / "missing.json")),
            syncer=SyncerConfig(enabled=True),
        )
        service = Service(config, source=source, destination=destination)

        with pytest.raises(JournalError):
            await service.start()

        assert not service.running
        assert service.syncer is None

    @pytest.mark.asyncio
    async def test_recorder_writes_journal(self, source, destination, journal_dir):
        """Test the recorder journals only configured kinds."""
        record_path = journal_dir / "record.json"
        config = ServiceConfig(recorder=RecorderConfig(enabled=True, path=str(record_path), kinds="v1/nodes"))
        service = Service(config, source=source, destination=destination)

        task = await self._run(service)
        try:
            await source.create(NODES, None, make_node("node-1"))
            await source.create(PODS, "default", make_pod("web"))
            await service.recorder.wait_idle()
        finally:
            await self._shutdown(service, task)

        records = load_journal(record_path)
        assert [r.resource["kind"] for r in records] == ["Node"]
        assert destination.calls() == []

    @pytest.mark.asyncio
    async def test_shared_registry_frozen(self, source, destination):
        """Test the registry is frozen once started."""
        config = ServiceConfig(syncer=SyncerConfig(enabled=True))
        service = Service(config, source=source, destination=destination)

        task = await self._run(service)
        try:
            assert service.registry.frozen
        finally:
            await self._shutdown(service, task)


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        """Test JSON log output."""
        setup_logging(ServiceConfig(observability=ObservabilityConfig(log_format="json", log_level="debug")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        """Test text log output."""
        setup_logging(ServiceConfig(observability=ObservabilityConfig(log_format="text")))

        formatter = logging.getLogger().handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("kubernetes").level == logging.WARNING
