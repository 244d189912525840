"""
Integration tests for the one-shot importer.

Tests cover:
- Full import in dependency order
- Pipeline application
- AlreadyExists tolerance and re-runs
- Concurrency bound
- Abort on the first other error
"""

import asyncio

import pytest

from kubesim.resource_sync.errors import StoreError
from kubesim.resource_sync.kinds import (
    NAMESPACES,
    NODES,
    PERSISTENT_VOLUME_CLAIMS,
    PERSISTENT_VOLUMES,
    PODS,
    SYNC_ORDER,
    StaticKindResolver,
)
from kubesim.resource_sync.store import InMemoryObjectStore
from kubesim.resource_sync.tools import OneShotImporter
from tests.factories import make_claim, make_namespace, make_node, make_pod, make_volume


class _SlowStore(InMemoryObjectStore):
    """Destination that tracks how many creates overlap."""

    def __init__(self):
        super().__init__(name="destination")
        self.in_flight = 0
        self.max_in_flight = 0

    async def create(self, gvr, namespace, obj):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().create(gvr, namespace, obj)
        finally:
            self.in_flight -= 1


class TestOneShotImporter:
    """Integration tests for OneShotImporter."""

    @pytest.fixture
    def source(self):
        return InMemoryObjectStore(name="source")

    @pytest.fixture
    def destination(self):
        return InMemoryObjectStore(name="destination")

    @pytest.fixture
    async def populated_source(self, source):
        await source.create(PODS, "shop", make_pod("web", namespace="shop", service_account="ci"))
        src_claim = await source.create(PERSISTENT_VOLUME_CLAIMS, "shop", make_claim("data", namespace="shop"))
        await source.create(
            PERSISTENT_VOLUMES,
            None,
            make_volume("pv-1", claim_name="data", claim_namespace="shop", claim_uid=src_claim["metadata"]["uid"]),
        )
        await source.create(NODES, None, make_node("node-1"))
        await source.create(NAMESPACES, None, make_namespace("shop"))
        return source

    @pytest.mark.asyncio
    async def test_imports_in_dependency_order(self, populated_source, destination):
        """Test kinds are imported in sync order."""
        importer = OneShotImporter(populated_source, destination, StaticKindResolver())

        stats = await importer.import_resources()

        assert stats.listed == 5
        assert stats.created == 5
        order = [call[1] for call in destination.calls("create")]
        assert order == [gvr for gvr in SYNC_ORDER if gvr in order]

    @pytest.mark.asyncio
    async def test_pipeline_applied(self, populated_source, destination):
        """Test imported objects are mutated."""
        await OneShotImporter(populated_source, destination, StaticKindResolver()).import_resources()

        pod = destination.peek(PODS, "shop", "web")
        claim = destination.peek(PERSISTENT_VOLUME_CLAIMS, "shop", "data")
        volume = destination.peek(PERSISTENT_VOLUMES, None, "pv-1")
        assert pod["spec"]["serviceAccountName"] == "default"
        assert volume["spec"]["claimRef"]["uid"] == claim["metadata"]["uid"]

    @pytest.mark.asyncio
    async def test_rerun_tolerates_existing(self, populated_source, destination):
        """Test re-running an import is safe."""
        await OneShotImporter(populated_source, destination, StaticKindResolver()).import_resources()

        stats = await OneShotImporter(populated_source, destination, StaticKindResolver()).import_resources()

        assert stats.created == 0
        assert stats.conflicts == 5

    @pytest.mark.asyncio
    async def test_per_kind_counts(self, populated_source, destination):
        """Test per-kind created counts."""
        stats = await OneShotImporter(populated_source, destination, StaticKindResolver()).import_resources()

        assert stats.per_kind[str(PODS)] == 1
        assert stats.per_kind[str(NODES)] == 1
        assert len(stats.per_kind) == len(SYNC_ORDER)

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self, source):
        """Test concurrent creates stay within the limit."""
        for i in range(10):
            await source.create(NODES, None, make_node(f"node-{i}"))
        destination = _SlowStore()

        importer = OneShotImporter(source, destination, StaticKindResolver(), max_concurrent=3)
        stats = await importer.import_resources()

        assert stats.created == 10
        assert 1 < destination.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_error_aborts_import(self, source, destination):
        """Test the first create error aborts the import."""
        await source.create(NODES, None, make_node("node-1"))
        await source.create(PODS, "default", make_pod("web"))
        destination.inject_failure("create")

        importer = OneShotImporter(source, destination, StaticKindResolver())
        with pytest.raises(StoreError):
            await importer.import_resources()

        # pods come after nodes and were never attempted
        assert destination.calls("create") == []
        assert destination.peek(PODS, "default", "web") is None

    @pytest.mark.asyncio
    async def test_list_failure_propagates(self, source, destination):
        """Test source list failures propagate."""
        source.inject_failure("list")

        with pytest.raises(StoreError):
            await OneShotImporter(source, destination, StaticKindResolver()).import_resources()

    def test_max_concurrent_validated(self, source, destination):
        """Test max_concurrent validation."""
        with pytest.raises(ValueError):
            OneShotImporter(source, destination, StaticKindResolver(), max_concurrent=0)
