"""
Unit tests for the Kubernetes store backend.

These run without a cluster. Tests cover:
- API error classification
- Connection state checks
- Discovery-based kind resolution and caching
"""

import json
from types import SimpleNamespace

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from kubesim.resource_sync.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResolutionError,
    StoreError,
)
from kubesim.resource_sync.kinds import PODS
from kubesim.resource_sync.store import DiscoveryKindResolver, KubernetesObjectStore
from kubesim.resource_sync.store.kubernetes import _status_reason, _translate_error


def _api_error(status, reason, body=None):
    error = ApiException(status=status, reason=reason)
    error.body = json.dumps(body) if body is not None else None
    return error


class TestErrorTranslation:
    """Tests for API error classification."""

    def test_not_found(self):
        """Test 404 translation."""
        error = _translate_error(_api_error(404, "Not Found"), PODS, "default", "web")

        assert isinstance(error, NotFoundError)
        assert error.name == "web"
        assert error.namespace == "default"

    def test_already_exists(self):
        """Test AlreadyExists translation."""
        raw = _api_error(409, "Conflict", {"kind": "Status", "reason": "AlreadyExists"})

        error = _translate_error(raw, PODS, "default", "web")

        assert isinstance(error, AlreadyExistsError)

    def test_other_conflict_is_store_error(self):
        """Test other 409 reasons."""
        raw = _api_error(409, "Conflict", {"kind": "Status", "reason": "Conflict"})

        error = _translate_error(raw, PODS, "default", "web")

        assert not isinstance(error, ConflictError)
        assert isinstance(error, StoreError)

    def test_server_error(self):
        """Test server error translation."""
        error = _translate_error(_api_error(500, "Internal Server Error"), PODS, None, "web")

        assert type(error) is StoreError
        assert "500" in str(error)
        assert error.namespace == ""

    def test_status_reason_bytes_body(self):
        """Test reason from a bytes body."""
        raw = _api_error(409, "Conflict")
        raw.body = b'{"reason": "AlreadyExists"}'

        assert _status_reason(raw) == "AlreadyExists"

    def test_status_reason_unparseable_body(self):
        """Test reason from an invalid body."""
        raw = _api_error(409, "Conflict")
        raw.body = "<html>proxy error</html>"

        assert _status_reason(raw) == ""


class TestKubernetesObjectStore:
    """Tests for connection handling."""

    def test_not_connected(self):
        """Test use before connect."""
        store = KubernetesObjectStore(name="source")

        assert not store.is_connected
        with pytest.raises(StoreError):
            store.dynamic_client


class _FakeResources:
    def __init__(self):
        self.lookups = []

    def get(self, **kwargs):
        self.lookups.append(kwargs)
        if kwargs["kind"] == "Widget":
            raise ResourceNotFoundError("no Widget")
        return SimpleNamespace(name=kwargs["kind"].lower() + "s")


class TestDiscoveryKindResolver:
    """Tests for DiscoveryKindResolver."""

    @pytest.fixture
    def resources(self):
        return _FakeResources()

    @pytest.fixture
    def resolver(self, resources):
        store = SimpleNamespace(dynamic_client=SimpleNamespace(resources=resources))
        return DiscoveryKindResolver(store)

    @pytest.mark.asyncio
    async def test_resolves_core_kind(self, resolver, resources):
        """Test core group discovery."""
        gvr = await resolver.resolve("", "v1", "Pod")

        assert gvr == PODS
        assert resources.lookups[0]["prefix"] == "api"
        assert resources.lookups[0]["group"] is None

    @pytest.mark.asyncio
    async def test_resolves_named_group(self, resolver, resources):
        """Test named group discovery."""
        gvr = await resolver.resolve("apps", "v1", "Deployment")

        assert gvr.group == "apps"
        assert gvr.resource == "deployments"
        assert resources.lookups[0]["prefix"] == "apis"

    @pytest.mark.asyncio
    async def test_caches_results(self, resolver, resources):
        """Test discovery caching."""
        await resolver.resolve("", "v1", "Pod")
        await resolver.resolve("", "v1", "Pod")

        assert len(resources.lookups) == 1

    @pytest.mark.asyncio
    async def test_unknown_kind(self, resolver):
        """Test undiscoverable kinds."""
        with pytest.raises(ResolutionError):
            await resolver.resolve("example.com", "v1", "Widget")
