"""
In-memory object store implementation for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests (source and destination stores side by side)
- Local development without a cluster

Invariants:
    - All data is lost on process exit
    - The store assigns uid, resourceVersion and generation like a real
      API server; values supplied by callers are ignored
    - Feeds observe changes in the order they were made

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the ObjectStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import time
import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Tuple
import logging

from ..errors import AlreadyExistsError, NotFoundError, StoreError
from ..objects import GroupVersionResource, Object, get_name
from .base import EventType, WatchEvent
from .feed import ChangeFeed

logger = logging.getLogger(__name__)

ObjectKey = Tuple[str, str]


class InMemoryObjectStore:
    """In-memory implementation of ObjectStore for testing.

    Objects are stored per collection, keyed by (namespace, name). Every
    mutation is copied before it is stored or emitted so callers can keep
    mutating their own dictionaries.

    Thread safety:
        Single event loop only. All methods complete without awaiting
        anything but the failure-injection check, so mutations and feed
        emission are atomic with respect to other coroutines.

    Example:
        >>> store = InMemoryObjectStore()
        >>> await store.create(PODS, "default", pod)
        >>> feed = await store.watch(PODS)
    """

    def __init__(self, name: str = "memory") -> None:
        """Initialize an empty store.

        Args:
            name: Label used in log records (e.g. "source", "destination")
        """
        self.name = name
        self._objects: Dict[GroupVersionResource, Dict[ObjectKey, Object]] = defaultdict(dict)
        self._feeds: Dict[GroupVersionResource, List[ChangeFeed]] = defaultdict(list)
        self._resource_version = 0
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self._calls: List[Tuple[str, GroupVersionResource, str, str]] = []

    async def list(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str] = None,
    ) -> List[Object]:
        self._raise_injected("list")
        return [
            copy.deepcopy(obj)
            for (ns, _), obj in sorted(self._objects[gvr].items())
            if not namespace or ns == namespace
        ]

    async def get(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> Object:
        self._raise_injected("get")
        self._calls.append(("get", gvr, namespace or "", name))
        key = (namespace or "", name)
        obj = self._objects[gvr].get(key)
        if obj is None:
            raise NotFoundError(
                f"{gvr.resource} {name!r} not found",
                kind=gvr.resource,
                namespace=namespace or "",
                name=name,
            )
        return copy.deepcopy(obj)

    async def create(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        obj: Object,
    ) -> Object:
        self._raise_injected("create")
        name = get_name(obj)
        self._calls.append(("create", gvr, namespace or "", name))
        key = (namespace or "", name)
        if key in self._objects[gvr]:
            raise AlreadyExistsError(
                f"{gvr.resource} {name!r} already exists",
                kind=gvr.resource,
                namespace=namespace or "",
                name=name,
            )

        stored = copy.deepcopy(obj)
        meta = stored.setdefault("metadata", {})
        if namespace:
            meta["namespace"] = namespace
        meta["uid"] = str(uuid.uuid4())
        meta["generation"] = 1
        meta["resourceVersion"] = self._next_resource_version()
        self._objects[gvr][key] = stored

        self._emit(gvr, EventType.ADD, stored)
        return copy.deepcopy(stored)

    async def update(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        obj: Object,
    ) -> Object:
        self._raise_injected("update")
        name = get_name(obj)
        self._calls.append(("update", gvr, namespace or "", name))
        key = (namespace or "", name)
        existing = self._objects[gvr].get(key)
        if existing is None:
            raise NotFoundError(
                f"{gvr.resource} {name!r} not found",
                kind=gvr.resource,
                namespace=namespace or "",
                name=name,
            )

        stored = copy.deepcopy(obj)
        meta = stored.setdefault("metadata", {})
        if namespace:
            meta["namespace"] = namespace
        old_meta = existing["metadata"]
        meta["uid"] = old_meta["uid"]
        meta["resourceVersion"] = self._next_resource_version()
        if stored.get("spec") != existing.get("spec"):
            meta["generation"] = old_meta.get("generation", 1) + 1
        else:
            meta["generation"] = old_meta.get("generation", 1)
        self._objects[gvr][key] = stored

        self._emit(gvr, EventType.UPDATE, stored)
        return copy.deepcopy(stored)

    async def delete(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> None:
        self._raise_injected("delete")
        self._calls.append(("delete", gvr, namespace or "", name))
        key = (namespace or "", name)
        existing = self._objects[gvr].pop(key, None)
        if existing is None:
            raise NotFoundError(
                f"{gvr.resource} {name!r} not found",
                kind=gvr.resource,
                namespace=namespace or "",
                name=name,
            )
        self._emit(gvr, EventType.DELETE, existing)

    async def watch(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str] = None,
    ) -> ChangeFeed:
        self._raise_injected("watch")
        feed = ChangeFeed(gvr, namespace)
        for (ns, _), obj in sorted(self._objects[gvr].items()):
            if namespace and ns != namespace:
                continue
            feed.put(WatchEvent(gvr=gvr, type=EventType.ADD, obj=copy.deepcopy(obj)))
        feed.mark_synced()
        self._feeds[gvr].append(feed)
        logger.debug(
            "Feed opened on in-memory store",
            extra={"store": self.name, "gvr": str(gvr), "namespace": namespace},
        )
        return feed

    def _emit(self, gvr: GroupVersionResource, event_type: EventType, obj: Object) -> None:
        live = [feed for feed in self._feeds[gvr] if not feed.closed]
        self._feeds[gvr] = live
        ns = obj.get("metadata", {}).get("namespace") or ""
        for feed in live:
            if feed.namespace and feed.namespace != ns:
                continue
            feed.put(WatchEvent(gvr=gvr, type=event_type, obj=copy.deepcopy(obj)))

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _raise_injected(self, operation: str) -> None:
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # Testing helpers

    def inject_failure(self, operation: str, exception: Optional[Exception] = None) -> None:
        """Make the next call of an operation raise.

        Args:
            operation: One of list, get, create, update, delete, watch
            exception: Exception to raise (StoreError by default)
        """
        self._failures[operation].append(
            exception or StoreError(f"injected {operation} failure on {self.name}")
        )

    def snapshot(self, gvr: GroupVersionResource) -> Dict[ObjectKey, Object]:
        """Copy of every stored object of a collection (testing helper)."""
        return copy.deepcopy(dict(self._objects[gvr]))

    def peek(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> Optional[Object]:
        """Stored object or None, without failure injection (testing helper)."""
        obj = self._objects[gvr].get((namespace or "", name))
        return copy.deepcopy(obj) if obj is not None else None

    def calls(self, operation: Optional[str] = None) -> List[Tuple[str, GroupVersionResource, str, str]]:
        """Recorded (operation, gvr, namespace, name) calls (testing helper)."""
        if operation is None:
            return list(self._calls)
        return [call for call in self._calls if call[0] == operation]

    def close_feeds(self) -> None:
        """Close every open feed (testing helper)."""
        for feeds in self._feeds.values():
            for feed in feeds:
                feed.close()
        self._feeds.clear()

    async def wait_for(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
        present: bool = True,
        timeout: float = 5.0,
    ) -> bool:
        """Wait for an object to appear or disappear (testing helper).

        Returns:
            True if the condition was reached, False on timeout
        """
        start = time.time()
        while time.time() - start < timeout:
            if (self.peek(gvr, namespace, name) is not None) == present:
                return True
            await asyncio.sleep(0.01)
        return False
