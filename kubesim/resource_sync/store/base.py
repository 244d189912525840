"""
Base protocol and types for the object store boundary.

This module defines the ObjectStore protocol that source and destination
stores must implement, the KindResolver protocol used to address objects,
and the event types delivered by change feeds.

Invariants:
    - Change feeds deliver events for one object in store order
    - Errors are classified only as NotFound, AlreadyExists or other
    - Cluster-scoped collections are addressed with namespace None or ""

How to change safely:
    - Protocol changes require updating all implementations
    - Keep error classification inside the backend, callers only see
      the types from ..errors
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    List,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

from ..objects import GroupVersionResource, Object, describe

if TYPE_CHECKING:
    from .feed import ChangeFeed

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Operation observed by a change feed."""

    ADD = "Add"
    UPDATE = "Update"
    DELETE = "Delete"


@dataclass
class WatchEvent:
    """A single notification from a change feed.

    Attributes:
        gvr: Collection the feed watches
        type: Observed operation
        obj: Object state (last known state for deletes)
    """
    gvr: GroupVersionResource
    type: EventType
    obj: Object

    def __str__(self) -> str:
        ctx = describe(self.obj)
        return f"WatchEvent({self.type.value} {self.gvr} {ctx['namespace']}/{ctx['name']})"


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for object store backends.

    Every operation addresses a collection by GroupVersionResource and,
    for namespaced collections, a namespace.

    Error contract:
        - NotFoundError when the addressed object does not exist
        - AlreadyExistsError when creating an object that exists
        - StoreError for any other failure

    Example:
        >>> store = InMemoryObjectStore()
        >>> pod = await store.create(PODS, "default", pod_manifest)
        >>> feed = await store.watch(PODS)
    """

    @abstractmethod
    async def list(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str] = None,
    ) -> List[Object]:
        """List objects of a collection (all namespaces when None)."""
        ...

    @abstractmethod
    async def get(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> Object:
        """Get a single object.

        Raises:
            NotFoundError: If the object does not exist
        """
        ...

    @abstractmethod
    async def create(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        obj: Object,
    ) -> Object:
        """Create an object and return the stored state.

        Raises:
            AlreadyExistsError: If the object already exists
        """
        ...

    @abstractmethod
    async def update(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        obj: Object,
    ) -> Object:
        """Replace an existing object and return the stored state.

        Raises:
            NotFoundError: If the object does not exist
        """
        ...

    @abstractmethod
    async def delete(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> None:
        """Delete an object.

        Raises:
            NotFoundError: If the object does not exist
        """
        ...

    @abstractmethod
    async def watch(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str] = None,
    ) -> "ChangeFeed":
        """Open a change feed for a collection.

        The feed first delivers an Add for every existing object, then
        marks the initial listing complete, then delivers live changes.
        """
        ...


@runtime_checkable
class KindResolver(Protocol):
    """Maps an object's declared kind to the collection that stores it."""

    @abstractmethod
    async def resolve(self, group: str, version: str, kind: str) -> GroupVersionResource:
        """Resolve (group, version, kind) to a collection.

        Raises:
            ResolutionError: If the kind is unknown
        """
        ...
