"""
Object store abstraction for the resource sync subsystem.

This module provides a pluggable store interface supporting:
- Kubernetes API servers (production, via the dynamic client)
- In-memory (for testing)

Stores are external collaborators: the subsystem only lists, gets,
creates, updates, deletes and watches objects through this boundary.

Invariants:
    - Feeds deliver events for one object in store order
    - Every backend classifies errors as NotFound, AlreadyExists or other

How to change safely:
    - New backends must implement the ObjectStore protocol
    - Feeds must emit the initial listing before mark_synced()
"""

from .base import (
    EventType,
    KindResolver,
    ObjectStore,
    WatchEvent,
)
from .feed import ChangeFeed
from .kubernetes import DiscoveryKindResolver, KubernetesObjectStore
from .memory import InMemoryObjectStore

__all__ = [
    # Protocols and types
    "ObjectStore",
    "KindResolver",
    "EventType",
    "WatchEvent",
    "ChangeFeed",
    # Implementations
    "KubernetesObjectStore",
    "DiscoveryKindResolver",
    "InMemoryObjectStore",
]
