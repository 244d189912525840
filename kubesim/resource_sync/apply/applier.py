"""
Resource applier.

The ResourceApplier is the only path through which the subsystem mutates
a destination store. It resolves an object's declared kind to the
collection that stores it and issues a single create, update or delete.

Invariants:
    - Exactly one store call per operation; retry policy belongs to callers
    - Errors are typed: ResolutionError, NotFoundError, AlreadyExistsError,
      StoreError
    - AlreadyExists on create is swallowed only when the caller opts in
      with exist_ok=True

How to change safely:
    - Keep this layer free of pipeline logic; callers run the pipeline
    - New operations must resolve kinds through resolve()
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import AlreadyExistsError, ResolutionError
from ..objects import (
    GroupVersionKind,
    GroupVersionResource,
    Object,
    get_name,
    get_namespace,
    group_version_kind,
    log_context,
)
from ..store.base import KindResolver, ObjectStore

logger = logging.getLogger(__name__)


class ResourceApplier:
    """Idempotent-write facade over a destination store.

    Attributes:
        store: Destination store
        resolver: Kind resolver for the destination

    Example:
        >>> applier = ResourceApplier(destination, StaticKindResolver())
        >>> await applier.create(pod, exist_ok=True)
        >>> await applier.delete(GroupVersionKind("", "v1", "Pod"), "default", "pod-1")
    """

    def __init__(self, store: ObjectStore, resolver: KindResolver) -> None:
        """Initialize the applier.

        Args:
            store: Destination store to write to
            resolver: Maps object kinds to destination collections
        """
        self.store = store
        self.resolver = resolver

    async def resolve(self, obj: Object) -> GroupVersionResource:
        """Resolve an object's declared kind to a collection.

        Raises:
            ResolutionError: If the kind cannot be mapped
        """
        return await self.resolve_kind(group_version_kind(obj))

    async def resolve_kind(self, gvk: GroupVersionKind) -> GroupVersionResource:
        if not gvk.kind or not gvk.version:
            raise ResolutionError(gvk.group, gvk.version, gvk.kind)
        return await self.resolver.resolve(gvk.group, gvk.version, gvk.kind)

    async def create(self, obj: Object, exist_ok: bool = False) -> Optional[Object]:
        """Create an object on the destination.

        Args:
            obj: Object to create
            exist_ok: Treat AlreadyExists as success

        Returns:
            Stored object, or None if it already existed and exist_ok is set

        Raises:
            ResolutionError: If the kind cannot be mapped
            AlreadyExistsError: If the object exists and exist_ok is False
            StoreError: For any other store failure
        """
        gvr = await self.resolve(obj)
        try:
            return await self.store.create(gvr, get_namespace(obj) or None, obj)
        except AlreadyExistsError:
            if not exist_ok:
                raise
            logger.debug("Object already exists, treating create as done", extra=log_context(obj))
            return None

    async def update(self, obj: Object) -> Object:
        """Replace an object on the destination.

        Raises:
            ResolutionError: If the kind cannot be mapped
            NotFoundError: If the object does not exist
            StoreError: For any other store failure
        """
        gvr = await self.resolve(obj)
        return await self.store.update(gvr, get_namespace(obj) or None, obj)

    async def delete(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        """Delete an object from the destination.

        Raises:
            ResolutionError: If the kind cannot be mapped
            NotFoundError: If the object does not exist
            StoreError: For any other store failure
        """
        gvr = await self.resolve_kind(gvk)
        await self.store.delete(gvr, namespace or None, name)

    async def delete_object(self, obj: Object) -> None:
        """Delete the destination object with obj's kind, namespace and name."""
        await self.delete(group_version_kind(obj), get_namespace(obj), get_name(obj))
