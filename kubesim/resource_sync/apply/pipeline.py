"""
Mutation/filter pipeline applied before every destination write.

The pipeline decides, per event, whether an observed change reaches the
destination and what shape it has when it does:

1. Filtering functions registered for the kind run in registration
   order; the first False skips the event, the first error aborts it.
2. For Add events, server-assigned identity fields are stripped
   (every kind, not configurable).
3. Mutating functions registered for the kind run in order, each one
   receiving the previous one's output.

Invariants:
    - The registry is read-only once frozen and safe to share between
      feed-consumer tasks
    - Mandatory functions are registered first; caller functions are
      appended after them unless they explicitly override the kind
    - The object passed in is never mutated; run() works on a copy
    - Deletes never go through the pipeline (callers skip it)

How to change safely:
    - Register everything before handing the registry to a Syncer,
      Replayer or importer (they freeze it)
    - A caller that overrides a kind must call the public mandatory
      function for that kind itself
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import PipelineError
from ..objects import GroupVersionResource, Object, describe, log_context, strip_server_metadata
from ..store.base import EventType, ObjectStore
from . import functions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineClients:
    """Stores a pipeline function may read from.

    Functions must never mutate either store.

    Attributes:
        source: Store the object was observed on (None during replay)
        destination: Store the object is about to be written to
    """
    source: Optional[ObjectStore] = None
    destination: Optional[ObjectStore] = None


FilteringFunction = Callable[[Object, PipelineClients, EventType], Awaitable[bool]]
MutatingFunction = Callable[[Object, PipelineClients, EventType], Awaitable[Object]]


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen pipeline registry."""
    pass


class PipelineRegistry:
    """Per-kind ordered filtering and mutating functions.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is irreversible

    Example:
        >>> registry = PipelineRegistry()
        >>> registry.register_mutator(PODS, add_simulation_label)
        >>> registry.freeze()
        >>> registry.mutators_for(PODS)
        (<function mutate_pod ...>, <function add_simulation_label ...>)
    """

    def __init__(self, include_mandatory: bool = True) -> None:
        """Initialize the registry.

        Args:
            include_mandatory: Register the built-in functions first
        """
        self._filters: Dict[GroupVersionResource, List[FilteringFunction]] = {}
        self._mutators: Dict[GroupVersionResource, List[MutatingFunction]] = {}
        self._frozen = False
        self._lock = threading.Lock()

        if include_mandatory:
            for gvr, fn in functions.MANDATORY_FILTERS:
                self.register_filter(gvr, fn)
            for gvr, fn in functions.MANDATORY_MUTATORS:
                self.register_mutator(gvr, fn)

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    def register_filter(
        self,
        gvr: GroupVersionResource,
        fn: FilteringFunction,
        override: bool = False,
    ) -> None:
        """Append a filtering function for a kind.

        Args:
            gvr: Kind the function applies to
            fn: Filtering function
            override: Replace every function registered so far for the kind

        Raises:
            RegistryFrozenError: If registry is frozen
        """
        with self._lock:
            self._check_mutable(fn)
            chain = [] if override else self._filters.get(gvr, [])
            self._filters[gvr] = chain + [fn]
        logger.debug(f"Registered filter {fn.__name__} for {gvr} (override={override})")

    def register_mutator(
        self,
        gvr: GroupVersionResource,
        fn: MutatingFunction,
        override: bool = False,
    ) -> None:
        """Append a mutating function for a kind.

        Args:
            gvr: Kind the function applies to
            fn: Mutating function
            override: Replace every function registered so far for the kind

        Raises:
            RegistryFrozenError: If registry is frozen
        """
        with self._lock:
            self._check_mutable(fn)
            chain = [] if override else self._mutators.get(gvr, [])
            self._mutators[gvr] = chain + [fn]
        logger.debug(f"Registered mutator {fn.__name__} for {gvr} (override={override})")

    def filters_for(self, gvr: GroupVersionResource) -> Tuple[FilteringFunction, ...]:
        return tuple(self._filters.get(gvr, ()))

    def mutators_for(self, gvr: GroupVersionResource) -> Tuple[MutatingFunction, ...]:
        return tuple(self._mutators.get(gvr, ()))

    def freeze(self) -> None:
        """Make the registry read-only. Idempotent."""
        with self._lock:
            self._frozen = True

    def _check_mutable(self, fn: Callable) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {getattr(fn, '__name__', fn)!r}: registry is frozen"
            )


class Pipeline:
    """Runs the registry's functions for events bound for a destination.

    Example:
        >>> pipeline = Pipeline(registry, PipelineClients(source=src, destination=dst))
        >>> obj = await pipeline.run(EventType.ADD, PODS, pod)
        >>> if obj is not None:
        ...     await applier.create(obj)
    """

    def __init__(self, registry: PipelineRegistry, clients: PipelineClients) -> None:
        self.registry = registry
        self.clients = clients

    async def run(
        self,
        event_type: EventType,
        gvr: GroupVersionResource,
        obj: Object,
    ) -> Optional[Object]:
        """Filter and mutate one object.

        Args:
            event_type: ADD or UPDATE
            gvr: Resolved kind of the object
            obj: Object as observed (not modified)

        Returns:
            Object to write, or None if a filter skipped the event

        Raises:
            PipelineError: If a filtering or mutating function failed
        """
        ctx = describe(obj)
        current = copy.deepcopy(obj)

        for fn in self.registry.filters_for(gvr):
            try:
                keep = await fn(current, self.clients, event_type)
            except Exception as e:
                raise PipelineError(
                    f"filter {fn.__name__} failed: {e}", **ctx
                ) from e
            if not keep:
                logger.debug(
                    f"Event filtered out by {fn.__name__}",
                    extra={**log_context(obj), "operation": event_type.value},
                )
                return None

        if event_type is EventType.ADD:
            current = strip_server_metadata(current)

        for fn in self.registry.mutators_for(gvr):
            try:
                mutated = await fn(current, self.clients, event_type)
            except Exception as e:
                raise PipelineError(
                    f"mutator {fn.__name__} failed: {e}", **ctx
                ) from e
            if mutated is None:
                raise PipelineError(f"mutator {fn.__name__} returned no object", **ctx)
            current = mutated

        return current
