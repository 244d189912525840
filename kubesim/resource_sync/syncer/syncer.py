"""
Resource syncer.

The Syncer watches a fixed, dependency-ordered set of kinds on a source
store and mirrors every change onto a destination store:

1. For each kind in SYNC_ORDER, open a change feed over all namespaces
2. Start one consumer task per feed
3. Wait until the feed's initial listing has been handled before moving
   on to the next kind, so the initial bulk state honours dependencies
4. Adds/Updates go through the pipeline, then create/update via the
   ResourceApplier; Deletes bypass the pipeline entirely

Invariants:
    - One consumer task per kind; events of one kind are handled
      sequentially, different kinds run concurrently
    - A failed event is logged and dropped, never retried and never
      fatal to its consumer task; the next update is the implicit retry
    - AlreadyExists on create and NotFound on update/delete are benign

How to change safely:
    - Keep SYNC_ORDER the only source of ordering
    - stop() must let in-flight handlers finish; never cancel them first
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..apply.applier import ResourceApplier
from ..apply.pipeline import Pipeline, PipelineClients, PipelineRegistry
from ..errors import ConflictError, ResyncError
from ..kinds import SYNC_ORDER
from ..objects import GroupVersionResource, log_context
from ..store.base import EventType, KindResolver, ObjectStore, WatchEvent
from ..store.feed import ChangeFeed

logger = logging.getLogger(__name__)


class Syncer:
    """Mirrors source store changes onto a destination store.

    Lifecycle per kind: unwatched -> watching, entered once by run() and
    left only by stop() or cancellation.

    Example:
        >>> syncer = Syncer(source, destination, resolver)
        >>> await syncer.run()   # returns once every feed is established
        >>> ...
        >>> await syncer.stop()
    """

    def __init__(
        self,
        source: ObjectStore,
        destination: ObjectStore,
        resolver: KindResolver,
        registry: Optional[PipelineRegistry] = None,
        kinds: Sequence[GroupVersionResource] = SYNC_ORDER,
    ) -> None:
        """Initialize the syncer.

        Args:
            source: Store to watch
            destination: Store to write to
            resolver: Kind resolver for the destination
            registry: Pipeline functions (mandatory ones only if None);
                frozen by the syncer
            kinds: Kinds to watch, in dependency order
        """
        self.source = source
        self.destination = destination
        self.kinds = tuple(kinds)
        self.registry = registry or PipelineRegistry()
        self.registry.freeze()
        self.applier = ResourceApplier(destination, resolver)
        self.pipeline = Pipeline(
            self.registry,
            PipelineClients(source=source, destination=destination),
        )

        self._feeds: Dict[GroupVersionResource, ChangeFeed] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._stopping = False
        self._handled_count = 0
        self._skipped_count = 0
        self._error_count = 0

    async def run(self) -> None:
        """Establish every feed, in order, then return.

        Consumption continues in background tasks until stop().
        """
        if self._running:
            logger.warning("Syncer already running")
            return

        self._running = True
        self._stopping = False
        logger.info("Starting resource syncer", extra={"kinds": [str(k) for k in self.kinds]})

        try:
            for gvr in self.kinds:
                feed = await self.source.watch(gvr)
                self._feeds[gvr] = feed
                task = asyncio.create_task(self._consume(feed), name=f"syncer-{gvr}")
                self._tasks.append(task)
                await feed.wait_synced()
                logger.info("Initial sync complete", extra={"gvr": str(gvr)})
        except Exception:
            await self.stop()
            raise

        logger.info("Resource syncer started")

    async def stop(self) -> None:
        """Stop consuming and wait for in-flight handlers to finish."""
        if not self._running:
            return

        self._stopping = True
        logger.info("Stopping resource syncer")

        for feed in self._feeds.values():
            feed.close()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._feeds.clear()
        self._tasks.clear()
        self._running = False
        logger.info("Resource syncer stopped")

    async def wait_idle(self) -> None:
        """Block until every event delivered so far has been handled."""
        for feed in list(self._feeds.values()):
            await feed.join()

    async def _consume(self, feed: ChangeFeed) -> None:
        try:
            while True:
                event = await feed.get()
                if event is None:
                    break
                try:
                    if self._stopping:
                        continue
                    await self.handle_event(event)
                finally:
                    feed.task_done()
        except asyncio.CancelledError:
            logger.info("Syncer consumer cancelled", extra={"gvr": str(feed.gvr)})
            raise

    async def handle_event(self, event: WatchEvent) -> None:
        """Apply one event to the destination, logging any failure.

        Never raises for a single event's error.
        """
        ctx = {**log_context(event.obj), "operation": event.type.value}
        try:
            if event.type is EventType.DELETE:
                await self.applier.delete_object(event.obj)
            else:
                applied = await self._apply(event)
                if not applied:
                    self._skipped_count += 1
                    return
            self._handled_count += 1
            logger.debug("Event applied to destination", extra=ctx)

        except ConflictError as e:
            self._handled_count += 1
            logger.debug(f"Benign conflict on destination: {e}", extra=ctx)
        except ResyncError as e:
            self._error_count += 1
            logger.error(f"Failed to {event.type.value.lower()} resource on destination: {e}", extra=ctx)
        except Exception as e:
            self._error_count += 1
            logger.error(
                f"Unexpected error handling event: {e}",
                extra=ctx,
                exc_info=True,
            )

    async def _apply(self, event: WatchEvent) -> bool:
        gvr = await self.applier.resolve(event.obj)
        obj = await self.pipeline.run(event.type, gvr, event.obj)
        if obj is None:
            return False

        if event.type is EventType.ADD:
            await self.applier.create(obj)
        else:
            await self.applier.update(obj)
        return True

    @property
    def stats(self) -> Dict[str, Any]:
        """Get syncer statistics."""
        return {
            "running": self._running,
            "kinds": len(self._feeds),
            "handled_count": self._handled_count,
            "skipped_count": self._skipped_count,
            "error_count": self._error_count,
        }
