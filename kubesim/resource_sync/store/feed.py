"""
Change feed shared by all store backends.

A ChangeFeed is an ordered queue of WatchEvents for one collection. The
backend pushes events (put/mark_synced/close), one consumer task pulls
them with get() and acknowledges each with task_done().

Invariants:
    - Events are delivered in the order they were put
    - synced is set only after every initial-listing event was handed
      to the consumer and acknowledged
    - After close(), get() returns None once the queue is drained up to
      the close marker; later puts are dropped

How to change safely:
    - Backends may call put() from the event loop thread only; threads
      must go through loop.call_soon_threadsafe
    - Keep get() the single place where markers are interpreted
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from ..objects import GroupVersionResource
from .base import WatchEvent

logger = logging.getLogger(__name__)


class _Marker:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


_SYNCED = _Marker("synced")
_CLOSED = _Marker("closed")


class ChangeFeed:
    """Queue-backed change feed for one collection.

    Attributes:
        gvr: Collection being watched
        namespace: Namespace scope (None for all namespaces)

    Example:
        >>> feed = await store.watch(PODS)
        >>> while (event := await feed.get()) is not None:
        ...     try:
        ...         await handle(event)
        ...     finally:
        ...         feed.task_done()
    """

    def __init__(self, gvr: GroupVersionResource, namespace: Optional[str] = None) -> None:
        self.gvr = gvr
        self.namespace = namespace
        self._queue: asyncio.Queue[Union[WatchEvent, _Marker]] = asyncio.Queue()
        self._synced = asyncio.Event()
        self._closed = False

    @property
    def synced(self) -> bool:
        """Whether the initial listing has been consumed."""
        return self._synced.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event: WatchEvent) -> None:
        """Enqueue an event (dropped if the feed is closed)."""
        if self._closed:
            return
        self._queue.put_nowait(event)

    def mark_synced(self) -> None:
        """Enqueue the initial-listing-complete marker."""
        if self._closed:
            return
        self._queue.put_nowait(_SYNCED)

    def close(self) -> None:
        """Stop the feed and wake a consumer blocked in get()."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[WatchEvent]:
        """Wait for the next event.

        Returns:
            The next WatchEvent, or None once the feed is closed. The
            caller must call task_done() for every event returned.
        """
        while True:
            item = await self._queue.get()
            if item is _SYNCED:
                self._queue.task_done()
                self._synced.set()
                logger.debug("Initial listing consumed", extra={"gvr": str(self.gvr)})
                continue
            if item is _CLOSED:
                self._queue.task_done()
                # unblock anyone still waiting for the initial listing
                self._synced.set()
                return None
            return item  # type: ignore[return-value]

    def task_done(self) -> None:
        """Acknowledge an event returned by get()."""
        self._queue.task_done()

    async def wait_synced(self) -> None:
        """Block until the initial listing has been consumed."""
        await self._synced.wait()

    async def join(self) -> None:
        """Block until every enqueued event has been acknowledged."""
        await self._queue.join()

    def __repr__(self) -> str:
        return f"ChangeFeed(gvr={self.gvr}, namespace={self.namespace!r}, closed={self._closed})"
