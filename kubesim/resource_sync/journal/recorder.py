"""
Event recorder.

The Recorder watches a set of kinds on a source store and journals every
observed event, verbatim, to a single JSON file:

1. Open one change feed per kind and start one consumer task per feed
2. On every Add/Update/Delete, append a JournalRecord to the in-memory
   buffer
3. Flush the entire buffer to the journal file (write-through)

Invariants:
    - No pipeline is applied; resources are stored exactly as observed
    - The file always reflects every event observed so far (modulo a
      failed flush, which the next flush repairs)
    - Only JSON-serializable records enter the buffer; anything else is
      dropped before it can poison later flushes
    - Exactly one Recorder writes a given path; appends and flushes are
      serialized by a single lock so file order equals arrival order

How to change safely:
    - Keep flushing write-through; readers rely on the file being complete
    - Do not run a Replayer against the same path concurrently
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..errors import JournalError
from ..kinds import DEFAULT_RECORD_KINDS
from ..objects import GroupVersionResource, log_context
from ..store.base import ObjectStore, WatchEvent
from ..store.feed import ChangeFeed
from .records import JournalRecord, PathLike, write_journal

logger = logging.getLogger(__name__)


class Recorder:
    """Journals source store events to a file.

    Example:
        >>> recorder = Recorder(source, "record/record.json")
        >>> await recorder.run()   # returns once every feed is established
        >>> ...
        >>> await recorder.stop()
    """

    def __init__(
        self,
        source: ObjectStore,
        path: PathLike,
        kinds: Optional[Sequence[GroupVersionResource]] = None,
    ) -> None:
        """Initialize the recorder.

        Args:
            source: Store to watch
            path: Journal file to (re)write
            kinds: Kinds to record (all supported kinds if None or empty)
        """
        self.source = source
        self.path = Path(path)
        self.kinds = tuple(kinds) if kinds else DEFAULT_RECORD_KINDS

        self._records: List[JournalRecord] = []
        self._lock = asyncio.Lock()
        self._feeds: Dict[GroupVersionResource, ChangeFeed] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._stopping = False
        self._flush_count = 0
        self._flush_error_count = 0
        self._rejected_count = 0

    @property
    def records(self) -> List[JournalRecord]:
        """Records observed so far, in arrival order."""
        return list(self._records)

    async def run(self) -> None:
        """Establish every feed, then return.

        Recording continues in background tasks until stop().
        """
        if self._running:
            logger.warning("Recorder already running")
            return

        self._running = True
        self._stopping = False
        logger.info(
            "Starting recorder",
            extra={"path": str(self.path), "kinds": [str(k) for k in self.kinds]},
        )

        try:
            for gvr in self.kinds:
                feed = await self.source.watch(gvr)
                self._feeds[gvr] = feed
                self._tasks.append(
                    asyncio.create_task(self._consume(feed), name=f"recorder-{gvr}")
                )
                await feed.wait_synced()
        except Exception:
            await self.stop()
            raise

        logger.info("Recorder started")

    async def stop(self) -> None:
        """Stop consuming and wait for in-flight flushes to finish."""
        if not self._running:
            return

        self._stopping = True
        logger.info("Stopping recorder")

        for feed in self._feeds.values():
            feed.close()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._feeds.clear()
        self._tasks.clear()
        self._running = False
        logger.info("Recorder stopped", extra={"records": len(self._records)})

    async def wait_idle(self) -> None:
        """Block until every event delivered so far has been journaled."""
        for feed in list(self._feeds.values()):
            await feed.join()

    async def _consume(self, feed: ChangeFeed) -> None:
        try:
            while True:
                event = await feed.get()
                if event is None:
                    break
                try:
                    if not self._stopping:
                        await self.record(event)
                finally:
                    feed.task_done()
        except asyncio.CancelledError:
            logger.info("Recorder consumer cancelled", extra={"gvr": str(feed.gvr)})
            raise

    async def record(self, event: WatchEvent) -> None:
        """Append an event to the buffer and flush the whole buffer.

        A record that cannot be serialized is logged and dropped. A failed
        flush is logged; the record stays buffered and is written by the
        next successful flush.
        """
        record = JournalRecord(event=event.type, resource=event.obj)
        try:
            record.check_serializable()
        except JournalError as e:
            self._rejected_count += 1
            logger.error(
                f"Dropping unjournalable event: {e}",
                extra={**log_context(event.obj), "operation": event.type.value, "path": str(self.path)},
            )
            return

        async with self._lock:
            self._records.append(record)
            snapshot = list(self._records)
            try:
                await self._flush(snapshot)
            except JournalError as e:
                self._flush_error_count += 1
                logger.error(
                    f"Failed to flush journal: {e}",
                    extra={**log_context(event.obj), "operation": event.type.value, "path": str(self.path)},
                )

    async def _flush(self, records: List[JournalRecord]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_journal, self.path, records)
        self._flush_count += 1

    @property
    def stats(self) -> Dict[str, Any]:
        """Get recorder statistics."""
        return {
            "running": self._running,
            "records": len(self._records),
            "flush_count": self._flush_count,
            "flush_error_count": self._flush_error_count,
            "rejected_count": self._rejected_count,
            "path": str(self.path),
        }
