"""
Journal replayer.

The Replayer reads a whole journal and re-issues its records against a
destination store, in file order:

1. Load every record (a missing or malformed journal aborts up front)
2. Add records: run the pipeline (identity stripping plus mutators),
   then create; AlreadyExists counts as success
3. Update/Delete records (only with apply_updates_and_deletes): updates
   go through the pipeline then update, deletes bypass it; NotFound
   counts as success

Invariants:
    - Replay is all-or-nothing from the caller's point of view: the first
      error other than a benign conflict aborts the remaining records
      and is raised
    - Replaying the same journal twice converges to the same destination
      state as replaying it once
    - Journals hold raw source objects; mutation happens here, on apply

How to change safely:
    - Keep records sequential; a Delete must never overtake its Add
    - Do not run a Recorder against the same path concurrently
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..apply.applier import ResourceApplier
from ..apply.pipeline import Pipeline, PipelineClients, PipelineRegistry
from ..errors import NotFoundError, ResyncError
from ..objects import log_context
from ..store.base import EventType, KindResolver, ObjectStore
from .records import JournalRecord, PathLike, load_journal

logger = logging.getLogger(__name__)


@dataclass
class ReplayStats:
    """Result of a replay.

    Attributes:
        records: Records read from the journal
        created: Objects created
        updated: Objects updated
        deleted: Objects deleted
        skipped: Records filtered out by the pipeline or not replayed
        conflicts: Benign AlreadyExists/NotFound outcomes
        duration_ms: Total replay duration
    """

    records: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    conflicts: int = 0
    duration_ms: int = 0


class Replayer:
    """Re-applies a recorded journal to a destination store.

    Example:
        >>> replayer = Replayer(destination, resolver, "record/record.json")
        >>> stats = await replayer.replay()
        >>> print(f"Created {stats.created} objects")
    """

    def __init__(
        self,
        destination: ObjectStore,
        resolver: KindResolver,
        path: PathLike,
        registry: Optional[PipelineRegistry] = None,
        apply_updates_and_deletes: bool = False,
    ) -> None:
        """Initialize the replayer.

        Args:
            destination: Store to write to
            resolver: Kind resolver for the destination
            path: Journal file to read
            registry: Pipeline functions (mandatory ones only if None);
                frozen by the replayer
            apply_updates_and_deletes: Also replay Update and Delete records
        """
        self.destination = destination
        self.path = Path(path)
        self.apply_updates_and_deletes = apply_updates_and_deletes
        self.registry = registry or PipelineRegistry()
        self.registry.freeze()
        self.applier = ResourceApplier(destination, resolver)
        self.pipeline = Pipeline(self.registry, PipelineClients(destination=destination))

    async def replay(self) -> ReplayStats:
        """Replay the whole journal.

        Returns:
            ReplayStats for the completed replay

        Raises:
            JournalError: If the journal cannot be read
            ResyncError: The first unrecoverable error of any record
        """
        start_time = time.time()
        loop = asyncio.get_running_loop()
        records = await loop.run_in_executor(None, load_journal, self.path)

        stats = ReplayStats(records=len(records))
        logger.info(f"Replaying {len(records)} journal records", extra={"path": str(self.path)})

        for index, record in enumerate(records):
            try:
                await self._replay_record(record, stats)
            except ResyncError as e:
                logger.error(
                    f"Replay aborted at record {index}: {e}",
                    extra={**log_context(record.resource), "operation": record.event.value},
                )
                raise

        stats.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Replay complete",
            extra={
                "path": str(self.path),
                "created_count": stats.created,
                "updated_count": stats.updated,
                "deleted_count": stats.deleted,
                "skipped_count": stats.skipped,
                "conflict_count": stats.conflicts,
                "duration_ms": stats.duration_ms,
            },
        )
        return stats

    async def _replay_record(self, record: JournalRecord, stats: ReplayStats) -> None:
        if record.event is EventType.ADD:
            gvr = await self.applier.resolve(record.resource)
            obj = await self.pipeline.run(EventType.ADD, gvr, record.resource)
            if obj is None:
                stats.skipped += 1
                return
            if await self.applier.create(obj, exist_ok=True) is None:
                stats.conflicts += 1
            else:
                stats.created += 1
            return

        if not self.apply_updates_and_deletes:
            stats.skipped += 1
            return

        try:
            if record.event is EventType.UPDATE:
                gvr = await self.applier.resolve(record.resource)
                obj = await self.pipeline.run(EventType.UPDATE, gvr, record.resource)
                if obj is None:
                    stats.skipped += 1
                    return
                await self.applier.update(obj)
                stats.updated += 1
            else:
                await self.applier.delete_object(record.resource)
                stats.deleted += 1
        except NotFoundError:
            stats.conflicts += 1
