"""
Journal file format.

A journal is a single JSON array of records, in the order the events
were observed:

    [
        {"event": "Add", "resource": {"apiVersion": "v1", "kind": "Pod", ...}},
        {"event": "Update", "resource": {...}},
        {"event": "Delete", "resource": {...}}
    ]

Invariants:
    - Writing replaces the whole file atomically (temp file + rename), so
      a reader never sees a partially written array
    - Reading returns records element-for-element in file order
    - Resources are stored exactly as observed, never mutated

How to change safely:
    - Format changes must stay readable by load_journal, or carry a
      version marker
    - Never write the journal in place
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from ..errors import JournalError
from ..objects import Object
from ..store.base import EventType

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class JournalRecord:
    """One observed event.

    Attributes:
        event: Observed operation
        resource: Object as observed on the source
    """
    event: EventType
    resource: Object

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"event": self.event.value, "resource": self.resource}

    def check_serializable(self) -> None:
        """Verify the record can be written to a journal.

        Raises:
            JournalError: If the resource is not JSON serializable
        """
        try:
            json.dumps(self.to_dict())
        except (TypeError, ValueError) as e:
            raise JournalError(f"journal record is not serializable: {e}") from e

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> JournalRecord:
        """Create from dictionary.

        Raises:
            ValueError: If the record is malformed
        """
        try:
            event = EventType(data["event"])
            resource = data["resource"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed journal record: {data!r}") from e
        if not isinstance(resource, dict):
            raise ValueError(f"journal record resource must be an object, got {type(resource).__name__}")
        return cls(event=event, resource=resource)


def write_journal(path: PathLike, records: Sequence[JournalRecord]) -> None:
    """Replace the journal file with the given records.

    Raises:
        JournalError: If the file cannot be written
    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([record.to_dict() for record in records], f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except (OSError, TypeError, ValueError) as e:
        raise JournalError(f"failed to write journal {target}: {e}", path=str(target)) from e


def load_journal(path: PathLike) -> List[JournalRecord]:
    """Read every record of a journal file.

    Raises:
        JournalError: If the file is missing, unreadable or malformed
    """
    source = Path(path)
    try:
        with open(source, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise JournalError(f"failed to read journal {source}: {e}", path=str(source)) from e

    if not isinstance(data, list):
        raise JournalError(f"journal {source} is not a JSON array", path=str(source))

    try:
        records = [JournalRecord.from_dict(item) for item in data]
    except ValueError as e:
        raise JournalError(f"journal {source}: {e}", path=str(source)) from e

    logger.debug(f"Loaded {len(records)} journal records", extra={"path": str(source)})
    return records
