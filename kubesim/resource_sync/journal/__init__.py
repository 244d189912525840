"""
Durable event journal.

- Recorder: journals source events verbatim, write-through
- Replayer: re-applies a journal to a destination store as one batch
- records: the JSON array file format shared by both

Invariants:
    - A journal read back reproduces the recorded events in order
    - One writer or one reader per path at a time
"""

from .records import JournalRecord, load_journal, write_journal
from .recorder import Recorder
from .replayer import Replayer, ReplayStats

__all__ = [
    "JournalRecord",
    "load_journal",
    "write_journal",
    "Recorder",
    "Replayer",
    "ReplayStats",
]
