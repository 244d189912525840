"""
Resource sync - replicate and journal cluster resources.

This package keeps a destination cluster derived from a source cluster
and can journal source events for later replay:
- Syncer: live mirroring of a fixed set of kinds, in dependency order
- Recorder: write-through JSON journal of every observed event
- Replayer: re-applies a journal to a destination
- OneShotImporter: copies the source's current state once
- Pipeline: per-kind filters and mutators run before every write

Architecture:
    ┌─────────────┐  change feeds  ┌──────────┐     ┌──────────────────┐
    │   Source    │───────────────▶│  Syncer  │────▶│ Pipeline +       │
    │   store     │                └──────────┘     │ ResourceApplier  │
    └──────┬──────┘                                 └────────┬─────────┘
           │ change feeds                                    │
           ▼                                                 ▼
    ┌──────────┐   JSON    ┌──────────┐             ┌──────────────────┐
    │ Recorder │──────────▶│ Journal  │────────────▶│   Destination    │
    └──────────┘           │  file    │  Replayer   │   store          │
                           └──────────┘             └──────────────────┘

Invariants:
    - The source is never written to
    - Every destination write goes through the ResourceApplier
    - Server-assigned identity (uid, generation, resourceVersion) is
      never carried from source to destination on create
    - Conflicts are not resolved; the last write observed wins

How to change safely:
    - New kinds go into kinds.SYNC_ORDER after every kind they reference
    - New per-kind behaviour goes into the pipeline, not the Syncer

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
