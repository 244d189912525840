"""
Live source-to-destination replication.

The Syncer keeps a destination store derived from a source store by
driving every watched change through the pipeline and the
ResourceApplier.
"""

from .syncer import Syncer

__all__ = ["Syncer"]
