"""
Batch tools that run once at startup rather than continuously.
"""

from .importer import ImportStats, OneShotImporter

__all__ = ["ImportStats", "OneShotImporter"]
