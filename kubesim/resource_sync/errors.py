"""
Error types for the resource sync subsystem.

Taxonomy:
- ResyncError: Base exception
- ResolutionError: An object's kind cannot be mapped to a resource collection
- StoreError: Any source/destination store failure
- ConflictError: Benign store races (AlreadyExists / NotFound)
- PipelineError: A filtering or mutating function failed
- JournalError: Journal file could not be read or written

Invariants:
    - All errors inherit from ResyncError
    - ConflictError subclasses are never reported as failures
    - Errors carry kind/namespace/name context when it is known

How to change safely:
    - New error types must subclass one of the categories above
    - Callers dispatch on category, so never re-parent an existing class
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ResyncError(Exception):
    """Base exception for all resource sync errors.

    Attributes:
        message: Error message
        kind: Object kind (or resource collection) involved
        namespace: Object namespace, empty for cluster-scoped objects
        name: Object name
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name

    @property
    def context(self) -> Dict[str, Any]:
        """Object context for structured log records."""
        return {
            "kind": self.kind,
            "namespace": self.namespace,
            "object_name": self.name,
        }


class ResolutionError(ResyncError):
    """An object's (group, version, kind) could not be resolved.

    Fatal to the single event or record being processed, never to the
    consumer task processing it.
    """

    def __init__(self, group: str, version: str, kind: str) -> None:
        api_version = f"{group}/{version}" if group else version
        super().__init__(
            f"no resource mapping for kind {kind!r} in {api_version!r}",
            kind=kind,
        )
        self.group = group
        self.version = version


class StoreError(ResyncError):
    """A source or destination store operation failed."""
    pass


class ConflictError(StoreError):
    """Benign race between actors mutating the same object."""
    pass


class NotFoundError(ConflictError):
    """The addressed object does not exist in the store."""
    pass


class AlreadyExistsError(ConflictError):
    """An object with the same namespace/name already exists in the store."""
    pass


class PipelineError(ResyncError):
    """A filtering or mutating function failed for an event."""
    pass


class JournalError(ResyncError):
    """The journal file could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
