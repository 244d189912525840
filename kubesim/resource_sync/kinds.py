"""
Object kinds known to the resource sync subsystem.

SYNC_ORDER is the dependency order used for the initial bulk state by the
Syncer and the one-shot importer: a kind that references another kind's
objects comes after it (claims before volumes, nodes before pods, and
namespaces before everything namespaced).

Invariants:
    - SYNC_ORDER is static, never derived at runtime
    - Every kind in SYNC_ORDER has an entry in BUILTIN_KINDS

How to change safely:
    - Insert new kinds after every kind they reference
    - Add the kind's (group, version, kind) mapping to BUILTIN_KINDS
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ResolutionError
from .objects import GroupVersionResource

logger = logging.getLogger(__name__)

NAMESPACES = GroupVersionResource("", "v1", "namespaces")
PRIORITY_CLASSES = GroupVersionResource("scheduling.k8s.io", "v1", "priorityclasses")
STORAGE_CLASSES = GroupVersionResource("storage.k8s.io", "v1", "storageclasses")
PERSISTENT_VOLUME_CLAIMS = GroupVersionResource("", "v1", "persistentvolumeclaims")
NODES = GroupVersionResource("", "v1", "nodes")
PERSISTENT_VOLUMES = GroupVersionResource("", "v1", "persistentvolumes")
PODS = GroupVersionResource("", "v1", "pods")

SYNC_ORDER: Tuple[GroupVersionResource, ...] = (
    NAMESPACES,
    PRIORITY_CLASSES,
    STORAGE_CLASSES,
    PERSISTENT_VOLUME_CLAIMS,
    NODES,
    PERSISTENT_VOLUMES,
    PODS,
)

# Recorder default: every kind the subsystem knows how to replay
DEFAULT_RECORD_KINDS: Tuple[GroupVersionResource, ...] = SYNC_ORDER

BUILTIN_KINDS: Dict[Tuple[str, str, str], GroupVersionResource] = {
    ("", "v1", "Namespace"): NAMESPACES,
    ("scheduling.k8s.io", "v1", "PriorityClass"): PRIORITY_CLASSES,
    ("storage.k8s.io", "v1", "StorageClass"): STORAGE_CLASSES,
    ("", "v1", "PersistentVolumeClaim"): PERSISTENT_VOLUME_CLAIMS,
    ("", "v1", "Node"): NODES,
    ("", "v1", "PersistentVolume"): PERSISTENT_VOLUMES,
    ("", "v1", "Pod"): PODS,
}


def parse_kinds(values: Iterable[str]) -> List[GroupVersionResource]:
    """Parse "<apiVersion>/<resource>" strings.

    Raises:
        ValueError: If any value is malformed
    """
    return [GroupVersionResource.parse(value) for value in values]


class StaticKindResolver:
    """KindResolver backed by a fixed table.

    Used with the in-memory store and wherever discovery is unavailable.

    Example:
        >>> resolver = StaticKindResolver()
        >>> await resolver.resolve("", "v1", "Pod")
        GroupVersionResource(group='', version='v1', resource='pods')
    """

    def __init__(
        self,
        extra: Optional[Mapping[Tuple[str, str, str], GroupVersionResource]] = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            extra: Additional (group, version, kind) mappings; they take
                precedence over the built-in table
        """
        self._table: Dict[Tuple[str, str, str], GroupVersionResource] = dict(BUILTIN_KINDS)
        if extra:
            self._table.update(extra)

    async def resolve(self, group: str, version: str, kind: str) -> GroupVersionResource:
        gvr = self._table.get((group, version, kind))
        if gvr is None:
            raise ResolutionError(group, version, kind)
        return gvr
