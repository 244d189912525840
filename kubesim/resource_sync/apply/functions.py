"""
Built-in (mandatory) pipeline functions.

These run first for their kinds in every PipelineRegistry:

- filter_scheduled_pods: once the source has bound a pod to a node, its
  updates are no longer forwarded; placement is decided independently
  on the destination.
- mutate_pod: the pod's service account is reset to "default" since the
  source's account may not exist on the destination.
- mutate_persistent_volume: a bound volume's claim reference carries the
  claim's uid, which is re-assigned on the destination; the uid is
  re-resolved before the volume is written.

Callers that override one of these kinds must call the function below
from their own implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

from ..errors import NotFoundError
from ..kinds import PERSISTENT_VOLUME_CLAIMS, PERSISTENT_VOLUMES, PODS
from ..objects import Object, get_uid, log_context
from ..store.base import EventType

if TYPE_CHECKING:
    from .pipeline import PipelineClients

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_ACCOUNT = "default"
VOLUME_BOUND = "Bound"


@dataclass
class _ClaimRef:
    namespace: str
    name: str

    @classmethod
    def from_volume(cls, volume: Object) -> Optional[_ClaimRef]:
        ref = (volume.get("spec") or {}).get("claimRef")
        if not ref or not ref.get("name"):
            return None
        return cls(namespace=ref.get("namespace") or "", name=ref["name"])


async def filter_scheduled_pods(obj: Object, clients: PipelineClients, event: EventType) -> bool:
    """Skip updates of pods that already have a node assigned."""
    if event is not EventType.UPDATE:
        return True

    node_name = (obj.get("spec") or {}).get("nodeName")
    if node_name:
        logger.info(
            "Pod is scheduled, ignoring update",
            extra={**log_context(obj), "node": node_name},
        )
        return False

    return True


async def mutate_pod(obj: Object, clients: PipelineClients, event: EventType) -> Object:
    """Run the pod as the destination's default service account."""
    obj.setdefault("spec", {})["serviceAccountName"] = DEFAULT_SERVICE_ACCOUNT
    return obj


async def mutate_persistent_volume(obj: Object, clients: PipelineClients, event: EventType) -> Object:
    """Point a bound volume's claimRef at the claim's current uid.

    The claim is looked up on the destination first: the destination
    assigns its own uid when the claim is created there, and the volume
    must reference that uid to bind. The source store is consulted only
    when the destination does not have the claim (yet).

    Raises:
        NotFoundError: If neither store has the claim
    """
    if (obj.get("status") or {}).get("phase") != VOLUME_BOUND:
        return obj

    ref = _ClaimRef.from_volume(obj)
    if ref is None:
        return obj

    claim = None
    for store in (clients.destination, clients.source):
        if store is None:
            continue
        try:
            claim = await store.get(PERSISTENT_VOLUME_CLAIMS, ref.namespace, ref.name)
            break
        except NotFoundError:
            continue

    if claim is None:
        raise NotFoundError(
            f"claim {ref.namespace}/{ref.name} of bound volume not found",
            kind="PersistentVolumeClaim",
            namespace=ref.namespace,
            name=ref.name,
        )

    obj["spec"]["claimRef"]["uid"] = get_uid(claim)
    return obj


MANDATORY_FILTERS: Tuple[Tuple, ...] = (
    (PODS, filter_scheduled_pods),
)

MANDATORY_MUTATORS: Tuple[Tuple, ...] = (
    (PERSISTENT_VOLUMES, mutate_persistent_volume),
    (PODS, mutate_pod),
)
