"""
Destination write path.

- ResourceApplier: single-attempt typed writes against a destination store
- PipelineRegistry / Pipeline: per-kind filters and mutators run before writes
- functions: the mandatory built-in filters and mutators
"""

from .applier import ResourceApplier
from .functions import (
    filter_scheduled_pods,
    mutate_persistent_volume,
    mutate_pod,
)
from .pipeline import (
    FilteringFunction,
    MutatingFunction,
    Pipeline,
    PipelineClients,
    PipelineRegistry,
    RegistryFrozenError,
)

__all__ = [
    "ResourceApplier",
    "Pipeline",
    "PipelineClients",
    "PipelineRegistry",
    "RegistryFrozenError",
    "FilteringFunction",
    "MutatingFunction",
    "filter_scheduled_pods",
    "mutate_persistent_volume",
    "mutate_pod",
]
