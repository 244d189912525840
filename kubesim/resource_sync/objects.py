"""
Object model helpers.

Objects are plain JSON-compatible dictionaries in the usual Kubernetes
shape (apiVersion, kind, metadata, spec, status). The subsystem treats
them as opaque payloads except for the handful of fields read here.

Invariants:
    - Helpers never mutate their argument unless the name says so
    - Cluster-scoped objects have an empty namespace ("")
    - Server-assigned fields are uid, generation and resourceVersion

How to change safely:
    - Add accessors here instead of indexing nested dicts at call sites
    - Keep SERVER_ASSIGNED_FIELDS in sync with what stores assign
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Tuple

Object = Dict[str, Any]

# metadata fields assigned by the store that owns an object
SERVER_ASSIGNED_FIELDS = ("uid", "generation", "resourceVersion")


@dataclass(frozen=True)
class GroupVersionResource:
    """Addresses a resource collection in a store.

    Attributes:
        group: API group, empty for the core group
        version: API version within the group
        resource: Plural collection name (e.g. "pods")
    """
    group: str
    version: str
    resource: str

    @property
    def group_version(self) -> str:
        """apiVersion string for this collection."""
        return f"{self.group}/{self.version}" if self.group else self.version

    @classmethod
    def parse(cls, value: str) -> GroupVersionResource:
        """Parse "<apiVersion>/<resource>", e.g. "v1/pods".

        Raises:
            ValueError: If the string is not in that form
        """
        api_version, sep, resource = value.strip().rpartition("/")
        if not sep or not api_version or not resource:
            raise ValueError(f"expected '<apiVersion>/<resource>', got {value!r}")
        group, version = split_api_version(api_version)
        return cls(group=group, version=version, resource=resource)

    def __str__(self) -> str:
        return f"{self.group_version}/{self.resource}"


@dataclass(frozen=True)
class GroupVersionKind:
    """Declared type of an object."""
    group: str
    version: str
    kind: str

    @property
    def group_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.group_version}, Kind={self.kind}"


def split_api_version(api_version: str) -> Tuple[str, str]:
    """Split an apiVersion into (group, version)."""
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


def group_version_kind(obj: Object) -> GroupVersionKind:
    group, version = split_api_version(obj.get("apiVersion", ""))
    return GroupVersionKind(group=group, version=version, kind=obj.get("kind", ""))


def metadata(obj: Object) -> Dict[str, Any]:
    return obj.get("metadata") or {}


def get_name(obj: Object) -> str:
    return metadata(obj).get("name", "")


def get_namespace(obj: Object) -> str:
    return metadata(obj).get("namespace") or ""


def get_uid(obj: Object) -> str:
    return metadata(obj).get("uid", "")


def describe(obj: Object) -> Dict[str, Any]:
    """Object context as keyword arguments for ResyncError."""
    return {
        "kind": obj.get("kind", ""),
        "namespace": get_namespace(obj),
        "name": get_name(obj),
    }


def log_context(obj: Object) -> Dict[str, Any]:
    """Object context for structured log records.

    "name" is reserved by logging.LogRecord, hence object_name.
    """
    return {
        "kind": obj.get("kind", ""),
        "namespace": get_namespace(obj),
        "object_name": get_name(obj),
    }


def strip_server_metadata(obj: Object) -> Object:
    """Return a copy of obj without server-assigned identity fields.

    Removes metadata.uid, metadata.generation and metadata.resourceVersion
    so the object can be created in a store that assigns its own.
    """
    stripped = copy.deepcopy(obj)
    meta = stripped.get("metadata")
    if isinstance(meta, dict):
        for key in SERVER_ASSIGNED_FIELDS:
            meta.pop(key, None)
    return stripped
