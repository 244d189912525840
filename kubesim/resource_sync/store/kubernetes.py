"""
Kubernetes object store implementation.

This module provides the production store backend. It works with any
Kubernetes API server reachable through a kubeconfig or the in-cluster
service account, and addresses every collection through the dynamic
client so no typed models are needed.

Invariants:
    - Blocking client calls run in the default executor, never on the loop
    - Watches follow informer semantics: list, deliver Adds, mark synced,
      then watch from the list's resourceVersion; a 410 Gone triggers a
      relist that is diffed against the last known state
    - Updates are unconditional: uid and resourceVersion are removed from
      the request body since source stamps never match the destination

How to change safely:
    - Test against a real cluster (kind, minikube) before deploying
    - Keep API error translation in _translate_error
    - Watch threads must only touch feeds via loop.call_soon_threadsafe
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import config as kube_config
from kubernetes import watch as kube_watch
from kubernetes.client import ApiClient, Configuration
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError

from ..errors import AlreadyExistsError, NotFoundError, ResolutionError, StoreError
from ..objects import (
    GroupVersionResource,
    Object,
    get_name,
    get_namespace,
    strip_server_metadata,
)
from .base import EventType, WatchEvent
from .feed import ChangeFeed

logger = logging.getLogger(__name__)

# seconds a single watch request stays open before it is renewed
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_SECONDS = 1.0

_WATCH_EVENT_TYPES = {
    "ADDED": EventType.ADD,
    "MODIFIED": EventType.UPDATE,
    "DELETED": EventType.DELETE,
}


def new_api_client(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
) -> ApiClient:
    """Build an API client from a kubeconfig or the in-cluster account.

    Args:
        kubeconfig: Path to a kubeconfig file (default location if None)
        context: Context name inside the kubeconfig

    Returns:
        Configured ApiClient
    """
    if kubeconfig is None and context is None and os.getenv("KUBERNETES_SERVICE_HOST"):
        configuration = Configuration()
        kube_config.load_incluster_config(client_configuration=configuration)
        return ApiClient(configuration=configuration)
    return kube_config.new_client_from_config(config_file=kubeconfig, context=context)


def _status_reason(error: ApiException) -> str:
    """Extract the Status reason (e.g. "AlreadyExists") from an API error."""
    body = error.body
    if not body:
        return ""
    try:
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        return json.loads(body).get("reason", "") or ""
    except (ValueError, AttributeError):
        return ""


def _translate_error(
    error: ApiException,
    gvr: GroupVersionResource,
    namespace: Optional[str],
    name: str,
) -> StoreError:
    context = {"kind": gvr.resource, "namespace": namespace or "", "name": name}
    if error.status == 404:
        return NotFoundError(f"{gvr.resource} {name!r} not found", **context)
    if error.status == 409 and _status_reason(error) == "AlreadyExists":
        return AlreadyExistsError(f"{gvr.resource} {name!r} already exists", **context)
    return StoreError(
        f"{gvr.resource} {name!r}: API error {error.status} {error.reason}",
        **context,
    )


def _object_key(obj: Object) -> Tuple[str, str]:
    return get_namespace(obj), get_name(obj)


class KubernetesObjectStore:
    """Kubernetes implementation of the ObjectStore protocol.

    Uses the kubernetes dynamic client for every collection. Calls are
    blocking, so each one is dispatched to the default thread pool.

    Attributes:
        name: Label used in log records ("source" or "destination")

    Example:
        >>> store = KubernetesObjectStore(kubeconfig="~/.kube/config", name="source")
        >>> await store.connect()
        >>> pods = await store.list(PODS)
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        name: str = "kubernetes",
        api_client: Optional[ApiClient] = None,
    ) -> None:
        """Initialize the store.

        Args:
            kubeconfig: Path to kubeconfig (None for default / in-cluster)
            context: kubeconfig context
            name: Label used in log records
            api_client: Pre-built ApiClient (overrides kubeconfig/context)
        """
        self.kubeconfig = kubeconfig
        self.context = context
        self.name = name
        self._api_client = api_client
        self._client: Optional[DynamicClient] = None
        self._resources: Dict[GroupVersionResource, Any] = {}
        self._stop = threading.Event()
        self._watchers: List[kube_watch.Watch] = []
        self._feeds: List[ChangeFeed] = []
        self._threads: List[threading.Thread] = []

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def dynamic_client(self) -> DynamicClient:
        if self._client is None:
            raise StoreError(f"store {self.name} is not connected")
        return self._client

    async def connect(self) -> None:
        """Load credentials and run API discovery.

        Raises:
            StoreError: If the cluster cannot be reached
        """
        if self._client is not None:
            return

        def _connect() -> DynamicClient:
            api_client = self._api_client or new_api_client(self.kubeconfig, self.context)
            return DynamicClient(api_client)

        try:
            self._client = await self._run(_connect)
        except Exception as e:
            raise StoreError(f"failed to connect to {self.name} cluster: {e}") from e

        logger.info(
            "Connected to cluster",
            extra={"store": self.name, "kubeconfig": self.kubeconfig, "context": self.context},
        )

    async def close(self) -> None:
        """Stop all watches and release the API client."""
        self._stop.set()
        for watcher in self._watchers:
            watcher.stop()
        for feed in self._feeds:
            feed.close()
        self._watchers.clear()
        self._feeds.clear()
        self._threads.clear()
        if self._client is not None:
            self._client.client.close()
            self._client = None
        logger.info("Closed cluster connection", extra={"store": self.name})

    async def list(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str] = None,
    ) -> List[Object]:
        def _list() -> List[Object]:
            resource = self._resource(gvr)
            listing = self.dynamic_client.get(resource, namespace=namespace or None).to_dict()
            return [self._with_type(resource, item) for item in listing.get("items") or []]

        return await self._call(_list, gvr, namespace, "")

    async def get(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> Object:
        def _get() -> Object:
            resource = self._resource(gvr)
            ns = namespace if resource.namespaced else None
            return self.dynamic_client.get(resource, name=name, namespace=ns).to_dict()

        return await self._call(_get, gvr, namespace, name)

    async def create(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        obj: Object,
    ) -> Object:
        def _create() -> Object:
            resource = self._resource(gvr)
            ns = namespace if resource.namespaced else None
            return self.dynamic_client.create(resource, body=obj, namespace=ns).to_dict()

        return await self._call(_create, gvr, namespace, get_name(obj))

    async def update(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        obj: Object,
    ) -> Object:
        body = strip_server_metadata(obj)

        def _update() -> Object:
            resource = self._resource(gvr)
            ns = namespace if resource.namespaced else None
            return self.dynamic_client.replace(resource, body=body, namespace=ns).to_dict()

        return await self._call(_update, gvr, namespace, get_name(obj))

    async def delete(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> None:
        def _delete() -> None:
            resource = self._resource(gvr)
            ns = namespace if resource.namespaced else None
            self.dynamic_client.delete(resource, name=name, namespace=ns)

        await self._call(_delete, gvr, namespace, name)

    async def watch(
        self,
        gvr: GroupVersionResource,
        namespace: Optional[str] = None,
    ) -> ChangeFeed:
        resource = await self._call(functools.partial(self._resource, gvr), gvr, namespace, "")
        feed = ChangeFeed(gvr, namespace)
        watcher = kube_watch.Watch()
        loop = asyncio.get_running_loop()

        thread = threading.Thread(
            target=self._run_informer,
            args=(resource, gvr, namespace or None, feed, watcher, loop),
            name=f"watch-{self.name}-{gvr}",
            daemon=True,
        )
        self._watchers.append(watcher)
        self._feeds.append(feed)
        self._threads.append(thread)
        thread.start()

        logger.info(
            "Watch started",
            extra={"store": self.name, "gvr": str(gvr), "namespace": namespace},
        )
        return feed

    def _resource(self, gvr: GroupVersionResource) -> Any:
        """Look up (and cache) the discovery entry for a collection."""
        resource = self._resources.get(gvr)
        if resource is None:
            try:
                resource = self.dynamic_client.resources.get(
                    prefix="apis" if gvr.group else "api",
                    group=gvr.group or None,
                    api_version=gvr.version,
                    name=gvr.resource,
                )
            except (ResourceNotFoundError, ResourceNotUniqueError) as e:
                raise StoreError(f"collection {gvr} not served by {self.name}: {e}") from e
            self._resources[gvr] = resource
        return resource

    @staticmethod
    def _with_type(resource: Any, item: Object) -> Object:
        # list responses omit apiVersion/kind on items
        item.setdefault("apiVersion", resource.group_version)
        item.setdefault("kind", resource.kind)
        return item

    async def _run(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _call(
        self,
        fn: Callable[[], Any],
        gvr: GroupVersionResource,
        namespace: Optional[str],
        name: str,
    ) -> Any:
        try:
            return await self._run(fn)
        except ApiException as e:
            raise _translate_error(e, gvr, namespace, name) from e

    def _run_informer(
        self,
        resource: Any,
        gvr: GroupVersionResource,
        namespace: Optional[str],
        feed: ChangeFeed,
        watcher: kube_watch.Watch,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        """List-then-watch loop, run in a dedicated thread."""

        def post(event_type: EventType, obj: Object) -> None:
            loop.call_soon_threadsafe(feed.put, WatchEvent(gvr=gvr, type=event_type, obj=obj))

        known: Dict[Tuple[str, str], Object] = {}
        synced = False
        resource_version: Optional[str] = None

        while not self._stop.is_set() and not feed.closed:
            try:
                if resource_version is None:
                    listing = self.dynamic_client.get(resource, namespace=namespace).to_dict()
                    resource_version = listing["metadata"]["resourceVersion"]
                    current = {}
                    for item in listing.get("items") or []:
                        item = self._with_type(resource, item)
                        current[_object_key(item)] = item
                    for key, item in current.items():
                        post(EventType.UPDATE if key in known else EventType.ADD, item)
                    for key, item in known.items():
                        if key not in current:
                            post(EventType.DELETE, item)
                    known = current
                    if not synced:
                        loop.call_soon_threadsafe(feed.mark_synced)
                        synced = True

                for event in self.dynamic_client.watch(
                    resource,
                    namespace=namespace,
                    resource_version=resource_version,
                    timeout=WATCH_TIMEOUT_SECONDS,
                    watcher=watcher,
                ):
                    if self._stop.is_set() or feed.closed:
                        break
                    raw = event.get("raw_object") or {}
                    if event.get("type") == "ERROR":
                        if raw.get("code") == 410:
                            resource_version = None
                            break
                        raise StoreError(f"watch error on {gvr}: {raw.get('message')}")
                    event_type = _WATCH_EVENT_TYPES.get(event.get("type", ""))
                    resource_version = raw.get("metadata", {}).get("resourceVersion", resource_version)
                    if event_type is None:
                        continue
                    key = _object_key(raw)
                    if event_type is EventType.DELETE:
                        known.pop(key, None)
                    else:
                        if event_type is EventType.UPDATE and key not in known:
                            event_type = EventType.ADD
                        known[key] = raw
                    post(event_type, raw)

            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch expired, relisting", extra={"store": self.name, "gvr": str(gvr)})
                    resource_version = None
                    continue
                logger.error(
                    f"Watch failed: {e.status} {e.reason}",
                    extra={"store": self.name, "gvr": str(gvr)},
                )
                self._stop.wait(WATCH_RETRY_SECONDS)
            except Exception as e:
                logger.error(f"Watch failed: {e}", extra={"store": self.name, "gvr": str(gvr)}, exc_info=True)
                self._stop.wait(WATCH_RETRY_SECONDS)

        logger.debug("Watch thread exiting", extra={"store": self.name, "gvr": str(gvr)})


class DiscoveryKindResolver:
    """KindResolver backed by cluster API discovery.

    Results are cached per (group, version, kind).

    Example:
        >>> resolver = DiscoveryKindResolver(destination_store)
        >>> await resolver.resolve("apps", "v1", "Deployment")
        GroupVersionResource(group='apps', version='v1', resource='deployments')
    """

    def __init__(self, store: KubernetesObjectStore) -> None:
        self.store = store
        self._cache: Dict[Tuple[str, str, str], GroupVersionResource] = {}

    async def resolve(self, group: str, version: str, kind: str) -> GroupVersionResource:
        key = (group, version, kind)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        def _lookup() -> Any:
            return self.store.dynamic_client.resources.get(
                prefix="apis" if group else "api",
                group=group or None,
                api_version=version,
                kind=kind,
            )

        loop = asyncio.get_running_loop()
        try:
            resource = await loop.run_in_executor(None, _lookup)
        except (ResourceNotFoundError, ResourceNotUniqueError) as e:
            raise ResolutionError(group, version, kind) from e

        gvr = GroupVersionResource(group=group, version=version, resource=resource.name)
        self._cache[key] = gvr
        return gvr
