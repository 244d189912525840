"""
Resource sync service - main entry point.

This module starts the service with the components enabled in
configuration, in this order:
- One-shot importer (source state -> destination, once)
- Replayer (journal -> destination, once; failure is fatal)
- Syncer (source changes -> destination, until shutdown)
- Recorder (source changes -> journal, until shutdown)

Usage:
    kube-resource-sync
    python -m kubesim.resource_sync.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Import and replay complete before any watch is opened
    - Graceful shutdown lets in-flight handlers and flushes finish
    - All components share one pipeline registry, frozen before first use

How to change safely:
    - Add new components with enable/disable flags
    - Stop components in reverse start order
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import List, Optional

import json_log_formatter

from .apply.pipeline import PipelineRegistry
from .config import ServiceConfig
from .errors import ResyncError
from .journal import Recorder, Replayer, ReplayStats
from .kinds import StaticKindResolver
from .store import DiscoveryKindResolver, KubernetesObjectStore
from .store.base import KindResolver, ObjectStore
from .syncer import Syncer
from .tools import ImportStats, OneShotImporter

logger = logging.getLogger(__name__)


def setup_logging(config: ServiceConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class Service:
    """Resource sync orchestrator.

    Manages the lifecycle of all components:
    - Cluster connections
    - Startup batch jobs (importer, replayer)
    - Background watchers (syncer, recorder)

    Stores passed in are used as-is and not closed by the service;
    otherwise Kubernetes stores are built from configuration.

    Attributes:
        config: Service configuration
        source: Store that is watched and read
        destination: Store that is written to
        registry: Pipeline functions shared by every component

    Example:
        >>> service = Service(config)
        >>> await service.start()   # returns after request_shutdown()
        >>> await service.stop()
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        source: Optional[ObjectStore] = None,
        destination: Optional[ObjectStore] = None,
        resolver: Optional[KindResolver] = None,
        registry: Optional[PipelineRegistry] = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional service configuration (loaded from env if not provided)
            source: Pre-built source store
            destination: Pre-built destination store
            resolver: Kind resolver for the destination (discovery on a
                Kubernetes destination, the static table otherwise)
            registry: Pipeline functions (mandatory ones only if None)
        """
        self.config = config or ServiceConfig.from_env()
        self.source = source
        self.destination = destination
        self.resolver = resolver
        self.registry = registry or PipelineRegistry()

        self._owned_stores: List[KubernetesObjectStore] = []
        self._running = False
        self._started_event = asyncio.Event()
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.importer: OneShotImporter | None = None
        self.replayer: Replayer | None = None
        self.syncer: Syncer | None = None
        self.recorder: Recorder | None = None
        self.import_stats: ImportStats | None = None
        self.replay_stats: ReplayStats | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start every enabled component and wait for shutdown.

        Raises:
            ResyncError: If import or replay fails, or a watch cannot be
                established
        """
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting resource sync service")
        self.config.log_config()
        self._running = True

        try:
            await self._connect_stores()

            if self.config.importer.enabled:
                self.importer = OneShotImporter(
                    source=self.source,
                    destination=self.destination,
                    resolver=self.resolver,
                    registry=self.registry,
                    max_concurrent=self.config.importer.max_concurrent,
                )
                self.import_stats = await self.importer.import_resources()

            if self.config.replayer.enabled:
                self.replayer = Replayer(
                    destination=self.destination,
                    resolver=self.resolver,
                    path=self.config.replayer.path,
                    registry=self.registry,
                    apply_updates_and_deletes=self.config.replayer.apply_updates_and_deletes,
                )
                self.replay_stats = await self.replayer.replay()

            if self.config.syncer.enabled:
                self.syncer = Syncer(
                    source=self.source,
                    destination=self.destination,
                    resolver=self.resolver,
                    registry=self.registry,
                )
                await self.syncer.run()

            if self.config.recorder.enabled:
                self.recorder = Recorder(
                    source=self.source,
                    path=self.config.recorder.path,
                    kinds=self.config.recorder.parsed_kinds(),
                )
                await self.recorder.run()

            logger.info("Resource sync service started successfully")
            self._started_event.set()

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Service startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def _connect_stores(self) -> None:
        if self.source is None and self.config.needs_source:
            self.source = await self._connect_cluster(
                "source", self.config.source.kubeconfig, self.config.source.context
            )
        if self.destination is None and self.config.needs_destination:
            self.destination = await self._connect_cluster(
                "destination", self.config.destination.kubeconfig, self.config.destination.context
            )
        if self.resolver is None:
            if isinstance(self.destination, KubernetesObjectStore):
                self.resolver = DiscoveryKindResolver(self.destination)
            else:
                self.resolver = StaticKindResolver()

    async def _connect_cluster(
        self, name: str, kubeconfig: Optional[str], context: Optional[str]
    ) -> KubernetesObjectStore:
        store = KubernetesObjectStore(kubeconfig=kubeconfig, context=context, name=name)
        self._owned_stores.append(store)
        await store.connect()
        return store

    async def wait_started(self) -> None:
        """Block until every enabled component is running."""
        await self._started_event.wait()

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if not self._running:
            return

        logger.info("Stopping resource sync service")

        if self.recorder:
            await self.recorder.stop()

        if self.syncer:
            await self.syncer.stop()

        for store in reversed(self._owned_stores):
            await store.close()
        self._owned_stores.clear()

        self._running = False
        logger.info("Resource sync service stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServiceConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create service
    service = Service(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    exit_code = 0
    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        pass
    except ResyncError as e:
        logger.error(f"Resource sync service failed: {e}", extra=e.context)
        exit_code = 1
    finally:
        loop.run_until_complete(service.stop())
        loop.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
