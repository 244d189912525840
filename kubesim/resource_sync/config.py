"""
Configuration management for the resource sync service.

All configuration is done via environment variables, one settings class
per section, each with its own prefix. ServiceConfig aggregates the
sections and validates them together.

Invariants:
    - All settings have defaults suitable for local development
    - Kubeconfig contents and credentials are never logged
    - A journal path is written by at most one Recorder and is never read
      by a Replayer in the same process

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Cross-section rules belong in ServiceConfig.validate()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from .kinds import DEFAULT_RECORD_KINDS, parse_kinds
from .objects import GroupVersionResource

logger = logging.getLogger(__name__)

DEFAULT_JOURNAL_PATH = "record/record.json"


class ClusterConfig(BaseSettings):
    """Connection settings for one cluster.

    Attributes:
        kubeconfig: Path to a kubeconfig file (default loading rules if unset;
            in-cluster config when running in a pod)
        context: Kubeconfig context to use (current context if unset)
    """

    kubeconfig: Optional[str] = Field(default=None)
    context: Optional[str] = Field(default=None)


class SourceClusterConfig(ClusterConfig):
    """Cluster that is watched and read."""

    model_config = {"env_prefix": "RESYNC_SOURCE_", "frozen": True}


class DestinationClusterConfig(ClusterConfig):
    """Cluster that is written to."""

    model_config = {"env_prefix": "RESYNC_DEST_", "frozen": True}


class SyncerConfig(BaseSettings):
    """Continuous source-to-destination mirroring."""

    enabled: bool = Field(default=False)

    model_config = {"env_prefix": "RESYNC_SYNCER_", "frozen": True}


class ImporterConfig(BaseSettings):
    """One-shot import at startup.

    Attributes:
        enabled: Import the source's current state before anything else
        max_concurrent: Maximum concurrent creates on the destination
    """

    enabled: bool = Field(default=False)
    max_concurrent: int = Field(default=8)

    model_config = {"env_prefix": "RESYNC_IMPORTER_", "frozen": True}


class RecorderConfig(BaseSettings):
    """Event journaling.

    Attributes:
        enabled: Record source events to a journal
        path: Journal file to write
        kinds: Comma-separated "<apiVersion>/<resource>" list; empty means
            every supported kind
    """

    enabled: bool = Field(default=False)
    path: str = Field(default=DEFAULT_JOURNAL_PATH)
    kinds: str = Field(default="", description="e.g. v1/pods,storage.k8s.io/v1/storageclasses")

    model_config = {"env_prefix": "RESYNC_RECORDER_", "frozen": True}

    def parsed_kinds(self) -> List[GroupVersionResource]:
        """Kinds to record.

        Raises:
            ValueError: If any entry is malformed
        """
        values = [value.strip() for value in self.kinds.split(",") if value.strip()]
        if not values:
            return list(DEFAULT_RECORD_KINDS)
        return parse_kinds(values)


class ReplayerConfig(BaseSettings):
    """Journal replay at startup.

    Attributes:
        enabled: Replay a journal onto the destination
        path: Journal file to read
        apply_updates_and_deletes: Replay Update and Delete records too,
            not only Add
    """

    enabled: bool = Field(default=False)
    path: str = Field(default=DEFAULT_JOURNAL_PATH)
    apply_updates_and_deletes: bool = Field(default=False)

    model_config = {"env_prefix": "RESYNC_REPLAYER_", "frozen": True}


class ObservabilityConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    model_config = {"env_prefix": "RESYNC_", "frozen": True}


@dataclass
class ServiceConfig:
    """Complete service configuration.

    Attributes:
        source: Source cluster connection
        destination: Destination cluster connection
        syncer: Syncer settings
        importer: One-shot importer settings
        recorder: Recorder settings
        replayer: Replayer settings
        observability: Logging settings
    """

    source: SourceClusterConfig = field(default_factory=SourceClusterConfig)
    destination: DestinationClusterConfig = field(default_factory=DestinationClusterConfig)
    syncer: SyncerConfig = field(default_factory=SyncerConfig)
    importer: ImporterConfig = field(default_factory=ImporterConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)
    replayer: ReplayerConfig = field(default_factory=ReplayerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid
        """
        config = cls(
            source=SourceClusterConfig(),
            destination=DestinationClusterConfig(),
            syncer=SyncerConfig(),
            importer=ImporterConfig(),
            recorder=RecorderConfig(),
            replayer=ReplayerConfig(),
            observability=ObservabilityConfig(),
        )
        config.validate()
        return config

    @property
    def needs_destination(self) -> bool:
        return self.syncer.enabled or self.importer.enabled or self.replayer.enabled

    @property
    def needs_source(self) -> bool:
        return self.syncer.enabled or self.importer.enabled or self.recorder.enabled

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.importer.max_concurrent < 1:
            raise ValueError(
                f"RESYNC_IMPORTER_MAX_CONCURRENT must be >= 1, got {self.importer.max_concurrent}"
            )

        if self.recorder.enabled:
            try:
                self.recorder.parsed_kinds()
            except ValueError as e:
                raise ValueError(f"Invalid RESYNC_RECORDER_KINDS: {e}") from e

        if self.recorder.enabled and self.replayer.enabled:
            if Path(self.recorder.path).resolve() == Path(self.replayer.path).resolve():
                raise ValueError(
                    "Recorder and replayer cannot both be enabled on the same journal "
                    f"path: {self.recorder.path}"
                )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid RESYNC_LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not (self.needs_source or self.needs_destination):
            logger.warning("No component enabled; the service will idle until stopped")

    def log_config(self) -> None:
        """Log configuration (kubeconfig contents are never read here)."""
        logger.info(
            "Service configuration loaded",
            extra={
                "source_kubeconfig": self.source.kubeconfig,
                "source_context": self.source.context,
                "dest_kubeconfig": self.destination.kubeconfig,
                "dest_context": self.destination.context,
                "syncer_enabled": self.syncer.enabled,
                "importer_enabled": self.importer.enabled,
                "importer_max_concurrent": self.importer.max_concurrent,
                "recorder_enabled": self.recorder.enabled,
                "recorder_path": self.recorder.path if self.recorder.enabled else None,
                "replayer_enabled": self.replayer.enabled,
                "replayer_path": self.replayer.path if self.replayer.enabled else None,
                "log_level": self.observability.log_level,
            },
        )
