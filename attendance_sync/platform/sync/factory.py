"""Sync factory - wires a SyncOrchestrator from settings and a run configuration.

The factory is the single place that decides which adapters a run gets:
1. Aeries source and PostgREST sink built from Settings (unless injected)
2. Filesystem checkpoint store under CHECKPOINT_STORAGE_PATH
3. In-memory event bus with the progress logger attached
4. Per-school circuit breaker and Prometheus metrics, as the run config asks
"""

from typing import Any, Optional

from prometheus_client import CollectorRegistry

from attendance_sync.adapters.checkpoints import FilesystemCheckpointStore
from attendance_sync.adapters.circuit_breaker import InMemoryCircuitBreaker
from attendance_sync.adapters.event_bus import InMemoryEventBus
from attendance_sync.adapters.metrics import PrometheusSyncMetrics
from attendance_sync.adapters.sinks import PostgrestRecordSink
from attendance_sync.adapters.sources import AeriesSourceClient
from attendance_sync.core.config import Settings, settings as default_settings
from attendance_sync.core.logging import logger
from attendance_sync.core.protocols import (
    CheckpointStore,
    CircuitBreaker,
    EventBus,
    RecordSink,
    SourceClient,
    SyncMetrics,
)
from attendance_sync.platform.sync.config import CircuitBreakerConfig, SyncConfiguration
from attendance_sync.platform.sync.orchestrator import ConfigInput, SyncOrchestrator
from attendance_sync.platform.sync.subscribers import SyncProgressLogger


class SyncFactory:
    """Factory for sync orchestrators."""

    @classmethod
    def create_orchestrator(
        cls,
        config: Optional[ConfigInput] = None,
        settings: Optional[Settings] = None,
        *,
        source: Optional[SourceClient] = None,
        sink: Optional[RecordSink] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        event_bus: Optional[EventBus] = None,
        metrics_registry: Optional[CollectorRegistry] = None,
        **orchestrator_kwargs: Any,
    ) -> SyncOrchestrator:
        """Create a dedicated orchestrator for one sync run.

        Args:
            config: Run configuration; may be omitted when the run resumes
                from a checkpoint.
            settings: Deployment settings (process-wide settings by default).
            source: Override for the Aeries client.
            sink: Override for the PostgREST sink.
            checkpoint_store: Override for the filesystem store.
            event_bus: Bus to publish on; a fresh in-memory bus by default.
            metrics_registry: Registry for Prometheus metrics.
            **orchestrator_kwargs: Passed through (operation_id, rng, sleep, clock).

        Raises:
            ConfigurationError: Invalid run configuration or missing credentials.
        """
        settings = settings or default_settings
        run_config = SyncConfiguration.parse(config) if config is not None else None

        bus = event_bus if event_bus is not None else InMemoryEventBus()
        SyncProgressLogger().attach(bus)

        orchestrator = SyncOrchestrator(
            source=source or AeriesSourceClient.from_settings(settings),
            sink=sink or PostgrestRecordSink.from_settings(settings),
            checkpoint_store=checkpoint_store
            or FilesystemCheckpointStore(settings.CHECKPOINT_STORAGE_PATH),
            config=run_config,
            event_bus=bus,
            circuit_breaker=cls._build_circuit_breaker(run_config),
            metrics=cls._build_metrics(run_config, settings, metrics_registry),
            **orchestrator_kwargs,
        )
        logger.info(
            f"Created sync orchestrator {orchestrator.operation_id} "
            f"(schools: {list(run_config.school_codes) if run_config else 'from checkpoint'})"
        )
        return orchestrator

    @classmethod
    async def close(cls, orchestrator: SyncOrchestrator) -> None:
        """Release HTTP clients owned by the orchestrator's adapters."""
        for adapter in (orchestrator.source, orchestrator.sink):
            aclose = getattr(adapter, "aclose", None)
            if aclose is not None:
                await aclose()

    @staticmethod
    def _build_circuit_breaker(config: Optional[SyncConfiguration]) -> Optional[CircuitBreaker]:
        breaker_config = config.circuit_breaker if config else CircuitBreakerConfig()
        if not breaker_config.enabled:
            return None
        return InMemoryCircuitBreaker(
            cooldown_seconds=breaker_config.reset_timeout_seconds,
            failure_threshold=breaker_config.failure_threshold,
        )

    @staticmethod
    def _build_metrics(
        config: Optional[SyncConfiguration],
        settings: Settings,
        registry: Optional[CollectorRegistry],
    ) -> Optional[SyncMetrics]:
        if config is not None and not config.monitoring.enable_metrics:
            return None
        return PrometheusSyncMetrics(registry=registry, namespace=settings.METRICS_NAMESPACE)
