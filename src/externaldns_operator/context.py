"""
Operator context: the objects shared by all handlers of one operator run.

Everything the handlers need is built once at startup and kept in kopf's
``memo`` under ``memo.context``; nothing lives in module-level state.
"""

import logging

from opentelemetry.sdk.trace import TracerProvider

from externaldns_operator.errors import OperatorError
from externaldns_operator.models.mirror import Mirror, MirrorKey, ResourceKind
from externaldns_operator.observability.metrics import MetricsCollector, MetricsServer
from externaldns_operator.services.mirror_reconciler import MirrorReconciler
from externaldns_operator.services.mirror_registry import MirrorRegistry
from externaldns_operator.services.object_store import ObjectStore
from externaldns_operator.services.work_queue import WorkQueue
from externaldns_operator.settings import Settings

logger = logging.getLogger(__name__)


def is_retryable_error(error: Exception) -> bool:
    """Whether a reconciliation error may resolve by itself."""
    if isinstance(error, OperatorError):
        return error.retryable
    return True


class OperatorContext:
    """Settings, registry, store, reconciler, queue and metrics of one run."""

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        metrics: MetricsCollector | None = None,
    ):
        self.settings = settings
        self.store = store
        self.metrics = metrics or MetricsCollector()
        self.registry = MirrorRegistry(
            source_namespace=settings.operator_namespace,
            target_namespace=settings.operand_namespace,
        )
        self.reconciler = MirrorReconciler(store, self.registry, self.metrics)
        self.queue = WorkQueue(
            maxsize=settings.queue_size,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            metrics=self.metrics,
        )
        self.metrics_server: MetricsServer | None = None
        self.tracer_provider: TracerProvider | None = None

    @property
    def ready(self) -> bool:
        return self.queue.running

    def start_workers(self) -> None:
        self.queue.run(
            self.reconciler.reconcile,
            workers=self.settings.workers,
            is_retryable=is_retryable_error,
        )

    async def register_mirror(self, mirror: Mirror) -> None:
        """Register (or replace) a mirror and queue its source for reconciliation."""
        previous = self.registry.get(mirror.name)
        changed = self.registry.register(mirror)
        self._update_mirror_gauge(mirror.kind)
        if previous is not None and previous.kind != mirror.kind:
            self._update_mirror_gauge(previous.kind)
        if not changed:
            logger.debug(f"Mirror {mirror.name} is already registered")
            return
        await self.queue.add(mirror.key)

    def unregister_mirror(self, name: str) -> Mirror | None:
        mirror = self.registry.unregister(name)
        if mirror is not None:
            self._update_mirror_gauge(mirror.kind)
        return mirror

    async def enqueue(self, keys: list[MirrorKey]) -> None:
        for key in keys:
            await self.queue.add(key)

    def _update_mirror_gauge(self, kind: ResourceKind) -> None:
        self.metrics.set_mirrors_registered(kind, self.registry.count(kind))

    async def shutdown(self) -> None:
        await self.queue.shutdown()
        if self.metrics_server is not None:
            await self.metrics_server.stop()
            self.metrics_server = None

