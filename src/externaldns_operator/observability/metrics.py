"""
Prometheus metrics for the ExternalDNS operator.

Each ``MetricsCollector`` owns its own ``CollectorRegistry`` so that several
collectors (one per test, for instance) never clash over metric names.
"""

import logging
import time
from collections.abc import Callable, Mapping

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from externaldns_operator.models.mirror import ReconcileOutcome, ResourceKind

logger = logging.getLogger(__name__)

METRIC_PREFIX = "externaldns_operator"


class MetricsCollector:
    """Collects mirror reconciliation and queue metrics."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.reconciliations = Counter(
            f"{METRIC_PREFIX}_mirror_reconciliations_total",
            "Total number of mirror reconciliations by outcome",
            ["mirror", "kind", "outcome"],
            registry=self.registry,
        )
        self.reconciliation_errors = Counter(
            f"{METRIC_PREFIX}_mirror_reconciliation_errors_total",
            "Total number of failed mirror reconciliations",
            ["kind", "error_type", "retryable"],
            registry=self.registry,
        )
        self.reconciliation_duration = Histogram(
            f"{METRIC_PREFIX}_mirror_reconciliation_duration_seconds",
            "Time spent reconciling one source key",
            ["kind"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )
        self.queue_depth = Gauge(
            f"{METRIC_PREFIX}_mirror_queue_depth",
            "Number of keys waiting in the reconciliation queue",
            registry=self.registry,
        )
        self.queue_retries = Counter(
            f"{METRIC_PREFIX}_mirror_queue_retries_total",
            "Total number of keys re-queued with backoff after a failure",
            registry=self.registry,
        )
        self.mirrors_registered = Gauge(
            f"{METRIC_PREFIX}_mirrors_registered",
            "Number of registered mirrors",
            ["kind"],
            registry=self.registry,
        )

    def record_reconciliation(
        self,
        kind: ResourceKind,
        outcomes: Mapping[str, ReconcileOutcome],
        duration: float,
    ) -> None:
        self.reconciliation_duration.labels(kind=kind.value).observe(duration)
        self.record_outcomes(kind, outcomes)

    def record_outcomes(
        self, kind: ResourceKind, outcomes: Mapping[str, ReconcileOutcome]
    ) -> None:
        """Count per-mirror outcomes without observing a duration."""
        for mirror, outcome in outcomes.items():
            self.reconciliations.labels(
                mirror=mirror, kind=kind.value, outcome=outcome.value
            ).inc()

    def record_reconciliation_error(
        self, kind: ResourceKind, error: Exception, duration: float
    ) -> None:
        self.reconciliation_duration.labels(kind=kind.value).observe(duration)
        self.reconciliation_errors.labels(
            kind=kind.value,
            error_type=type(error).__name__,
            retryable=str(getattr(error, "retryable", True)).lower(),
        ).inc()

    def set_queue_depth(self, depth: int) -> None:
        self.queue_depth.set(depth)

    def record_retry(self) -> None:
        self.queue_retries.inc()

    def set_mirrors_registered(self, kind: ResourceKind, count: int) -> None:
        self.mirrors_registered.labels(kind=kind.value).set(count)

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


class MetricsServer:
    """HTTP server exposing metrics and health endpoints."""

    def __init__(
        self,
        collector: MetricsCollector,
        port: int = 8081,
        host: str = "0.0.0.0",
        readiness: Callable[[], bool] | None = None,
    ):
        """
        Initialize the metrics server.

        Args:
            collector: Collector whose registry is served on /metrics
            port: Port to serve on
            host: Host to bind to
            readiness: Callable reporting whether the operator is ready
        """
        self.collector = collector
        self.port = port
        self.host = host
        self.readiness = readiness
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)
        self.app.router.add_get("/ready", self._ready_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            return Response(
                body=self.collector.export(), content_type=CONTENT_TYPE_LATEST
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        # 200 as long as the event loop serves requests
        return Response(text="ok")

    async def _ready_handler(self, request: Request) -> Response:
        """Handle /ready endpoint for readiness probes."""
        ready = self.readiness() if self.readiness else True
        return json_response(
            {"status": "ready" if ready else "not_ready", "timestamp": time.time()},
            status=200 if ready else 503,
        )

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Metrics server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
