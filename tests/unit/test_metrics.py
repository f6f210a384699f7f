"""
Unit tests for MetricsCollector and the MetricsServer HTTP endpoints.

Uses ``aiohttp.test_utils`` to drive the server's aiohttp application
without binding the configured port.
"""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from externaldns_operator.errors import KubernetesAPIError
from externaldns_operator.models.mirror import ReconcileOutcome, ResourceKind
from externaldns_operator.observability.metrics import MetricsCollector, MetricsServer


@pytest.fixture
def collector():
    return MetricsCollector()


def sample(collector, name, labels=None):
    return collector.registry.get_sample_value(name, labels or {})


class TestMetricsCollector:
    """Collector methods update the right series."""

    def test_collectors_do_not_share_registries(self):
        first = MetricsCollector()
        second = MetricsCollector()
        first.record_retry()
        assert sample(first, "externaldns_operator_mirror_queue_retries_total") == 1.0
        assert sample(second, "externaldns_operator_mirror_queue_retries_total") == 0.0

    def test_record_reconciliation(self, collector):
        collector.record_reconciliation(
            ResourceKind.SECRET,
            {
                "credentials/a": ReconcileOutcome.CREATED,
                "credentials/b": ReconcileOutcome.UNCHANGED,
            },
            0.2,
        )

        assert (
            sample(
                collector,
                "externaldns_operator_mirror_reconciliations_total",
                {"mirror": "credentials/b", "kind": "secrets", "outcome": "unchanged"},
            )
            == 1.0
        )
        assert (
            sample(
                collector,
                "externaldns_operator_mirror_reconciliation_duration_seconds_count",
                {"kind": "secrets"},
            )
            == 1.0
        )

    def test_record_reconciliation_error(self, collector):
        collector.record_reconciliation_error(
            ResourceKind.CONFIG_MAP, KubernetesAPIError("x", status=500), 0.1
        )
        collector.record_reconciliation_error(
            ResourceKind.CONFIG_MAP, ValueError("plain"), 0.1
        )

        assert (
            sample(
                collector,
                "externaldns_operator_mirror_reconciliation_errors_total",
                {
                    "kind": "configmaps",
                    "error_type": "KubernetesAPIError",
                    "retryable": "true",
                },
            )
            == 1.0
        )
        assert (
            sample(
                collector,
                "externaldns_operator_mirror_reconciliation_errors_total",
                {"kind": "configmaps", "error_type": "ValueError", "retryable": "true"},
            )
            == 1.0
        )

    def test_gauges(self, collector):
        collector.set_queue_depth(3)
        collector.set_mirrors_registered(ResourceKind.SECRET, 2)

        assert sample(collector, "externaldns_operator_mirror_queue_depth") == 3.0
        assert (
            sample(
                collector,
                "externaldns_operator_mirrors_registered",
                {"kind": "secrets"},
            )
            == 2.0
        )

    def test_export(self, collector):
        collector.record_retry()
        assert b"externaldns_operator_mirror_queue_retries_total" in collector.export()


@pytest.fixture
def readiness():
    return {"ready": False}


@pytest.fixture
def metrics_server(collector, readiness):
    return MetricsServer(collector, port=0, readiness=lambda: readiness["ready"])


@pytest.fixture
async def client(metrics_server):
    server = TestServer(metrics_server.app)
    async with TestClient(server) as cli:
        yield cli


class TestMetricsServer:
    """HTTP endpoints."""

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client, collector):
        collector.set_queue_depth(5)

        resp = await client.get("/metrics")

        assert resp.status == 200
        body = await resp.text()
        assert "externaldns_operator_mirror_queue_depth 5.0" in body

    @pytest.mark.asyncio
    async def test_healthz(self, client):
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.text() == "ok"

    @pytest.mark.asyncio
    async def test_ready_follows_readiness(self, client, readiness):
        resp = await client.get("/ready")
        assert resp.status == 503
        assert (await resp.json())["status"] == "not_ready"

        readiness["ready"] = True
        resp = await client.get("/ready")
        assert resp.status == 200
        assert (await resp.json())["status"] == "ready"

    @pytest.mark.asyncio
    async def test_stop_without_start(self, metrics_server):
        await metrics_server.stop()
        assert metrics_server.runner is None
