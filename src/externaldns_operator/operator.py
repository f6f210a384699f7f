#!/usr/bin/env python3
"""
ExternalDNS Operator - Main entry point for the Kopf-based mirror engine.

The operator keeps copies of objects from its own namespace in the operand
namespace where ExternalDNS runs:
- the trusted CA config map, when configured
- the credentials secret of every ExternalDNS resource

Usage:
    python -m externaldns_operator.operator
    # Or through the console script:
    externaldns-operator

Environment Variables:
    OPERATOR_NAMESPACE: Namespace holding the source objects
    OPERAND_NAMESPACE: Namespace receiving the mirrored objects
    TRUSTED_CA_CONFIGMAP_NAME: Config map to mirror as the trusted CA bundle
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import logging
import sys
from typing import Any

import kopf
from kubernetes import config

from externaldns_operator.context import OperatorContext
# Importing handler modules registers their decorators
from externaldns_operator.handlers import externaldns, mirror  # noqa: F401
from externaldns_operator.observability.logging import setup_structured_logging
from externaldns_operator.observability.metrics import MetricsServer
from externaldns_operator.observability.tracing import setup_tracing, shutdown_tracing
from externaldns_operator.services.mirror_registry import build_trusted_ca_mirror
from externaldns_operator.services.object_store import KubernetesObjectStore
from externaldns_operator.settings import Settings

OPERATOR_NAME = "externaldns-operator"


def configure_logging(operator_settings: Settings) -> None:
    """Configure structured logging for the operator."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


def load_kubernetes_config() -> None:
    try:
        config.load_incluster_config()
        logging.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logging.info("Loaded kubeconfig configuration")
        except config.ConfigException:
            logging.error("Failed to load Kubernetes configuration")
            raise


async def build_context(operator_settings: Settings) -> OperatorContext:
    """
    Build the operator context and register the static mirrors.

    Args:
        operator_settings: Validated operator settings

    Returns:
        Context with an empty queue and no running workers
    """
    context = OperatorContext(operator_settings, KubernetesObjectStore())

    if operator_settings.trusted_ca_enabled:
        await context.register_mirror(
            build_trusted_ca_mirror(
                configmap_name=operator_settings.trusted_ca_configmap_name,
                source_namespace=operator_settings.operator_namespace,
                target_namespace=operator_settings.operand_namespace,
            )
        )
    else:
        logging.info("Trusted CA config map is not configured, not mirroring it")

    return context


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Builds the operator context, starts the mirror workers and the metrics
    server, and stores the context in the memo for the handlers.
    """
    operator_settings: Settings = memo.operator_settings
    logging.info("Starting ExternalDNS Operator...")

    settings.watching.reconnect_backoff = 1.0
    settings.peering.standalone = True

    logging.info(
        f"Mirroring from namespace {operator_settings.operator_namespace} "
        f"to namespace {operator_settings.operand_namespace} "
        f"(platform {operator_settings.platform})"
    )

    load_kubernetes_config()

    context = await build_context(operator_settings)
    context.tracer_provider = setup_tracing(
        enabled=operator_settings.tracing_enabled,
        endpoint=operator_settings.tracing_endpoint,
        service_name=OPERATOR_NAME,
        sample_rate=operator_settings.tracing_sample_rate,
    )
    context.start_workers()

    metrics_server = MetricsServer(
        context.metrics,
        port=operator_settings.metrics_port,
        host=operator_settings.metrics_host,
        readiness=lambda: context.ready,
    )
    try:
        await metrics_server.start()
        context.metrics_server = metrics_server
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")

    memo.context = context


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the workers, the metrics server and the tracer provider."""
    logging.info("Shutting down ExternalDNS Operator...")
    context: OperatorContext | None = getattr(memo, "context", None)
    if context is None:
        return
    await context.shutdown()
    shutdown_tracing(context.tracer_provider)


@kopf.on.probe(id="mirrors")
async def mirrors_probe(memo: kopf.Memo, **_) -> dict[str, Any]:
    """Report registered mirrors and queue state on the liveness endpoint."""
    context: OperatorContext | None = getattr(memo, "context", None)
    if context is None:
        return {"status": "starting", "operator": OPERATOR_NAME}
    return {
        "status": "ready" if context.ready else "not_ready",
        "operator": OPERATOR_NAME,
        "mirrors": [m.name for m in context.registry.mirrors()],
        "queue_depth": len(context.queue),
    }


def main() -> None:
    """
    Main entry point for the operator.

    Loads settings, configures logging and runs kopf restricted to the
    operator and operand namespaces. ExternalDNS resources are cluster
    scoped and are watched regardless.
    """
    operator_settings = Settings()
    configure_logging(operator_settings)

    namespaces = sorted(
        {operator_settings.operator_namespace, operator_settings.operand_namespace}
    )

    try:
        kopf.run(
            namespaces=namespaces,
            liveness_endpoint="http://0.0.0.0:8080/healthz",
            memo=kopf.Memo(operator_settings=operator_settings),
        )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
