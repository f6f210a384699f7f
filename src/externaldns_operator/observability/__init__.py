"""
Observability utilities for the ExternalDNS operator.

This module provides metrics, tracing, and structured logging
capabilities for production monitoring and troubleshooting.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsCollector, MetricsServer
from .tracing import get_tracer, setup_tracing, shutdown_tracing

__all__ = [
    "MetricsCollector",
    "MetricsServer",
    "OperatorLogger",
    "get_tracer",
    "setup_structured_logging",
    "setup_tracing",
    "shutdown_tracing",
]
