"""
Error handling module for the ExternalDNS operator.

This module provides an error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    ConfigurationError,
    DerivationError,
    ExternalServiceError,
    KubernetesAPIError,
    OperatorError,
    PermanentError,
    TemporaryError,
)

__all__ = [
    "OperatorError",
    "TemporaryError",
    "PermanentError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "DerivationError",
    "ConfigurationError",
]
