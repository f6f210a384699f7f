"""
ExternalDNS Operator - A Kopf-based Kubernetes operator for ExternalDNS.

This package contains the mirror reconciliation engine of the operator:
- Trusted CA bundle mirroring from the operator namespace to the operand namespace
- Provider credentials secret mirroring per ExternalDNS resource
- Event routing that maps operand-side changes back to their source objects
"""

__version__ = "0.1.0"
