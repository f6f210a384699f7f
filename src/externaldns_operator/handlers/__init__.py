"""
Handlers package - Contains all Kopf event handlers of the operator.

This package organizes handlers by resource type:
- mirror.py: ConfigMap and Secret watches feeding the mirror work queue
- externaldns.py: credentials mirror registration per ExternalDNS resource
"""
