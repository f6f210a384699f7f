"""
Service layer for the ExternalDNS operator.

This module provides the mirror engine: desired-state derivation, the object
store, the mirror registry, the reconciler and the work queue, separated
from the kopf handler layer.
"""

from .mirror_reconciler import MirrorReconciler
from .mirror_registry import MirrorRegistry
from .object_store import KubernetesObjectStore, ObjectStore
from .work_queue import WorkQueue

__all__ = [
    "KubernetesObjectStore",
    "MirrorReconciler",
    "MirrorRegistry",
    "ObjectStore",
    "WorkQueue",
]
