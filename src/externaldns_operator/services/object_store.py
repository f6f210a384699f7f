"""
Object store access for mirrored ConfigMaps and Secrets.

The reconciler only needs three capabilities: get, create and update, keyed
by kind and namespaced identity. ``ObjectStore`` names that contract and
``KubernetesObjectStore`` implements it on top of the Kubernetes CoreV1 API.
Calls are synchronous; callers run them off the event loop.
"""

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException

from externaldns_operator.errors import KubernetesAPIError
from externaldns_operator.models.mirror import (
    MirrorObject,
    ObjectKey,
    OwnerReference,
    ResourceKind,
)

logger = logging.getLogger(__name__)

# Statuses worth another attempt: conflicts, throttling and server errors
RETRYABLE_STATUSES = frozenset({409, 429})


class ObjectStore(Protocol):
    """Get/Create/Update capability set consumed by the reconciler."""

    def get(self, kind: ResourceKind, key: ObjectKey) -> MirrorObject | None: ...

    def create(self, obj: MirrorObject) -> None: ...

    def update(self, obj: MirrorObject) -> None: ...


@dataclass(frozen=True)
class _KindOperations:
    """CoreV1Api method names and model class for one mirrored kind."""

    read: str
    create: str
    replace: str
    model: Callable[..., Any]


_KIND_OPERATIONS: dict[ResourceKind, _KindOperations] = {
    ResourceKind.CONFIG_MAP: _KindOperations(
        read="read_namespaced_config_map",
        create="create_namespaced_config_map",
        replace="replace_namespaced_config_map",
        model=client.V1ConfigMap,
    ),
    ResourceKind.SECRET: _KindOperations(
        read="read_namespaced_secret",
        create="create_namespaced_secret",
        replace="replace_namespaced_secret",
        model=client.V1Secret,
    ),
}


def _is_retryable(e: ApiException) -> bool:
    status = getattr(e, "status", None)
    return status is None or status >= 500 or status in RETRYABLE_STATUSES


def _api_error(action: str, kind: ResourceKind, key: ObjectKey, e: ApiException):
    return KubernetesAPIError(
        f"Failed to {action} {kind.value} {key}: {e.reason}",
        reason=getattr(e, "reason", None),
        status=getattr(e, "status", None),
        retryable=_is_retryable(e),
        cause=e,
    )


def to_mirror_object(kind: ResourceKind, api_object: Any) -> MirrorObject:
    """Convert a V1ConfigMap or V1Secret into a MirrorObject."""
    meta = api_object.metadata
    owners = [
        OwnerReference(
            api_version=ref.api_version,
            kind=ref.kind,
            name=ref.name,
            uid=ref.uid,
            controller=bool(ref.controller),
            block_owner_deletion=bool(ref.block_owner_deletion),
        )
        for ref in (meta.owner_references or [])
    ]
    obj = MirrorObject(
        kind=kind,
        key=ObjectKey(namespace=meta.namespace, name=meta.name),
        data=dict(api_object.data or {}),
        labels=dict(meta.labels or {}),
        annotations=dict(meta.annotations or {}),
        owner_references=owners,
        resource_version=meta.resource_version,
        secret_type=getattr(api_object, "type", None)
        if kind == ResourceKind.SECRET
        else None,
    )
    obj.attach_api_object(api_object)
    return obj


def to_api_object(obj: MirrorObject) -> Any:
    """Build a V1ConfigMap or V1Secret body for a MirrorObject."""
    metadata = client.V1ObjectMeta(
        name=obj.key.name,
        namespace=obj.key.namespace,
        labels=obj.labels or None,
        annotations=obj.annotations or None,
        resource_version=obj.resource_version,
        owner_references=[
            client.V1OwnerReference(
                api_version=ref.api_version,
                kind=ref.kind,
                name=ref.name,
                uid=ref.uid,
                controller=ref.controller,
                block_owner_deletion=ref.block_owner_deletion,
            )
            for ref in obj.owner_references
        ]
        or None,
    )
    model = _KIND_OPERATIONS[obj.kind].model
    if obj.kind == ResourceKind.SECRET:
        return model(metadata=metadata, data=obj.data, type=obj.secret_type)
    return model(metadata=metadata, data=obj.data)


class KubernetesObjectStore:
    """ObjectStore backed by the Kubernetes CoreV1 API."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize the store.

        Args:
            k8s_client: Optional Kubernetes API client
        """
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    def get(self, kind: ResourceKind, key: ObjectKey) -> MirrorObject | None:
        """
        Read an object.

        Returns:
            The object, or None if it does not exist

        Raises:
            KubernetesAPIError: If the read fails for reasons other than 404
        """
        read = getattr(self.v1, _KIND_OPERATIONS[kind].read)
        try:
            api_object = read(name=key.name, namespace=key.namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error("read", kind, key, e) from e
        return to_mirror_object(kind, api_object)

    def create(self, obj: MirrorObject) -> None:
        """
        Create an object.

        Raises:
            KubernetesAPIError: If creation fails, including when the object
                already exists (a stale read; the next cycle updates it)
        """
        create = getattr(self.v1, _KIND_OPERATIONS[obj.kind].create)
        body = to_api_object(obj)
        body.metadata.resource_version = None
        try:
            create(namespace=obj.key.namespace, body=body)
        except ApiException as e:
            raise _api_error("create", obj.kind, obj.key, e) from e
        logger.debug(f"Created {obj.kind.value} {obj.key}")

    def update(self, obj: MirrorObject) -> None:
        """
        Replace an object, guarded by its resource version.

        When the object was read from this store the original API object is
        replaced with only ``data`` changed, so fields the mirror engine does
        not model (finalizers, binaryData, immutable, ...) survive.

        Raises:
            KubernetesAPIError: If the update fails (409 on a concurrent write)
        """
        operations = _KIND_OPERATIONS[obj.kind]
        replace = getattr(self.v1, operations.replace)

        api_object = obj.api_object
        if api_object is not None:
            body = copy.deepcopy(api_object)
            body.data = obj.data
        else:
            body = to_api_object(obj)

        try:
            replace(name=obj.key.name, namespace=obj.key.namespace, body=body)
        except ApiException as e:
            raise _api_error("update", obj.kind, obj.key, e) from e
        logger.debug(
            f"Replaced {obj.kind.value} {obj.key} at resource version "
            f"{body.metadata.resource_version}"
        )
