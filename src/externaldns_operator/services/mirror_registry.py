"""
Cross-namespace mirror registry and event routing.

The registry is the table of configured mirrors. It answers the two watch
predicates (is this object a mirror source? is it a mirror target?) and maps
either side back to the canonical reconciliation key, the identity of the
source object. The target-to-source mapping is an index built when a mirror
is registered, so routing never needs an API lookup.
"""

import logging
import threading
from collections import defaultdict

from externaldns_operator.constants import (
    CREDENTIALS_MIRROR_PREFIX,
    CREDENTIALS_SECRET_INFIX,
    EXTERNALDNS_BASE_NAME,
    EXTERNALDNS_GROUP,
    EXTERNALDNS_KIND,
    EXTERNALDNS_VERSION,
    TRUSTED_CA_CONFIGMAP_SUFFIX,
    TRUSTED_CA_MIRROR_NAME,
)
from externaldns_operator.errors import ConfigurationError
from externaldns_operator.models.externaldns import ExternalDNSSpec
from externaldns_operator.models.mirror import (
    Mirror,
    MirrorKey,
    ObjectKey,
    OwnerReference,
    ResourceKind,
    WatchEvent,
)
from externaldns_operator.services.derivation import IDENTITY, projection_for_provider

logger = logging.getLogger(__name__)


class MirrorRegistry:
    """
    Table of mirrors between one source and one target namespace.

    Mirrors are immutable; changing one means registering a new definition
    under the same name, which replaces the previous one. Reads happen from
    worker threads while handlers register mirrors on the event loop, so all
    access goes through a lock.
    """

    def __init__(self, source_namespace: str, target_namespace: str):
        self.source_namespace = source_namespace
        self.target_namespace = target_namespace
        self._lock = threading.RLock()
        self._by_name: dict[str, Mirror] = {}
        self._by_source: dict[MirrorKey, dict[str, Mirror]] = defaultdict(dict)
        self._by_target: dict[tuple[ResourceKind, ObjectKey], Mirror] = {}

    def register(self, mirror: Mirror) -> bool:
        """
        Register a mirror, replacing any previous definition with its name.

        Args:
            mirror: Mirror definition

        Returns:
            True if the registry changed, False if the identical mirror was
            already registered

        Raises:
            ConfigurationError: If the mirror crosses the wrong namespaces or
                its target is already owned by another mirror
        """
        if mirror.source.namespace != self.source_namespace:
            raise ConfigurationError(
                f"Mirror {mirror.name} source {mirror.source} is outside "
                f"namespace {self.source_namespace}"
            )
        if mirror.target.namespace != self.target_namespace:
            raise ConfigurationError(
                f"Mirror {mirror.name} target {mirror.target} is outside "
                f"namespace {self.target_namespace}"
            )
        if mirror.source == mirror.target:
            raise ConfigurationError(
                f"Mirror {mirror.name} uses {mirror.source} as both source and target"
            )

        with self._lock:
            existing = self._by_name.get(mirror.name)
            if existing == mirror:
                return False

            owner = self._by_target.get((mirror.kind, mirror.target))
            if owner is not None and owner.name != mirror.name:
                raise ConfigurationError(
                    f"{mirror.kind.value} {mirror.target} is already the target "
                    f"of mirror {owner.name}"
                )

            if existing is not None:
                self._drop(existing)
            self._by_name[mirror.name] = mirror
            self._by_source[mirror.key][mirror.name] = mirror
            self._by_target[(mirror.kind, mirror.target)] = mirror

        logger.info(
            f"Registered mirror {mirror.name}: {mirror.kind.value} "
            f"{mirror.source} -> {mirror.target} (projection {mirror.projection.name})"
        )
        return True

    def unregister(self, name: str) -> Mirror | None:
        """
        Remove a mirror. The target object itself is left in place.

        Returns:
            The removed mirror, or None if no mirror had that name
        """
        with self._lock:
            mirror = self._by_name.pop(name, None)
            if mirror is None:
                return None
            self._drop(mirror)

        logger.info(f"Unregistered mirror {name}; target {mirror.target} is kept")
        return mirror

    def _drop(self, mirror: Mirror) -> None:
        mirrors = self._by_source.get(mirror.key)
        if mirrors is not None:
            mirrors.pop(mirror.name, None)
            if not mirrors:
                del self._by_source[mirror.key]
        if self._by_target.get((mirror.kind, mirror.target)) is mirror:
            del self._by_target[(mirror.kind, mirror.target)]

    def get(self, name: str) -> Mirror | None:
        with self._lock:
            return self._by_name.get(name)

    def mirrors_for(self, key: MirrorKey) -> list[Mirror]:
        """Mirrors fed by a source object, ordered by mirror name."""
        with self._lock:
            mirrors = self._by_source.get(key, {})
            return [mirrors[name] for name in sorted(mirrors)]

    def mirrors(self) -> list[Mirror]:
        with self._lock:
            return [self._by_name[name] for name in sorted(self._by_name)]

    def count(self, kind: ResourceKind) -> int:
        with self._lock:
            return sum(1 for m in self._by_name.values() if m.kind == kind)

    def route_source(self, kind: ResourceKind, key: ObjectKey) -> list[MirrorKey]:
        """Route a source-side object to its own identity, if it is a mirror source."""
        if key.namespace != self.source_namespace:
            return []
        mirror_key = MirrorKey(kind=kind, source=key)
        with self._lock:
            if mirror_key in self._by_source:
                return [mirror_key]
        return []

    def route_target(self, kind: ResourceKind, key: ObjectKey) -> list[MirrorKey]:
        """Route a target-side object back to the identity of its source."""
        if key.namespace != self.target_namespace:
            return []
        with self._lock:
            mirror = self._by_target.get((kind, key))
        if mirror is None:
            return []
        return [mirror.key]

    def route(self, event: WatchEvent) -> list[MirrorKey]:
        """
        Map a watch event onto reconciliation keys.

        Objects matching neither the source nor the target predicates yield
        no key at all.
        """
        keys = self.route_source(event.kind, event.key)
        for key in self.route_target(event.kind, event.key):
            if key not in keys:
                keys.append(key)
        return keys


def trusted_ca_target_name() -> str:
    return f"{EXTERNALDNS_BASE_NAME}{TRUSTED_CA_CONFIGMAP_SUFFIX}"


def credentials_target_name(externaldns_name: str) -> str:
    return f"{EXTERNALDNS_BASE_NAME}{CREDENTIALS_SECRET_INFIX}{externaldns_name}"


def credentials_mirror_name(externaldns_name: str) -> str:
    return f"{CREDENTIALS_MIRROR_PREFIX}{externaldns_name}"


def build_trusted_ca_mirror(
    configmap_name: str, source_namespace: str, target_namespace: str
) -> Mirror:
    """Mirror of the trusted CA config map into the operand namespace."""
    return Mirror(
        name=TRUSTED_CA_MIRROR_NAME,
        kind=ResourceKind.CONFIG_MAP,
        source=ObjectKey(namespace=source_namespace, name=configmap_name),
        target=ObjectKey(namespace=target_namespace, name=trusted_ca_target_name()),
        projection=IDENTITY,
    )


def build_credentials_mirror(
    externaldns_name: str,
    externaldns_uid: str,
    spec: ExternalDNSSpec,
    source_namespace: str,
    target_namespace: str,
    is_openshift: bool = False,
) -> Mirror | None:
    """
    Mirror of the credentials secret used by one ExternalDNS resource.

    The target is owned by the ExternalDNS resource so that it is garbage
    collected with it.

    Returns:
        The mirror, or None when the resource needs no credentials secret
    """
    secret_name, from_cloud_credentials = spec.credentials_source(is_openshift)
    if not secret_name:
        return None

    return Mirror(
        name=credentials_mirror_name(externaldns_name),
        kind=ResourceKind.SECRET,
        source=ObjectKey(namespace=source_namespace, name=secret_name),
        target=ObjectKey(
            namespace=target_namespace,
            name=credentials_target_name(externaldns_name),
        ),
        projection=projection_for_provider(spec.provider.type, from_cloud_credentials),
        owner=OwnerReference(
            api_version=f"{EXTERNALDNS_GROUP}/{EXTERNALDNS_VERSION}",
            kind=EXTERNALDNS_KIND,
            name=externaldns_name,
            uid=externaldns_uid,
        ),
    )
