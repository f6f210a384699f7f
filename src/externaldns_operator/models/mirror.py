"""
Models describing mirrored objects and the mirrors that relate them.

A mirror is one synchronization relationship: a source object in the
operator namespace, a target object in the operand namespace, and the
projection that derives the target payload from the source payload.
"""

from enum import StrEnum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

Payload: TypeAlias = dict[str, str]
"""
Key to string mapping carried by a mirrored object.

ConfigMap payloads are plain strings; Secret payloads are the base64 strings
exactly as the Kubernetes API returns them in ``data``.
"""


class ResourceKind(StrEnum):
    """Kind tag of a mirrored object, spelled as the Kubernetes plural."""

    CONFIG_MAP = "configmaps"
    SECRET = "secrets"


class EventType(StrEnum):
    """Watch notification type."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class ReconcileOutcome(StrEnum):
    """Result of one reconciliation."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


class ObjectKey(BaseModel):
    """Namespaced identity of a Kubernetes object."""

    model_config = ConfigDict(frozen=True)

    namespace: str = Field(..., description="Object namespace")
    name: str = Field(..., description="Object name")

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class MirrorKey(BaseModel):
    """Reconciliation request key: the kind and identity of a source object."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    source: ObjectKey

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.source}"


class OwnerReference(BaseModel):
    """Controller reference stamped on a target object at creation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_version: str = Field(..., alias="apiVersion")
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = Field(True, alias="blockOwnerDeletion")


class MirrorObject(BaseModel):
    """
    A ConfigMap or Secret as seen by the mirror engine.

    Only ``data`` takes part in equality checks; the remaining fields are
    carried so that an update preserves them.
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: ResourceKind
    key: ObjectKey
    data: Payload = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    resource_version: str | None = None
    secret_type: str | None = Field(
        None, description="Secret type (Opaque when created by the operator)"
    )

    # API object this was read from; updates replace it with only data changed
    _api_object: Any = PrivateAttr(default=None)

    @property
    def api_object(self) -> Any:
        return self._api_object

    def attach_api_object(self, api_object: Any) -> None:
        self._api_object = api_object


class JsonComposition(BaseModel):
    """Build one target key holding a JSON document made of source keys."""

    model_config = ConfigDict(frozen=True)

    target_key: str = Field(..., description="Target payload key for the document")
    fields: dict[str, str] = Field(
        ..., description="JSON field name -> source payload key"
    )


class Projection(BaseModel):
    """
    Rule deriving a target payload from a source payload.

    Projections are pure data so that new mirror kinds only need a new
    projection, never a change to the reconciler.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Projection identifier used in logs")
    include: tuple[str, ...] | None = Field(
        None, description="Source keys to copy (None copies every key)"
    )
    rename: dict[str, str] = Field(
        default_factory=dict, description="Source key -> target key"
    )
    compose_json: JsonComposition | None = None
    encoding: Literal["plain", "base64"] = "plain"


class Mirror(BaseModel):
    """One (source identity, target identity, projection) relationship."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Stable mirror identifier")
    kind: ResourceKind
    source: ObjectKey
    target: ObjectKey
    projection: Projection
    owner: OwnerReference | None = None

    @property
    def key(self) -> MirrorKey:
        return MirrorKey(kind=self.kind, source=self.source)


class WatchEvent(BaseModel):
    """A watch notification normalized to kind tag and identity."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    kind: ResourceKind
    key: ObjectKey
