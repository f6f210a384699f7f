"""Tests for mirror models."""

import pytest
from kubernetes import client
from pydantic import ValidationError

from externaldns_operator.models.mirror import (
    Mirror,
    MirrorKey,
    MirrorObject,
    ObjectKey,
    OwnerReference,
    Projection,
    ResourceKind,
)


class TestObjectKey:
    def test_str(self):
        assert str(ObjectKey(namespace="ns", name="obj")) == "ns/obj"

    def test_hashable_and_frozen(self):
        key = ObjectKey(namespace="ns", name="obj")
        assert {key: 1}[ObjectKey(namespace="ns", name="obj")] == 1
        with pytest.raises(ValidationError):
            key.name = "other"


class TestMirrorKey:
    def test_str(self):
        key = MirrorKey(
            kind=ResourceKind.SECRET, source=ObjectKey(namespace="ns", name="s")
        )
        assert str(key) == "secrets/ns/s"

    def test_kind_distinguishes_keys(self):
        source = ObjectKey(namespace="ns", name="same")
        assert MirrorKey(kind=ResourceKind.SECRET, source=source) != MirrorKey(
            kind=ResourceKind.CONFIG_MAP, source=source
        )


class TestOwnerReference:
    def test_aliases(self):
        ref = OwnerReference.model_validate(
            {
                "apiVersion": "externaldns.olm.openshift.io/v1beta1",
                "kind": "ExternalDNS",
                "name": "sample",
                "uid": "uid-1",
                "blockOwnerDeletion": False,
            }
        )
        assert ref.api_version == "externaldns.olm.openshift.io/v1beta1"
        assert ref.controller is True
        assert ref.block_owner_deletion is False


class TestMirrorObject:
    def test_api_object_survives_copy(self):
        raw = client.V1ConfigMap(metadata=client.V1ObjectMeta(name="x"))
        obj = MirrorObject(
            kind=ResourceKind.CONFIG_MAP, key=ObjectKey(namespace="ns", name="x")
        )
        obj.attach_api_object(raw)

        copied = obj.model_copy(update={"data": {"k": "v"}})

        assert copied.api_object is raw
        assert copied.data == {"k": "v"}
        assert obj.data == {}

    def test_api_object_does_not_affect_equality(self):
        key = ObjectKey(namespace="ns", name="x")
        first = MirrorObject(kind=ResourceKind.CONFIG_MAP, key=key, data={"a": "1"})
        second = MirrorObject(kind=ResourceKind.CONFIG_MAP, key=key, data={"a": "1"})
        second.attach_api_object(object())
        assert first.data == second.data


class TestMirror:
    def test_key_is_source_identity(self):
        mirror = Mirror(
            name="m",
            kind=ResourceKind.CONFIG_MAP,
            source=ObjectKey(namespace="a", name="src"),
            target=ObjectKey(namespace="b", name="dst"),
            projection=Projection(name="identity"),
        )
        assert mirror.key == MirrorKey(
            kind=ResourceKind.CONFIG_MAP, source=ObjectKey(namespace="a", name="src")
        )

    def test_projection_encoding_is_validated(self):
        with pytest.raises(ValidationError):
            Projection(name="bad", encoding="hex")
