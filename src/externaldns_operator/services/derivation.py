"""
Desired-state derivation for mirrored objects.

Every function here is pure: the desired target is computed from the source
object and a projection only, with no I/O. Output is deterministic: payload
keys are sorted and composed JSON documents are serialized canonically, so
the same input yields byte-identical output across calls and restarts.
"""

import base64
import binascii
import json

from externaldns_operator.constants import (
    AZURE_TARGET_CREDENTIALS_KEY,
    GCP_SOURCE_CREDENTIALS_KEY,
    GCP_TARGET_CREDENTIALS_KEY,
)
from externaldns_operator.errors import DerivationError
from externaldns_operator.models.externaldns import ProviderType
from externaldns_operator.models.mirror import (
    JsonComposition,
    MirrorObject,
    ObjectKey,
    Payload,
    Projection,
    ResourceKind,
)

IDENTITY = Projection(name="identity")
IDENTITY_SECRET = Projection(name="identity", encoding="base64")

GCP_CLOUD_CREDENTIALS = Projection(
    name="gcp-cloud-credentials",
    include=(GCP_SOURCE_CREDENTIALS_KEY,),
    rename={GCP_SOURCE_CREDENTIALS_KEY: GCP_TARGET_CREDENTIALS_KEY},
    encoding="base64",
)

AZURE_CLOUD_CREDENTIALS = Projection(
    name="azure-cloud-credentials",
    compose_json=JsonComposition(
        target_key=AZURE_TARGET_CREDENTIALS_KEY,
        fields={
            "aadClientId": "azure_client_id",
            "aadClientSecret": "azure_client_secret",
            "resourceGroup": "azure_resourcegroup",
            "subscriptionId": "azure_subscription_id",
            "tenantId": "azure_tenant_id",
        },
    ),
    encoding="base64",
)

# Secrets issued by the cloud credentials operator use its own key names;
# providers missing here are copied verbatim.
CLOUD_CREDENTIALS_PROJECTIONS: dict[ProviderType, Projection] = {
    ProviderType.GCP: GCP_CLOUD_CREDENTIALS,
    ProviderType.AZURE: AZURE_CLOUD_CREDENTIALS,
}


def projection_for_provider(
    provider: ProviderType, from_cloud_credentials: bool
) -> Projection:
    """
    Select the projection for a credentials secret.

    Args:
        provider: DNS provider of the ExternalDNS resource
        from_cloud_credentials: Whether the source secret was issued by the
            cloud credentials operator rather than named in the resource

    Returns:
        Projection to derive the operand credentials secret with
    """
    if from_cloud_credentials:
        return CLOUD_CREDENTIALS_PROJECTIONS.get(provider, IDENTITY_SECRET)
    return IDENTITY_SECRET


# Composed documents match Go encoding/json output: raw UTF-8 with
# HTML-sensitive characters and line separators escaped
_HTML_SAFE_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


def _decode(value: str, encoding: str, key: str) -> str:
    if encoding == "plain":
        return value
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise DerivationError(f"value of key '{key}' is not base64 encoded UTF-8") from e


def _encode(value: str, encoding: str) -> str:
    if encoding == "plain":
        return value
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _compose(data: Payload, composition: JsonComposition, encoding: str) -> Payload:
    document = {}
    for field, source_key in composition.fields.items():
        if source_key not in data:
            raise DerivationError(f"missing key '{source_key}'")
        document[field] = _decode(data[source_key], encoding, source_key)

    serialized = json.dumps(
        document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).translate(_HTML_SAFE_ESCAPES)
    return {composition.target_key: _encode(serialized, encoding)}


def project_payload(data: Payload, projection: Projection) -> Payload:
    """
    Apply a projection to a source payload.

    Args:
        data: Source payload
        projection: Projection rule

    Returns:
        New payload with keys in sorted order

    Raises:
        DerivationError: If the payload lacks a key the projection requires
            or holds a value the projection cannot decode
    """
    if projection.compose_json is not None:
        result = _compose(data, projection.compose_json, projection.encoding)
    else:
        if projection.include is None:
            keys = list(data)
        else:
            missing = [k for k in projection.include if k not in data]
            if missing:
                raise DerivationError(f"missing key(s) {', '.join(sorted(missing))}")
            keys = list(projection.include)
        result = {projection.rename.get(k, k): data[k] for k in keys}

    return dict(sorted(result.items()))


def derive(
    source: MirrorObject, target: ObjectKey, projection: Projection
) -> MirrorObject:
    """
    Compute the desired target object for a source object.

    Only the payload and identity are derived. Metadata such as labels and
    owner references is the reconciler's concern and never part of equality.

    Args:
        source: Current source object
        target: Identity of the target object
        projection: Projection rule of the mirror

    Returns:
        Desired target object

    Raises:
        DerivationError: If the source payload is malformed for the projection
    """
    try:
        data = project_payload(source.data, projection)
    except DerivationError as e:
        raise DerivationError(str(e.args[0]), source=str(source.key)) from e

    return MirrorObject(
        kind=source.kind,
        key=target,
        data=data,
        secret_type=(source.secret_type or "Opaque")
        if source.kind == ResourceKind.SECRET
        else None,
    )
