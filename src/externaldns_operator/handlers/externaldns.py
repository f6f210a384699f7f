"""
ExternalDNS handlers - Register the credentials mirror of each ExternalDNS.

Every ExternalDNS resource that uses a credentials secret gets one mirror
copying that secret from the operator namespace into the operand namespace
as ``external-dns-credentials-<name>``. These handlers only maintain the
mirror registry; copying is done by the mirror workers.
"""

import logging
from typing import Any

import kopf
from pydantic import ValidationError

from externaldns_operator.constants import (
    EXTERNALDNS_GROUP,
    EXTERNALDNS_PLURAL,
    EXTERNALDNS_VERSION,
)
from externaldns_operator.context import OperatorContext
from externaldns_operator.errors import (
    ConfigurationError,
    PermanentError,
    TemporaryError,
)
from externaldns_operator.models.externaldns import ExternalDNSSpec
from externaldns_operator.observability.tracing import traced_handler
from externaldns_operator.services.mirror_registry import (
    build_credentials_mirror,
    credentials_mirror_name,
)

logger = logging.getLogger(__name__)


def _get_context(memo: kopf.Memo) -> OperatorContext:
    context: OperatorContext | None = getattr(memo, "context", None)
    if context is None:
        raise TemporaryError(
            "Operator context is not initialized yet", delay=5
        ).as_kopf_error()
    return context


async def sync_credentials_mirror(
    context: OperatorContext, name: str, uid: str, spec: dict[str, Any]
) -> str | None:
    """
    Register, replace or drop the credentials mirror of an ExternalDNS.

    Args:
        context: Operator context
        name: ExternalDNS name
        uid: ExternalDNS UID, used for the owner reference of the target
        spec: Raw ExternalDNS spec

    Returns:
        The mirror name, or None when the resource uses no credentials secret

    Raises:
        PermanentError: If the spec cannot be parsed
        ConfigurationError: If the target is already owned by another mirror
    """
    try:
        parsed = ExternalDNSSpec.model_validate(spec)
    except ValidationError as e:
        raise PermanentError(
            f"Invalid ExternalDNS {name} provider: {e.error_count()} validation error(s)",
            user_action="Fix spec.provider of the ExternalDNS resource",
        ) from e

    settings = context.settings
    mirror = build_credentials_mirror(
        externaldns_name=name,
        externaldns_uid=uid,
        spec=parsed,
        source_namespace=settings.operator_namespace,
        target_namespace=settings.operand_namespace,
        is_openshift=settings.is_openshift,
    )

    if mirror is None:
        if context.unregister_mirror(credentials_mirror_name(name)) is not None:
            logger.info(f"ExternalDNS {name} no longer uses a credentials secret")
        else:
            logger.debug(f"ExternalDNS {name} uses no credentials secret")
        return None

    await context.register_mirror(mirror)
    return mirror.name


@kopf.on.create(EXTERNALDNS_PLURAL, group=EXTERNALDNS_GROUP, version=EXTERNALDNS_VERSION)
@kopf.on.resume(EXTERNALDNS_PLURAL, group=EXTERNALDNS_GROUP, version=EXTERNALDNS_VERSION)
@kopf.on.update(
    EXTERNALDNS_PLURAL,
    group=EXTERNALDNS_GROUP,
    version=EXTERNALDNS_VERSION,
    field="spec.provider",
)
@traced_handler("externaldns.ensure_credentials_mirror")
async def ensure_credentials_mirror(
    spec: dict[str, Any],
    name: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Ensure the credentials mirror of an ExternalDNS resource is registered.

    Args:
        spec: ExternalDNS resource specification
        name: Name of the ExternalDNS resource (cluster scoped)
        meta: Resource metadata
        memo: Kopf memo holding the operator context
    """
    logger.info(f"Ensuring credentials mirror for ExternalDNS {name}")
    context = _get_context(memo)
    try:
        await sync_credentials_mirror(context, name, meta.get("uid", ""), spec)
    except (PermanentError, ConfigurationError) as e:
        raise e.as_kopf_error() from e


# No finalizer is set on ExternalDNS resources; deletion arrives as a raw event
@kopf.on.event(
    EXTERNALDNS_PLURAL,
    group=EXTERNALDNS_GROUP,
    version=EXTERNALDNS_VERSION,
    id="forget-deleted-externaldns",
)
async def delete_credentials_mirror(
    event: dict[str, Any], name: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """
    Drop the credentials mirror of a deleted ExternalDNS.

    The mirrored secret itself is left to garbage collection through its
    owner reference; with the mirror gone nothing re-creates it.
    """
    if event.get("type") != "DELETED":
        return
    context: OperatorContext | None = getattr(memo, "context", None)
    if context is None:
        return
    if context.unregister_mirror(credentials_mirror_name(name)) is not None:
        logger.info(f"Dropped credentials mirror of deleted ExternalDNS {name}")
