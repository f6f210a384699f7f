"""
Watch handlers for mirrored ConfigMaps and Secrets.

Every watch event is normalized to a ``WatchEvent`` and routed through the
mirror registry: source-side objects route to themselves, target-side
objects route back to their source. Resulting keys go onto the work queue;
these handlers never read or write objects themselves.
"""

import logging
from typing import Any

import kopf

from externaldns_operator.context import OperatorContext
from externaldns_operator.models.mirror import (
    EventType,
    ObjectKey,
    ResourceKind,
    WatchEvent,
)

logger = logging.getLogger(__name__)

# Kopf reports objects found by the initial listing with no event type
_EVENT_TYPES: dict[str | None, EventType] = {
    None: EventType.ADDED,
    "ADDED": EventType.ADDED,
    "MODIFIED": EventType.MODIFIED,
    "DELETED": EventType.DELETED,
}


def to_watch_event(
    kind: ResourceKind, event: dict[str, Any], name: str, namespace: str
) -> WatchEvent | None:
    """Translate a raw kopf event; unknown event types yield None."""
    event_type = _EVENT_TYPES.get(event.get("type"))
    if event_type is None:
        return None
    return WatchEvent(
        type=event_type,
        kind=kind,
        key=ObjectKey(namespace=namespace, name=name),
    )


async def route_event(context: OperatorContext, event: WatchEvent) -> int:
    """
    Queue the reconciliation keys a watch event maps to.

    Returns:
        Number of keys queued
    """
    keys = context.registry.route(event)
    if not keys:
        return 0
    logger.debug(
        f"{event.type.value} {event.kind.value} {event.key} -> "
        f"{', '.join(str(key) for key in keys)}"
    )
    await context.enqueue(keys)
    return len(keys)


def _make_event_handler(kind: ResourceKind):
    async def handler(
        event: dict[str, Any],
        name: str,
        namespace: str,
        memo: kopf.Memo,
        **_: Any,
    ) -> None:
        context: OperatorContext | None = getattr(memo, "context", None)
        if context is None or not namespace:
            return
        watch_event = to_watch_event(kind, event, name, namespace)
        if watch_event is None:
            return
        await route_event(context, watch_event)

    handler.__name__ = handler.__qualname__ = f"watch_{kind.name.lower()}"
    return handler


# One watch per mirrored kind; the kind tag comes from this table
WATCH_HANDLERS = {kind: _make_event_handler(kind) for kind in ResourceKind}

for _kind, _handler in WATCH_HANDLERS.items():
    kopf.on.event("v1", _kind.value, id=f"watch-{_kind.value}")(_handler)
