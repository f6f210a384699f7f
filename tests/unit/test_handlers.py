"""Unit tests for the kopf handlers and the operator context."""

import asyncio
from types import SimpleNamespace

import kopf
import pytest

from externaldns_operator.context import OperatorContext, is_retryable_error
from externaldns_operator.errors import (
    ConfigurationError,
    DerivationError,
    KubernetesAPIError,
)
from externaldns_operator.handlers.externaldns import (
    delete_credentials_mirror,
    ensure_credentials_mirror,
    sync_credentials_mirror,
)
from externaldns_operator.handlers.mirror import (
    WATCH_HANDLERS,
    route_event,
    to_watch_event,
)
from externaldns_operator.models.mirror import (
    EventType,
    MirrorKey,
    ObjectKey,
    ResourceKind,
)
from tests.fixtures.mirror_store import (
    CA_MIRROR,
    CA_SOURCE,
    CA_TARGET,
    OPERAND_NS,
    OPERATOR_NS,
    FakeObjectStore,
    config_map,
    make_settings,
)

AWS_SPEC = {"provider": {"type": "AWS", "aws": {"credentials": {"name": "aws-keys"}}}}
AWS_KEY = MirrorKey(
    kind=ResourceKind.SECRET, source=ObjectKey(namespace=OPERATOR_NS, name="aws-keys")
)


@pytest.fixture
def context():
    return OperatorContext(make_settings(), FakeObjectStore())


async def drain(context: OperatorContext) -> list[MirrorKey]:
    keys = []
    while len(context.queue):
        key = await context.queue.get()
        context.queue.done(key)
        keys.append(key)
    return keys


class TestWatchEvents:
    """ConfigMap and Secret watch handlers."""

    def test_handlers_registered_per_kind(self):
        assert set(WATCH_HANDLERS) == set(ResourceKind)

    @pytest.mark.parametrize(
        "raw_type,expected",
        [
            (None, EventType.ADDED),
            ("ADDED", EventType.ADDED),
            ("MODIFIED", EventType.MODIFIED),
            ("DELETED", EventType.DELETED),
        ],
    )
    def test_to_watch_event(self, raw_type, expected):
        event = to_watch_event(ResourceKind.SECRET, {"type": raw_type}, "s", "ns")
        assert event.type == expected
        assert event.kind == ResourceKind.SECRET
        assert event.key == ObjectKey(namespace="ns", name="s")

    def test_unknown_event_type(self):
        assert to_watch_event(ResourceKind.SECRET, {"type": "BOOKMARK"}, "s", "ns") is None

    @pytest.mark.asyncio
    async def test_route_event_queues_source_key(self, context):
        await context.register_mirror(CA_MIRROR)
        await drain(context)

        event = to_watch_event(
            ResourceKind.CONFIG_MAP,
            {"type": "MODIFIED"},
            "external-dns-trusted-ca",
            OPERAND_NS,
        )

        assert await route_event(context, event) == 1
        assert await drain(context) == [CA_MIRROR.key]

    @pytest.mark.asyncio
    async def test_unrelated_event_is_dropped(self, context):
        await context.register_mirror(CA_MIRROR)
        await drain(context)

        event = to_watch_event(ResourceKind.CONFIG_MAP, {"type": "ADDED"}, "x", OPERAND_NS)

        assert await route_event(context, event) == 0
        assert len(context.queue) == 0

    @pytest.mark.asyncio
    async def test_handler_without_context_is_noop(self):
        handler = WATCH_HANDLERS[ResourceKind.CONFIG_MAP]
        await handler(
            event={"type": "ADDED"},
            name="trusted-ca",
            namespace=OPERATOR_NS,
            memo=SimpleNamespace(),
        )

    @pytest.mark.asyncio
    async def test_handler_enqueues(self, context):
        await context.register_mirror(CA_MIRROR)
        await drain(context)

        await WATCH_HANDLERS[ResourceKind.CONFIG_MAP](
            event={"type": "MODIFIED"},
            name=CA_SOURCE.name,
            namespace=OPERATOR_NS,
            memo=SimpleNamespace(context=context),
        )

        assert await drain(context) == [CA_MIRROR.key]


class TestExternalDNSHandlers:
    """Credentials mirror registration."""

    @pytest.mark.asyncio
    async def test_registers_and_enqueues(self, context):
        name = await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)

        assert name == "credentials/sample"
        assert context.registry.get(name).source.name == "aws-keys"
        assert await drain(context) == [AWS_KEY]
        assert (
            context.metrics.registry.get_sample_value(
                "externaldns_operator_mirrors_registered", {"kind": "secrets"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_unchanged_resource_is_not_requeued(self, context):
        await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)
        await drain(context)

        await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)

        assert len(context.queue) == 0

    @pytest.mark.asyncio
    async def test_dropping_the_secret_unregisters(self, context):
        await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)

        result = await sync_credentials_mirror(
            context, "sample", "uid-1", {"provider": {"type": "AWS"}}
        )

        assert result is None
        assert context.registry.get("credentials/sample") is None

    @pytest.mark.asyncio
    async def test_openshift_uses_cloud_credentials(self):
        context = OperatorContext(
            make_settings(PLATFORM="OpenShift"), FakeObjectStore()
        )

        await sync_credentials_mirror(context, "sample", "uid", {"provider": {"type": "GCP"}})

        mirror = context.registry.get("credentials/sample")
        assert mirror.source.name == "externaldns-cloud-credentials"
        assert mirror.projection.name == "gcp-cloud-credentials"

    @pytest.mark.asyncio
    async def test_invalid_spec_is_permanent(self, context):
        memo = SimpleNamespace(context=context)
        with pytest.raises(kopf.PermanentError):
            await ensure_credentials_mirror(
                spec={"provider": {"type": "Unknown"}},
                name="sample",
                meta={"uid": "uid-1"},
                memo=memo,
            )

    @pytest.mark.asyncio
    async def test_target_clash_is_rejected(self, context):
        await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)
        clash = context.registry.get("credentials/sample").model_copy(
            update={"name": "other"}
        )
        with pytest.raises(ConfigurationError):
            await context.register_mirror(clash)

    @pytest.mark.asyncio
    async def test_missing_context_is_temporary(self):
        with pytest.raises(kopf.TemporaryError):
            await ensure_credentials_mirror(
                spec=AWS_SPEC, name="sample", meta={}, memo=SimpleNamespace()
            )

    @pytest.mark.asyncio
    async def test_delete_unregisters(self, context):
        await ensure_credentials_mirror(
            spec=AWS_SPEC,
            name="sample",
            meta={"uid": "uid-1"},
            memo=SimpleNamespace(context=context),
        )

        await delete_credentials_mirror(
            event={"type": "DELETED"},
            name="sample",
            memo=SimpleNamespace(context=context),
        )

        assert context.registry.mirrors() == []
        assert (
            context.metrics.registry.get_sample_value(
                "externaldns_operator_mirrors_registered", {"kind": "secrets"}
            )
            == 0.0
        )

    @pytest.mark.asyncio
    async def test_other_events_keep_the_mirror(self, context):
        await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)

        for raw_type in (None, "ADDED", "MODIFIED"):
            await delete_credentials_mirror(
                event={"type": raw_type},
                name="sample",
                memo=SimpleNamespace(context=context),
            )

        assert context.registry.get("credentials/sample") is not None

    @pytest.mark.asyncio
    async def test_collected_target_is_not_recreated_after_delete(self, context):
        await sync_credentials_mirror(context, "sample", "uid-1", AWS_SPEC)
        await drain(context)
        memo = SimpleNamespace(context=context)

        await delete_credentials_mirror(
            event={"type": "DELETED"}, name="sample", memo=memo
        )
        # Garbage collection removes the owned target secret
        await WATCH_HANDLERS[ResourceKind.SECRET](
            event={"type": "DELETED"},
            name="external-dns-credentials-sample",
            namespace=OPERAND_NS,
            memo=memo,
        )

        assert len(context.queue) == 0

    def test_deletion_is_watched_as_raw_event(self):
        registry = kopf.get_default_registry()
        changing = registry._changing.get_all_handlers()
        watching = registry._watching.get_all_handlers()

        assert not any(handler.reason == kopf.Reason.DELETE for handler in changing)
        assert not any(handler.requires_finalizer for handler in changing)
        assert "forget-deleted-externaldns" in {handler.id for handler in watching}


class TestContext:
    """Context wiring."""

    @pytest.mark.asyncio
    async def test_workers_reconcile_queued_keys(self):
        store = FakeObjectStore()
        context = OperatorContext(make_settings(), store)
        context.start_workers()
        assert context.ready

        store.put(config_map(CA_SOURCE, {"ca-bundle.crt": "X"}))
        await context.register_mirror(CA_MIRROR)

        for _ in range(200):
            if store.data(ResourceKind.CONFIG_MAP, CA_TARGET) is not None:
                break
            await asyncio.sleep(0.01)

        assert store.data(ResourceKind.CONFIG_MAP, CA_TARGET) == {"ca-bundle.crt": "X"}
        await context.shutdown()
        assert not context.ready

    @pytest.mark.parametrize(
        "error,expected",
        [
            (KubernetesAPIError("x", reason="Forbidden"), False),
            (KubernetesAPIError("x", status=500), True),
            (DerivationError("bad"), True),
            (RuntimeError("other"), True),
        ],
    )
    def test_is_retryable_error(self, error, expected):
        assert is_retryable_error(error) is expected
