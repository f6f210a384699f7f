"""
Mirror reconciler: the observe, diff and converge step for one source key.

Each call re-reads the source and every target from the object store; no
state is trusted across calls. Convergence issues at most one create or
update per target and never deletes anything. Errors are raised to the
caller, which owns retries.
"""

import time

from opentelemetry.trace import Status, StatusCode

from externaldns_operator.constants import (
    LOG_SOURCE_NOT_FOUND,
    LOG_TARGET_CREATED,
    LOG_TARGET_UNCHANGED,
    LOG_TARGET_UPDATED,
    MANAGED_BY_LABEL_KEY,
    MANAGED_BY_LABEL_VALUE,
    MIRROR_LABEL_KEY,
)
from externaldns_operator.models.mirror import (
    Mirror,
    MirrorKey,
    MirrorObject,
    ReconcileOutcome,
)
from externaldns_operator.observability.logging import OperatorLogger
from externaldns_operator.observability.metrics import MetricsCollector
from externaldns_operator.observability.tracing import get_tracer
from externaldns_operator.services.derivation import derive
from externaldns_operator.services.mirror_registry import MirrorRegistry
from externaldns_operator.services.object_store import ObjectStore


def payloads_equal(current: MirrorObject, desired: MirrorObject) -> bool:
    """Compare payloads only; metadata never triggers an update."""
    return current.data == desired.data


def _mirror_label_value(mirror: Mirror) -> str:
    # Label values may not contain '/'
    return mirror.name.replace("/", ".")


class MirrorReconciler:
    """
    Converges mirror targets onto the projection of their source.

    ``reconcile`` is synchronous and blocking; the work queue runs it in a
    worker thread and guarantees one in-flight call per key.
    """

    def __init__(
        self,
        store: ObjectStore,
        registry: MirrorRegistry,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Object store exposing get, create and update
            registry: Mirror definitions, resolved fresh on every call
            metrics: Optional metrics collector
        """
        self.store = store
        self.registry = registry
        self.metrics = metrics
        self.logger = OperatorLogger(self.__class__.__name__)
        self.tracer = get_tracer(__name__)

    def reconcile(self, key: MirrorKey) -> dict[str, ReconcileOutcome]:
        """
        Reconcile every mirror fed by the source object named by ``key``.

        Args:
            key: Kind and identity of the source object

        Returns:
            Outcome per mirror name. Empty when no mirror uses the source
            (it was unregistered after the request was queued).

        Raises:
            KubernetesAPIError: If a read or write fails for a reason other
                than the object being absent
            DerivationError: If the source payload is malformed for a projection
        """
        resource_type = key.kind.value
        start_time = time.time()
        self.logger.log_reconciliation_start(
            resource_type=resource_type,
            resource_name=key.source.name,
            namespace=key.source.namespace,
        )

        with self.tracer.start_as_current_span(
            "mirror.reconcile",
            attributes={"mirror.kind": resource_type, "mirror.source": str(key.source)},
        ) as span:
            outcomes: dict[str, ReconcileOutcome] = {}
            try:
                self._reconcile(key, outcomes)
            except Exception as e:
                duration = time.time() - start_time
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                self.logger.log_reconciliation_error(
                    resource_type=resource_type,
                    resource_name=key.source.name,
                    namespace=key.source.namespace,
                    error=e,
                    duration=duration,
                )
                if self.metrics:
                    # Mirrors that converged before the failure still count
                    self.metrics.record_outcomes(key.kind, outcomes)
                    self.metrics.record_reconciliation_error(key.kind, e, duration)
                raise

            span.set_attribute(
                "mirror.outcome",
                ",".join(f"{name}={o.value}" for name, o in outcomes.items()),
            )

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_reconciliation(key.kind, outcomes, duration)
        self.logger.log_reconciliation_success(
            resource_type=resource_type,
            resource_name=key.source.name,
            namespace=key.source.namespace,
            duration=duration,
        )
        return outcomes

    def _reconcile(
        self, key: MirrorKey, outcomes: dict[str, ReconcileOutcome]
    ) -> None:
        """
        Converge every mirror of ``key``, filling ``outcomes`` as they finish.

        A failing mirror does not stop its siblings: every mirror is
        attempted and the first error is raised afterwards.
        """
        mirrors = self.registry.mirrors_for(key)
        if not mirrors:
            self.logger.debug(f"no mirror uses {key}; nothing to reconcile")
            return

        source = self.store.get(key.kind, key.source)
        if source is None:
            for mirror in mirrors:
                self.logger.log_mirror_outcome(
                    mirror=mirror.name,
                    resource_type=key.kind.value,
                    resource_name=mirror.target.name,
                    namespace=mirror.target.namespace,
                    outcome=ReconcileOutcome.SKIPPED.value,
                    message=LOG_SOURCE_NOT_FOUND.format(key.kind.value, key.source),
                )
                outcomes[mirror.name] = ReconcileOutcome.SKIPPED
            return

        errors: list[Exception] = []
        for mirror in mirrors:
            try:
                outcomes[mirror.name] = self.ensure_mirror(mirror, source)
            except Exception as e:
                self.logger.warning(
                    f"mirror {mirror.name} failed to converge {mirror.target}: {e}",
                    mirror=mirror.name,
                    error_type=type(e).__name__,
                )
                errors.append(e)
        if errors:
            raise errors[0]

    def ensure_mirror(self, mirror: Mirror, source: MirrorObject) -> ReconcileOutcome:
        """
        Converge one target onto the projection of ``source``.

        Args:
            mirror: Mirror definition
            source: Source object as just read from the store

        Returns:
            CREATED, UPDATED or UNCHANGED
        """
        desired = derive(source, mirror.target, mirror.projection)
        current = self.store.get(mirror.kind, mirror.target)

        if current is None:
            self.store.create(self._with_ownership(mirror, desired))
            return self._outcome(mirror, ReconcileOutcome.CREATED, LOG_TARGET_CREATED)

        if payloads_equal(current, desired):
            return self._outcome(
                mirror, ReconcileOutcome.UNCHANGED, LOG_TARGET_UNCHANGED
            )

        # Only the payload changes; everything else on the live target is kept
        updated = current.model_copy(update={"data": dict(desired.data)})
        self.store.update(updated)
        return self._outcome(mirror, ReconcileOutcome.UPDATED, LOG_TARGET_UPDATED)

    def _with_ownership(self, mirror: Mirror, desired: MirrorObject) -> MirrorObject:
        return desired.model_copy(
            update={
                "labels": {
                    MANAGED_BY_LABEL_KEY: MANAGED_BY_LABEL_VALUE,
                    MIRROR_LABEL_KEY: _mirror_label_value(mirror),
                },
                "owner_references": [mirror.owner] if mirror.owner else [],
            }
        )

    def _outcome(
        self, mirror: Mirror, outcome: ReconcileOutcome, template: str
    ) -> ReconcileOutcome:
        self.logger.log_mirror_outcome(
            mirror=mirror.name,
            resource_type=mirror.kind.value,
            resource_name=mirror.target.name,
            namespace=mirror.target.namespace,
            outcome=outcome.value,
            message=template.format(mirror.kind.value, mirror.target),
        )
        return outcome
