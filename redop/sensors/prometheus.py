"""Prometheus monitoring backend for the Redis operator.

PrometheusMonitor collects operator lifecycle events and exposes them as
Prometheus metrics:

1. Reconciliation loop health: duration, queue depth and wait, results, drops
2. Dependent resource sync: operation counts, latency, drift
3. Database lifecycle: phase transitions and terminations
"""

from typing import Dict, List, Optional, Any
import time
import logging

from prometheus_client import Counter, Histogram, Gauge, REGISTRY, CollectorRegistry

from redop.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the Redis operator.

    Metrics are organized by prefix:
    - redop_reconcile_* - Reconciliation loop metrics
    - redop_resource_* - Dependent resource sync metrics
    - redop_phase_* / redop_termination_* - Database lifecycle metrics
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            'redop_reconcile_duration_seconds',
            'Time spent in a reconcile pass',
            labelnames=['name', 'namespace', 'trigger_source', 'result'],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=registry,
        )

        self.reconcile_total = Counter(
            'redop_reconcile_total',
            'Total number of reconcile passes',
            labelnames=['name', 'namespace', 'trigger_source', 'result'],
            registry=registry,
        )

        self.reconcile_errors = Counter(
            'redop_reconcile_errors_total',
            'Total number of failed reconcile passes',
            labelnames=['name', 'namespace', 'error_type'],
            registry=registry,
        )

        self.reconcile_queue_depth = Gauge(
            'redop_reconcile_queue_depth',
            'Number of keys waiting in the work queue',
            registry=registry,
        )

        self.reconcile_queue_wait_seconds = Histogram(
            'redop_reconcile_queue_wait_seconds',
            'Time a key spent waiting in the work queue',
            labelnames=['name', 'namespace'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
            registry=registry,
        )

        self.reconcile_dropped = Counter(
            'redop_reconcile_dropped_total',
            'Total number of keys dropped without further retries',
            labelnames=['name', 'namespace', 'reason'],
            registry=registry,
        )

        # =============================================================================
        # Kubernetes Resource Sync Metrics
        # =============================================================================

        self.resource_sync_duration = Histogram(
            'redop_resource_sync_duration_seconds',
            'Time spent syncing dependent resources',
            labelnames=['db_name', 'namespace', 'resource_type', 'operation', 'result'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        self.resource_sync_total = Counter(
            'redop_resource_sync_total',
            'Total number of dependent resource sync operations',
            labelnames=['db_name', 'namespace', 'resource_type', 'operation', 'result'],
            registry=registry,
        )

        self.resource_sync_errors = Counter(
            'redop_resource_sync_errors_total',
            'Total number of dependent resource sync errors',
            labelnames=['db_name', 'namespace', 'resource_type', 'error_type'],
            registry=registry,
        )

        self.resource_drift_detected = Counter(
            'redop_resource_drift_detected_total',
            'Total number of dependent resource drift detections',
            labelnames=['db_name', 'namespace', 'resource_type', 'drift_field'],
            registry=registry,
        )

        # =============================================================================
        # Database Lifecycle Metrics
        # =============================================================================

        self.phase_transitions = Counter(
            'redop_phase_transitions_total',
            'Total number of status.phase transitions',
            labelnames=['namespace', 'from_phase', 'to_phase'],
            registry=registry,
        )

        self.terminations = Counter(
            'redop_termination_total',
            'Total number of termination policy runs',
            labelnames=['namespace', 'policy', 'result'],
            registry=registry,
        )

        self.status_updates = Counter(
            'redop_status_updates_total',
            'Total number of status updates',
            labelnames=['name', 'namespace', 'update_field'],
            registry=registry,
        )

        logger.info("PrometheusMonitor initialized with all metrics")

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        name: str,
        namespace: str,
        generation: Optional[int],
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Record reconciliation start time."""
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        result: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconciliation duration and result."""
        if state:
            duration = time.time() - state['start_time']
            trigger_source = state['trigger_source']

            self.reconcile_duration.labels(
                name=name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).observe(duration)

            self.reconcile_total.labels(
                name=name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).inc()

        if error:
            self.reconcile_errors.labels(
                name=name,
                namespace=namespace,
                error_type=error.__class__.__name__,
            ).inc()

    def on_reconcile_queued(self, name: str, namespace: str, queue_depth: int) -> None:
        self.reconcile_queue_depth.set(queue_depth)

    def on_reconcile_dequeued(self, name: str, namespace: str, wait_time: float) -> None:
        self.reconcile_queue_wait_seconds.labels(
            name=name,
            namespace=namespace,
        ).observe(wait_time)

    def on_reconcile_dropped(self, name: str, namespace: str, reason: str) -> None:
        self.reconcile_dropped.labels(
            name=name,
            namespace=namespace,
            reason=reason,
        ).inc()

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[str, Any]]:
        """Record resource sync start time."""
        return {'start_time': time.time()}

    def on_resource_sync_complete(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[str, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record resource sync duration and result."""
        result = 'success' if success else 'failure'
        if state:
            self.resource_sync_duration.labels(
                db_name=db_name,
                namespace=namespace,
                resource_type=resource_type,
                operation=operation,
                result=result,
            ).observe(time.time() - state['start_time'])

        self.resource_sync_total.labels(
            db_name=db_name,
            namespace=namespace,
            resource_type=resource_type,
            operation=operation,
            result=result,
        ).inc()

        if error:
            self.resource_sync_errors.labels(
                db_name=db_name,
                namespace=namespace,
                resource_type=resource_type,
                error_type=error.__class__.__name__,
            ).inc()

    def on_resource_drift_detected(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        for field in drift_fields:
            self.resource_drift_detected.labels(
                db_name=db_name,
                namespace=namespace,
                resource_type=resource_type,
                drift_field=field,
            ).inc()

    # =============================================================================
    # Database Lifecycle Hooks
    # =============================================================================

    def on_phase_transition(
        self, name: str, namespace: str, old_phase: str, new_phase: str
    ) -> None:
        self.phase_transitions.labels(
            namespace=namespace,
            from_phase=old_phase or "None",
            to_phase=new_phase,
        ).inc()

    def on_termination(
        self, name: str, namespace: str, policy: str, success: bool
    ) -> None:
        self.terminations.labels(
            namespace=namespace,
            policy=policy,
            result='success' if success else 'failure',
        ).inc()

    def on_status_update(
        self, name: str, namespace: str, update_fields: List[str]
    ) -> None:
        """Record status update."""
        for field in update_fields:
            self.status_updates.labels(
                name=name,
                namespace=namespace,
                update_field=field,
            ).inc()
