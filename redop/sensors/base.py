"""Base sensor classes for operator monitoring.

This module defines the base OperatorSensor class that provides lifecycle hooks
for monitoring operator events. All hooks are no-ops by default, allowing
subclasses to override only the events they care about.

Hooks come in pairs where an operation has a duration: `on_X_start()` returns
an optional state dict that is handed back to the matching `on_X_complete()`.
"""

from typing import Dict, List, Optional, Any
import logging

logger = logging.getLogger(__name__)


class OperatorSensor:
    """Base sensor class for Redis operator monitoring.

    This class defines lifecycle hooks for three main categories:
    1. Reconciliation lifecycle (work queue and reconcile passes)
    2. Resource operations (dependent resource sync)
    3. Database lifecycle (phase transitions and termination)

    All methods are no-ops by default.

    Example:
        class LoggingSensor(OperatorSensor):
            def on_reconcile_start(self, name, namespace, generation, trigger_source):
                return {'start_time': time.time()}

            def on_reconcile_complete(self, name, namespace, state, result, success, error=None):
                duration = time.time() - state['start_time']
                logger.info(f"Reconciled {name} in {duration}s")
    """

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
        """Called when a reconcile pass begins.

        Args:
            name: Redis resource name
            namespace: Kubernetes namespace
            generation: Resource generation number, None if the object is gone
            trigger_source: What triggered the pass (watch, resync, retry)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        result: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconcile pass completes.

        Args:
            name: Redis resource name
            namespace: Kubernetes namespace
            state: State dict returned from on_reconcile_start
            result: Outcome of the pass (done, pending, error)
            success: Whether the pass succeeded
            error: Exception if the pass failed
        """
        pass

    def on_reconcile_queued(
        self,
        name: str,
        namespace: str,
        queue_depth: int,
    ) -> None:
        """Called when a key is added to the work queue."""
        pass

    def on_reconcile_dequeued(
        self,
        name: str,
        namespace: str,
        wait_time: float,
    ) -> None:
        """Called when a worker takes a key off the work queue.

        Args:
            wait_time: Time spent in queue (seconds)
        """
        pass

    def on_reconcile_dropped(
        self,
        name: str,
        namespace: str,
        reason: str,
    ) -> None:
        """Called when a failing key is given up on.

        Args:
            reason: Why the key was dropped (permanent_error, max_requeues)
        """
        pass

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
        """Called when a dependent resource sync begins.

        Args:
            db_name: Owning Redis resource name
            resource_name: Actual K8s resource name being synced
            namespace: Kubernetes namespace
            resource_type: Type of resource (StatefulSet, Service, ConfigMap, etc.)

        Returns:
            Optional state dict passed to on_resource_sync_complete
        """
        pass

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
        """Called when a dependent resource sync completes.

        Args:
            operation: Operation performed (created, patched, deleted)
        """
        pass

    def on_resource_drift_detected(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        """Called when a dependent differs from its desired state."""
        pass

    # =============================================================================
    # Database Lifecycle Hooks
    # =============================================================================

    def on_phase_transition(
        self,
        name: str,
        namespace: str,
        old_phase: str,
        new_phase: str,
    ) -> None:
        """Called after `status.phase` was written with a new value."""
        pass

    def on_termination(
        self,
        name: str,
        namespace: str,
        policy: str,
        success: bool,
    ) -> None:
        """Called when the termination policy for a deleted database has run."""
        pass

    def on_status_update(
        self,
        name: str,
        namespace: str,
        update_fields: List[str],
    ) -> None:
        """Called when status is updated."""
        pass

    # =============================================================================
    # Utility Methods
    # =============================================================================

    def asdict(self) -> Dict[str, Any]:
        """Return sensor state as dictionary."""
        return {}
