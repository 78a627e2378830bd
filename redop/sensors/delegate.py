"""Sensor delegation for fan-out pattern.

SensorDelegate routes sensor events to multiple monitoring backends. Each
backend receives the same events and keeps independent state; a failing
backend is logged and never breaks the operator.
"""

from typing import Set, Dict, List, Optional, Any
import logging

from redop.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())

        state = delegate.on_reconcile_start("cache", "default", 5, "watch")
        delegate.on_reconcile_complete("cache", "default", state, "done", True)
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Removing sensor: {sensor.__class__.__name__}")
        self._sensors.discard(sensor)

    def clear(self) -> None:
        logger.info(f"Clearing {len(self._sensors)} sensors")
        self._sensors.clear()

    def _start(self, hook: str, *args) -> Optional[Dict[OperatorSensor, Any]]:
        """Call a start hook on every sensor and collect per-sensor state."""
        if not self._sensors:
            return None
        states = {}
        for sensor in self._sensors:
            try:
                state = getattr(sensor, hook)(*args)
                if state is not None:
                    states[sensor] = state
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )
        return states if states else None

    def _emit(self, hook: str, *args, **kwargs) -> None:
        for sensor in self._sensors:
            try:
                getattr(sensor, hook)(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    def _complete(self, hook: str, state, args_before, args_after) -> None:
        """Call a complete hook handing each sensor its own start state."""
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                getattr(sensor, hook)(*args_before, sensor_state, *args_after)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        name: str,
        namespace: str,
        generation: Optional[int],
        trigger_source: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_reconcile_start", name, namespace, generation, trigger_source
        )

    def on_reconcile_complete(
        self,
        name: str,
        namespace: str,
        state: Optional[Dict[OperatorSensor, Any]],
        result: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        self._complete(
            "on_reconcile_complete",
            state,
            (name, namespace),
            (result, success, error),
        )

    def on_reconcile_queued(self, name: str, namespace: str, queue_depth: int) -> None:
        self._emit("on_reconcile_queued", name, namespace, queue_depth)

    def on_reconcile_dequeued(self, name: str, namespace: str, wait_time: float) -> None:
        self._emit("on_reconcile_dequeued", name, namespace, wait_time)

    def on_reconcile_dropped(self, name: str, namespace: str, reason: str) -> None:
        self._emit("on_reconcile_dropped", name, namespace, reason)

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_resource_sync_start", db_name, resource_name, namespace, resource_type
        )

    def on_resource_sync_complete(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[OperatorSensor, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        self._complete(
            "on_resource_sync_complete",
            state,
            (db_name, resource_name, namespace, resource_type),
            (operation, success, error),
        )

    def on_resource_drift_detected(
        self,
        db_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        self._emit(
            "on_resource_drift_detected",
            db_name,
            resource_name,
            namespace,
            resource_type,
            drift_fields,
        )

    # =============================================================================
    # Database Lifecycle Hooks
    # =============================================================================

    def on_phase_transition(
        self, name: str, namespace: str, old_phase: str, new_phase: str
    ) -> None:
        self._emit("on_phase_transition", name, namespace, old_phase, new_phase)

    def on_termination(
        self, name: str, namespace: str, policy: str, success: bool
    ) -> None:
        self._emit("on_termination", name, namespace, policy, success)

    def on_status_update(
        self, name: str, namespace: str, update_fields: List[str]
    ) -> None:
        self._emit("on_status_update", name, namespace, update_fields)

    def asdict(self) -> Dict[str, Any]:
        return {
            sensor.__class__.__name__: sensor.asdict() for sensor in self._sensors
        }
