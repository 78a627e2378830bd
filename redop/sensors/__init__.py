"""Redis Operator Sensor Framework.

Hook-based, non-invasive instrumentation of operator lifecycle events.

Key components:
- OperatorSensor: Base class defining lifecycle hooks for operator events
- SensorDelegate: Fan-out pattern for routing events to multiple sensor backends
- PrometheusMonitor: Prometheus metrics exporter

Usage:
    from redop.sensors import SensorDelegate, PrometheusMonitor

    delegate = SensorDelegate()
    delegate.add(PrometheusMonitor())
"""

from redop.sensors.base import OperatorSensor
from redop.sensors.delegate import SensorDelegate
from redop.sensors.prometheus import PrometheusMonitor
from redop.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
