from .dispatcher import (
    Collection,
    ObjectCache,
    WatchDispatcher,
    WatchEvent,
    WatchEventType,
)
from .queue import WorkQueue
from .termination import TerminationPolicyEngine
from .reconciler import LifecycleReconciler, ReconcileResult
from .controller import Controller

__all__ = [
    "Collection",
    "ObjectCache",
    "WatchDispatcher",
    "WatchEvent",
    "WatchEventType",
    "WorkQueue",
    "TerminationPolicyEngine",
    "LifecycleReconciler",
    "ReconcileResult",
    "Controller",
]
