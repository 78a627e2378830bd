from .store import ObjectKey, ResourceStore, KubernetesResourceStore
from .dependents import DependentClient, KubernetesDependentClient
from .events import EventRecorder, KopfEventRecorder

__all__ = [
    "ObjectKey",
    "ResourceStore",
    "KubernetesResourceStore",
    "DependentClient",
    "KubernetesDependentClient",
    "EventRecorder",
    "KopfEventRecorder",
]
