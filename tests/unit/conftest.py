"""In-memory stand-ins for the Kubernetes API used by the controller tests.

FakeCluster models what the tests rely on from a real cluster: resource
versions for optimistic concurrency, and garbage collection of objects whose
owners are all gone.
"""

import copy
import pytest
from typing import Dict, List, Optional, Tuple
from kubernetes_asyncio.client import ApiException
from redop.client.dependents import DependentClient
from redop.client.events import EventRecorder
from redop.client.store import ObjectKey, ResourceStore
from redop.common.models.labels import Labels
from redop.controller import LifecycleReconciler, ObjectCache, TerminationPolicyEngine
from redop.resources import Verb
from redop.types.models import RedisResources, RedisSpec
from redop.types.settings import Settings
from redop.utils.helpers import now
from redop.utils.meta import controller_ref, matches_selector

REDISES = "redises"
SECRETS = "secrets"
PVCS = "persistentvolumeclaims"


class FakeCluster:
    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str, str], Dict] = {}
        self._rv = 0
        self._uid = 0

    def put(self, kind: str, obj: Dict) -> Dict:
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        if not meta.get("uid"):
            self._uid += 1
            meta["uid"] = f"uid-{self._uid}"
        self._rv += 1
        meta["resourceVersion"] = str(self._rv)
        self.objects[(kind, meta.get("namespace"), meta["name"])] = obj
        return copy.deepcopy(obj)

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict]:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind: str, namespace: str, selector: Dict[str, str] = None) -> List[Dict]:
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self.objects.items())
            if k == kind and ns == namespace and matches_selector(obj, selector)
        ]

    def names(self, kind: str, namespace: str = "default") -> set:
        return {name for (k, ns, name) in self.objects if k == kind and ns == namespace}

    def remove(self, kind: str, namespace: str, name: str) -> None:
        self.objects.pop((kind, namespace, name), None)
        self.collect_garbage()

    def collect_garbage(self) -> None:
        """Delete objects whose owners are all gone, until nothing changes."""
        while True:
            live = {obj["metadata"]["uid"] for obj in self.objects.values()}
            orphans = [
                key
                for key, obj in self.objects.items()
                if obj["metadata"].get("ownerReferences")
                and all(
                    ref["uid"] not in live
                    for ref in obj["metadata"]["ownerReferences"]
                )
            ]
            if not orphans:
                return
            for key in orphans:
                self.objects.pop(key, None)

    def referencing(self, uid: str) -> List[Tuple[str, str, str]]:
        """Keys of objects still carrying an owner reference to `uid`."""
        return [
            key
            for key, obj in self.objects.items()
            if any(
                ref.get("uid") == uid
                for ref in obj["metadata"].get("ownerReferences") or []
            )
        ]


def conflict() -> ApiException:
    return ApiException(status=409, reason="Conflict")


class FakeStore(ResourceStore):
    """Redis objects in a FakeCluster; every write is echoed into the cache like a watch would."""

    def __init__(self, cluster: FakeCluster, cache: ObjectCache, conf: Settings):
        self.cluster = cluster
        self.cache = cache
        self.conf = conf
        self.conflicts = 0
        self.status_error: Optional[Exception] = None
        self.writes = 0
        self.status_writes = 0

    async def get(self, key: ObjectKey) -> Optional[Dict]:
        return self.cluster.get(REDISES, key.namespace, key.name)

    def _check(self, key: ObjectKey, body: Dict) -> Dict:
        if self.conflicts:
            self.conflicts -= 1
            raise conflict()
        current = self.cluster.get(REDISES, key.namespace, key.name)
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise conflict()
        return current

    async def _replace(self, key: ObjectKey, body: Dict) -> Dict:
        current = self._check(key, body)
        body = copy.deepcopy(body)
        body.pop("status", None)
        if current.get("status") is not None:
            body["status"] = copy.deepcopy(current["status"])
        self.writes += 1
        meta = body["metadata"]
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            self.cluster.remove(REDISES, key.namespace, key.name)
            self.cache.delete(str(key))
            return body
        stored = self.cluster.put(REDISES, body)
        self.cache.set(str(key), stored)
        return stored

    async def _replace_status(self, key: ObjectKey, body: Dict) -> Dict:
        if self.status_error is not None:
            raise self.status_error
        current = self._check(key, body)
        current["status"] = copy.deepcopy(body.get("status"))
        self.status_writes += 1
        stored = self.cluster.put(REDISES, current)
        self.cache.set(str(key), stored)
        return stored


class FakeDependents(DependentClient):
    def __init__(self, cluster: FakeCluster, conf: Settings):
        self.cluster = cluster
        self.conf = conf
        self.conflicts = 0
        self.writes: List[Tuple[str, str]] = []

    async def list(self, kind: str, namespace: str, selector: Dict[str, str]) -> List[Dict]:
        return self.cluster.list(kind, namespace, selector)

    async def get(self, kind: str, namespace: str, name: str) -> Optional[Dict]:
        return self.cluster.get(kind, namespace, name)

    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        if self.cluster.get(kind, namespace, name) is None:
            return False
        self.cluster.remove(kind, namespace, name)
        return True

    async def set_owner_references(self, kind: str, obj: Dict, refs: List[Dict]) -> None:
        if self.conflicts:
            self.conflicts -= 1
            raise conflict()
        meta = obj["metadata"]
        current = self.cluster.get(kind, meta["namespace"], meta["name"])
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        if current["metadata"]["resourceVersion"] != meta["resourceVersion"]:
            raise conflict()
        current["metadata"]["ownerReferences"] = refs
        self.cluster.put(kind, current)
        self.writes.append((kind, meta["name"]))


class FakeRecorder(EventRecorder):
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, str]] = []

    def event(self, body: Dict, type: str, reason: str, message: str) -> None:
        self.events.append((type, reason, message))

    def reasons(self) -> List[str]:
        return [reason for _, reason, _ in self.events]


class FakeRedisResource:
    """Ensure operations writing simplified dependents into a FakeCluster."""

    def __init__(self, harness: "Harness", db: Dict, spec: RedisSpec):
        self.harness = harness
        self.cluster = harness.cluster
        self.db = db
        self.spec = spec
        self.name = db["metadata"]["name"]
        self.namespace = db["metadata"]["namespace"]
        self.labels = Labels.generate_offshoot_labels(self.name, "redop.io").as_dict()

    def _call(self, operation: str) -> None:
        self.harness.calls.append(operation)
        failure = self.harness.failures.get(operation)
        if failure is not None:
            raise failure

    async def _ensure(self, kind: str, name: str, spec: Dict) -> Verb:
        existing = self.cluster.get(kind, self.namespace, name)
        if existing is None:
            self.cluster.put(
                kind,
                {
                    "metadata": {
                        "name": name,
                        "namespace": self.namespace,
                        "labels": dict(self.labels),
                        "ownerReferences": [controller_ref(self.db)],
                    },
                    "spec": spec,
                },
            )
            return Verb.CREATED
        if existing.get("spec") != spec:
            existing["spec"] = spec
            self.cluster.put(kind, existing)
            return Verb.PATCHED
        return Verb.UNCHANGED

    async def ensure_governing_service(self) -> Verb:
        self._call("ensure_governing_service")
        return await self._ensure("services", f"{self.name}-pods", {"clusterIP": "None"})

    async def ensure_config(self) -> Verb:
        self._call("ensure_config")
        return await self._ensure("configmaps", f"{self.name}-config", {"cluster": True})

    async def ensure_rbac(self) -> Verb:
        self._call("ensure_rbac")
        return await self._ensure("serviceaccounts", self.name, {})

    async def ensure_auth_secret(self) -> Verb:
        self._call("ensure_auth_secret")
        name = RedisResources.auth_secret_name(self.name, self.spec)
        if self.cluster.get(SECRETS, self.namespace, name) is not None:
            return Verb.UNCHANGED
        return await self._ensure(SECRETS, name, {})

    async def ensure_service(self) -> Verb:
        self._call("ensure_service")
        return await self._ensure("services", self.name, {"port": 6379})

    async def missing_certificate_secrets(self) -> List[str]:
        self._call("missing_certificate_secrets")
        if not self.spec.tls:
            return []
        names = [
            RedisResources.cert_secret_name(self.name, self.spec, alias)
            for alias in RedisResources.TLS_CERT_ALIASES
        ]
        return [
            name
            for name in names
            if self.cluster.get(SECRETS, self.namespace, name) is None
        ]

    async def ensure_stateful_sets(self) -> Verb:
        self._call("ensure_stateful_sets")
        verb = await self._ensure(
            "statefulsets",
            self.name,
            {"replicas": 1, "image": f"redis:{self.spec.version}"},
        )
        claim = f"data-{self.name}-0"
        if self.spec.storage and self.cluster.get(PVCS, self.namespace, claim) is None:
            # Claims come from volumeClaimTemplates and are not owned by anyone
            self.cluster.put(
                PVCS,
                {
                    "metadata": {
                        "name": claim,
                        "namespace": self.namespace,
                        "labels": dict(self.labels),
                    }
                },
            )
        return verb

    async def ensure_app_binding(self) -> Verb:
        self._call("ensure_app_binding")
        return await self._ensure("appbindings", self.name, {"type": "redop.io/redis"})

    async def ensure_stats_service(self) -> Verb:
        self._call("ensure_stats_service")
        if not self.spec.monitor:
            return Verb.UNCHANGED
        return await self._ensure("services", f"{self.name}-stats", {"port": 9121})

    async def manage_monitor(self) -> Verb:
        self._call("manage_monitor")
        if not self.spec.monitor:
            return Verb.UNCHANGED
        return await self._ensure("servicemonitors", f"{self.name}-stats", {})

    async def delete_monitor(self) -> bool:
        self._call("delete_monitor")
        if self.cluster.get("servicemonitors", self.namespace, f"{self.name}-stats"):
            self.cluster.remove("servicemonitors", self.namespace, f"{self.name}-stats")
            return True
        return False

    async def halt_database(self) -> None:
        self._call("halt_database")
        for kind in ("statefulsets", "services"):
            for obj in self.cluster.list(kind, self.namespace, self.labels):
                self.cluster.remove(kind, self.namespace, obj["metadata"]["name"])

    async def workload_gone(self) -> bool:
        self._call("workload_gone")
        if self.harness.workload_stuck:
            return False
        return not self.cluster.list("statefulsets", self.namespace, self.labels)


class Harness:
    """A reconciler wired to in-memory fakes."""

    def __init__(self, conf: Settings = None):
        self.conf = conf or Settings(
            conflict_retries=3,
            halt_timeout_seconds=0.2,
            halt_poll_interval_seconds=0.01,
        )
        self.cluster = FakeCluster()
        self.cache = ObjectCache()
        self.store = FakeStore(self.cluster, self.cache, self.conf)
        self.dependents = FakeDependents(self.cluster, self.conf)
        self.recorder = FakeRecorder()
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self.workload_stuck = False
        self.termination = TerminationPolicyEngine(self.dependents, self.resource_factory)
        self.reconciler = LifecycleReconciler(
            self.cache,
            self.store,
            self.recorder,
            self.termination,
            conf=self.conf,
            resource_factory=self.resource_factory,
        )

    def resource_factory(self, db: Dict, spec: RedisSpec) -> FakeRedisResource:
        return FakeRedisResource(self, db, spec)

    def add_redis(self, name: str = "cache", namespace: str = "default", **spec) -> str:
        body = {
            "apiVersion": "redop.io/v1alpha1",
            "kind": "Redis",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"uid-redis-{name}",
                "generation": 1,
            },
            "spec": {
                "version": "7.2.4",
                "storage": {"size": "1Gi"},
                **spec,
            },
        }
        key = f"{namespace}/{name}"
        self.cache.set(key, self.cluster.put(REDISES, body))
        return key

    def redis(self, key: str) -> Optional[Dict]:
        namespace, _, name = key.rpartition("/")
        return self.cluster.get(REDISES, namespace, name)

    def store_object(self, obj: Dict) -> None:
        meta = obj["metadata"]
        self.cache.set(f"{meta['namespace']}/{meta['name']}", self.cluster.put(REDISES, obj))

    def update_spec(self, key: str, **fields) -> None:
        obj = self.redis(key)
        obj["spec"].update(fields)
        obj["metadata"]["generation"] += 1
        self.store_object(obj)

    def set_status(self, key: str, **fields) -> None:
        obj = self.redis(key)
        obj["status"] = {**(obj.get("status") or {}), **fields}
        self.store_object(obj)

    def set_condition(self, key: str, type: str, status: str) -> None:
        obj = self.redis(key)
        conditions = (obj.get("status") or {}).get("conditions") or []
        conditions = [c for c in conditions if c["type"] != type]
        conditions.append({"type": type, "status": status, "lastTransitionTime": now()})
        self.set_status(key, conditions=conditions)

    def delete_redis(self, key: str) -> None:
        obj = self.redis(key)
        if not obj["metadata"].get("finalizers"):
            namespace, _, name = key.rpartition("/")
            self.cluster.remove(REDISES, namespace, name)
            self.cache.delete(key)
            return
        obj["metadata"]["deletionTimestamp"] = now()
        self.store_object(obj)

    def add_secret(self, name: str, namespace: str = "default", labels: Dict = None, owner: Dict = None) -> None:
        meta = {"name": name, "namespace": namespace, "labels": labels or {}}
        if owner is not None:
            meta["ownerReferences"] = [controller_ref(owner)]
        self.cluster.put(SECRETS, {"metadata": meta})

    def phase(self, key: str) -> Optional[str]:
        return ((self.redis(key) or {}).get("status") or {}).get("phase")


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def make_harness():
    return Harness
