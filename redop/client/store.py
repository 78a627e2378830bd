"""Access to Redis objects and their status sub-resource.

Writes are optimistic: a mutate function is applied to a freshly read copy and
the result is written back carrying the copy's resourceVersion. A write that
loses the race (HTTP 409) is retried from a new read.
"""
import copy
import kopf
import logging
from typing import Callable, Dict, NamedTuple, Optional
from kubernetes_asyncio.client import ApiException, CustomObjectsApi
from redop.types.settings import Settings
from redop.utils.errors import conflict_error, not_found_error
from redop.utils.helpers import deep_compare_dict

logger = logging.getLogger(__name__)

#: Receives a private copy of the current object and returns the desired
#: object, or None to leave it untouched.
MutateFn = Callable[[Dict], Optional[Dict]]


class ObjectKey(NamedTuple):
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_str(cls, key: str) -> "ObjectKey":
        namespace, _, name = key.rpartition("/")
        return cls(namespace, name)

    @classmethod
    def for_object(cls, obj: Dict) -> "ObjectKey":
        meta = obj["metadata"]
        return cls(meta.get("namespace") or "", meta["name"])


class ResourceStore:
    """Read and optimistically write one collection of custom objects."""

    conf: Settings

    async def get(self, key: ObjectKey) -> Optional[Dict]:
        raise NotImplementedError()

    async def _replace(self, key: ObjectKey, body: Dict) -> Dict:
        raise NotImplementedError()

    async def _replace_status(self, key: ObjectKey, body: Dict) -> Dict:
        raise NotImplementedError()

    async def patch(self, key: ObjectKey, mutate: MutateFn) -> Optional[Dict]:
        """Apply `mutate` to the object's metadata/spec and write it back.

        Returns the object as stored afterwards, or None if it no longer exists.
        """
        return await self._update(key, mutate, self._replace)

    async def patch_status(self, key: ObjectKey, mutate: MutateFn) -> Optional[Dict]:
        """Apply `mutate` to the object and write its status sub-resource back."""
        return await self._update(key, mutate, self._replace_status)

    async def _update(self, key: ObjectKey, mutate: MutateFn, write) -> Optional[Dict]:
        for attempt in range(1, self.conf.conflict_retries + 1):
            current = await self.get(key)
            if current is None:
                return None
            desired = mutate(copy.deepcopy(current))
            if desired is None or deep_compare_dict(desired, current):
                return current
            desired.setdefault("metadata", {})["resourceVersion"] = current[
                "metadata"
            ].get("resourceVersion")
            try:
                return await write(key, desired)
            except ApiException as ex:
                if not_found_error(ex):
                    return None
                if conflict_error(ex):
                    logger.debug(
                        f"Conflict writing {key} (attempt {attempt}/{self.conf.conflict_retries}), retrying"
                    )
                    continue
                raise
        raise kopf.TemporaryError(
            f"Gave up writing {key} after {self.conf.conflict_retries} conflicting attempts",
            delay=1,
        )


class KubernetesResourceStore(ResourceStore):
    """ResourceStore backed by the Kubernetes custom objects API."""

    def __init__(
        self,
        custom_objects_api: CustomObjectsApi,
        group: str,
        version: str,
        plural: str,
        conf: Settings = None,
    ):
        self.api = custom_objects_api
        self.group = group
        self.version = version
        self.plural = plural
        self.conf = conf or Settings()

    async def get(self, key: ObjectKey) -> Optional[Dict]:
        try:
            return await self.api.get_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=key.namespace,
                plural=self.plural,
                name=key.name,
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def _replace(self, key: ObjectKey, body: Dict) -> Dict:
        return await self.api.replace_namespaced_custom_object(
            group=self.group,
            version=self.version,
            namespace=key.namespace,
            plural=self.plural,
            name=key.name,
            body=body,
        )

    async def _replace_status(self, key: ObjectKey, body: Dict) -> Dict:
        return await self.api.replace_namespaced_custom_object_status(
            group=self.group,
            version=self.version,
            namespace=key.namespace,
            plural=self.plural,
            name=key.name,
            body=body,
        )
