"""Access to the dependents of a Redis that outlive or die with it.

Only the kinds whose ownership changes at termination are supported:
secrets and persistent volume claims.
"""
import kopf
import logging
from typing import Callable, Dict, List, Optional, Tuple
from kubernetes_asyncio.client import ApiException, CoreV1Api
from redop.types.settings import Settings
from redop.utils.errors import conflict_error
from redop.utils.meta import label_selector_str

logger = logging.getLogger(__name__)

SECRETS = "secrets"
PERSISTENT_VOLUME_CLAIMS = "persistentvolumeclaims"

#: Computes (new owner references, changed) for an object
OwnerRefsFn = Callable[[Dict], Tuple[List[Dict], bool]]


class DependentClient:
    """List, read, re-own and delete dependents by kind."""

    conf: Settings

    async def list(
        self, kind: str, namespace: str, selector: Dict[str, str]
    ) -> List[Dict]:
        raise NotImplementedError()

    async def get(self, kind: str, namespace: str, name: str) -> Optional[Dict]:
        raise NotImplementedError()

    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        """Delete if exists. Returns True if something was deleted."""
        raise NotImplementedError()

    async def set_owner_references(
        self, kind: str, obj: Dict, refs: List[Dict]
    ) -> None:
        raise NotImplementedError()

    async def update_owner_references(
        self, kind: str, namespace: str, name: str, fn: OwnerRefsFn
    ) -> bool:
        """Rewrite owner references of one object from a fresh read.

        Returns True if a write happened. Missing objects are skipped.
        """
        for attempt in range(1, self.conf.conflict_retries + 1):
            obj = await self.get(kind, namespace, name)
            if obj is None:
                return False
            refs, changed = fn(obj)
            if not changed:
                return False
            try:
                await self.set_owner_references(kind, obj, refs)
                return True
            except ApiException as ex:
                if ex.status == 404:
                    return False
                if conflict_error(ex):
                    logger.debug(
                        f"Conflict updating owner references of {kind} {namespace}/{name} "
                        f"(attempt {attempt}/{self.conf.conflict_retries}), retrying"
                    )
                    continue
                raise
        raise kopf.TemporaryError(
            f"Gave up updating owner references of {kind} {namespace}/{name}",
            delay=1,
        )


class KubernetesDependentClient(DependentClient):
    """DependentClient backed by the Kubernetes core API."""

    def __init__(self, core_v1_api: CoreV1Api, conf: Settings = None):
        self.api = core_v1_api
        self.conf = conf or Settings()

    def _to_dict(self, model) -> Dict:
        return self.api.api_client.sanitize_for_serialization(model)

    async def list(
        self, kind: str, namespace: str, selector: Dict[str, str]
    ) -> List[Dict]:
        label_selector = label_selector_str(selector)
        if kind == SECRETS:
            result = await self.api.list_namespaced_secret(
                namespace=namespace, label_selector=label_selector
            )
        elif kind == PERSISTENT_VOLUME_CLAIMS:
            result = await self.api.list_namespaced_persistent_volume_claim(
                namespace=namespace, label_selector=label_selector
            )
        else:
            raise ValueError(f"Unsupported dependent kind `{kind}`")
        return [self._to_dict(item) for item in result.items]

    async def get(self, kind: str, namespace: str, name: str) -> Optional[Dict]:
        try:
            if kind == SECRETS:
                obj = await self.api.read_namespaced_secret(
                    name=name, namespace=namespace
                )
            elif kind == PERSISTENT_VOLUME_CLAIMS:
                obj = await self.api.read_namespaced_persistent_volume_claim(
                    name=name, namespace=namespace
                )
            else:
                raise ValueError(f"Unsupported dependent kind `{kind}`")
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise
        return self._to_dict(obj)

    async def delete(self, kind: str, namespace: str, name: str) -> bool:
        try:
            if kind == SECRETS:
                await self.api.delete_namespaced_secret(name=name, namespace=namespace)
            elif kind == PERSISTENT_VOLUME_CLAIMS:
                await self.api.delete_namespaced_persistent_volume_claim(
                    name=name, namespace=namespace
                )
            else:
                raise ValueError(f"Unsupported dependent kind `{kind}`")
        except ApiException as ex:
            if ex.status == 404:
                return False
            raise
        return True

    async def set_owner_references(
        self, kind: str, obj: Dict, refs: List[Dict]
    ) -> None:
        meta = obj["metadata"]
        # resourceVersion in the patch makes the server reject stale writes with 409
        patch = [
            {
                "op": "replace",
                "path": "/metadata/resourceVersion",
                "value": meta.get("resourceVersion"),
            },
            {"op": "add", "path": "/metadata/ownerReferences", "value": refs},
        ]
        if kind == SECRETS:
            await self.api.patch_namespaced_secret(
                name=meta["name"], namespace=meta["namespace"], body=patch
            )
        elif kind == PERSISTENT_VOLUME_CLAIMS:
            await self.api.patch_namespaced_persistent_volume_claim(
                name=meta["name"], namespace=meta["namespace"], body=patch
            )
        else:
            raise ValueError(f"Unsupported dependent kind `{kind}`")
