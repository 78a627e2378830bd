import mmh3
import hashlib
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from redop.utils.helpers import canonicalize_dict
from redop.common.models.labels import Labels
from redop.utils.errors import already_exists_error
from redop.sensors import SensorDelegate
from kubernetes_asyncio.client import (
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    RbacAuthorizationV1Api,
    V1ConfigMap,
    V1DeleteOptions,
    V1Role,
    V1RoleBinding,
    V1Secret,
    V1Service,
    V1ServiceAccount,
    V1StatefulSet,
)


class Verb(str, Enum):
    """Outcome of an ensure operation."""

    CREATED = "created"
    PATCHED = "patched"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


class BaseResource:
    """Base resource model."""

    OPERATOR_NAME = "redop.io"

    sensor: SensorDelegate = None

    _cluster: str
    _namespace: str
    _labels: Labels

    def __init__(self, cluster: str, namespace: str, labels: Labels):
        self._cluster = cluster
        self._namespace = namespace
        self._labels = labels

    @property
    def cluster(self) -> str:
        return self._cluster

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def labels(self) -> Labels:
        return self._labels

    def compute_hash(self, data: Any) -> str:
        """Compute a murmur3 hash."""
        if isinstance(data, dict):
            _data = canonicalize_dict(data)
        elif isinstance(data, str):
            _data = data.encode()
        else:
            raise ValueError(f"Hash of {type(data)} is not supported.")
        mumur_str = str(mmh3.hash128(_data))

        hash_obj = hashlib.sha256(mumur_str.encode("utf-8"))
        full_hash = hash_obj.hexdigest()

        # First 16 characters are enough to detect drift
        return full_hash[:16]

    async def sync(
        self,
        resource_type: str,
        resource_name: str,
        fetch: Callable[[], Awaitable[Any]],
        create: Callable[[], Awaitable[None]],
        patch: Optional[Callable[[Any], Awaitable[None]]] = None,
        watch_fields: Optional[Callable[[Any], Dict]] = None,
        desired: Any = None,
    ) -> Verb:
        """Create the resource if missing, else patch it when its watch fields drifted.

        Without `patch` an existing resource is left as is.
        """
        actual = await fetch()
        if actual is None:
            await self._instrumented(
                resource_type, resource_name, Verb.CREATED, create()
            )
            return Verb.CREATED
        if patch is None or watch_fields is None:
            return Verb.UNCHANGED
        actual_hash = self.compute_hash(watch_fields(actual))
        desired_hash = self.compute_hash(watch_fields(desired))
        if actual_hash == desired_hash:
            return Verb.UNCHANGED
        if self.sensor:
            self.sensor.on_resource_drift_detected(
                self.cluster, resource_name, self.namespace, resource_type, ["spec"]
            )
        await self._instrumented(
            resource_type, resource_name, Verb.PATCHED, patch(actual)
        )
        return Verb.PATCHED

    async def _instrumented(
        self, resource_type: str, resource_name: str, verb: Verb, operation: Awaitable
    ):
        sensor_state = None
        if self.sensor:
            sensor_state = self.sensor.on_resource_sync_start(
                self.cluster, resource_name, self.namespace, resource_type
            )
        success, error = True, None
        try:
            return await operation
        except Exception as e:
            success, error = False, e
            raise
        finally:
            if self.sensor:
                self.sensor.on_resource_sync_complete(
                    self.cluster,
                    resource_name,
                    self.namespace,
                    resource_type,
                    sensor_state,
                    verb.value,
                    success,
                    error,
                )

    # Services

    async def fetch_service(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1Service]:
        """Retrieve the latest state of a service"""
        try:
            return await core_v1_api.read_namespaced_service(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_service(
        self, core_v1_api: CoreV1Api, namespace: str, service: V1Service
    ) -> None:
        try:
            await core_v1_api.create_namespaced_service(
                namespace=namespace, body=service
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.patch_service(
                    core_v1_api,
                    name=service.metadata.name,
                    namespace=namespace,
                    service=service,
                )
            else:
                raise

    async def patch_service(
        self,
        core_v1_api: CoreV1Api,
        name: str,
        namespace: str,
        service: Union[V1Service, List[Dict]],
    ):
        await core_v1_api.patch_namespaced_service(
            name=name,
            namespace=namespace,
            body=service,
        )

    async def delete_service(self, core_v1_api: CoreV1Api, name: str, namespace: str):
        try:
            await core_v1_api.delete_namespaced_service(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return
            raise

    # Service accounts and RBAC

    async def fetch_service_account(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1ServiceAccount]:
        try:
            return await core_v1_api.read_namespaced_service_account(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_service_account(
        self, core_v1_api: CoreV1Api, namespace: str, service_account: V1ServiceAccount
    ) -> None:
        try:
            await core_v1_api.create_namespaced_service_account(
                namespace=namespace, body=service_account
            )
        except ApiException as ex:
            if not already_exists_error(ex):
                raise

    async def fetch_role(
        self, rbac_api: RbacAuthorizationV1Api, name: str, namespace: str
    ) -> Optional[V1Role]:
        try:
            return await rbac_api.read_namespaced_role(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_role(
        self, rbac_api: RbacAuthorizationV1Api, namespace: str, role: V1Role
    ) -> None:
        try:
            await rbac_api.create_namespaced_role(namespace=namespace, body=role)
        except ApiException as ex:
            if already_exists_error(ex):
                await self.patch_role(
                    rbac_api, name=role.metadata.name, namespace=namespace, role=role
                )
            else:
                raise

    async def patch_role(
        self,
        rbac_api: RbacAuthorizationV1Api,
        name: str,
        namespace: str,
        role: Union[V1Role, List[Dict]],
    ) -> None:
        await rbac_api.patch_namespaced_role(name=name, namespace=namespace, body=role)

    async def fetch_role_binding(
        self, rbac_api: RbacAuthorizationV1Api, name: str, namespace: str
    ) -> Optional[V1RoleBinding]:
        try:
            return await rbac_api.read_namespaced_role_binding(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_role_binding(
        self,
        rbac_api: RbacAuthorizationV1Api,
        namespace: str,
        role_binding: V1RoleBinding,
    ) -> None:
        try:
            await rbac_api.create_namespaced_role_binding(
                namespace=namespace, body=role_binding
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.patch_role_binding(
                    rbac_api,
                    name=role_binding.metadata.name,
                    namespace=namespace,
                    role_binding=role_binding,
                )
            else:
                raise

    async def patch_role_binding(
        self,
        rbac_api: RbacAuthorizationV1Api,
        name: str,
        namespace: str,
        role_binding: Union[V1RoleBinding, List[Dict]],
    ) -> None:
        await rbac_api.patch_namespaced_role_binding(
            name=name, namespace=namespace, body=role_binding
        )

    # Stateful sets

    async def fetch_stateful_set(
        self, apps_v1_api: AppsV1Api, name: str, namespace: str
    ) -> Optional[V1StatefulSet]:
        try:
            return await apps_v1_api.read_namespaced_stateful_set(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_stateful_set(
        self,
        apps_v1_api: AppsV1Api,
        namespace: str,
        stateful_set: V1StatefulSet,
    ):
        try:
            await apps_v1_api.create_namespaced_stateful_set(
                namespace=namespace, body=stateful_set
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.replace_stateful_set(
                    apps_v1_api,
                    name=stateful_set.metadata.name,
                    namespace=namespace,
                    stateful_set=stateful_set,
                )
            else:
                raise

    async def replace_stateful_set(
        self,
        apps_v1_api: AppsV1Api,
        name: str,
        namespace: str,
        stateful_set: V1StatefulSet,
    ):
        await apps_v1_api.replace_namespaced_stateful_set(
            name=name, namespace=namespace, body=stateful_set
        )

    async def patch_stateful_set(
        self,
        apps_v1_api: AppsV1Api,
        name: str,
        namespace: str,
        stateful_set: Union[V1StatefulSet, List[Dict]],
    ):
        await apps_v1_api.patch_namespaced_stateful_set(
            name=name, namespace=namespace, body=stateful_set
        )

    async def list_stateful_sets(
        self, apps_v1_api: AppsV1Api, namespace: str, label_selector: str = None
    ) -> List[V1StatefulSet]:
        result = await apps_v1_api.list_namespaced_stateful_set(
            namespace=namespace, label_selector=label_selector
        )
        return result.items

    async def delete_stateful_set(
        self,
        apps_v1_api: AppsV1Api,
        name: str,
        namespace: str,
        delete_options: V1DeleteOptions = None,
    ):
        try:
            await apps_v1_api.delete_namespaced_stateful_set(
                name=name, namespace=namespace, body=delete_options
            )
        except ApiException as ex:
            if ex.status == 404:
                return
            raise

    # Config maps and secrets

    async def fetch_config_map(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1ConfigMap]:
        try:
            return await core_v1_api.read_namespaced_config_map(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_config_map(
        self, core_v1_api: CoreV1Api, namespace: str, config_map: V1ConfigMap
    ):
        try:
            await core_v1_api.create_namespaced_config_map(
                namespace=namespace, body=config_map
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.patch_config_map(
                    core_v1_api,
                    name=config_map.metadata.name,
                    namespace=namespace,
                    config_map=config_map,
                )
            else:
                raise

    async def patch_config_map(
        self,
        core_v1_api: CoreV1Api,
        name: str,
        namespace: str,
        config_map: Union[V1ConfigMap, List[Dict]],
    ):
        await core_v1_api.patch_namespaced_config_map(
            name=name,
            namespace=namespace,
            body=config_map,
        )

    async def fetch_secret(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1Secret]:
        try:
            return await core_v1_api.read_namespaced_secret(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_secret(
        self, core_v1_api: CoreV1Api, namespace: str, secret: V1Secret
    ) -> None:
        try:
            await core_v1_api.create_namespaced_secret(namespace=namespace, body=secret)
        except ApiException as ex:
            # Never overwrite credentials someone else created first
            if not already_exists_error(ex):
                raise

    # Pods

    async def list_pods(
        self, core_v1_api: CoreV1Api, namespace: str, label_selector: str = None
    ) -> List:
        result = await core_v1_api.list_namespaced_pod(
            namespace=namespace, label_selector=label_selector
        )
        return result.items

    # Custom objects

    async def get_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        name: str,
    ) -> Optional[Dict]:
        try:
            return await custom_objects_api.get_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        body: Dict,
    ) -> None:
        try:
            await custom_objects_api.create_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                body=body,
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.patch_custom_object(
                    custom_objects_api,
                    namespace,
                    group,
                    version,
                    plural,
                    body["metadata"]["name"],
                    {"spec": body["spec"]},
                )
            else:
                raise

    async def patch_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        name: str,
        body: Dict,
    ) -> None:
        await custom_objects_api.patch_namespaced_custom_object(
            group=group,
            version=version,
            namespace=namespace,
            plural=plural,
            name=name,
            body=body,
        )

    async def delete_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        name: str,
    ) -> bool:
        try:
            await custom_objects_api.delete_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        except ApiException as ex:
            if ex.status == 404:
                return False
            raise
        return True
