import secrets
import logging
from functools import cached_property
from logging import Logger
from typing import Dict, List, Optional
from redop.types.settings import Settings
from redop.types.models.redis_spec import RedisSpec, RedisMode, StorageType
from redop.types.models.redis_resources import RedisResources
from redop.common.models.labels import Labels
from redop.resources.base import BaseResource, Verb
from kubernetes_asyncio.client import (
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    RbacAuthorizationV1Api,
    V1ObjectMeta,
    V1OwnerReference,
    V1Service,
    V1ServiceSpec,
    V1ServicePort,
    V1ServiceAccount,
    V1Role,
    V1PolicyRule,
    V1RoleBinding,
    V1RoleRef,
    RbacV1Subject,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1LabelSelector,
    V1PodTemplateSpec,
    V1PodSpec,
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1EnvVarSource,
    V1SecretKeySelector,
    V1VolumeMount,
    V1Volume,
    V1EmptyDirVolumeSource,
    V1ConfigMapVolumeSource,
    V1SecretVolumeSource,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1ConfigMap,
    V1Secret,
    V1DeleteOptions,
)
from kubernetes_asyncio.client.api_client import ApiClient


class RedisResource(BaseResource):
    """Dependents of one Redis database and the ensure operations converging them."""

    logger: Logger
    conf: Settings
    shared_api_client: ApiClient = None

    KIND = "Redis"
    GROUP_NAME = "redop.io"
    GROUP_VERSION = "v1alpha1"
    PLURAL_NAME = "redises"

    APP_BINDING_GROUP = "appcatalog.appscode.com"
    APP_BINDING_VERSION = "v1alpha1"
    APP_BINDING_PLURAL = "appbindings"
    APP_BINDING_TYPE = "redop.io/redis"

    SERVICE_MONITOR_GROUP = "monitoring.coreos.com"
    SERVICE_MONITOR_VERSION = "v1"
    SERVICE_MONITOR_PLURAL = "servicemonitors"

    STATS_ROLE_LABEL = "redop.io/role"
    STATS_ROLE = "stats"

    REDIS_CONTAINER_NAME = "redis"
    EXPORTER_CONTAINER_NAME = "exporter"
    EXPORTER_IMAGE = "oliver006/redis_exporter:v1.62.0"
    DB_PORT_NAME = "db"
    DB_PORT = 6379
    GOSSIP_PORT_NAME = "gossip"
    GOSSIP_PORT = 16379
    METRICS_PORT_NAME = "metrics"
    METRICS_PORT = 9121

    DATA_VOLUME = "data"
    DATA_DIR = "/data"
    CONFIG_VOLUME = "config"
    CONFIG_DIR = "/conf"
    CUSTOM_CONFIG_VOLUME = "custom-config"
    CUSTOM_CONFIG_DIR = "/usr/local/etc/redis"
    TLS_VOLUME = "tls"
    TLS_DIR = "/certs"
    CONFIG_FILE = "redis.conf"
    AUTH_PASSWORD_KEY = "password"
    AUTH_USERNAME_KEY = "username"

    name: str
    uid: str
    api_version: str
    spec: RedisSpec

    service_name: str
    governing_service_name: str
    stats_service_name: str
    service_monitor_name: str
    config_map_name: str
    service_account_name: str
    role_name: str
    role_binding_name: str
    app_binding_name: str
    auth_secret_name: str

    _api_client: ApiClient = None

    def __init__(self, name: str, namespace: str):
        super().__init__(
            cluster=name,
            namespace=namespace,
            labels=Labels.generate_offshoot_labels(name, self.OPERATOR_NAME),
        )

    @classmethod
    def from_spec(
        self,
        db: Dict,
        spec: RedisSpec,
        conf: Settings = None,
        logger: Logger = None,
    ) -> "RedisResource":
        meta = db["metadata"]
        name = meta["name"]
        redis = RedisResource(name, meta.get("namespace"))
        redis.logger = logger or logging.getLogger(__name__)
        redis.conf = conf or Settings()
        redis.name = name
        redis.uid = meta.get("uid")
        redis.api_version = db.get(
            "apiVersion", f"{self.GROUP_NAME}/{self.GROUP_VERSION}"
        )
        redis.spec = spec
        redis.service_name = RedisResources.service_name(name)
        redis.governing_service_name = RedisResources.governing_service_name(name)
        redis.stats_service_name = RedisResources.stats_service_name(name)
        redis.service_monitor_name = RedisResources.service_monitor_name(name)
        redis.config_map_name = RedisResources.config_map_name(name)
        redis.service_account_name = RedisResources.service_account_name(name)
        redis.role_name = RedisResources.role_name(name)
        redis.role_binding_name = RedisResources.role_binding_name(name)
        redis.app_binding_name = RedisResources.app_binding_name(name)
        redis.auth_secret_name = RedisResources.auth_secret_name(name, spec)
        return redis

    # =============================================================================
    # Ensure operations
    # =============================================================================

    async def ensure_governing_service(self) -> Verb:
        """Headless service giving every redis pod a stable DNS name."""
        return await self.sync(
            "governing_service",
            self.governing_service_name,
            fetch=lambda: self.fetch_service(
                self.core_v1_api, self.governing_service_name, self.namespace
            ),
            create=lambda: self.create_service(
                self.core_v1_api, self.namespace, self.governing_service
            ),
            patch=lambda actual: self.patch_service(
                self.core_v1_api,
                self.governing_service_name,
                self.namespace,
                self.prepare_service_patch(self.governing_service),
            ),
            watch_fields=self.prepare_service_watch_fields,
            desired=self.governing_service,
        )

    async def ensure_config(self) -> Verb:
        """Config map with the cluster-mode redis.conf."""
        return await self.sync(
            "config_map",
            self.config_map_name,
            fetch=lambda: self.fetch_config_map(
                self.core_v1_api, self.config_map_name, self.namespace
            ),
            create=lambda: self.create_config_map(
                self.core_v1_api, self.namespace, self.config_map
            ),
            patch=lambda actual: self.patch_config_map(
                self.core_v1_api,
                self.config_map_name,
                self.namespace,
                [{"op": "replace", "path": "/data", "value": self.config_map.data}],
            ),
            watch_fields=lambda cm: {"data": cm.data},
            desired=self.config_map,
        )

    async def ensure_rbac(self) -> Verb:
        """Service account, role and role binding the redis pods run as."""
        verbs = [
            await self.sync(
                "service_account",
                self.service_account_name,
                fetch=lambda: self.fetch_service_account(
                    self.core_v1_api, self.service_account_name, self.namespace
                ),
                create=lambda: self.create_service_account(
                    self.core_v1_api, self.namespace, self.service_account
                ),
            ),
            await self.sync(
                "role",
                self.role_name,
                fetch=lambda: self.fetch_role(
                    self.rbac_api, self.role_name, self.namespace
                ),
                create=lambda: self.create_role(
                    self.rbac_api, self.namespace, self.role
                ),
                patch=lambda actual: self.patch_role(
                    self.rbac_api,
                    self.role_name,
                    self.namespace,
                    [{"op": "replace", "path": "/rules", "value": self.role.rules}],
                ),
                watch_fields=self.prepare_role_watch_fields,
                desired=self.role,
            ),
            await self.sync(
                "role_binding",
                self.role_binding_name,
                fetch=lambda: self.fetch_role_binding(
                    self.rbac_api, self.role_binding_name, self.namespace
                ),
                create=lambda: self.create_role_binding(
                    self.rbac_api, self.namespace, self.role_binding
                ),
            ),
        ]
        return self.merge_verbs(verbs)

    async def ensure_auth_secret(self) -> Verb:
        """Generate credentials into the auth secret unless it already exists."""
        return await self.sync(
            "auth_secret",
            self.auth_secret_name,
            fetch=lambda: self.fetch_secret(
                self.core_v1_api, self.auth_secret_name, self.namespace
            ),
            create=lambda: self.create_secret(
                self.core_v1_api, self.namespace, self.prepare_auth_secret()
            ),
        )

    async def ensure_service(self) -> Verb:
        """Primary client-facing service."""
        return await self.sync(
            "service",
            self.service_name,
            fetch=lambda: self.fetch_service(
                self.core_v1_api, self.service_name, self.namespace
            ),
            create=lambda: self.create_service(
                self.core_v1_api, self.namespace, self.service
            ),
            patch=lambda actual: self.patch_service(
                self.core_v1_api,
                self.service_name,
                self.namespace,
                self.prepare_service_patch(self.service),
            ),
            watch_fields=self.prepare_service_watch_fields,
            desired=self.service,
        )

    async def missing_certificate_secrets(self) -> List[str]:
        """Names of TLS certificate secrets that have not been issued yet."""
        if not self.spec.tls:
            return []
        missing = []
        for alias in RedisResources.TLS_CERT_ALIASES:
            name = RedisResources.cert_secret_name(self.name, self.spec, alias)
            if await self.fetch_secret(self.core_v1_api, name, self.namespace) is None:
                missing.append(name)
        return missing

    async def ensure_stateful_sets(self) -> Verb:
        """One stateful set for a standalone database, one per shard in cluster mode."""
        verbs = []
        for stateful_set in self.stateful_sets:
            name = stateful_set.metadata.name
            verbs.append(
                await self.sync(
                    "stateful_set",
                    name,
                    fetch=lambda name=name: self.fetch_stateful_set(
                        self.apps_v1_api, name, self.namespace
                    ),
                    create=lambda sts=stateful_set: self.create_stateful_set(
                        self.apps_v1_api, self.namespace, sts
                    ),
                    patch=lambda actual, sts=stateful_set: self.patch_stateful_set(
                        self.apps_v1_api,
                        sts.metadata.name,
                        self.namespace,
                        self.prepare_statefulset_patch(sts),
                    ),
                    watch_fields=self.prepare_statefulset_watch_fields,
                    desired=stateful_set,
                )
            )
        return self.merge_verbs(verbs)

    async def ensure_app_binding(self) -> Verb:
        """AppBinding telling other tools how to connect to this database."""
        return await self.sync(
            "app_binding",
            self.app_binding_name,
            fetch=lambda: self.get_custom_object(
                self.custom_objects_api,
                self.namespace,
                self.APP_BINDING_GROUP,
                self.APP_BINDING_VERSION,
                self.APP_BINDING_PLURAL,
                self.app_binding_name,
            ),
            create=lambda: self.create_custom_object(
                self.custom_objects_api,
                self.namespace,
                self.APP_BINDING_GROUP,
                self.APP_BINDING_VERSION,
                self.APP_BINDING_PLURAL,
                self.app_binding,
            ),
            patch=lambda actual: self.patch_custom_object(
                self.custom_objects_api,
                self.namespace,
                self.APP_BINDING_GROUP,
                self.APP_BINDING_VERSION,
                self.APP_BINDING_PLURAL,
                self.app_binding_name,
                {"spec": self.app_binding["spec"]},
            ),
            watch_fields=lambda obj: {"spec": obj.get("spec")},
            desired=self.app_binding,
        )

    async def ensure_stats_service(self) -> Verb:
        """Service exposing the exporter; removed when monitoring is off."""
        if not self.spec.monitor:
            existing = await self.fetch_service(
                self.core_v1_api, self.stats_service_name, self.namespace
            )
            if existing is None:
                return Verb.UNCHANGED
            await self._instrumented(
                "stats_service",
                self.stats_service_name,
                Verb.DELETED,
                self.delete_service(
                    self.core_v1_api, self.stats_service_name, self.namespace
                ),
            )
            return Verb.DELETED
        return await self.sync(
            "stats_service",
            self.stats_service_name,
            fetch=lambda: self.fetch_service(
                self.core_v1_api, self.stats_service_name, self.namespace
            ),
            create=lambda: self.create_service(
                self.core_v1_api, self.namespace, self.stats_service
            ),
            patch=lambda actual: self.patch_service(
                self.core_v1_api,
                self.stats_service_name,
                self.namespace,
                self.prepare_service_patch(self.stats_service),
            ),
            watch_fields=self.prepare_service_watch_fields,
            desired=self.stats_service,
        )

    async def manage_monitor(self) -> Verb:
        """Create the ServiceMonitor when monitoring is on, delete it otherwise."""
        if not self.spec.monitor:
            deleted = await self.delete_monitor()
            return Verb.DELETED if deleted else Verb.UNCHANGED
        return await self.sync(
            "service_monitor",
            self.service_monitor_name,
            fetch=lambda: self.get_custom_object(
                self.custom_objects_api,
                self.namespace,
                self.SERVICE_MONITOR_GROUP,
                self.SERVICE_MONITOR_VERSION,
                self.SERVICE_MONITOR_PLURAL,
                self.service_monitor_name,
            ),
            create=lambda: self.create_custom_object(
                self.custom_objects_api,
                self.namespace,
                self.SERVICE_MONITOR_GROUP,
                self.SERVICE_MONITOR_VERSION,
                self.SERVICE_MONITOR_PLURAL,
                self.service_monitor,
            ),
            patch=lambda actual: self.patch_custom_object(
                self.custom_objects_api,
                self.namespace,
                self.SERVICE_MONITOR_GROUP,
                self.SERVICE_MONITOR_VERSION,
                self.SERVICE_MONITOR_PLURAL,
                self.service_monitor_name,
                {"spec": self.service_monitor["spec"]},
            ),
            watch_fields=lambda obj: {"spec": obj.get("spec")},
            desired=self.service_monitor,
        )

    async def delete_monitor(self) -> bool:
        return await self.delete_custom_object(
            self.custom_objects_api,
            self.namespace,
            self.SERVICE_MONITOR_GROUP,
            self.SERVICE_MONITOR_VERSION,
            self.SERVICE_MONITOR_PLURAL,
            self.service_monitor_name,
        )

    async def halt_database(self) -> None:
        """Delete the workload and services. Volume claims and secrets are kept."""
        selector = self.labels.offshoot_selectors().as_str()
        for stateful_set in await self.list_stateful_sets(
            self.apps_v1_api, self.namespace, label_selector=selector
        ):
            self.logger.info(f"Deleting stateful set {stateful_set.metadata.name}")
            await self.delete_stateful_set(
                self.apps_v1_api,
                stateful_set.metadata.name,
                self.namespace,
                V1DeleteOptions(propagation_policy="Background"),
            )
        for name in (
            self.service_name,
            self.governing_service_name,
            self.stats_service_name,
        ):
            await self.delete_service(self.core_v1_api, name, self.namespace)

    async def workload_gone(self) -> bool:
        """True once no stateful sets or pods of the database remain."""
        selector = self.labels.offshoot_selectors().as_str()
        stateful_sets = await self.list_stateful_sets(
            self.apps_v1_api, self.namespace, label_selector=selector
        )
        if stateful_sets:
            return False
        pods = await self.list_pods(
            self.core_v1_api, self.namespace, label_selector=selector
        )
        return not pods

    @classmethod
    def merge_verbs(self, verbs: List[Verb]) -> Verb:
        """Collapse the verbs of several objects into one."""
        if verbs and all(verb == Verb.CREATED for verb in verbs):
            return Verb.CREATED
        if any(verb != Verb.UNCHANGED for verb in verbs):
            return Verb.PATCHED
        return Verb.UNCHANGED

    # =============================================================================
    # Desired state
    # =============================================================================

    def prepare_owner_references(self) -> List[V1OwnerReference]:
        return [
            V1OwnerReference(
                api_version=self.api_version,
                kind=self.KIND,
                name=self.name,
                uid=self.uid,
                controller=True,
                block_owner_deletion=True,
            )
        ]

    def prepare_metadata(self, name: str, labels: Labels = None) -> V1ObjectMeta:
        return V1ObjectMeta(
            name=name,
            namespace=self.namespace,
            labels=(labels or self.labels).as_dict(),
            owner_references=self.prepare_owner_references(),
        )

    def prepare_db_ports(self) -> List[V1ServicePort]:
        ports = [
            V1ServicePort(
                name=self.DB_PORT_NAME,
                protocol="TCP",
                port=self.DB_PORT,
                target_port=self.DB_PORT_NAME,
            )
        ]
        if self.cluster_mode:
            ports.append(
                V1ServicePort(
                    name=self.GOSSIP_PORT_NAME,
                    protocol="TCP",
                    port=self.GOSSIP_PORT,
                    target_port=self.GOSSIP_PORT_NAME,
                )
            )
        return ports

    def prepare_service(self) -> V1Service:
        """Build the primary service resource."""
        service = V1Service(
            api_version="v1",
            kind="Service",
            metadata=self.prepare_metadata(self.service_name),
            spec=V1ServiceSpec(
                selector=self.labels.offshoot_selectors().as_dict(),
                type="ClusterIP",
                ports=self.prepare_db_ports()[:1],
            ),
        )
        return service

    def prepare_governing_service(self) -> V1Service:
        """Build the headless governing service resource."""
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self.prepare_metadata(self.governing_service_name),
            spec=V1ServiceSpec(
                selector=self.labels.offshoot_selectors().as_dict(),
                cluster_ip="None",
                publish_not_ready_addresses=True,
                ports=self.prepare_db_ports(),
            ),
        )

    def prepare_stats_service(self) -> V1Service:
        labels = Labels(self.labels.as_dict()).include(
            self.STATS_ROLE_LABEL, self.STATS_ROLE
        )
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self.prepare_metadata(self.stats_service_name, labels),
            spec=V1ServiceSpec(
                selector=self.labels.offshoot_selectors().as_dict(),
                type="ClusterIP",
                ports=[
                    V1ServicePort(
                        name=self.METRICS_PORT_NAME,
                        protocol="TCP",
                        port=self.METRICS_PORT,
                        target_port=self.METRICS_PORT_NAME,
                    )
                ],
            ),
        )

    def prepare_service_patch(self, service: V1Service) -> List[Dict]:
        """A service can only have certain fields updated via patch."""
        return [
            {"op": "replace", "path": "/spec/selector", "value": service.spec.selector},
            {"op": "replace", "path": "/spec/ports", "value": service.spec.ports},
        ]

    def prepare_service_watch_fields(self, service: V1Service) -> Dict:
        """
        Prepare fields of interest when comparing actual vs desired state.
        These fields are tracked for changes made outside the operator and are used to
        determine if a patch is needed.
        """
        return {
            "spec": {
                "selector": service.spec.selector,
                "ports": [
                    {"name": port.name, "port": port.port}
                    for port in service.spec.ports or []
                ],
            },
        }

    def prepare_config_map(self) -> V1ConfigMap:
        conf = "\n".join(
            [
                "cluster-enabled yes",
                f"cluster-config-file {self.DATA_DIR}/nodes.conf",
                "cluster-node-timeout 5000",
                f"dir {self.DATA_DIR}",
                "appendonly yes",
                "",
            ]
        )
        return V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=self.prepare_metadata(self.config_map_name),
            data={self.CONFIG_FILE: conf},
        )

    def prepare_service_account(self) -> V1ServiceAccount:
        return V1ServiceAccount(
            api_version="v1",
            kind="ServiceAccount",
            metadata=self.prepare_metadata(self.service_account_name),
        )

    def prepare_role(self) -> V1Role:
        return V1Role(
            api_version="rbac.authorization.k8s.io/v1",
            kind="Role",
            metadata=self.prepare_metadata(self.role_name),
            rules=[
                V1PolicyRule(
                    api_groups=[""],
                    resources=["pods"],
                    verbs=["get", "list", "watch", "patch"],
                ),
                V1PolicyRule(
                    api_groups=[""],
                    resources=["secrets"],
                    resource_names=RedisResources.named_secret_names(
                        self.name, self.spec
                    ),
                    verbs=["get"],
                ),
            ],
        )

    def prepare_role_watch_fields(self, role: V1Role) -> Dict:
        return {
            "rules": [
                {
                    "apiGroups": rule.api_groups,
                    "resources": rule.resources,
                    "resourceNames": rule.resource_names,
                    "verbs": rule.verbs,
                }
                for rule in role.rules or []
            ]
        }

    def prepare_role_binding(self) -> V1RoleBinding:
        return V1RoleBinding(
            api_version="rbac.authorization.k8s.io/v1",
            kind="RoleBinding",
            metadata=self.prepare_metadata(self.role_binding_name),
            role_ref=V1RoleRef(
                api_group="rbac.authorization.k8s.io",
                kind="Role",
                name=self.role_name,
            ),
            subjects=[
                RbacV1Subject(
                    kind="ServiceAccount",
                    name=self.service_account_name,
                    namespace=self.namespace,
                )
            ],
        )

    def prepare_auth_secret(self) -> V1Secret:
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=self.prepare_metadata(self.auth_secret_name),
            type="kubernetes.io/basic-auth",
            string_data={
                self.AUTH_USERNAME_KEY: "default",
                self.AUTH_PASSWORD_KEY: secrets.token_urlsafe(24),
            },
        )

    def prepare_redis_args(self) -> List[str]:
        args = ["redis-server"]
        if self.cluster_mode:
            args.append(f"{self.CONFIG_DIR}/{self.CONFIG_FILE}")
        if self.spec.config_secret:
            args.extend(["--include", f"{self.CUSTOM_CONFIG_DIR}/{self.CONFIG_FILE}"])
        args.extend(["--requirepass", "$(REDIS_PASSWORD)"])
        if self.spec.tls:
            args.extend(
                [
                    "--tls-port",
                    str(self.DB_PORT),
                    "--port",
                    "0",
                    "--tls-cert-file",
                    f"{self.TLS_DIR}/server/tls.crt",
                    "--tls-key-file",
                    f"{self.TLS_DIR}/server/tls.key",
                    "--tls-ca-cert-file",
                    f"{self.TLS_DIR}/server/ca.crt",
                ]
            )
            if self.cluster_mode:
                args.extend(["--tls-cluster", "yes"])
        return args

    def prepare_password_env(self) -> V1EnvVar:
        return V1EnvVar(
            name="REDIS_PASSWORD",
            value_from=V1EnvVarSource(
                secret_key_ref=V1SecretKeySelector(
                    name=self.auth_secret_name, key=self.AUTH_PASSWORD_KEY
                )
            ),
        )

    def prepare_volume_mounts(self) -> List[V1VolumeMount]:
        mounts = [V1VolumeMount(name=self.DATA_VOLUME, mount_path=self.DATA_DIR)]
        if self.cluster_mode:
            mounts.append(
                V1VolumeMount(name=self.CONFIG_VOLUME, mount_path=self.CONFIG_DIR)
            )
        if self.spec.config_secret:
            mounts.append(
                V1VolumeMount(
                    name=self.CUSTOM_CONFIG_VOLUME, mount_path=self.CUSTOM_CONFIG_DIR
                )
            )
        if self.spec.tls:
            mounts.append(
                V1VolumeMount(
                    name=self.TLS_VOLUME,
                    mount_path=f"{self.TLS_DIR}/server",
                    read_only=True,
                )
            )
        return mounts

    def prepare_volumes(self) -> List[V1Volume]:
        volumes = []
        if not self.durable:
            volumes.append(
                V1Volume(name=self.DATA_VOLUME, empty_dir=V1EmptyDirVolumeSource())
            )
        if self.cluster_mode:
            volumes.append(
                V1Volume(
                    name=self.CONFIG_VOLUME,
                    config_map=V1ConfigMapVolumeSource(name=self.config_map_name),
                )
            )
        if self.spec.config_secret:
            volumes.append(
                V1Volume(
                    name=self.CUSTOM_CONFIG_VOLUME,
                    secret=V1SecretVolumeSource(
                        secret_name=self.spec.config_secret.name
                    ),
                )
            )
        if self.spec.tls:
            volumes.append(
                V1Volume(
                    name=self.TLS_VOLUME,
                    secret=V1SecretVolumeSource(
                        secret_name=RedisResources.cert_secret_name(
                            self.name, self.spec, RedisResources.TLS_SERVER_CERT
                        )
                    ),
                )
            )
        return volumes

    def prepare_redis_container(self) -> V1Container:
        ports = [
            V1ContainerPort(
                name=self.DB_PORT_NAME, container_port=self.DB_PORT, protocol="TCP"
            )
        ]
        if self.cluster_mode:
            ports.append(
                V1ContainerPort(
                    name=self.GOSSIP_PORT_NAME,
                    container_port=self.GOSSIP_PORT,
                    protocol="TCP",
                )
            )
        return V1Container(
            name=self.REDIS_CONTAINER_NAME,
            image=self.image,
            args=self.prepare_redis_args(),
            env=[self.prepare_password_env()],
            ports=ports,
            volume_mounts=self.prepare_volume_mounts(),
        )

    def prepare_exporter_container(self) -> V1Container:
        return V1Container(
            name=self.EXPORTER_CONTAINER_NAME,
            image=self.EXPORTER_IMAGE,
            env=[self.prepare_password_env()],
            ports=[
                V1ContainerPort(
                    name=self.METRICS_PORT_NAME,
                    container_port=self.METRICS_PORT,
                    protocol="TCP",
                )
            ],
        )

    def prepare_volume_claim_templates(self) -> Optional[List[V1PersistentVolumeClaim]]:
        if not self.durable:
            return None
        storage = self.spec.storage
        return [
            V1PersistentVolumeClaim(
                metadata=V1ObjectMeta(
                    name=self.DATA_VOLUME, labels=self.labels.as_dict()
                ),
                spec=V1PersistentVolumeClaimSpec(
                    access_modes=storage.access_modes,
                    storage_class_name=storage.storage_class_name,
                    resources={"requests": {"storage": storage.size}},
                ),
            )
        ]

    def prepare_statefulset(self, shard: int = None) -> V1StatefulSet:
        labels = Labels(self.labels.as_dict())
        selector = self.labels.offshoot_selectors()
        if shard is not None:
            labels.include_shard(shard)
            selector.include_shard(shard)
        containers = [self.prepare_redis_container()]
        if self.spec.monitor:
            containers.append(self.prepare_exporter_container())
        return V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=self.prepare_metadata(
                RedisResources.stateful_set_name(self.name, shard), labels
            ),
            spec=V1StatefulSetSpec(
                replicas=self.prepare_statefulset_replicas(),
                service_name=self.governing_service_name,
                pod_management_policy="OrderedReady",
                selector=V1LabelSelector(match_labels=selector.as_dict()),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels.as_dict()),
                    spec=V1PodSpec(
                        service_account_name=self.service_account_name,
                        containers=containers,
                        volumes=self.prepare_volumes() or None,
                    ),
                ),
                volume_claim_templates=self.prepare_volume_claim_templates(),
            ),
        )

    def prepare_statefulset_replicas(self) -> int:
        if self.cluster_mode:
            # One master plus its replicas per shard
            return 1 + self.spec.cluster.replicas
        return self.spec.replicas or 1

    def prepare_statefulset_patch(self, stateful_set: V1StatefulSet) -> List[Dict]:
        """Selector, service name and claim templates are immutable; only these change."""
        return [
            {
                "op": "replace",
                "path": "/spec/replicas",
                "value": stateful_set.spec.replicas,
            },
            {
                "op": "replace",
                "path": "/spec/template",
                "value": stateful_set.spec.template,
            },
        ]

    def prepare_statefulset_watch_fields(self, stateful_set: V1StatefulSet) -> Dict:
        containers = stateful_set.spec.template.spec.containers or []
        return {
            "spec": {
                "replicas": stateful_set.spec.replicas,
                "containers": [
                    {
                        "name": container.name,
                        "image": container.image,
                        "args": container.args,
                    }
                    for container in containers
                ],
            },
        }

    def prepare_app_binding(self) -> Dict:
        return {
            "apiVersion": f"{self.APP_BINDING_GROUP}/{self.APP_BINDING_VERSION}",
            "kind": "AppBinding",
            "metadata": self.api_client.sanitize_for_serialization(
                self.prepare_metadata(self.app_binding_name)
            ),
            "spec": {
                "type": self.APP_BINDING_TYPE,
                "version": self.spec.version,
                "clientConfig": {
                    "service": {
                        "name": self.service_name,
                        "scheme": "rediss" if self.spec.tls else "redis",
                        "port": self.DB_PORT,
                    }
                },
                "secret": {"name": self.auth_secret_name},
            },
        }

    def prepare_service_monitor(self) -> Dict:
        return {
            "apiVersion": f"{self.SERVICE_MONITOR_GROUP}/{self.SERVICE_MONITOR_VERSION}",
            "kind": "ServiceMonitor",
            "metadata": self.api_client.sanitize_for_serialization(
                self.prepare_metadata(self.service_monitor_name)
            ),
            "spec": {
                "selector": {
                    "matchLabels": {
                        **self.labels.offshoot_selectors().as_dict(),
                        self.STATS_ROLE_LABEL: self.STATS_ROLE,
                    }
                },
                "namespaceSelector": {"matchNames": [self.namespace]},
                "endpoints": [
                    {
                        "port": self.METRICS_PORT_NAME,
                        "interval": self.spec.monitor.interval,
                    }
                ],
            },
        }

    @cached_property
    def cluster_mode(self) -> bool:
        return self.spec.mode == RedisMode.CLUSTER

    @cached_property
    def durable(self) -> bool:
        return self.spec.storage_type == StorageType.DURABLE

    @cached_property
    def image(self) -> str:
        return f"{self.conf.redis_image}:{self.spec.version}"

    @cached_property
    def service(self) -> V1Service:
        return self.prepare_service()

    @cached_property
    def governing_service(self) -> V1Service:
        return self.prepare_governing_service()

    @cached_property
    def stats_service(self) -> V1Service:
        return self.prepare_stats_service()

    @cached_property
    def config_map(self) -> V1ConfigMap:
        return self.prepare_config_map()

    @cached_property
    def service_account(self) -> V1ServiceAccount:
        return self.prepare_service_account()

    @cached_property
    def role(self) -> V1Role:
        return self.prepare_role()

    @cached_property
    def role_binding(self) -> V1RoleBinding:
        return self.prepare_role_binding()

    @cached_property
    def stateful_sets(self) -> List[V1StatefulSet]:
        if self.cluster_mode:
            return [
                self.prepare_statefulset(shard)
                for shard in range(self.spec.cluster.master)
            ]
        return [self.prepare_statefulset()]

    @cached_property
    def app_binding(self) -> Dict:
        return self.prepare_app_binding()

    @cached_property
    def service_monitor(self) -> Dict:
        return self.prepare_service_monitor()

    @cached_property
    def api_client(self) -> ApiClient:
        if self._api_client is None:
            # Use the shared API client if available, otherwise create a new one
            if self.shared_api_client is not None:
                self._api_client = self.shared_api_client
            else:
                self._api_client = ApiClient()
        return self._api_client

    @cached_property
    def apps_v1_api(self) -> AppsV1Api:
        return AppsV1Api(self.api_client)

    @cached_property
    def core_v1_api(self) -> CoreV1Api:
        return CoreV1Api(self.api_client)

    @cached_property
    def rbac_api(self) -> RbacAuthorizationV1Api:
        return RbacAuthorizationV1Api(self.api_client)

    @cached_property
    def custom_objects_api(self) -> CustomObjectsApi:
        return CustomObjectsApi(self.api_client)
