import kopf
import logging
import redop.handlers.redis as redis
import redop.handlers.probes as probes
from redop.types.settings import Settings
from redop.client import (
    KopfEventRecorder,
    KubernetesDependentClient,
    KubernetesResourceStore,
)
from redop.controller import (
    Controller,
    LifecycleReconciler,
    ObjectCache,
    TerminationPolicyEngine,
    WatchDispatcher,
    WorkQueue,
)
from redop.resources import BaseResource, RedisResource
from redop.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from kubernetes_asyncio import config
from kubernetes_asyncio.client import CoreV1Api, CustomObjectsApi
from kubernetes_asyncio.client.api_client import ApiClient


@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # Load Kubernetes config - try in-cluster first (for production), then local kubeconfig (for dev)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    conf = Settings()
    memo.conf = conf

    # Create a shared ApiClient for all resources to prevent connection leaks
    shared_client = ApiClient()
    memo.api_client = shared_client
    RedisResource.shared_api_client = shared_client
    logger.info("Shared Kubernetes API client initialized")

    sensor_delegate = SensorDelegate()
    sensor_delegate.add(PrometheusMonitor())
    memo.sensor = sensor_delegate
    BaseResource.sensor = sensor_delegate
    logger.info("Sensor infrastructure initialized with PrometheusMonitor")

    try:
        init_metrics_server(conf.metrics_port)
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logger.warning("Continuing without metrics server")

    store = KubernetesResourceStore(
        CustomObjectsApi(shared_client),
        RedisResource.GROUP_NAME,
        RedisResource.GROUP_VERSION,
        RedisResource.PLURAL_NAME,
        conf=conf,
    )
    dependents = KubernetesDependentClient(CoreV1Api(shared_client), conf=conf)

    def resource_factory(db, spec):
        return RedisResource.from_spec(db, spec, conf)

    cache = ObjectCache()
    queue = WorkQueue(conf, sensor=sensor_delegate)
    reconciler = LifecycleReconciler(
        cache,
        store,
        KopfEventRecorder(),
        TerminationPolicyEngine(dependents, resource_factory),
        conf=conf,
        resource_factory=resource_factory,
        sensor=sensor_delegate,
    )
    controller = Controller(
        reconciler,
        queue,
        WatchDispatcher(queue, cache, conf),
        conf=conf,
        sensor=sensor_delegate,
    )
    await controller.start()
    memo.controller = controller

    # Watch handlers only hand events over; keep Kopf's own workers few
    settings.batching.worker_limit = 2

    # Post warnings and errors from handler logs as events on the object
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING


@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    controller = getattr(memo, "controller", None)
    if controller is not None:
        await controller.stop()

    api_client = getattr(memo, "api_client", None)
    if api_client is not None:
        await api_client.close()
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "redis",
    "probes",
]
