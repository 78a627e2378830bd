"""Kopf watch handlers feeding Redis and secret events into the controller."""
import kopf
import logging
from logging import Logger
from redop.common.models.labels import Labels
from redop.controller import Collection, WatchEvent, WatchEventType
from redop.resources import RedisResource

_EVENT_TYPES = {
    None: WatchEventType.ADDED,
    "ADDED": WatchEventType.ADDED,
    "MODIFIED": WatchEventType.UPDATED,
    "DELETED": WatchEventType.DELETED,
}


class HandlerLogFilter(logging.Filter):
    def filter(self, record):
        """Per-event handler success logs are noisy so we filter them out."""
        message = record.getMessage()
        return not (message.startswith("Handler 'on_") and "succeeded" in message)


kopf_logger = logging.getLogger("kopf.objects")
kopf_logger.addFilter(HandlerLogFilter())


def submit(memo: kopf.Memo, event, collection: Collection, logger: Logger) -> None:
    controller = getattr(memo, "controller", None)
    if controller is None:
        logger.debug("Controller not started yet, ignoring event")
        return
    event_type = _EVENT_TYPES.get(event.get("type"))
    if event_type is None:
        return
    controller.submit(WatchEvent(event_type, collection, event["object"]))


@kopf.on.event(
    RedisResource.GROUP_NAME, RedisResource.GROUP_VERSION, RedisResource.PLURAL_NAME
)
async def on_redis_event(event, memo: kopf.Memo, logger: Logger, **kwargs):
    submit(memo, event, Collection.DATABASE, logger)


@kopf.on.event(
    "",
    "v1",
    "secrets",
    labels={Labels.KUBERNETES_NAME_LABEL: Labels.RESOURCE_FQN},
)
async def on_secret_event(event, memo: kopf.Memo, logger: Logger, **kwargs):
    submit(memo, event, Collection.SECRET, logger)
