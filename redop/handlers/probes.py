import datetime
import kopf


@kopf.on.probe(id="now")
def get_current_timestamp(**kwargs):
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@kopf.on.probe(id="queue_depth")
def get_queue_depth(memo: kopf.Memo, **kwargs):
    controller = getattr(memo, "controller", None)
    return len(controller.queue) if controller else 0
