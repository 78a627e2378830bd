import kopf
import logging
from typing import Dict

logger = logging.getLogger(__name__)


class EventRecorder:
    """Attach human-readable events to a Redis object."""

    def event(self, body: Dict, type: str, reason: str, message: str) -> None:
        raise NotImplementedError()


class KopfEventRecorder(EventRecorder):
    """Posts events through Kopf's event poster."""

    def event(self, body: Dict, type: str, reason: str, message: str) -> None:
        try:
            kopf.event(body, type=type, reason=reason, message=message)
        except Exception as e:
            # Event posting must never break a reconciliation
            logger.warning(f"Failed to post {type} event {reason}: {e}")
