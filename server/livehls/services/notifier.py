from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from livehls.clients.control_plane_client import ControlPlaneClient
from livehls.config.config import ControlPlaneCfg
from livehls.runtimes.stream_registry import StreamEntry

logger = logging.getLogger(__name__)


class NotifyEvent(str, Enum):
    START = "start"
    STOP = "stop"


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of a best-effort notification. Callers may ignore it."""

    delivered: bool
    message: Optional[str] = None
    skipped: bool = False


class NotificationDispatcher:
    """
    At-most-once, fire-and-forget start/stop events to the control plane.
    One HTTP round-trip per call, no retry, no queue. The registry stays
    authoritative whether or not the control plane hears about an event.
    """

    def __init__(self, cfg: ControlPlaneCfg, client: Optional[ControlPlaneClient] = None):
        self.cfg = cfg
        self.client = client or ControlPlaneClient(cfg.url, timeout_s=cfg.timeout_s)

    def notify(self, event: NotifyEvent, key: str, entry: Optional[StreamEntry] = None) -> NotificationResult:
        event = NotifyEvent(event)
        if not self.cfg.enabled:
            logger.debug("[%s] control plane disabled, %s not sent", key, event.value)
            return NotificationResult(delivered=False, message="disabled", skipped=True)

        title = (entry.title if entry else None) or f"Stream {key}"
        description = (entry.description if entry else None) or self.cfg.default_description
        thumbnail = (entry.thumbnail if entry else None) or self.cfg.default_thumbnail
        relay_url = (entry.relay_url if entry else None) or self.cfg.relay_url_template.format(key=key)
        playback_url = entry.playback_url if entry else None

        try:
            body = self.client.stream_event(
                action=event.value,
                stream_key=key,
                title=title,
                description=description,
                thumbnail=thumbnail,
                relay_url=relay_url,
                playback_url=playback_url,
            )
        except Exception as e:
            logger.warning("[%s] control plane unreachable for %s: %s", key, event.value, e)
            return NotificationResult(delivered=False, message=str(e))

        message = body.get("message")
        if not body.get("success"):
            logger.warning("[%s] control plane rejected %s: %s", key, event.value, message)
            return NotificationResult(delivered=False, message=message)

        logger.info("[%s] control plane notified: %s", key, event.value)
        return NotificationResult(delivered=True, message=message)
