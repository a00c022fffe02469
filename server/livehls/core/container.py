from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Optional

from livehls.config.config import AppConfig
from livehls.runtimes.stream_registry import StreamRegistry
from livehls.runtimes.stream_runtime import StreamRuntime
from livehls.services.notifier import NotificationDispatcher
from livehls.services.process_manager import TranscodeSupervisor
from livehls.services.segment_store import SegmentStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    cfg: AppConfig
    store: SegmentStore
    registry: StreamRegistry
    supervisor: TranscodeSupervisor
    notifier: NotificationDispatcher
    streams: StreamRuntime = field(repr=False)

    def shutdown(self) -> None:
        # Best-effort cleanup; one failing step must not skip the rest.
        try:
            self.streams.shutdown()
        except Exception:
            logger.exception("stream runtime shutdown failed")

        try:
            self.store.flush_pending()
        except Exception:
            logger.exception("segment cleanup on shutdown failed")


def build_container(
    cfg: AppConfig,
    spawn: Optional[Callable[..., subprocess.Popen]] = None,
) -> ServiceContainer:
    store = SegmentStore(cfg.store.root)
    registry = StreamRegistry()

    supervisor = TranscodeSupervisor(
        store=store,
        cfg=cfg.transcode,
        cleanup_delay_s=cfg.store.cleanup_delay_s,
        spawn=spawn or subprocess.Popen,
    )

    notifier = NotificationDispatcher(cfg.control_plane)

    streams = StreamRuntime(
        registry=registry,
        supervisor=supervisor,
        notifier=notifier,
        cfg=cfg.transcode,
    )

    logger.info("segment store at %s", store.root)

    return ServiceContainer(
        cfg=cfg,
        store=store,
        registry=registry,
        supervisor=supervisor,
        notifier=notifier,
        streams=streams,
    )
