from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from livehls.core.settings import (
    DEFAULT_CLEANUP_DELAY_S,
    DEFAULT_VERIFY_DELAY_S,
    env_bool,
    env_float,
    env_int,
    env_str,
)

DEFAULT_THUMBNAIL = (
    "https://images.pexels.com/photos/1763075/pexels-photo-1763075.jpeg"
    "?auto=compress&cs=tinysrgb&w=800&h=450&dpr=1"
)


@dataclass
class ServerCfg:
    host: str = "0.0.0.0"
    port: int = 8001
    # Used to build playback URLs; falls back to the request base URL.
    public_base_url: Optional[str] = None
    name: str = "Live HLS Orchestrator"


@dataclass
class SegmentStoreCfg:
    root: str = "media/live"
    cleanup_delay_s: float = DEFAULT_CLEANUP_DELAY_S


@dataclass
class TranscodeCfg:
    ffmpeg_path: Optional[str] = None
    loglevel: str = "warning"
    video_preset: str = "ultrafast"
    hls_time: int = 2
    hls_list_size: int = 3
    verify_delay_s: float = DEFAULT_VERIFY_DELAY_S
    unregister_on_verify_failure: bool = False
    shutdown_timeout_s: float = 5.0


@dataclass
class SyntheticCfg:
    duration_s: int = 60
    size: str = "1280x720"
    rate: int = 30
    frequency: int = 1000


@dataclass
class ControlPlaneCfg:
    url: str = "http://localhost:3000/api/stream/detect"
    enabled: bool = True
    timeout_s: float = 5.0
    default_description: str = "Stream detected automatically"
    default_thumbnail: str = DEFAULT_THUMBNAIL
    relay_url_template: str = "rtmp://localhost:1935/live/{key}"


@dataclass
class AppConfig:
    server: ServerCfg = field(default_factory=ServerCfg)
    store: SegmentStoreCfg = field(default_factory=SegmentStoreCfg)
    transcode: TranscodeCfg = field(default_factory=TranscodeCfg)
    synthetic: SyntheticCfg = field(default_factory=SyntheticCfg)
    control_plane: ControlPlaneCfg = field(default_factory=ControlPlaneCfg)


def _section(cls, raw: Optional[Dict[str, Any]]):
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**raw)


def _apply_env(cfg: AppConfig) -> AppConfig:
    s = cfg.server
    s.host = env_str("LIVEHLS_HOST", s.host)
    s.port = env_int("LIVEHLS_PORT", s.port)
    s.public_base_url = env_str("LIVEHLS_PUBLIC_URL", s.public_base_url)

    st = cfg.store
    st.root = env_str("LIVEHLS_MEDIA_DIR", st.root)
    st.cleanup_delay_s = env_float("LIVEHLS_CLEANUP_DELAY_S", st.cleanup_delay_s)

    t = cfg.transcode
    t.ffmpeg_path = env_str("FFMPEG_PATH", t.ffmpeg_path)
    t.verify_delay_s = env_float("LIVEHLS_VERIFY_DELAY_S", t.verify_delay_s)
    t.unregister_on_verify_failure = env_bool(
        "LIVEHLS_UNREGISTER_ON_VERIFY_FAILURE", t.unregister_on_verify_failure
    )

    cp = cfg.control_plane
    cp.url = env_str("CONTROL_PLANE_URL", cp.url)
    cp.enabled = env_bool("CONTROL_PLANE_ENABLED", cp.enabled)
    cp.timeout_s = env_float("CONTROL_PLANE_TIMEOUT_S", cp.timeout_s)
    return cfg


def load_config(path: Optional[str] = None, use_env: bool = True) -> AppConfig:
    """
    Build the service configuration.

    Order of precedence (lowest first): dataclass defaults, YAML file
    (``path`` or ``LIVEHLS_CONFIG``), environment variables (``.env`` is
    loaded first).
    """
    if use_env:
        load_dotenv(find_dotenv(usecwd=True))

    path = path or (env_str("LIVEHLS_CONFIG") if use_env else None)
    raw: Dict[str, Any] = {}
    if path:
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = AppConfig(
        server=_section(ServerCfg, raw.get("server")),
        store=_section(SegmentStoreCfg, raw.get("store")),
        transcode=_section(TranscodeCfg, raw.get("transcode")),
        synthetic=_section(SyntheticCfg, raw.get("synthetic")),
        control_plane=_section(ControlPlaneCfg, raw.get("control_plane")),
    )
    return _apply_env(cfg) if use_env else cfg
