from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from livehls.config.config import SyntheticCfg, TranscodeCfg
from livehls.core.errors import ProcessSpawnError
from livehls.core.settings import STREAM_KIND_RELAY, STREAM_KIND_TEST


def resolve_ffmpeg_exe(configured: Optional[str] = None) -> str:
    candidates = [
        configured,
        os.getenv("FFMPEG_PATH"),
        os.getenv("FFMPEG_EXE"),
        os.getenv("FFMPEG_BINARY"),
    ]
    name = "ffmpeg.exe" if os.name == "nt" else "ffmpeg"
    for raw in candidates:
        if not raw:
            continue
        candidate = str(raw).strip().strip('"')
        if os.path.isdir(candidate):
            candidate = os.path.join(candidate, name)
        if os.path.isfile(candidate):
            return candidate
        found = shutil.which(candidate)
        if found:
            return found

    exe = shutil.which("ffmpeg") or shutil.which("ffmpeg.exe")
    if exe:
        return exe

    raise ProcessSpawnError(
        "FFmpeg not found. Install FFmpeg and add it to PATH, or set FFMPEG_PATH/FFMPEG_EXE."
    )


@dataclass(frozen=True)
class RelayInput:
    """Pull an already running source (rtmp://, rtsp://, http://...)."""

    url: str
    kind = STREAM_KIND_RELAY

    def input_args(self) -> List[str]:
        return ["-i", self.url]

    def codec_args(self, cfg: TranscodeCfg) -> List[str]:
        return [
            "-c:v", "libx264",
            "-preset", cfg.video_preset,
            "-tune", "zerolatency",
            "-c:a", "aac",
        ]

    def describe(self) -> str:
        return self.url


@dataclass(frozen=True)
class SyntheticInput:
    """lavfi test pattern plus a sine tone, for streams with no real source."""

    duration_s: int = 60
    size: str = "1280x720"
    rate: int = 30
    frequency: int = 1000
    kind = STREAM_KIND_TEST

    @classmethod
    def from_config(cls, cfg: SyntheticCfg) -> "SyntheticInput":
        return cls(
            duration_s=cfg.duration_s,
            size=cfg.size,
            rate=cfg.rate,
            frequency=cfg.frequency,
        )

    def input_args(self) -> List[str]:
        return [
            "-re",
            "-f", "lavfi",
            "-i", f"testsrc=duration={self.duration_s}:size={self.size}:rate={self.rate}",
            "-f", "lavfi",
            "-i", f"sine=frequency={self.frequency}:duration={self.duration_s}",
        ]

    def codec_args(self, cfg: TranscodeCfg) -> List[str]:
        return [
            "-c:v", "libx264",
            "-preset", cfg.video_preset,
            "-c:a", "aac",
        ]

    def describe(self) -> str:
        return f"testsrc {self.size}@{self.rate} {self.duration_s}s"


def build_hls_command(
    ffmpeg_exe: str,
    input_spec,
    manifest_path: Path,
    segment_pattern: Path,
    cfg: TranscodeCfg,
) -> List[str]:
    """
    Low-latency live HLS: ~2s segments, short sliding window, stale segments
    deleted by ffmpeg, clients told not to cache. The manifest path is always
    the last argument.
    """
    return [
        ffmpeg_exe,
        "-hide_banner",
        "-nostdin",
        "-nostats",
        "-loglevel", cfg.loglevel,
        *input_spec.input_args(),
        *input_spec.codec_args(cfg),
        "-f", "hls",
        "-hls_time", str(cfg.hls_time),
        "-hls_list_size", str(cfg.hls_list_size),
        "-hls_flags", "delete_segments",
        "-hls_allow_cache", "0",
        "-hls_segment_filename", str(segment_pattern),
        str(manifest_path),
    ]
