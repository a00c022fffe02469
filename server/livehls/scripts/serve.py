from __future__ import annotations

import argparse

import uvicorn
from rich import print

from livehls.config.config import load_config
from livehls.core.logging_config import configure_logging
from livehls.main import create_app


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Serve live HLS output for supervised ffmpeg streams.")
    p.add_argument("--config", default=None, help="YAML config file (default: $LIVEHLS_CONFIG)")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--media-dir", default=None, help="Segment store directory")
    p.add_argument("--log-level", default=None)
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    if args.media_dir:
        cfg.store.root = args.media_dir

    configure_logging(args.log_level)

    base = cfg.server.public_base_url or f"http://localhost:{cfg.server.port}"
    print(f"[bold]{cfg.server.name}[/bold] on {cfg.server.host}:{cfg.server.port}")
    print(f"[cyan]Segment store:[/cyan] {cfg.store.root}")
    print(f"[cyan]Control plane:[/cyan] {cfg.control_plane.url if cfg.control_plane.enabled else 'disabled'}")
    print("Try it:")
    print(f"  curl -X POST {base}/api/start-stream -H 'Content-Type: application/json' -d '{{\"streamKey\":\"test\"}}'")
    print(f"  ffplay {base}/live/test.m3u8")

    uvicorn.run(
        create_app(cfg),
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=(args.log_level or "info").lower(),
    )


if __name__ == "__main__":
    main()
