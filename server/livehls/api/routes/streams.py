from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from livehls.api.deps import get_container
from livehls.api.schemas import StartStreamRequest, StopStreamRequest
from livehls.core.settings import MANIFEST_EXT, validate_relay_url, validate_stream_key
from livehls.services.ffmpeg import RelayInput, SyntheticInput

router = APIRouter()


def playback_url(request: Request, container, key: str) -> str:
    base = container.cfg.server.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/live/{key}{MANIFEST_EXT}"


@router.post("/api/start-stream")
def start_stream(body: StartStreamRequest, request: Request, container=Depends(get_container)):
    key = validate_stream_key(body.stream_key)

    if body.relay_url:
        input_spec = RelayInput(url=validate_relay_url(body.relay_url))
        label = "Relay"
    else:
        input_spec = SyntheticInput.from_config(container.cfg.synthetic)
        label = "Test"

    url = playback_url(request, container, key)
    container.streams.start_stream(
        key,
        input_spec,
        playback_url=url,
        title=body.title,
        description=body.description,
        thumbnail=body.thumbnail,
    )

    return {
        "success": True,
        "message": f"{label} stream {key} started",
        "streamKey": key,
        "hlsUrl": url,
    }


@router.post("/api/stop-stream")
def stop_stream(body: StopStreamRequest, container=Depends(get_container)):
    key = validate_stream_key(body.stream_key)
    if not container.streams.stop_stream(key):
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": f"Stream {key} is not live"},
        )
    return {"success": True, "message": f"Stream {key} stopping", "streamKey": key}


@router.get("/api/streams")
def list_streams(container=Depends(get_container)):
    streams = []
    for entry in container.registry.list_active():
        item = entry.to_dict()
        item["process"] = container.supervisor.status(entry.key)
        streams.append(item)
    return {"success": True, "streams": streams}
