from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from livehls.api.deps import get_container
from livehls.core.errors import SegmentNotFoundError

router = APIRouter()


@router.get("/live/{file_path:path}")
def live_file(file_path: str, container=Depends(get_container)):
    # InvalidSegmentPathError -> 400 via the app exception handler
    path = container.store.resolve(file_path)
    try:
        content = path.read_bytes()
    except FileNotFoundError:
        # rotated away by ffmpeg between resolve() and read
        raise SegmentNotFoundError(f"File not found: {file_path}")

    return Response(
        content=content,
        media_type=container.store.content_type(path.name),
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        },
    )
