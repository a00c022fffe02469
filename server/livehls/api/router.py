from fastapi import APIRouter

from livehls.api.routes.status import router as status_router
from livehls.api.routes.streams import router as streams_router
from livehls.api.routes.live import router as live_router

api_router = APIRouter()
api_router.include_router(status_router, tags=["status"])
api_router.include_router(streams_router, tags=["streams"])
api_router.include_router(live_router, tags=["live"])
