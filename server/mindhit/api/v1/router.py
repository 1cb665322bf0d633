# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from fastapi import APIRouter

from mindhit.api.v1.events import router as events_router
from mindhit.api.v1.health import router as health_router
from mindhit.api.v1.mindmaps import router as mindmaps_router
from mindhit.api.v1.sessions import router as sessions_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(sessions_router)
api_router.include_router(events_router)
api_router.include_router(mindmaps_router)
