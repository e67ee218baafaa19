from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ..container import Services
from .dependencies import get_services

router = APIRouter(tags=["health"])


@router.get("/")
def root():
    return {
        "message": "पार्थ - Krishna AI Voice Assistant",
        "version": "2.0.0",
        "endpoints": {
            "websocket": "/ws",
            "health": "/health",
            "api": "/api/krishna/*",
        },
    }


@router.get("/health")
def health(services: Services = Depends(get_services)):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_sessions": len(services.registry),
        "knowledge_base": services.index.stats(),
    }
