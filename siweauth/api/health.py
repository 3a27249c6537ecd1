from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..auth import AuthService, get_auth_service

router = APIRouter()


@router.get("/healthz")
async def health_check(
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    """Health check endpoint that verifies the nonce store is reachable"""
    store = auth_service.nonce_store
    reachable = await store.ping()

    return {
        "status": "healthy" if reachable else "degraded",
        "nonce_store": {
            "backend": store.name,
            "status": "healthy" if reachable else "unavailable",
        },
        "sweeper_running": auth_service.sweeper.is_running,
    }
