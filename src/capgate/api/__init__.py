from fastapi import APIRouter

from capgate.api.configs import router as configs_router
from capgate.api.health import router as health_router
from capgate.api.invoke import router as invoke_router
from capgate.api.metrics import router as metrics_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(metrics_router)
api_router.include_router(invoke_router, prefix="/v1")
api_router.include_router(configs_router, prefix="/v1")

__all__ = ["api_router"]
