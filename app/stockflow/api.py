from fastapi import APIRouter

from app.stockflow.core.config import settings
from app.stockflow.routers.auth import router as auth_router
from app.stockflow.routers.health import router as health_router
from app.stockflow.routers.metrics import router as metrics_router
from app.stockflow.routers.orders import router as orders_router
from app.stockflow.routers.stock import router as stock_router
from app.stockflow.routers.transfers import router as transfers_router
from app.stockflow.routers.warehouses import router as warehouses_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(auth_router, prefix="/stockflow/auth", tags=["auth"])
api_router.include_router(transfers_router, tags=["transfers"])
api_router.include_router(orders_router, tags=["orders"])
api_router.include_router(warehouses_router, tags=["warehouses"])
api_router.include_router(stock_router, tags=["stock"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
