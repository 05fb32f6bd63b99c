from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.deliveries import router as deliveries_router
from app.api.v1.endpoints.couriers import router as couriers_router
from app.api.v1.endpoints.events import router as events_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(deliveries_router, tags=["deliveries"])
router.include_router(couriers_router, tags=["couriers"])
router.include_router(events_router, tags=["events"])
