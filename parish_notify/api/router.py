from fastapi import APIRouter

from parish_notify.api.cron import router as cron_router
from parish_notify.api.deliveries import router as deliveries_router
from parish_notify.api.greetings import router as greetings_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(cron_router, prefix="/api", tags=["cron"])
api_router.include_router(greetings_router, prefix="/api", tags=["greetings"])
api_router.include_router(deliveries_router, prefix="/api", tags=["deliveries"])
