from fastapi import APIRouter

from alert_relay.api.cron import router as cron_router

api_router = APIRouter()

# Cron trigger routes at /api/cron/*
api_router.include_router(cron_router, prefix="/api/cron", tags=["cron"])
