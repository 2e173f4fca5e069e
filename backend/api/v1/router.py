"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import cron, webhooks

api_v1_router = APIRouter()

# Inbound workflow webhooks (signature / IP checked per workflow)
api_v1_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"],
)

# External cron sweeps
api_v1_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["Cron"],
)
