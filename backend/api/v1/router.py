"""API v1 aggregated router.

All authenticated v1 endpoints are registered here and mounted under
/api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import automations, health

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Automations
api_v1_router.include_router(
    automations.router,
    prefix="/automations",
    tags=["Automations"],
)
