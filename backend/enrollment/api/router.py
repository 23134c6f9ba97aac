"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from enrollment.api.routes import activities, registrations, users

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(activities.router)
api_router.include_router(registrations.router)
api_router.include_router(users.router)
