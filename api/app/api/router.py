"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import automations, communication, notifications, ops

api_router = APIRouter()
api_router.include_router(automations.router, prefix="/automations", tags=["automations"])
api_router.include_router(communication.router, prefix="/communication", tags=["communication"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(ops.router, prefix="/ops", tags=["ops"])
