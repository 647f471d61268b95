from fastapi import APIRouter

from .endpoints import admin, checkin, events, registrations

api_router = APIRouter()
api_router.include_router(
    registrations.router, prefix="/registrations", tags=["registrations"]
)
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(checkin.router, prefix="/checkin", tags=["checkin"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
