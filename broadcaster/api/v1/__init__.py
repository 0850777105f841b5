"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import notifications, sent_notifications

api_router = APIRouter()

api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["notifications"]
)

api_router.include_router(
    sent_notifications.router,
    prefix="/sent-notifications",
    tags=["sent-notifications"]
)
