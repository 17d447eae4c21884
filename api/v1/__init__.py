"""
API v1 Package - Channel connection and webhook routes
"""

from fastapi import APIRouter
from .channels import router as channels_router
from .webhooks import router as webhooks_router

# Create the main v1 router
v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(channels_router, prefix="/channels", tags=["channels-v1"])
v1_router.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks-v1"])

__all__ = ["v1_router", "channels_router", "webhooks_router"]
