############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: API endpoints package and router configuration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API endpoints for chatbridge."""

from fastapi import APIRouter

from backend.app.api.conversations import router as conversations_router
from backend.app.api.health import router as health_router
from backend.app.api.provider_router import router as provider_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(health_router)
api_router.include_router(provider_router)
api_router.include_router(conversations_router)

__all__ = ["api_router"]
