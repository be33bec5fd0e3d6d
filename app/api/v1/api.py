"""Main API router."""
from fastapi import APIRouter
from app.api.v1.endpoints import chat

# Create main router
api_router = APIRouter()

api_router.include_router(
    chat.router,
    prefix="/ai",
    tags=["AI Assistant"]
)
