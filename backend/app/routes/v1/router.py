"""API v1 router - aggregates all route modules."""

from fastapi import APIRouter

from app.routes.v1 import labels, notes, sync

api_router = APIRouter()

# Include REST API route modules
api_router.include_router(notes.router, prefix="/notes", tags=["notes"])
api_router.include_router(labels.router, prefix="/labels", tags=["labels"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
