"""Top-level API router: mounts all routers under /api/v1."""

from fastapi import APIRouter

from earnflow.api.routes import system

api_router = APIRouter()
api_router.include_router(system.router, prefix="/system", tags=["system"])
