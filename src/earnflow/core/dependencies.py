"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from earnflow.cache.versioning import VersionedCache
from earnflow.runtime import PipelineState


async def get_pipeline_state(request: Request) -> PipelineState:
    """Get PipelineState from app.state (set during lifespan)."""
    state: PipelineState | None = getattr(request.app.state, "pipeline", None)
    if state is None:
        raise HTTPException(status_code=503, detail="Pipeline not running")
    return state


PipelineStateDep = Annotated[PipelineState, Depends(get_pipeline_state)]


def get_cache(state: PipelineStateDep) -> VersionedCache:
    return state.cache


CacheDep = Annotated[VersionedCache, Depends(get_cache)]
