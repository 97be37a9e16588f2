from __future__ import annotations

from fastapi import APIRouter

from fsup.api import deps

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(runner: deps.RunnerDependency) -> HealthResponse:
    return HealthResponse(pending_derivations=runner.pending)


__all__ = ["router"]
