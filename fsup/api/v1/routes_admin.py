from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from fsup.api import deps
from fsup.core.config import Settings, get_settings
from fsup.core.errors import ExtractionFailed
from fsup.thumbnails.codec import run_tool

from .schemas import EnvCheckResponse


router = APIRouter(prefix="/admin", tags=["admin"])


class DevTokenRequest(BaseModel):
    user_id: str = Field(..., examples=["user-123"])
    base_path: str = Field(default="/", examples=["/home/user-123"])
    scopes: list[str] = Field(default_factory=lambda: ["admin"])


class DevTokenResponse(BaseModel):
    token: str


async def _probe_binary(command: str) -> bool:
    try:
        await run_tool(command, ["-version"], timeout=10)
    except ExtractionFailed:
        return False
    return True


@router.get("/env-check", response_model=EnvCheckResponse, summary="Validate ffmpeg toolchain")
async def env_check(
    principal: deps.PrincipalDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> EnvCheckResponse:
    if "admin" not in principal.scopes:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin_scope_required")

    return EnvCheckResponse(
        ffmpeg=await _probe_binary(settings.ffmpeg_bin),
        ffprobe=await _probe_binary(settings.ffprobe_bin),
    )


@router.post("/dev-token", response_model=DevTokenResponse, summary="Mint development JWT")
async def mint_dev_token(payload: DevTokenRequest, settings: Settings = Depends(get_settings)) -> DevTokenResponse:
    if settings.environment_lower not in {"development", "dev"}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="dev_token_disabled")

    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(hours=1)
    claims: dict[str, object] = {
        "sub": payload.user_id,
        "base_path": payload.base_path,
        "scopes": payload.scopes,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if settings.jwt_issuer:
        claims["iss"] = settings.jwt_issuer
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience

    token = jwt.encode(claims, settings.secrets.jwt_secret, algorithm=settings.jwt_algorithm)
    return DevTokenResponse(token=token)


__all__ = ["router"]
