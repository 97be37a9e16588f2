from __future__ import annotations

import posixpath
from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .errors import PermissionDenied
from .storage import normalise_path


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated actor an upload or derivation runs on behalf of."""

    user_id: str
    base_path: str = "/"
    scopes: tuple[str, ...] = ()

    def resolve_path(self, raw_path: str) -> str:
        """Join ``raw_path`` onto the principal's root, refusing anything that escapes it."""
        if "\x00" in raw_path:
            raise PermissionDenied("invalid path")
        # checked before normalisation collapses them
        if any(part == ".." for part in raw_path.split("/")):
            raise PermissionDenied(f"relative path segments are not allowed: {raw_path}")
        base = normalise_path(self.base_path)
        resolved = normalise_path(posixpath.join(base, raw_path.lstrip("/")))
        if base != "/" and resolved != base and not resolved.startswith(base + "/"):
            raise PermissionDenied(f"path outside of base path: {raw_path}")
        return resolved


def _decode_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.secrets.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except jwt.PyJWTError as exc:  # pragma: no cover - library handles message
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from exc
    return payload


async def get_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Principal:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")

    payload = _decode_token(credentials.credentials, settings)
    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="subject_required")

    principal = Principal(
        user_id=str(user_id),
        base_path=str(payload.get("base_path") or "/"),
        scopes=tuple(payload.get("scopes") or []),
    )
    request.state.principal = principal
    return principal


__all__ = ["Principal", "get_principal"]
