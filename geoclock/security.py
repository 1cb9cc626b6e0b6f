from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from geoclock.errors import ApiError
from geoclock.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    *,
    sub: str,
    role: str = ROLE_STUDENT,
    expires_minutes: int = 30,
) -> str:
    """Issue an access token. Tokens normally come from the identity provider."""
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": sub,
        "role": role,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token verification is not configured.")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def _require_claims(credentials: HTTPAuthorizationCredentials | None) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    return decode_token(credentials.credentials)


def require_student(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    payload = _require_claims(credentials)
    if payload.get("role") != ROLE_STUDENT:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    user_id = str(payload["sub"])
    request.state.actor = ROLE_STUDENT
    request.state.actor_id = user_id
    return user_id


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    payload = _require_claims(credentials)
    if payload.get("role") != ROLE_ADMIN:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    request.state.actor = ROLE_ADMIN
    request.state.actor_id = str(payload.get("sub") or "admin")
    return payload
