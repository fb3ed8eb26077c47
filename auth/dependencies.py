"""
auth/dependencies.py -- FastAPI Depends() helpers for access-token authentication.

An access token is accepted only when all of the following hold:
  1. Authorization: Bearer <jwt> is present and the JWT verifies (signature,
     expiry, type claim).
  2. Its jti has not been revoked by logout, re-login, refresh or withdrawal.
  3. The account it names still exists and is not withdrawn.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/. This module may import from fastapi because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import HTTPException, Request

from auth.errors import ErrorKind
from auth.models import CurrentSession
from auth.service import AccountService
from auth.tokens import JWTCodec


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_session(request: Request) -> CurrentSession | None:
    """Authenticate the request's Bearer token. Returns None on any failure.

    Storage outages are not an authentication failure; they surface as 503 so
    clients retry instead of discarding a perfectly good token.
    """
    token = _bearer_token(request)
    if token is None:
        return None

    codec: JWTCodec = request.app.state.token_codec
    payload = codec.decode(token)
    if payload is None:
        return None

    service: AccountService = request.app.state.account_service
    outcome = service.check_access(payload["sub"], payload["jti"])
    if not outcome.ok:
        if outcome.error.kind is ErrorKind.STORAGE_UNAVAILABLE:
            raise HTTPException(status_code=503, detail=outcome.error.to_dict())
        return None

    return CurrentSession(
        account=outcome.value,
        token_id=payload["jti"],
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def get_current_session(request: Request) -> CurrentSession:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: CurrentSession = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session
