"""
api/routes/v1/accounts.py -- Account lifecycle REST endpoints.

Routes:
  POST /api/v1/accounts                -- register a new account (201)
  POST /api/v1/auth/login              -- password login; returns access + refresh token
  POST /api/v1/auth/refresh            -- rotate a refresh token
  POST /api/v1/auth/logout             -- revoke the presented access token, end session
  GET  /api/v1/auth/me                 -- current account (requires auth)
  POST /api/v1/accounts/me/withdraw    -- withdraw the current account (requires auth + password)

Every handler delegates to AccountService and maps a failed Outcome to the
shared error envelope through _error_response(). Unknown usernames are
reported exactly like wrong passwords so the API cannot be used to discover
which usernames exist. Token-bearing responses carry Cache-Control: no-store.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    WithdrawRequest,
)
from auth.dependencies import get_current_session
from auth.errors import AccountError, ErrorKind
from auth.models import CurrentSession
from auth.service import AccountService

# Auth policy:
# - POST /api/v1/accounts:                public -- registration
# - POST /api/v1/auth/login:              public
# - POST /api/v1/auth/refresh:            public -- the refresh token is the credential
# - POST /api/v1/auth/logout:             requires auth (get_current_session)
# - GET  /api/v1/auth/me:                 requires auth (get_current_session)
# - POST /api/v1/accounts/me/withdraw:    requires auth + password re-check
router = APIRouter()

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_FORMAT: 400,
    ErrorKind.PASSWORD_TOO_SHORT: 400,
    ErrorKind.ALREADY_EXISTS: 400,
    ErrorKind.NOT_FOUND: 401,
    ErrorKind.WITHDRAWN: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}


def _service(request: Request) -> AccountService:
    return request.app.state.account_service


def _error_response(error: AccountError) -> JSONResponse:
    """Render an AccountError as the shared error envelope."""
    if error.kind is ErrorKind.NOT_FOUND:
        error = AccountError.invalid_credentials()
    resp = JSONResponse(status_code=_STATUS_BY_KIND[error.kind], content={"error": error.to_dict()})
    if error.kind is ErrorKind.STORAGE_UNAVAILABLE:
        resp.headers["Retry-After"] = "5"
    return resp


def _token_response(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> Response:
    """Register a new account.

    400 for malformed input, a short password, or a taken username. The
    response never includes the password hash.
    """
    outcome = _service(request).register(
        body.username,
        body.password,
        name=body.name,
        email=body.email,
        bio=body.bio,
    )
    if not outcome.ok:
        return _error_response(outcome.error)
    return JSONResponse(
        status_code=201,
        content=AccountResponse.from_view(outcome.value).model_dump(mode="json"),
    )


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> Response:
    """Authenticate with username and password.

    A successful login replaces the account's previous session: its refresh
    token stops resolving and its access token is revoked.
    """
    outcome = _service(request).login(body.username, body.password)
    if not outcome.ok:
        resp = _error_response(outcome.error)
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _token_response(LoginResponse.from_result(outcome.value).model_dump(mode="json"))


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, body: RefreshRequest) -> Response:
    """Exchange a refresh token for a new access/refresh pair (rotation)."""
    outcome = _service(request).refresh(body.refresh_token)
    if not outcome.ok:
        return _error_response(outcome.error)
    return _token_response(LoginResponse.from_result(outcome.value).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, session: CurrentSession = Depends(get_current_session)) -> Response:
    """Revoke the presented access token and delete the account's refresh token."""
    outcome = _service(request).logout(session.account.username, session.token_id, session.expires_at)
    if not outcome.ok:
        return _error_response(outcome.error)
    return JSONResponse(content=MessageResponse(message="Logged out.").model_dump())


@router.get("/auth/me", response_model=AccountResponse)
def me(request: Request, session: CurrentSession = Depends(get_current_session)) -> Response:
    """Return the public projection of the authenticated account."""
    outcome = _service(request).get_account(session.account.username)
    if not outcome.ok:
        return _error_response(outcome.error)
    return JSONResponse(content=AccountResponse.from_view(outcome.value).model_dump(mode="json"))


@router.post("/accounts/me/withdraw", response_model=MessageResponse)
def withdraw(
    request: Request,
    body: WithdrawRequest,
    session: CurrentSession = Depends(get_current_session),
) -> Response:
    """Withdraw the authenticated account. Terminal: the account can never log in again."""
    outcome = _service(request).withdraw(
        session.account.username,
        body.password,
        access_token_id=session.token_id,
        access_expires_at=session.expires_at,
    )
    if not outcome.ok:
        return _error_response(outcome.error)
    return JSONResponse(content=MessageResponse(message="Account withdrawn.").model_dump())
