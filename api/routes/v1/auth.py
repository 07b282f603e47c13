"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login            -- email + password login; returns bearer token
  POST /api/v1/auth/logout           -- drops the caller's session row; always 200
  POST /api/v1/auth/change-password  -- replace own password (requires auth)
  GET  /api/v1/auth/me               -- current user info (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (Settings.login_rate_limit).
  [C1] AuthService.login() provides timing equalization and a single generic
       error for unknown email, inactive account and wrong password.
  [M5] Cache-Control: no-store on login responses.

Handlers that hash or verify passwords are plain def so bcrypt runs in the
threadpool instead of blocking the event loop.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, limiter
from api.models import ChangePasswordRequest, LoginRequest, LoginResponse, MessageResponse, UserResponse
from auth.dependencies import client_ip, get_bearer_token, get_current_user
from auth.errors import AuthError
from auth.guard import extract_bearer
from auth.models import User
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/login:           public
# - POST /api/v1/auth/logout:          public -- a missing or stale token is not an error
# - POST /api/v1/auth/change-password: requires a bearer token
# - GET  /api/v1/auth/me:              requires auth (get_current_user)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# slowapi needs @router outermost so FastAPI registers the rate-limited wrapper.
@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(LOGIN_LIMIT)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and open a session.

    Returns the same generic error for unknown email, inactive account and
    wrong password ("bad_credentials"). The audit trail records the real
    reason; the client never sees it.
    """
    try:
        result = _service(request).login(
            body.email,
            body.password,
            client_ip=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
    except AuthError as exc:
        resp = JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    ttl = request.app.state.codec.ttl
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- token type, not a password
            expires_in=int(ttl.total_seconds()),
            user=UserResponse.from_user(result.user),
            must_change_password=result.must_change_password,
        ).model_dump(mode="json", by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """Delete the session matching the presented token.

    Succeeds with or without a token, and whether or not a session matched.
    """
    header = request.headers.get("Authorization")
    token = None
    if header:
        try:
            token = extract_bearer(header)
        except AuthError:
            token = None
    _service(request).logout(token, client_ip=client_ip(request))
    return MessageResponse(message="Logged out.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    token: str = Depends(get_bearer_token),
) -> MessageResponse:
    """Replace the caller's password and clear the must-change flag.

    400 when the new password is shorter than 8 characters, 401 when the
    current password does not match.
    """
    _service(request).change_password(
        token,
        body.current_password,
        body.new_password,
        client_ip=client_ip(request),
    )
    return MessageResponse(message="Password changed.")


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_user(current_user)
