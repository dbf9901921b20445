"""
api/routes/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /auth/login           -- password login; sets JWT cookie
  POST   /auth/logout          -- clears cookie; 200
  GET    /auth/me              -- current user info (requires auth)
  POST   /auth/reset-password  -- replace a temporary or current password (requires auth)
  POST   /auth/users           -- create user (admin only)
  GET    /auth/users           -- list all users (admin only)
  DELETE /auth/users/{id}      -- delete user (admin only)

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  Expired temporary passwords: login answers 401 temp_password_expired
  (raised by authenticate_user), reset-password answers 400 with the same code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    PasswordReset,
    UserCreate,
    UserResponse,
)
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    hash_password,
    set_auth_cookie,
    temp_password_expired,
    verify_password,
)
from core.config import get_settings
from core.errors import DuplicateEmailError

_settings = get_settings()

# Auth policy:
# - POST   /api/auth/login:           public -- login endpoint must be unauthenticated
# - POST   /api/auth/logout:          public -- clearing a cookie needs no prior auth
# - GET    /api/auth/me:              requires auth (get_current_user)
# - POST   /api/auth/reset-password:  requires auth (get_current_user)
# - POST   /api/auth/users:           requires admin (require_admin)
# - GET    /api/auth/users:           requires admin (require_admin)
# - DELETE /api/auth/users/{id}:      requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Returns the same generic error for unknown email and wrong password
    ("bad_credentials"). A correct but expired temporary password raises
    TemporaryPasswordExpiredError, rendered as 401 temp_password_expired by
    the AdBondError handler.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    user_store.update_last_login(user.id)
    token = create_access_token(user.id, user.email, user.role)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            email=user.email,
            role=user.role,
            password_reset_required=user.password_reset_required,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        role=current_user.role,
        first_name=current_user.first_name,
        last_name=current_user.last_name,
        entity_id=current_user.entity_id,
        password_reset_required=current_user.password_reset_required,
    )


@router.post("/auth/reset-password")
def reset_password(
    request: Request,
    body: PasswordReset,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Replace the caller's password.

    Users still on a temporary password (password_reset_required) need not
    repeat it, but it must not have expired. Everyone else must supply the
    current password.
    """
    user_store: UserStore = request.app.state.user_store

    if temp_password_expired(current_user):
        raise HTTPException(
            status_code=400,
            detail={
                "code": "temp_password_expired",
                "message": "Temporary password has expired. Please contact support.",
            },
        )
    if not current_user.password_reset_required:
        if not body.current_password or not verify_password(body.current_password, current_user.hashed_password or ""):
            raise HTTPException(
                status_code=401,
                detail={"code": "bad_credentials", "message": "Current password is incorrect."},
            )

    user_store.change_password(current_user.id, hash_password(body.new_password))
    return JSONResponse(content={"message": "Password updated successfully."})


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a user account directly. Admin only.

    Entity-linked accounts are created by the verification workflow, not here.
    """
    user_store: UserStore = request.app.state.user_store
    new_user = User(
        email=body.email,
        role=body.role.value,
        hashed_password=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
    )
    try:
        user_id = user_store.create_user(new_user)
    except DuplicateEmailError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email already exists."},
        ) from exc

    created = user_store.get_by_id(user_id)
    return _user_to_response(created)


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete a user account. Admin only; admins cannot delete themselves."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_user(user_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse.from_user(user)
