"""
auth/tokens.py -- JWT, password hashing, and temporary-credential utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, role, and expiry. Verification returns None on any
       failure -- route layer turns that into a 401.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered [C1].

  Temporary passwords: issued by the account provisioner when an entity is
       approved. generate_temp_password() draws from `secrets`; the plaintext
       is handed to the welcome email once and never stored or logged.
       temp_password_expired() is the single place that decides expiry, so
       login and password reset refuse the same credentials.

  SECRET_KEY: sourced from core.config.get_settings().

Layer rule: no imports from api/, entities/, or notify/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings
from core.errors import TemporaryPasswordExpiredError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("adbond.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# Letters and digits only: the password travels inside an HTML email and is
# typed by hand, so punctuation that renders ambiguously is left out.
_TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits
TEMP_PASSWORD_LENGTH = 16

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer
    caps password fields at 128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("adbond_timing_dummy")


# ---------------------------------------------------------------------------
# Temporary credentials
# ---------------------------------------------------------------------------


def generate_temp_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    """Return a random printable password for a freshly provisioned account."""
    return "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(length))


def temp_password_expiry(now: datetime | None = None, ttl_hours: int | None = None) -> datetime:
    """Return the moment a temporary password issued at `now` stops working."""
    now = now or datetime.now(timezone.utc)
    hours = ttl_hours if ttl_hours is not None else _settings.temp_password_ttl_hours
    return now + timedelta(hours=hours)


def temp_password_expired(user: User, now: datetime | None = None) -> bool:
    """Return True if the user still holds a temporary password that has expired.

    Users without password_reset_required are never "expired" -- their
    password is a regular one. A reset-required user with no recorded expiry
    is treated as expired rather than valid forever.
    """
    if not user.password_reset_required:
        return False
    if not user.temp_password_expires:
        return True
    expires = datetime.fromisoformat(user.temp_password_expires)
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) > expires


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, email: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity and configurable expiry.

    Args:
        user_id:        Opaque user id stored in the DB.
        email:          Stored as the JWT subject claim.
        role:           User role ("admin", "advertiser", ...).
        expire_seconds: Session duration in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "user_id": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
        if "user_id" not in payload or "role" not in payload:
            return None
        return payload
    except JWTError:
        return None


# ---------------------------------------------------------------------------
# User authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists.

    Returns the User on success, None on bad credentials or an inactive
    account. A correct temporary password past its expiry raises
    TemporaryPasswordExpiredError so the caller can tell the user to ask for
    a new one instead of reporting "invalid credentials".
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    if temp_password_expired(user):
        logger.info("Login refused for user %s: temporary password expired", user.id)
        raise TemporaryPasswordExpiredError(
            "Your temporary password has expired. Please contact support to reset your password."
        )
    return user


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
