"""
Password hashing, opaque session tokens, and the auth cookie.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, Response

from roboprep.config import Settings, get_settings
from roboprep.db import SqlDbClient, UserRecord
from roboprep.dependencies import get_db_client

logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    rounds = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_session(db: SqlDbClient, user: UserRecord, settings: Settings) -> str:
    """Persist a new session for ``user`` and return its token."""
    token = new_session_token()
    expires_at = _utcnow() + timedelta(hours=settings.session_ttl_hours)
    db.create_session(user.id, token, expires_at)
    return token


def set_auth_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        path="/",
        httponly=settings.cookie_http_only,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_auth_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.cookie_name,
        path="/",
        httponly=settings.cookie_http_only,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def get_session_token(
    request: Request, settings: Settings = Depends(get_settings)
) -> Optional[str]:
    return request.cookies.get(settings.cookie_name)


def get_current_user(
    token: Optional[str] = Depends(get_session_token),
    db: SqlDbClient = Depends(get_db_client),
) -> Optional[UserRecord]:
    """Resolve the cookie token to a user, or None when no live session matches."""
    if not token:
        return None
    return db.get_session_user(token, _utcnow())


def require_user(user: Optional[UserRecord] = Depends(get_current_user)) -> UserRecord:
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(user: UserRecord = Depends(require_user)) -> UserRecord:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def initialize_default_admin(db: SqlDbClient, settings: Settings) -> Optional[UserRecord]:
    """Create the configured admin account when the database has no admin yet."""
    if db.has_admin():
        return None
    if db.get_user_by_email(settings.default_admin_email):
        return None
    user = db.create_user(
        settings.default_admin_email,
        hash_password(settings.default_admin_password, settings.bcrypt_rounds),
        first_name="Admin",
        last_name="User",
        is_admin=True,
        is_approved=True,
    )
    logger.info("Created default admin account %s", user.email)
    return user
