"""
Admin-only routes: user management, library maintenance and the database
upgrade trigger.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from roboprep.auth import hash_password, require_admin
from roboprep.config import Settings, get_settings
from roboprep.db import DuplicateEmailError, SqlDbClient, UserRecord
from roboprep.dependencies import get_db_client
from roboprep.schemas import (
    AdminCreateUserRequest,
    DatabaseActionRequest,
    DatabaseStatusResponse,
    DatabaseUpgradeResponse,
    ResetPasswordRequest,
    StatusResponse,
    ToggleAdminRequest,
    UserListResponse,
    UserResponse,
)
from roboprep.upgrade import (
    UpgradeError,
    check_upgrade_needed,
    get_database_version,
    upgrade_database,
)
from roboprep.validation import validate_email, validate_password

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_out(user: UserRecord) -> UserResponse:
    return UserResponse(**user.as_dict())


def _require_password(password: str | None) -> str:
    if not password:
        raise HTTPException(status_code=400, detail="Password is required")
    check = validate_password(password)
    if not check.is_valid:
        raise HTTPException(
            status_code=400,
            detail="Password does not meet requirements: " + "; ".join(check.errors),
        )
    return password


@router.get("/stats", response_model=dict[str, int])
def get_stats(
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    return db.get_stats()


@router.post("/admin/clear-data", response_model=StatusResponse)
def clear_data(
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    db.clear_data()
    logger.warning("Admin %s cleared all library data", admin.email)
    return StatusResponse(message="All library data cleared")


# -- users ----------------------------------------------------------------


@router.get("/admin/users", response_model=UserListResponse)
def list_users(
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    return UserListResponse(users=[_user_out(u) for u in db.list_users()])


@router.post("/admin/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: AdminCreateUserRequest,
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    admin: UserRecord = Depends(require_admin),
):
    """Create an account directly; admin-created accounts are approved."""
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    email_errors = validate_email(payload.email)
    if email_errors:
        raise HTTPException(status_code=400, detail=email_errors[0])
    password = _require_password(payload.password)
    try:
        user = db.create_user(
            payload.email,
            hash_password(password, settings.bcrypt_rounds),
            first_name=payload.first_name,
            last_name=payload.last_name,
            is_admin=payload.is_admin,
            is_approved=True,
        )
    except DuplicateEmailError:
        raise HTTPException(status_code=409, detail="User with this email already exists")
    logger.info("Admin %s created user %s", admin.email, user.email)
    return _user_out(user)


@router.delete("/admin/users/{user_id}", response_model=StatusResponse)
def delete_user(
    user_id: str,
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    if not db.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s deleted user %s", admin.email, user_id)
    return StatusResponse(message="User deleted")


@router.post("/admin/users/{user_id}/approve", response_model=UserResponse)
def approve_user(
    user_id: str,
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    user = db.update_user(user_id, is_approved=True)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s approved user %s", admin.email, user.email)
    return _user_out(user)


@router.post("/admin/users/{user_id}/reset-password", response_model=StatusResponse)
def reset_password(
    user_id: str,
    payload: ResetPasswordRequest,
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    admin: UserRecord = Depends(require_admin),
):
    password = _require_password(payload.new_password)
    user = db.update_user(
        user_id, password_hash=hash_password(password, settings.bcrypt_rounds)
    )
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s reset the password of %s", admin.email, user.email)
    return StatusResponse(message="Password reset")


@router.post("/admin/users/{user_id}/toggle-admin", response_model=UserResponse)
def toggle_admin(
    user_id: str,
    payload: ToggleAdminRequest,
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    if payload.is_admin is None:
        raise HTTPException(status_code=400, detail="is_admin must be a boolean")
    if user_id == admin.id and not payload.is_admin:
        raise HTTPException(
            status_code=400, detail="Cannot remove admin privileges from your own account"
        )
    user = db.update_user(user_id, is_admin=payload.is_admin)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s set is_admin=%s on %s", admin.email, payload.is_admin, user.email)
    return _user_out(user)


# -- database -------------------------------------------------------------


@router.get("/admin/database", response_model=DatabaseStatusResponse)
def database_status(
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    admin: UserRecord = Depends(require_admin),
):
    info = check_upgrade_needed(db.engine, settings.database_target_version)
    return DatabaseStatusResponse(
        current_version=get_database_version(db.engine),
        upgrade_info=info.as_dict(),
        stats=db.get_stats(),
        environment={
            "target_version": settings.database_target_version,
            "environment": settings.environment,
            "database_url": "configured" if settings.database_url else "not configured",
        },
    )


@router.post("/admin/database", response_model=DatabaseUpgradeResponse)
def database_action(
    payload: DatabaseActionRequest,
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    admin: UserRecord = Depends(require_admin),
):
    if payload.action != "upgrade":
        raise HTTPException(
            status_code=400, detail="Invalid action. Supported actions: upgrade"
        )

    logger.info("Manual database upgrade requested by admin: %s", admin.email)
    info = check_upgrade_needed(db.engine, settings.database_target_version)
    if not info.needs_upgrade:
        return DatabaseUpgradeResponse(
            success=True,
            message="Database is already up to date",
            from_version=info.current_version,
            to_version=info.target_version,
        )

    try:
        result = upgrade_database(
            db.engine,
            info.current_version,
            info.target_version,
            database_url=db.database_url,
            backup_dir=settings.backup_dir,
            init_version=settings.database_init_version,
        )
    except UpgradeError as e:
        logger.error("Database upgrade failed: %s", e)
        raise HTTPException(status_code=500, detail=f"Database upgrade failed: {e}")

    return DatabaseUpgradeResponse(
        success=True,
        message=(
            f"Database upgraded successfully from {info.current_version} "
            f"to {info.target_version}"
        ),
        from_version=info.current_version,
        to_version=info.target_version,
        backup_path=str(result.backup_path) if result.backup_path else None,
    )
