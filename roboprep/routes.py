"""
HTTP routes for the RoboPrep API: auth, the prompt library, responses,
AI generation and export/import.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from roboprep.auth import (
    clear_auth_cookie,
    get_session_token,
    hash_password,
    initialize_default_admin,
    require_admin,
    require_user,
    set_auth_cookie,
    start_session,
    verify_password,
)
from roboprep.config import Settings, get_settings
from roboprep.db import (
    CategoryLimitError,
    CategoryNameConflictError,
    CategoryRecord,
    DuplicateEmailError,
    NotFoundError,
    PromptKindConflictError,
    PromptRecord,
    ResponseRecord,
    SqlDbClient,
    UserRecord,
)
from roboprep.dependencies import get_ai_client, get_db_client, get_turnstile_verifier
from roboprep.models.gemini import AiProviderError, GeminiClient
from roboprep.schemas import (
    EXPORT_TYPE,
    EXPORT_VERSION,
    AuthResponse,
    CategoryIn,
    CategoryListRequest,
    CategoryListResponse,
    CategoryOut,
    CountResponse,
    ExistsResponse,
    ExportBundle,
    FavoriteToggleResponse,
    GenerateRequest,
    GenerateResponse,
    ImportBundleResult,
    ImportResult,
    InitResponse,
    LoginRequest,
    PromptIdList,
    PromptIn,
    PromptListRequest,
    PromptListResponse,
    PromptOut,
    RegisterRequest,
    ResponseAuthor,
    ResponseIn,
    ResponseListRequest,
    ResponseListResponse,
    ResponseOut,
    ResponseUpdate,
    SettingsResponse,
    SettingValue,
    StatusResponse,
    UserResponse,
)
from roboprep.seed import DEFAULT_SETTINGS, initialize_database
from roboprep.shared.prompt_templates import detect_variables
from roboprep.turnstile import TurnstileVerifier
from roboprep.validation import validate_email, validate_password

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_out(user: UserRecord) -> UserResponse:
    return UserResponse(**user.as_dict())


def _prompt_out(prompt: PromptRecord) -> PromptOut:
    return PromptOut(
        id=prompt.id,
        title=prompt.title,
        description=prompt.description,
        category_id=prompt.category_id,
        prompt_text=prompt.prompt_text,
        tags=prompt.tags,
        is_user_created=prompt.is_user_created,
        usage_count=prompt.usage_count,
        created_at=prompt.created_at,
        last_used=prompt.last_used,
        last_edited=prompt.last_edited,
        variables=detect_variables(prompt.prompt_text),
    )


def _prompt_in(prompt: PromptRecord) -> PromptIn:
    return PromptIn(
        id=prompt.id,
        title=prompt.title,
        description=prompt.description,
        category_id=prompt.category_id,
        prompt_text=prompt.prompt_text,
        tags=prompt.tags,
        usage_count=prompt.usage_count,
        created_at=prompt.created_at,
        last_used=prompt.last_used,
        last_edited=prompt.last_edited,
    )


def _prompt_record(payload: PromptIn, is_user_created: bool) -> PromptRecord:
    prefix = "user" if is_user_created else "core"
    return PromptRecord(
        id=payload.id or f"{prefix}_{uuid4().hex[:12]}",
        title=payload.title,
        description=payload.description,
        category_id=payload.category_id,
        prompt_text=payload.prompt_text,
        tags=payload.tags,
        is_user_created=is_user_created,
        usage_count=payload.usage_count,
        created_at=_naive_utc(payload.created_at),
        last_used=_naive_utc(payload.last_used),
        last_edited=_naive_utc(payload.last_edited),
    )


def _response_out(response: ResponseRecord) -> ResponseOut:
    author = None
    if response.author_first_name or response.author_last_name:
        author = ResponseAuthor(
            first_name=response.author_first_name, last_name=response.author_last_name
        )
    return ResponseOut(
        id=response.id,
        prompt_id=response.prompt_id,
        user_id=response.user_id,
        response_text=response.response_text,
        model_used=response.model_used,
        prompt_tokens=response.prompt_tokens,
        completion_tokens=response.completion_tokens,
        total_tokens=response.total_tokens,
        variables_used=response.variables_used,
        created_at=response.created_at,
        last_edited=response.last_edited,
        author=author,
    )


def _response_record(payload: ResponseIn) -> ResponseRecord:
    return ResponseRecord(
        id=payload.id,
        prompt_id=payload.prompt_id,
        response_text=payload.response_text,
        model_used=payload.model_used,
        prompt_tokens=payload.prompt_tokens,
        completion_tokens=payload.completion_tokens,
        total_tokens=payload.total_tokens,
        variables_used=payload.variables_used,
        created_at=_naive_utc(payload.created_at),
    )


def _response_in(response: ResponseRecord) -> ResponseIn:
    return ResponseIn(
        id=response.id,
        prompt_id=response.prompt_id,
        response_text=response.response_text,
        model_used=response.model_used,
        prompt_tokens=response.prompt_tokens,
        completion_tokens=response.completion_tokens,
        total_tokens=response.total_tokens,
        variables_used=response.variables_used,
        created_at=response.created_at,
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _can_modify_response(user: UserRecord, response: ResponseRecord) -> bool:
    if user.is_admin:
        return True
    return response.user_id is not None and response.user_id == user.id


# -- init / auth ----------------------------------------------------------


@router.get("/init", response_model=InitResponse)
def init_database(
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    """Seed an empty database and make sure an admin account exists."""
    initialized = initialize_database(db, settings.database_target_version)
    admin = initialize_default_admin(db, settings)
    return InitResponse(
        initialized=initialized,
        version=db.get_database_version(),
        admin_created=admin is not None,
    )


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    verify_turnstile: TurnstileVerifier = Depends(get_turnstile_verifier),
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    email_errors = validate_email(payload.email)
    if email_errors:
        raise HTTPException(status_code=400, detail=email_errors[0])

    password_check = validate_password(payload.password)
    if not password_check.is_valid:
        raise HTTPException(
            status_code=400,
            detail="Password does not meet requirements: "
            + "; ".join(password_check.errors),
        )

    captcha = verify_turnstile(request, payload.turnstile_token)
    if not captcha.success:
        raise HTTPException(
            status_code=400, detail=captcha.error or "CAPTCHA verification failed"
        )

    is_first_user = db.count_users() == 0
    try:
        user = db.create_user(
            payload.email,
            hash_password(payload.password, settings.bcrypt_rounds),
            first_name=payload.first_name,
            last_name=payload.last_name,
            is_admin=is_first_user,
            is_approved=is_first_user,
        )
    except DuplicateEmailError:
        raise HTTPException(status_code=409, detail="User with this email already exists")

    if is_first_user:
        db.migrate_legacy_settings(user.id)
    logger.info("Registered user %s (admin=%s)", user.email, user.is_admin)

    if not user.is_approved:
        return AuthResponse(
            user=_user_out(user),
            message="Registration successful. Your account is pending admin approval.",
        )
    set_auth_cookie(response, start_session(db, user, settings), settings)
    return AuthResponse(user=_user_out(user), message="Registration successful")


@router.post("/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    response: Response,
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = db.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_approved:
        raise HTTPException(
            status_code=403,
            detail="Your account is pending approval by an administrator",
        )

    purged = db.purge_expired_sessions()
    if purged:
        logger.info("Purged %d expired sessions", purged)
    set_auth_cookie(response, start_session(db, user, settings), settings)
    logger.info("User %s logged in", user.email)
    return AuthResponse(user=_user_out(user), message="Login successful")


@router.post("/auth/logout", response_model=StatusResponse)
def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    if token:
        db.delete_session(token)
    clear_auth_cookie(response, settings)
    return StatusResponse(message="Logged out")


@router.get("/auth/me", response_model=AuthResponse)
def me(user: UserRecord = Depends(require_user)):
    return AuthResponse(user=_user_out(user))


# -- prompts --------------------------------------------------------------


@router.get("/prompts", response_model=PromptListResponse)
def list_prompts(
    user_created: Optional[bool] = Query(default=None),
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    prompts = db.list_prompts(is_user_created=user_created)
    return PromptListResponse(prompts=[_prompt_out(p) for p in prompts])


@router.post("/prompts", response_model=PromptOut, status_code=201)
def create_prompt(
    payload: PromptIn,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    if payload.id and db.prompt_exists(payload.id):
        raise HTTPException(status_code=409, detail="Prompt already exists")
    prompt = db.create_prompt(_prompt_record(payload, is_user_created=True))
    return _prompt_out(prompt)


@router.put("/prompts/user", response_model=PromptListResponse)
def store_user_prompts(
    payload: PromptListRequest,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    try:
        db.store_prompts(
            [_prompt_record(p, is_user_created=True) for p in payload.prompts],
            is_user_created=True,
        )
    except PromptKindConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    prompts = db.list_prompts(is_user_created=True)
    return PromptListResponse(prompts=[_prompt_out(p) for p in prompts])


@router.post("/prompts/user/import", response_model=ImportResult)
def import_user_prompts(
    payload: PromptListRequest,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    added, skipped = db.add_prompts(
        [_prompt_record(p, is_user_created=True) for p in payload.prompts],
        is_user_created=True,
    )
    return ImportResult(added=added, skipped=skipped)


@router.put("/prompts/core", response_model=PromptListResponse)
def store_core_prompts(
    payload: PromptListRequest,
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    try:
        db.store_prompts(
            [_prompt_record(p, is_user_created=False) for p in payload.prompts],
            is_user_created=False,
        )
    except PromptKindConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Admin %s replaced core prompts (%d)", admin.email, len(payload.prompts))
    prompts = db.list_prompts(is_user_created=False)
    return PromptListResponse(prompts=[_prompt_out(p) for p in prompts])


@router.get("/prompts/{prompt_id}", response_model=PromptOut)
def get_prompt(
    prompt_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    prompt = db.get_prompt(prompt_id)
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return _prompt_out(prompt)


@router.get("/prompts/{prompt_id}/exists", response_model=ExistsResponse)
def prompt_exists(
    prompt_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    return ExistsResponse(id=prompt_id, exists=db.prompt_exists(prompt_id))


@router.put("/prompts/{prompt_id}", response_model=PromptOut)
def update_prompt(
    prompt_id: str,
    payload: PromptIn,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    existing = db.get_prompt(prompt_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Prompt not found")
    if not existing.is_user_created and not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    record = _prompt_record(payload, is_user_created=existing.is_user_created)
    record.id = prompt_id
    record.created_at = existing.created_at
    record.usage_count = existing.usage_count
    record.last_used = existing.last_used
    record.last_edited = datetime.now(timezone.utc).replace(tzinfo=None)
    return _prompt_out(db.update_prompt(record))


@router.delete("/prompts/{prompt_id}", response_model=StatusResponse)
def delete_prompt(
    prompt_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    existing = db.get_prompt(prompt_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Prompt not found")
    if not existing.is_user_created and not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    db.delete_prompt(prompt_id)
    return StatusResponse(message="Prompt deleted")


@router.post("/prompts/{prompt_id}/use", response_model=PromptOut)
def use_prompt(
    prompt_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    prompt = db.record_prompt_use(user.id, prompt_id)
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return _prompt_out(prompt)


@router.get("/prompts/{prompt_id}/responses/count", response_model=CountResponse)
def count_prompt_responses(
    prompt_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    return CountResponse(prompt_id=prompt_id, count=db.count_responses(prompt_id))


# -- categories -----------------------------------------------------------


@router.get("/categories", response_model=CategoryListResponse)
def list_categories(
    user_created: Optional[bool] = Query(default=None),
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    categories = db.list_categories(is_user_created=user_created)
    return CategoryListResponse(
        categories=[CategoryOut(**vars(c)) for c in categories]
    )


@router.post("/categories", response_model=CategoryOut, status_code=201)
def add_category(
    payload: CategoryIn,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Category name is required")
    try:
        category = db.add_category(payload.name)
    except CategoryLimitError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CategoryNameConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return CategoryOut(**vars(category))


@router.put("/categories/user", response_model=CategoryListResponse)
def store_user_categories(
    payload: CategoryListRequest,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    db.store_user_categories(
        [CategoryRecord(id=c.id, name=c.name, is_user_created=True) for c in payload.categories]
    )
    categories = db.list_categories(is_user_created=True)
    return CategoryListResponse(
        categories=[CategoryOut(**vars(c)) for c in categories]
    )


@router.post("/categories/user/import", response_model=ImportResult)
def import_user_categories(
    payload: CategoryListRequest,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    added, skipped = db.add_user_categories(
        [CategoryRecord(id=c.id, name=c.name, is_user_created=True) for c in payload.categories]
    )
    return ImportResult(added=added, skipped=skipped)


@router.put("/categories/{category_id}", response_model=CategoryOut)
def rename_category(
    category_id: str,
    payload: CategoryIn,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    try:
        category = db.rename_category(category_id, payload.name)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CategoryNameConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return CategoryOut(**vars(category))


@router.delete("/categories/{category_id}", response_model=StatusResponse)
def delete_category(
    category_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    category = next((c for c in db.list_categories() if c.id == category_id), None)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if not category.is_user_created and not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    db.delete_category(category_id)
    return StatusResponse(message="Category deleted")


# -- favorites / recently used -------------------------------------------


@router.get("/favorites", response_model=PromptIdList)
def get_favorites(
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    return PromptIdList(prompt_ids=db.get_favorites(user.id))


@router.put("/favorites", response_model=PromptIdList)
def store_favorites(
    payload: PromptIdList,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    return PromptIdList(prompt_ids=db.store_favorites(user.id, payload.prompt_ids))


@router.post("/favorites/{prompt_id}/toggle", response_model=FavoriteToggleResponse)
def toggle_favorite(
    prompt_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    try:
        is_favorite = db.toggle_favorite(user.id, prompt_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return FavoriteToggleResponse(prompt_id=prompt_id, is_favorite=is_favorite)


@router.get("/recently-used", response_model=PromptIdList)
def get_recently_used(
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    return PromptIdList(prompt_ids=db.get_recently_used(user.id))


@router.put("/recently-used", response_model=PromptIdList)
def store_recently_used(
    payload: PromptIdList,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    db.store_recently_used(user.id, payload.prompt_ids)
    return PromptIdList(prompt_ids=db.get_recently_used(user.id))


# -- settings -------------------------------------------------------------


@router.get("/settings", response_model=SettingsResponse)
def get_user_settings(
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    settings = dict(DEFAULT_SETTINGS)
    settings.update(db.get_user_settings(user.id))
    return SettingsResponse(settings=settings)


@router.put("/settings/{key}", response_model=SettingsResponse)
def set_user_setting(
    key: str,
    payload: SettingValue,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    db.set_user_setting(user.id, key, payload.value)
    return SettingsResponse(settings=db.get_user_settings(user.id, {key: None}))


@router.delete("/settings/{key}", response_model=StatusResponse)
def remove_user_setting(
    key: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    if not db.remove_user_setting(user.id, key):
        raise HTTPException(status_code=404, detail="Setting not found")
    return StatusResponse(message="Setting removed")


# -- responses ------------------------------------------------------------


@router.get("/responses", response_model=ResponseListResponse)
def list_responses(
    prompt_id: Optional[str] = Query(default=None),
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    responses = db.list_responses(prompt_id=prompt_id)
    return ResponseListResponse(responses=[_response_out(r) for r in responses])


@router.post("/responses", response_model=ResponseOut, status_code=201)
def save_response(
    payload: ResponseIn,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    if payload.id:
        existing = db.get_response(payload.id)
        if existing and not _can_modify_response(user, existing):
            raise HTTPException(status_code=403, detail="Not allowed to edit this response")
    try:
        saved = db.save_response(_response_record(payload), user_id=user.id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _response_out(saved)


@router.put("/responses", response_model=ResponseListResponse)
def store_responses(
    payload: ResponseListRequest,
    db: SqlDbClient = Depends(get_db_client),
    admin: UserRecord = Depends(require_admin),
):
    count = db.store_responses([_response_record(r) for r in payload.responses])
    logger.info("Admin %s replaced all responses (%d stored)", admin.email, count)
    return ResponseListResponse(responses=[_response_out(r) for r in db.list_responses()])


@router.post("/responses/import", response_model=ImportResult)
def import_responses(
    payload: ResponseListRequest,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    added, skipped = db.add_responses(
        [_response_record(r) for r in payload.responses], user_id=user.id
    )
    return ImportResult(added=added, skipped=skipped)


@router.get("/responses/{response_id}", response_model=ResponseOut)
def get_response(
    response_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    response = db.get_response(response_id)
    if not response:
        raise HTTPException(status_code=404, detail="Response not found")
    return _response_out(response)


@router.put("/responses/{response_id}", response_model=ResponseOut)
def update_response(
    response_id: str,
    payload: ResponseUpdate,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    existing = db.get_response(response_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Response not found")
    if not _can_modify_response(user, existing):
        raise HTTPException(status_code=403, detail="Not allowed to edit this response")
    return _response_out(db.update_response_text(response_id, payload.response_text))


@router.delete("/responses/{response_id}", response_model=StatusResponse)
def delete_response(
    response_id: str,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    existing = db.get_response(response_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Response not found")
    if not _can_modify_response(user, existing):
        raise HTTPException(status_code=403, detail="Not allowed to delete this response")
    db.delete_response(response_id)
    return StatusResponse(message="Response deleted")


# -- AI -------------------------------------------------------------------


@router.post("/ai/generate", response_model=GenerateResponse)
def generate(
    payload: GenerateRequest,
    db: SqlDbClient = Depends(get_db_client),
    ai: GeminiClient = Depends(get_ai_client),
    user: UserRecord = Depends(require_user),
):
    """
    Run a prompt through the language model. With a ``prompt_id`` the stored
    prompt text is used, and the output is saved as a response by default.
    """
    prompt_text = payload.prompt_text
    if payload.prompt_id:
        prompt = db.get_prompt(payload.prompt_id)
        if not prompt:
            raise HTTPException(status_code=404, detail="Prompt not found")
        prompt_text = prompt.prompt_text
    if not prompt_text:
        raise HTTPException(status_code=400, detail="prompt_id or prompt_text is required")

    try:
        result = ai.generate_with_retry(prompt_text, payload.variables, payload.model)
    except AiProviderError as e:
        logger.error("AI generation failed for user %s: %s", user.email, e)
        raise HTTPException(status_code=502, detail=f"AI request failed: {e}")

    saved = None
    if payload.prompt_id and payload.save:
        saved = db.save_response(
            ResponseRecord(
                id=None,
                prompt_id=payload.prompt_id,
                response_text=result.response_text,
                model_used=result.model_used,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                total_tokens=result.total_tokens,
                variables_used=payload.variables or None,
            ),
            user_id=user.id,
        )
        db.record_prompt_use(user.id, payload.prompt_id)

    return GenerateResponse(
        response_text=result.response_text,
        model_used=result.model_used,
        prompt_tokens=result.prompt_tokens,
        completion_tokens=result.completion_tokens,
        total_tokens=result.total_tokens,
        response=_response_out(saved) if saved else None,
    )


# -- export / import ------------------------------------------------------


@router.get("/export", response_model=ExportBundle)
def export_library(
    include_responses: bool = Query(default=False),
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    """Export user-created prompts and categories, optionally with responses."""
    responses = None
    if include_responses:
        responses = [_response_in(r) for r in db.list_responses()]
    return ExportBundle(
        type=EXPORT_TYPE,
        version=EXPORT_VERSION,
        timestamp=datetime.now(timezone.utc),
        prompts=[_prompt_in(p) for p in db.list_prompts(is_user_created=True)],
        categories=[
            CategoryOut(**vars(c)) for c in db.list_categories(is_user_created=True)
        ],
        responses=responses,
    )


@router.post("/import", response_model=ImportBundleResult)
def import_library(
    payload: ExportBundle,
    db: SqlDbClient = Depends(get_db_client),
    user: UserRecord = Depends(require_user),
):
    if payload.type != EXPORT_TYPE:
        raise HTTPException(status_code=400, detail="Invalid import file format")

    cat_added, cat_skipped = db.add_user_categories(
        [CategoryRecord(id=c.id, name=c.name, is_user_created=True) for c in payload.categories]
    )
    prompt_added, prompt_skipped = db.add_prompts(
        [_prompt_record(p, is_user_created=True) for p in payload.prompts],
        is_user_created=True,
    )
    resp_added, resp_skipped = db.add_responses(
        [_response_record(r) for r in payload.responses or []], user_id=user.id
    )
    logger.info(
        "User %s imported %d prompts, %d categories, %d responses",
        user.email,
        prompt_added,
        cat_added,
        resp_added,
    )
    return ImportBundleResult(
        prompts=ImportResult(added=prompt_added, skipped=prompt_skipped),
        categories=ImportResult(added=cat_added, skipped=cat_skipped),
        responses=ImportResult(added=resp_added, skipped=resp_skipped),
    )
