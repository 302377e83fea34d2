"""
Pydantic schemas for the RoboPrep API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

EXPORT_TYPE = "DJPromptsExport"
EXPORT_VERSION = "2.0"


class StatusResponse(BaseModel):
    status: Literal["ok"] = "ok"
    message: Optional[str] = None


# -- auth -----------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    turnstile_token: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_admin: bool
    is_approved: bool
    created_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    user: UserResponse
    message: Optional[str] = None


class InitResponse(BaseModel):
    initialized: bool
    version: Optional[str]
    admin_created: bool


# -- prompts / categories -------------------------------------------------


class PromptIn(BaseModel):
    id: Optional[str] = Field(default=None, max_length=128)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category_id: Optional[str] = None
    prompt_text: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    usage_count: int = 0
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    last_edited: Optional[datetime] = None


class PromptOut(BaseModel):
    id: str
    title: str
    description: str
    category_id: Optional[str]
    prompt_text: str
    tags: list[str]
    is_user_created: bool
    usage_count: int
    created_at: Optional[datetime]
    last_used: Optional[datetime]
    last_edited: Optional[datetime]
    variables: list[str] = Field(default_factory=list)


class PromptListRequest(BaseModel):
    prompts: list[PromptIn]


class PromptListResponse(BaseModel):
    prompts: list[PromptOut]


class ExistsResponse(BaseModel):
    id: str
    exists: bool


class CountResponse(BaseModel):
    prompt_id: str
    count: int


class ImportResult(BaseModel):
    added: int
    skipped: int


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)


class CategoryOut(BaseModel):
    id: str
    name: str
    is_user_created: bool = False


class CategoryListRequest(BaseModel):
    categories: list[CategoryOut]


class CategoryListResponse(BaseModel):
    categories: list[CategoryOut]


# -- favorites / recently used / settings ---------------------------------


class PromptIdList(BaseModel):
    prompt_ids: list[str]


class FavoriteToggleResponse(BaseModel):
    prompt_id: str
    is_favorite: bool


class SettingValue(BaseModel):
    value: Any


class SettingsResponse(BaseModel):
    settings: dict[str, Any]


# -- responses ------------------------------------------------------------


class ResponseIn(BaseModel):
    id: Optional[str] = None
    prompt_id: str
    response_text: str
    model_used: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    variables_used: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class ResponseAuthor(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ResponseOut(BaseModel):
    id: str
    prompt_id: str
    user_id: Optional[str]
    response_text: str
    model_used: Optional[str]
    prompt_tokens: Optional[int]
    completion_tokens: Optional[int]
    total_tokens: Optional[int]
    variables_used: Optional[dict[str, Any]]
    created_at: Optional[datetime]
    last_edited: Optional[datetime]
    author: Optional[ResponseAuthor] = None


class ResponseUpdate(BaseModel):
    response_text: str


class ResponseListRequest(BaseModel):
    responses: list[ResponseIn]


class ResponseListResponse(BaseModel):
    responses: list[ResponseOut]


# -- AI -------------------------------------------------------------------


class GenerateRequest(BaseModel):
    prompt_id: Optional[str] = None
    prompt_text: Optional[str] = None
    variables: dict[str, str] = Field(default_factory=dict)
    model: Optional[str] = None
    save: bool = True


class GenerateResponse(BaseModel):
    response_text: str
    model_used: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    response: Optional[ResponseOut] = None


# -- export / import ------------------------------------------------------


class ExportBundle(BaseModel):
    type: str = EXPORT_TYPE
    version: str = EXPORT_VERSION
    timestamp: Optional[datetime] = None
    prompts: list[PromptIn] = Field(default_factory=list)
    categories: list[CategoryOut] = Field(default_factory=list)
    responses: Optional[list[ResponseIn]] = None


class ImportBundleResult(BaseModel):
    prompts: ImportResult
    categories: ImportResult
    responses: ImportResult


# -- admin ----------------------------------------------------------------


class AdminCreateUserRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    is_admin: bool = False


class ResetPasswordRequest(BaseModel):
    new_password: Optional[str] = None


class ToggleAdminRequest(BaseModel):
    is_admin: Optional[bool] = None


class UserListResponse(BaseModel):
    users: list[UserResponse]


class DatabaseActionRequest(BaseModel):
    action: Optional[str] = None


class DatabaseStatusResponse(BaseModel):
    current_version: Optional[str]
    upgrade_info: dict[str, Any]
    stats: dict[str, int]
    environment: dict[str, Any]


class DatabaseUpgradeResponse(BaseModel):
    success: bool
    message: str
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    backup_path: Optional[str] = None
