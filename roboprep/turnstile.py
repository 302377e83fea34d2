"""
Cloudflare Turnstile verification for the registration form.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import requests
from fastapi import Request

from roboprep.config import Settings

logger = logging.getLogger(__name__)

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
REQUEST_TIMEOUT = 30
LOCAL_HOSTS = {"localhost", "127.0.0.1"}


@dataclass
class TurnstileResult:
    success: bool
    error: Optional[str] = None
    error_codes: list[str] = field(default_factory=list)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return request.client.host if request.client else None


def is_api_client(request: Request) -> bool:
    user_agent = request.headers.get("user-agent", "")
    return "API" in user_agent or bool(request.headers.get("x-api-key"))


def is_local_development(request: Request, settings: Settings) -> bool:
    host = (request.headers.get("host") or "").split(":")[0]
    return settings.is_development and host in LOCAL_HOSTS


def turnstile_required(request: Request, settings: Settings) -> bool:
    if not settings.turnstile_secret_key:
        return False
    if is_local_development(request, settings):
        return False
    return not is_api_client(request)


def verify_turnstile_token(
    token: Optional[str], secret: str, remote_ip: Optional[str] = None
) -> TurnstileResult:
    if not token:
        return TurnstileResult(success=False, error="Missing CAPTCHA token")
    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip
    try:
        resp = requests.post(SITEVERIFY_URL, data=data, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Turnstile verification request failed: %s", exc)
        return TurnstileResult(success=False, error="CAPTCHA verification unavailable")

    if payload.get("success"):
        return TurnstileResult(success=True)
    codes = list(payload.get("error-codes") or [])
    logger.info("Turnstile rejected token: %s", codes)
    return TurnstileResult(
        success=False, error="CAPTCHA verification failed", error_codes=codes
    )


class TurnstileVerifier:
    """Callable wrapper so routes can receive verification via Depends."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def __call__(self, request: Request, token: Optional[str]) -> TurnstileResult:
        if not turnstile_required(request, self.settings):
            return TurnstileResult(success=True)
        return verify_turnstile_token(
            token, self.settings.turnstile_secret_key or "", get_client_ip(request)
        )
