"""
Password and email checks applied at registration and password reset.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MIN_PASSWORD_LENGTH = 8
MAX_EMAIL_LENGTH = 254
MAX_EMAIL_LOCAL_LENGTH = 64

SAFE_SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
UNSAFE_PASSWORD_PATTERN = re.compile(r"['\"`\\/\0\n\r\x1a]")
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9]"
    r"(?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
EMAIL_FORBIDDEN_CHARACTERS = "<>'\"\\"


@dataclass
class PasswordCheck:
    is_valid: bool
    score: int
    strength: str
    errors: list[str] = field(default_factory=list)


def _strength_label(score: int) -> str:
    if score <= 2:
        return "weak"
    if score <= 4:
        return "medium"
    if score == 5:
        return "strong"
    return "excellent"


def validate_password(password: str) -> PasswordCheck:
    password = password or ""
    checks = [
        (len(password) >= MIN_PASSWORD_LENGTH,
         f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"),
        (bool(re.search(r"[A-Z]", password)),
         "Password must contain at least one uppercase letter"),
        (bool(re.search(r"[a-z]", password)),
         "Password must contain at least one lowercase letter"),
        (bool(re.search(r"[0-9]", password)),
         "Password must contain at least one number"),
        (any(ch in SAFE_SPECIAL_CHARACTERS for ch in password),
         f"Password must contain at least one special character ({SAFE_SPECIAL_CHARACTERS})"),
        (not UNSAFE_PASSWORD_PATTERN.search(password),
         "Password contains characters that are not allowed"),
    ]
    errors = [message for passed, message in checks if not passed]
    score = len(checks) - len(errors)
    return PasswordCheck(
        is_valid=not errors,
        score=score,
        strength=_strength_label(score),
        errors=errors,
    )


def validate_email(email: str) -> list[str]:
    """Return a list of problems with ``email``; empty when it is acceptable."""
    email = (email or "").strip()
    if not email:
        return ["Email is required"]
    errors = []
    if len(email) > MAX_EMAIL_LENGTH:
        errors.append(f"Email must be at most {MAX_EMAIL_LENGTH} characters")
    local, _, _domain = email.partition("@")
    if len(local) > MAX_EMAIL_LOCAL_LENGTH:
        errors.append(f"Email local part must be at most {MAX_EMAIL_LOCAL_LENGTH} characters")
    if any(ch in EMAIL_FORBIDDEN_CHARACTERS for ch in email):
        errors.append("Email contains invalid characters")
    if ".." in email:
        errors.append("Email cannot contain consecutive dots")
    if not EMAIL_PATTERN.match(email):
        errors.append("Please enter a valid email address")
    return errors
