"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from roboprep.config import get_settings
from roboprep.db import IN_MEMORY_DATABASE_URL, SqlDbClient
from roboprep.models.gemini import GeminiClient
from roboprep.turnstile import TurnstileVerifier

_db_client: SqlDbClient | None = None
_ai_client: GeminiClient | None = None
_turnstile_verifier: TurnstileVerifier | None = None


def get_db_client() -> SqlDbClient:
    """
    Return a singleton DB client. Without DATABASE_URL an in-memory SQLite
    database is used, which lives as long as the process.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    _db_client = SqlDbClient(settings.database_url or IN_MEMORY_DATABASE_URL)
    return _db_client


def get_ai_client() -> GeminiClient:
    global _ai_client
    if _ai_client:
        return _ai_client
    _ai_client = GeminiClient(get_settings())
    return _ai_client


def get_turnstile_verifier() -> TurnstileVerifier:
    global _turnstile_verifier
    if _turnstile_verifier:
        return _turnstile_verifier
    _turnstile_verifier = TurnstileVerifier(get_settings())
    return _turnstile_verifier
