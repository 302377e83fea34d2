"""
First-run population of an empty database: version stamp, core categories,
bundled prompts and global settings.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from importlib import resources
from typing import Optional

from roboprep.db import CategoryRecord, PromptRecord, SqlDbClient

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    CategoryRecord(id="artist-bio", name="Artist Bio"),
    CategoryRecord(id="song-story", name="Song Story"),
    CategoryRecord(id="show-segments", name="Show Segments"),
    CategoryRecord(id="music-trivia", name="Music Trivia"),
    CategoryRecord(id="interviews", name="Interviews"),
    CategoryRecord(id="weather", name="Weather"),
    CategoryRecord(id="features", name="Features"),
    CategoryRecord(id="social-media", name="Social Media"),
]

DEFAULT_SETTINGS = {
    "fontSize": "medium",
    "theme": "light",
}


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


def load_default_prompts() -> list[PromptRecord]:
    raw = resources.files("roboprep.data").joinpath("default_prompts.json").read_text(
        encoding="utf-8"
    )
    prompts = []
    for item in json.loads(raw):
        prompts.append(
            PromptRecord(
                id=item["id"],
                title=item["title"],
                description=item.get("description", ""),
                category_id=item.get("category"),
                prompt_text=item["promptText"],
                tags=item.get("tags", []),
                is_user_created=False,
                usage_count=item.get("usageCount", 0),
                created_at=_parse_datetime(item.get("createdAt")),
            )
        )
    return prompts


def initialize_database(db: SqlDbClient, version: str) -> bool:
    """
    Seed an uninitialized database. Returns False when a version is already
    recorded, in which case nothing is touched.
    """
    if db.get_database_version():
        return False

    logger.info("Initializing database at version %s", version)
    db.set_database_version(version)

    created = sum(db.add_core_category(category) for category in DEFAULT_CATEGORIES)
    logger.info("Created %d default categories", created)

    added, skipped = db.add_prompts(load_default_prompts(), is_user_created=False)
    logger.info("Created %d default prompts (%d already present)", added, skipped)

    for key, value in DEFAULT_SETTINGS.items():
        if db.get_setting(key) is None:
            db.set_setting(key, value)
    return True
