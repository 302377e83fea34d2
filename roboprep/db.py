"""
Database abstraction for the prompt library, backed by SQLAlchemy.

Table and column names follow the application's SQLite schema ("User",
"isApproved", ...) so an existing database file can be opened as-is; the
Python attributes are snake_case.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

MAX_USER_CATEGORIES = 3
MAX_RECENTLY_USED = 15
IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"


class DbError(Exception):
    """Base class for data-layer errors the API reports to clients."""


class DuplicateEmailError(DbError):
    pass


class CategoryLimitError(DbError):
    pass


class CategoryNameConflictError(DbError):
    pass


class NotFoundError(DbError):
    pass


class PromptKindConflictError(DbError):
    """A replace-all for one prompt kind named ids owned by the other kind."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_admin: bool = False
    is_approved: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        """Public representation; never includes the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_admin": self.is_admin,
            "is_approved": self.is_approved,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class PromptRecord:
    id: str
    title: str
    prompt_text: str
    description: str = ""
    category_id: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    is_user_created: bool = True
    usage_count: int = 0
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    last_edited: Optional[datetime] = None


@dataclass
class CategoryRecord:
    id: str
    name: str
    is_user_created: bool = False


@dataclass
class ResponseRecord:
    id: Optional[str]
    prompt_id: str
    response_text: str
    user_id: Optional[str] = None
    model_used: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    created_at: Optional[datetime] = None
    last_edited: Optional[datetime] = None
    variables_used: Optional[dict] = None
    author_first_name: Optional[str] = None
    author_last_name: Optional[str] = None


Base = declarative_base()


class DatabaseInfoRow(Base):
    __tablename__ = "DatabaseInfo"

    id = Column(Integer, primary_key=True, default=1)
    version = Column(String, nullable=False)
    updated_at = Column("updatedAt", DateTime, nullable=False, default=_utcnow)


class UserRow(Base):
    __tablename__ = "User"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password = Column(String, nullable=False)
    first_name = Column("firstName", String, nullable=True)
    last_name = Column("lastName", String, nullable=True)
    is_admin = Column("isAdmin", Boolean, nullable=False, default=False)
    is_approved = Column("isApproved", Boolean, nullable=False, default=False)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime, nullable=False, default=_utcnow)


class SessionRow(Base):
    __tablename__ = "Session"

    id = Column(String, primary_key=True)
    user_id = Column(
        "userId", String, ForeignKey("User.id", ondelete="CASCADE"), nullable=False
    )
    token = Column(String, nullable=False, unique=True)
    expires_at = Column("expiresAt", DateTime, nullable=False)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)

    user = relationship("UserRow", lazy="joined")


class CategoryRow(Base):
    __tablename__ = "Category"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    is_user_created = Column("isUserCreated", Boolean, nullable=False, default=False)


class TagRow(Base):
    __tablename__ = "Tag"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class PromptTagRow(Base):
    __tablename__ = "PromptTag"

    prompt_id = Column(
        "promptId", String, ForeignKey("Prompt.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id = Column(
        "tagId", String, ForeignKey("Tag.id", ondelete="CASCADE"), primary_key=True
    )

    tag = relationship("TagRow", lazy="joined")


class PromptRow(Base):
    __tablename__ = "Prompt"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column("categoryId", String, nullable=True)
    prompt_text = Column("promptText", Text, nullable=False)
    is_user_created = Column("isUserCreated", Boolean, nullable=False)
    usage_count = Column("usageCount", Integer, nullable=False, default=0)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    last_used = Column("lastUsed", DateTime, nullable=True)
    last_edited = Column("lastEdited", DateTime, nullable=True)

    tag_links = relationship(
        "PromptTagRow", cascade="all, delete-orphan", lazy="selectin"
    )


class ResponseRow(Base):
    __tablename__ = "Response"

    id = Column(String, primary_key=True)
    prompt_id = Column(
        "promptId", String, ForeignKey("Prompt.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        "userId", String, ForeignKey("User.id", ondelete="SET NULL"), nullable=True
    )
    response_text = Column("responseText", Text, nullable=False)
    model_used = Column("modelUsed", String, nullable=True)
    prompt_tokens = Column("promptTokens", Integer, nullable=True)
    completion_tokens = Column("completionTokens", Integer, nullable=True)
    total_tokens = Column("totalTokens", Integer, nullable=True)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    last_edited = Column("lastEdited", DateTime, nullable=True)
    variables_used = Column("variablesUsed", Text, nullable=True)

    user = relationship("UserRow", lazy="joined")


class SettingRow(Base):
    __tablename__ = "Setting"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


class UserSettingRow(Base):
    __tablename__ = "UserSetting"
    __table_args__ = (UniqueConstraint("userId", "key"),)

    id = Column(String, primary_key=True)
    user_id = Column(
        "userId", String, ForeignKey("User.id", ondelete="CASCADE"), nullable=False
    )
    key = Column(String, nullable=False)
    value = Column(Text, nullable=False)


class UserFavoriteRow(Base):
    __tablename__ = "UserFavorite"
    __table_args__ = (UniqueConstraint("userId", "promptId"),)

    id = Column(String, primary_key=True)
    user_id = Column(
        "userId", String, ForeignKey("User.id", ondelete="CASCADE"), nullable=False
    )
    prompt_id = Column(
        "promptId", String, ForeignKey("Prompt.id", ondelete="CASCADE"), nullable=False
    )


class UserRecentlyUsedRow(Base):
    __tablename__ = "UserRecentlyUsed"
    __table_args__ = (UniqueConstraint("userId", "promptId"),)

    id = Column(String, primary_key=True)
    user_id = Column(
        "userId", String, ForeignKey("User.id", ondelete="CASCADE"), nullable=False
    )
    prompt_id = Column(
        "promptId", String, ForeignKey("Prompt.id", ondelete="CASCADE"), nullable=False
    )
    used_at = Column("usedAt", DateTime, nullable=False, default=_utcnow, index=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str):
    """Build an engine; in-memory SQLite shares one connection across threads."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, future=True, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def _dump(value: Any) -> str:
    return json.dumps(value)


def _load(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Stored value is not valid JSON: %r", raw[:50])
        return None


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL; SQLite is
    the deployment target and in-memory SQLite is used for development/tests.
    """

    def __init__(
        self, database_url: str = IN_MEMORY_DATABASE_URL, *, create_schema: bool = True
    ):
        if not database_url:
            raise ValueError("database_url is required for SqlDbClient")
        self.database_url = database_url
        self.engine = create_db_engine(database_url)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_schema:
            Base.metadata.create_all(self.engine)

    # -- converters -------------------------------------------------------

    def _to_user_record(self, row: UserRow) -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            password_hash=row.password,
            first_name=row.first_name,
            last_name=row.last_name,
            is_admin=bool(row.is_admin),
            is_approved=bool(row.is_approved),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_prompt_record(self, row: PromptRow) -> PromptRecord:
        return PromptRecord(
            id=row.id,
            title=row.title,
            description=row.description or "",
            category_id=row.category_id,
            prompt_text=row.prompt_text,
            tags=[link.tag.name for link in row.tag_links],
            is_user_created=bool(row.is_user_created),
            usage_count=row.usage_count or 0,
            created_at=row.created_at,
            last_used=row.last_used,
            last_edited=row.last_edited,
        )

    def _to_response_record(self, row: ResponseRow) -> ResponseRecord:
        return ResponseRecord(
            id=row.id,
            prompt_id=row.prompt_id,
            user_id=row.user_id,
            response_text=row.response_text,
            model_used=row.model_used,
            prompt_tokens=row.prompt_tokens,
            completion_tokens=row.completion_tokens,
            total_tokens=row.total_tokens,
            created_at=row.created_at,
            last_edited=row.last_edited,
            variables_used=_load(row.variables_used),
            author_first_name=row.user.first_name if row.user else None,
            author_last_name=row.user.last_name if row.user else None,
        )

    # -- database info ----------------------------------------------------

    def get_database_version(self) -> Optional[str]:
        with self.Session() as session:
            row = session.get(DatabaseInfoRow, 1)
            return row.version if row else None

    def set_database_version(self, version: str) -> None:
        with self.Session() as session:
            row = session.get(DatabaseInfoRow, 1)
            if row:
                row.version = version
                row.updated_at = _utcnow()
            else:
                session.add(DatabaseInfoRow(id=1, version=version, updated_at=_utcnow()))
            session.commit()

    # -- users ------------------------------------------------------------

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        is_admin: bool = False,
        is_approved: bool = False,
    ) -> UserRecord:
        email = normalize_email(email)
        now = _utcnow()
        with self.Session() as session:
            existing = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            if existing:
                raise DuplicateEmailError(email)
            row = UserRow(
                id=uuid.uuid4().hex,
                email=email,
                password=password_hash,
                first_name=first_name or None,
                last_name=last_name or None,
                is_admin=is_admin,
                is_approved=is_approved,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateEmailError(email) from exc
            return self._to_user_record(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == normalize_email(email))
            ).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRow).order_by(UserRow.created_at.desc())
            ).scalars()
            return [self._to_user_record(row) for row in rows]

    def count_users(self) -> int:
        with self.Session() as session:
            return session.execute(select(func.count()).select_from(UserRow)).scalar_one()

    def has_admin(self) -> bool:
        with self.Session() as session:
            row = session.execute(
                select(UserRow.id).where(UserRow.is_admin.is_(True)).limit(1)
            ).first()
            return row is not None

    def update_user(
        self,
        user_id: str,
        *,
        is_admin: Optional[bool] = None,
        is_approved: Optional[bool] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            if is_admin is not None:
                row.is_admin = is_admin
            if is_approved is not None:
                row.is_approved = is_approved
            if password_hash is not None:
                row.password = password_hash
            row.updated_at = _utcnow()
            session.commit()
            return self._to_user_record(row)

    def delete_user(self, user_id: str) -> bool:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    # -- sessions ---------------------------------------------------------

    def create_session(self, user_id: str, token: str, expires_at: datetime) -> None:
        with self.Session() as session:
            session.add(
                SessionRow(
                    id=uuid.uuid4().hex,
                    user_id=user_id,
                    token=token,
                    expires_at=expires_at,
                    created_at=_utcnow(),
                )
            )
            session.commit()

    def get_session_user(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[UserRecord]:
        if not token:
            return None
        now = now or _utcnow()
        with self.Session() as session:
            row = session.execute(
                select(SessionRow).where(
                    SessionRow.token == token, SessionRow.expires_at > now
                )
            ).scalar_one_or_none()
            if not row or not row.user:
                return None
            return self._to_user_record(row.user)

    def delete_session(self, token: str) -> int:
        with self.Session() as session:
            result = session.execute(delete(SessionRow).where(SessionRow.token == token))
            session.commit()
            return result.rowcount or 0

    def purge_expired_sessions(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        with self.Session() as session:
            result = session.execute(
                delete(SessionRow).where(SessionRow.expires_at <= now)
            )
            session.commit()
            return result.rowcount or 0

    # -- prompts ----------------------------------------------------------

    def _find_or_create_tag(self, session: Session, name: str) -> TagRow:
        tag = session.execute(
            select(TagRow).where(TagRow.name == name)
        ).scalar_one_or_none()
        if not tag:
            tag = TagRow(id=uuid.uuid4().hex, name=name)
            session.add(tag)
            session.flush()
        return tag

    def _set_tags(self, session: Session, row: PromptRow, tags: Iterable[str]) -> None:
        row.tag_links.clear()
        session.flush()
        seen: set[str] = set()
        for name in tags:
            name = (name or "").strip()
            if not name or name in seen:
                continue
            seen.add(name)
            tag = self._find_or_create_tag(session, name)
            row.tag_links.append(PromptTagRow(prompt_id=row.id, tag_id=tag.id, tag=tag))

    def _apply_prompt(self, row: PromptRow, prompt: PromptRecord) -> None:
        row.title = prompt.title
        row.description = prompt.description or ""
        row.category_id = prompt.category_id or None
        row.prompt_text = prompt.prompt_text
        row.is_user_created = prompt.is_user_created
        row.usage_count = prompt.usage_count or 0
        row.created_at = prompt.created_at or row.created_at or _utcnow()
        row.last_used = prompt.last_used
        row.last_edited = prompt.last_edited

    def list_prompts(self, is_user_created: Optional[bool] = None) -> list[PromptRecord]:
        with self.Session() as session:
            stmt = select(PromptRow).order_by(PromptRow.created_at.asc())
            if is_user_created is not None:
                stmt = stmt.where(PromptRow.is_user_created.is_(is_user_created))
            rows = session.execute(stmt).scalars().all()
            return [self._to_prompt_record(row) for row in rows]

    def get_prompt(self, prompt_id: str) -> Optional[PromptRecord]:
        with self.Session() as session:
            row = session.get(PromptRow, prompt_id)
            return self._to_prompt_record(row) if row else None

    def prompt_exists(self, prompt_id: str) -> bool:
        with self.Session() as session:
            return session.get(PromptRow, prompt_id) is not None

    def create_prompt(self, prompt: PromptRecord) -> PromptRecord:
        with self.Session() as session:
            row = PromptRow(id=prompt.id or f"prompt_{uuid.uuid4().hex}")
            self._apply_prompt(row, prompt)
            session.add(row)
            session.flush()
            self._set_tags(session, row, prompt.tags)
            session.commit()
            return self._to_prompt_record(row)

    def update_prompt(self, prompt: PromptRecord) -> Optional[PromptRecord]:
        with self.Session() as session:
            row = session.get(PromptRow, prompt.id)
            if not row:
                return None
            self._apply_prompt(row, prompt)
            self._set_tags(session, row, prompt.tags)
            session.commit()
            return self._to_prompt_record(row)

    def delete_prompt(self, prompt_id: str) -> bool:
        with self.Session() as session:
            row = session.get(PromptRow, prompt_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def store_prompts(self, prompts: list[PromptRecord], is_user_created: bool) -> None:
        """
        Replace every prompt of one kind with ``prompts``.

        Prompts missing from the new set are deleted unless responses still
        reference them.

        Raises PromptKindConflictError, before changing anything, when an id
        already belongs to a prompt of the other kind.
        """
        new_ids = {p.id for p in prompts}
        with self.Session() as session:
            conflicts = session.execute(
                select(PromptRow.id).where(
                    PromptRow.id.in_(new_ids),
                    PromptRow.is_user_created.is_not(is_user_created),
                )
            ).scalars().all()
            if conflicts:
                raise PromptKindConflictError(
                    "Prompt ids already in use: " + ", ".join(sorted(conflicts))
                )

            existing = {
                row.id: row
                for row in session.execute(
                    select(PromptRow).where(
                        PromptRow.is_user_created.is_(is_user_created)
                    )
                ).scalars()
            }
            for prompt_id, row in existing.items():
                if prompt_id in new_ids:
                    continue
                has_responses = session.execute(
                    select(ResponseRow.id).where(ResponseRow.prompt_id == prompt_id).limit(1)
                ).first()
                if has_responses:
                    logger.info("Keeping prompt %s: it still has responses", prompt_id)
                    continue
                session.delete(row)
            session.flush()

            for prompt in prompts:
                prompt.is_user_created = is_user_created
                row = existing.get(prompt.id)
                if not row:
                    row = PromptRow(id=prompt.id)
                    session.add(row)
                self._apply_prompt(row, prompt)
                session.flush()
                self._set_tags(session, row, prompt.tags)
            session.commit()

    def add_prompts(
        self, prompts: list[PromptRecord], is_user_created: bool
    ) -> tuple[int, int]:
        """Append prompts, skipping ids that already exist. Returns (added, skipped)."""
        added = skipped = 0
        with self.Session() as session:
            for prompt in prompts:
                if session.get(PromptRow, prompt.id):
                    skipped += 1
                    continue
                prompt.is_user_created = is_user_created
                row = PromptRow(id=prompt.id)
                self._apply_prompt(row, prompt)
                session.add(row)
                session.flush()
                self._set_tags(session, row, prompt.tags)
                added += 1
            session.commit()
        return added, skipped

    def record_prompt_use(self, user_id: str, prompt_id: str) -> Optional[PromptRecord]:
        """Bump usage stats and move the prompt to the front of the user's recents."""
        now = _utcnow()
        with self.Session() as session:
            row = session.get(PromptRow, prompt_id)
            if not row:
                return None
            row.usage_count = (row.usage_count or 0) + 1
            row.last_used = now

            recent = session.execute(
                select(UserRecentlyUsedRow).where(
                    UserRecentlyUsedRow.user_id == user_id,
                    UserRecentlyUsedRow.prompt_id == prompt_id,
                )
            ).scalar_one_or_none()
            if recent:
                recent.used_at = now
            else:
                session.add(
                    UserRecentlyUsedRow(
                        id=uuid.uuid4().hex,
                        user_id=user_id,
                        prompt_id=prompt_id,
                        used_at=now,
                    )
                )
            session.flush()

            stale = session.execute(
                select(UserRecentlyUsedRow)
                .where(UserRecentlyUsedRow.user_id == user_id)
                .order_by(UserRecentlyUsedRow.used_at.desc())
                .offset(MAX_RECENTLY_USED)
            ).scalars().all()
            for item in stale:
                session.delete(item)
            session.commit()
            return self._to_prompt_record(row)

    # -- categories -------------------------------------------------------

    def list_categories(
        self, is_user_created: Optional[bool] = None
    ) -> list[CategoryRecord]:
        with self.Session() as session:
            stmt = select(CategoryRow)
            if is_user_created is not None:
                stmt = stmt.where(CategoryRow.is_user_created.is_(is_user_created))
            return [
                CategoryRecord(
                    id=row.id, name=row.name, is_user_created=bool(row.is_user_created)
                )
                for row in session.execute(stmt).scalars()
            ]

    def _name_taken(
        self, session: Session, name: str, exclude_id: Optional[str] = None
    ) -> bool:
        stmt = select(CategoryRow.id).where(
            func.lower(CategoryRow.name) == name.strip().lower()
        )
        if exclude_id:
            stmt = stmt.where(CategoryRow.id != exclude_id)
        return session.execute(stmt.limit(1)).first() is not None

    def add_category(self, name: str) -> CategoryRecord:
        name = name.strip()
        with self.Session() as session:
            user_count = session.execute(
                select(func.count())
                .select_from(CategoryRow)
                .where(CategoryRow.is_user_created.is_(True))
            ).scalar_one()
            if user_count >= MAX_USER_CATEGORIES:
                raise CategoryLimitError(
                    f"Maximum of {MAX_USER_CATEGORIES} custom categories reached."
                )
            if self._name_taken(session, name):
                raise CategoryNameConflictError("Category name already exists.")
            row = CategoryRow(
                id=f"user_cat_{uuid.uuid4().hex[:12]}", name=name, is_user_created=True
            )
            session.add(row)
            session.commit()
            return CategoryRecord(id=row.id, name=row.name, is_user_created=True)

    def rename_category(self, category_id: str, name: str) -> CategoryRecord:
        name = name.strip()
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            if not row or not row.is_user_created:
                raise NotFoundError("Category not found.")
            if self._name_taken(session, name, exclude_id=category_id):
                raise CategoryNameConflictError("Category name already exists.")
            row.name = name
            session.commit()
            return CategoryRecord(id=row.id, name=row.name, is_user_created=True)

    def delete_category(self, category_id: str) -> bool:
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            if not row:
                return False
            session.execute(
                update(PromptRow)
                .where(PromptRow.category_id == category_id)
                .values(category_id=None)
            )
            session.delete(row)
            session.commit()
            return True

    def store_user_categories(self, categories: list[CategoryRecord]) -> None:
        with self.Session() as session:
            session.execute(delete(CategoryRow).where(CategoryRow.is_user_created.is_(True)))
            for category in categories:
                session.add(
                    CategoryRow(id=category.id, name=category.name, is_user_created=True)
                )
            session.commit()

    def add_user_categories(self, categories: list[CategoryRecord]) -> tuple[int, int]:
        added = skipped = 0
        with self.Session() as session:
            for category in categories:
                if session.get(CategoryRow, category.id):
                    skipped += 1
                    continue
                session.add(
                    CategoryRow(id=category.id, name=category.name, is_user_created=True)
                )
                added += 1
            session.commit()
        return added, skipped

    def add_core_category(self, category: CategoryRecord) -> bool:
        with self.Session() as session:
            if session.get(CategoryRow, category.id):
                return False
            session.add(CategoryRow(id=category.id, name=category.name, is_user_created=False))
            session.commit()
            return True

    # -- favorites / recently used ---------------------------------------

    def get_favorites(self, user_id: str) -> list[str]:
        with self.Session() as session:
            rows = session.execute(
                select(UserFavoriteRow.prompt_id).where(UserFavoriteRow.user_id == user_id)
            ).scalars()
            return list(rows)

    def store_favorites(self, user_id: str, prompt_ids: list[str]) -> list[str]:
        with self.Session() as session:
            session.execute(delete(UserFavoriteRow).where(UserFavoriteRow.user_id == user_id))
            stored: list[str] = []
            for prompt_id in dict.fromkeys(prompt_ids):
                if not session.get(PromptRow, prompt_id):
                    logger.warning("Skipping favorite for non-existent prompt: %s", prompt_id)
                    continue
                session.add(
                    UserFavoriteRow(id=uuid.uuid4().hex, user_id=user_id, prompt_id=prompt_id)
                )
                stored.append(prompt_id)
            session.commit()
            return stored

    def toggle_favorite(self, user_id: str, prompt_id: str) -> bool:
        """Flip the favorite flag; returns True when the prompt is now a favorite."""
        with self.Session() as session:
            if not session.get(PromptRow, prompt_id):
                raise NotFoundError("Prompt not found")
            row = session.execute(
                select(UserFavoriteRow).where(
                    UserFavoriteRow.user_id == user_id,
                    UserFavoriteRow.prompt_id == prompt_id,
                )
            ).scalar_one_or_none()
            if row:
                session.delete(row)
                session.commit()
                return False
            session.add(UserFavoriteRow(id=uuid.uuid4().hex, user_id=user_id, prompt_id=prompt_id))
            session.commit()
            return True

    def get_recently_used(self, user_id: str) -> list[str]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRecentlyUsedRow.prompt_id)
                .where(UserRecentlyUsedRow.user_id == user_id)
                .order_by(UserRecentlyUsedRow.used_at.desc())
            ).scalars()
            return list(rows)

    def store_recently_used(self, user_id: str, prompt_ids: list[str]) -> int:
        now = _utcnow()
        count = 0
        with self.Session() as session:
            session.execute(
                delete(UserRecentlyUsedRow).where(UserRecentlyUsedRow.user_id == user_id)
            )
            for index, prompt_id in enumerate(dict.fromkeys(prompt_ids)):
                if not session.get(PromptRow, prompt_id):
                    logger.warning("Skipping recently used for non-existent prompt: %s", prompt_id)
                    continue
                # Newest first: each later entry is one second older.
                session.add(
                    UserRecentlyUsedRow(
                        id=uuid.uuid4().hex,
                        user_id=user_id,
                        prompt_id=prompt_id,
                        used_at=now - timedelta(seconds=index),
                    )
                )
                count += 1
            session.commit()
        return count

    # -- settings ---------------------------------------------------------

    def get_setting(self, key: str) -> Any:
        with self.Session() as session:
            row = session.get(SettingRow, key)
            return _load(row.value) if row else None

    def set_setting(self, key: str, value: Any) -> None:
        with self.Session() as session:
            row = session.get(SettingRow, key)
            if row:
                row.value = _dump(value)
            else:
                session.add(SettingRow(key=key, value=_dump(value)))
            session.commit()

    def list_settings(self) -> dict[str, Any]:
        with self.Session() as session:
            return {
                row.key: _load(row.value)
                for row in session.execute(select(SettingRow)).scalars()
            }

    def get_user_settings(
        self, user_id: str, defaults: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        Resolve settings for a user: user value, then global value, then the
        caller's default. With no defaults every known key is returned.
        """
        with self.Session() as session:
            user_values = {
                row.key: _load(row.value)
                for row in session.execute(
                    select(UserSettingRow).where(UserSettingRow.user_id == user_id)
                ).scalars()
            }
        global_values = self.list_settings()
        if defaults is None:
            merged = dict(global_values)
            merged.update(user_values)
            return merged
        result: dict[str, Any] = {}
        for key, default in defaults.items():
            if key in user_values:
                result[key] = user_values[key]
            elif key in global_values:
                result[key] = global_values[key]
            else:
                result[key] = default
        return result

    def set_user_setting(self, user_id: str, key: str, value: Any) -> None:
        with self.Session() as session:
            row = session.execute(
                select(UserSettingRow).where(
                    UserSettingRow.user_id == user_id, UserSettingRow.key == key
                )
            ).scalar_one_or_none()
            if row:
                row.value = _dump(value)
            else:
                session.add(
                    UserSettingRow(
                        id=uuid.uuid4().hex, user_id=user_id, key=key, value=_dump(value)
                    )
                )
            session.commit()

    def remove_user_setting(self, user_id: str, key: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(UserSettingRow).where(
                    UserSettingRow.user_id == user_id, UserSettingRow.key == key
                )
            )
            session.commit()
            return bool(result.rowcount)

    def migrate_legacy_settings(self, user_id: str) -> int:
        """Copy global settings into a user's settings (first registered user)."""
        settings = self.list_settings()
        for key, value in settings.items():
            self.set_user_setting(user_id, key, value)
        logger.info("Migrated %d legacy settings to user %s", len(settings), user_id)
        return len(settings)

    # -- responses --------------------------------------------------------

    def list_responses(self, prompt_id: Optional[str] = None) -> list[ResponseRecord]:
        with self.Session() as session:
            stmt = select(ResponseRow).order_by(ResponseRow.created_at.desc())
            if prompt_id is not None:
                stmt = stmt.where(ResponseRow.prompt_id == prompt_id)
            return [self._to_response_record(row) for row in session.execute(stmt).scalars()]

    def get_response(self, response_id: str) -> Optional[ResponseRecord]:
        with self.Session() as session:
            row = session.get(ResponseRow, response_id)
            return self._to_response_record(row) if row else None

    def count_responses(self, prompt_id: str) -> int:
        with self.Session() as session:
            return session.execute(
                select(func.count())
                .select_from(ResponseRow)
                .where(ResponseRow.prompt_id == prompt_id)
            ).scalar_one()

    def _new_response_row(
        self, response: ResponseRecord, user_id: Optional[str]
    ) -> ResponseRow:
        return ResponseRow(
            id=response.id or f"response_{uuid.uuid4().hex}",
            prompt_id=response.prompt_id,
            user_id=user_id,
            response_text=response.response_text or "",
            model_used=response.model_used,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
            total_tokens=response.total_tokens,
            created_at=response.created_at or _utcnow(),
            last_edited=response.last_edited,
            variables_used=(
                _dump(response.variables_used) if response.variables_used else None
            ),
        )

    def save_response(
        self, response: ResponseRecord, user_id: Optional[str] = None
    ) -> ResponseRecord:
        """Create the response, or update it in place when the id already exists."""
        with self.Session() as session:
            row = session.get(ResponseRow, response.id) if response.id else None
            if row:
                row.response_text = response.response_text
                row.model_used = response.model_used or row.model_used
                row.prompt_tokens = response.prompt_tokens or row.prompt_tokens
                row.completion_tokens = response.completion_tokens or row.completion_tokens
                row.total_tokens = response.total_tokens or row.total_tokens
                if response.variables_used:
                    row.variables_used = _dump(response.variables_used)
                row.last_edited = _utcnow()
            else:
                if not session.get(PromptRow, response.prompt_id):
                    raise NotFoundError("Prompt not found")
                row = self._new_response_row(response, user_id)
                session.add(row)
            session.commit()
            return self._to_response_record(session.get(ResponseRow, row.id))

    def update_response_text(
        self, response_id: str, response_text: str
    ) -> Optional[ResponseRecord]:
        with self.Session() as session:
            row = session.get(ResponseRow, response_id)
            if not row:
                return None
            row.response_text = response_text
            row.last_edited = _utcnow()
            session.commit()
            return self._to_response_record(row)

    def delete_response(self, response_id: str) -> bool:
        with self.Session() as session:
            row = session.get(ResponseRow, response_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def store_responses(self, responses: list[ResponseRecord]) -> int:
        """
        Replace every response. Ids that already existed keep their author;
        new ids are stored without one.
        """
        with self.Session() as session:
            authors = dict(
                session.execute(select(ResponseRow.id, ResponseRow.user_id)).all()
            )
            session.execute(delete(ResponseRow))
            for response in responses:
                if not response.id or not response.prompt_id:
                    continue
                if not session.get(PromptRow, response.prompt_id):
                    logger.warning("Skipping response %s: unknown prompt", response.id)
                    continue
                session.add(self._new_response_row(response, authors.get(response.id)))
            session.commit()
            return session.execute(select(func.count()).select_from(ResponseRow)).scalar_one()

    def add_responses(
        self, responses: list[ResponseRecord], user_id: Optional[str] = None
    ) -> tuple[int, int]:
        added = skipped = 0
        with self.Session() as session:
            for response in responses:
                if (
                    not response.id
                    or not response.prompt_id
                    or session.get(ResponseRow, response.id)
                    or not session.get(PromptRow, response.prompt_id)
                ):
                    skipped += 1
                    continue
                session.add(self._new_response_row(response, user_id))
                added += 1
            session.commit()
        return added, skipped

    # -- maintenance ------------------------------------------------------

    def get_stats(self) -> dict:
        def count(session: Session, model, *criteria) -> int:
            stmt = select(func.count()).select_from(model)
            if criteria:
                stmt = stmt.where(*criteria)
            return session.execute(stmt).scalar_one()

        with self.Session() as session:
            return {
                "prompt_count": count(session, PromptRow),
                "user_prompt_count": count(
                    session, PromptRow, PromptRow.is_user_created.is_(True)
                ),
                "core_prompt_count": count(
                    session, PromptRow, PromptRow.is_user_created.is_(False)
                ),
                "category_count": count(session, CategoryRow),
                "tag_count": count(session, TagRow),
                "response_count": count(session, ResponseRow),
                "user_favorite_count": count(session, UserFavoriteRow),
                "user_recently_used_count": count(session, UserRecentlyUsedRow),
                "user_count": count(session, UserRow),
                "session_count": count(session, SessionRow),
                "setting_count": count(session, SettingRow),
                "user_setting_count": count(session, UserSettingRow),
            }

    def clear_data(self) -> None:
        """Delete all library data; users and sessions are kept."""
        with self.Session() as session:
            for model in (
                ResponseRow,
                UserRecentlyUsedRow,
                UserFavoriteRow,
                PromptTagRow,
                TagRow,
                PromptRow,
                CategoryRow,
                SettingRow,
                UserSettingRow,
            ):
                session.execute(delete(model))
            session.commit()
