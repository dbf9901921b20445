"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper (same as entities/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and workflow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced by the schema. create_user() translates the
  IntegrityError into DuplicateEmailError so the provisioner and the admin
  routes can treat "already exists" as a domain outcome.

  The users -> entities link (entity_id) is enforced in code rather than SQL:
  the two stores may live on separate engines, so a cross-table FOREIGN KEY
  cannot be relied on. Entity deletion checks get_by_entity_id() first.

Layer rule: no imports from api/, entities/, or notify/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import ROLES, User
from core.errors import DuplicateEmailError, ValidationError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("entity_id", String(36), index=True),  # NULL for plain users and admins
    Column("password_reset_required", Integer, nullable=False, server_default="0"),
    Column("temp_password_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///adbond.db")
        user_id = store.create_user(User(email="admin@adbond.net", role="admin", hashed_password=...))
        user = store.get_by_email("admin@adbond.net")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Emails are stored lower-cased so lookups are case-insensitive.
        Raises DuplicateEmailError if the email is already registered --
        including the race where a concurrent request inserted it first.
        """
        if user.role not in ROLES:
            raise ValidationError(f"Unknown role: {user.role}", errors=["role"])
        user_id = user.id or str(uuid.uuid4())
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=user.email.strip().lower(),
                        hashed_password=user.hashed_password,
                        role=user.role,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        entity_id=user.entity_id,
                        password_reset_required=1 if user.password_reset_required else 0,
                        temp_password_expires=user.temp_password_expires,
                        created_at=_now_iso(),
                        is_active=1 if user.is_active else 0,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmailError(f"A user with email {user.email} already exists.") from exc
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_entity_id(self, entity_id: str) -> User | None:
        """Return the user provisioned for an entity, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.entity_id == entity_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def change_password(self, user_id: str, hashed_password: str) -> bool:
        """Store a new password hash and clear the temporary-credential pair.

        password_reset_required and temp_password_expires are cleared in the
        same statement so the pair can never be half-set.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, password_reset_required=0, temp_password_expires=None)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Callers must check self-delete before calling this method; the store
        does not know who is asking.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        entity_id=row.entity_id,
        password_reset_required=bool(row.password_reset_required),
        temp_password_expires=row.temp_password_expires,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )
