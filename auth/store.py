"""
auth/store.py -- SQLAlchemy Core persistence layer for users, roles and assignments.

Pattern: Repository + Data Mapper + explicit Unit of Work.
CredentialStore is the repository; _row_to_user / _row_to_role are the mappers.
Writes never happen through ad-hoc UPDATE calls scattered across the service:
the caller builds a list of typed mutations and hands it to apply(), which
commits the whole batch in one transaction or none of it.

Optimistic concurrency:
  users.version is bumped by every UpdateUser. UpdateUser and DeleteUser carry
  the version the caller read; the WHERE clause matches on (id, version). Zero
  rows affected means the row changed or vanished since the read, and the
  entire batch is rolled back. Role deltas for a user are always batched with
  an UpdateUser of that user, so two writers racing on the same user's roles
  also collide on the version check -- there is no last-writer-wins merge.

Uniqueness:
  username and email are stored twice: as entered, and normalized (trimmed,
  lower-cased) in a UNIQUE column. Case-insensitive uniqueness is therefore
  enforced by the database, not only by the service's pre-check.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import Outcome
from auth.models import Assignment, Role, User, normalize_key
from core.config import get_settings

logger = logging.getLogger("authapp.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False),
    Column("username_normalized", String(100), nullable=False, unique=True),
    Column("email", String(256), nullable=False),
    Column("email_normalized", String(256), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="1"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("name_normalized", String(100), nullable=False, unique=True),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("user_id", "role_id"),
)

# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class _NewUser:
    """Marker for 'the user inserted earlier in this batch'."""

    def __repr__(self) -> str:
        return "NEW_USER"


NEW_USER = _NewUser()

# Fields UpdateUser may touch. Validated before any SQL is built.
_UPDATABLE_USER_FIELDS = frozenset({"username", "email", "password_hash", "is_active"})


@dataclass(frozen=True)
class InsertUser:
    user: User


@dataclass(frozen=True)
class UpdateUser:
    user_id: int
    expected_version: int
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteUser:
    user_id: int
    expected_version: int | None = None


@dataclass(frozen=True)
class InsertAssignment:
    user_id: Union[int, _NewUser]
    role_id: int


@dataclass(frozen=True)
class DeleteAssignment:
    user_id: int
    role_id: int


@dataclass(frozen=True)
class InsertRole:
    name: str


Mutation = Union[InsertUser, UpdateUser, DeleteUser, InsertAssignment, DeleteAssignment, InsertRole]


@dataclass(frozen=True)
class ApplyResult:
    outcome: Outcome
    inserted_user_id: int | None = None

    @property
    def committed(self) -> bool:
        return self.outcome is Outcome.COMMITTED


class _Abort(Exception):
    """Raised inside the transaction block to roll back with a known outcome."""

    def __init__(self, outcome: Outcome, reason: str) -> None:
        super().__init__(reason)
        self.outcome = outcome


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    WAL lets readers see the last committed snapshot while a writer holds the
    lock. PRAGMAs are per-connection, so this runs on each pool connect.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, Role and Assignment records.

    Usage:
        store = CredentialStore()
        result = store.apply([InsertUser(user), InsertAssignment(NEW_USER, role.id)])
        user = store.find_by_email("admin@task.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key, with role names resolved. None if not found."""
        return self._load_one(_users.c.id == user_id)

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. None if not found or blank."""
        key = normalize_key(email)
        if not key:
            return None
        return self._load_one(_users.c.email_normalized == key)

    def find_by_username(self, username: str) -> User | None:
        key = normalize_key(username)
        if not key:
            return None
        return self._load_one(_users.c.username_normalized == key)

    def list_all(self) -> list[User]:
        """Return every user ordered by id, each annotated with its role names.

        Users and their roles come back from one SELECT, so a user row and its
        role list always belong to the same committed state.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(_users_with_roles()).fetchall()
        return _rows_to_users(rows)

    def _load_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            rows = conn.execute(_users_with_roles(condition)).fetchall()
        users = _rows_to_users(rows)
        return users[0] if users else None

    def get_role_names(self, user_id: int) -> list[str]:
        with self.engine.connect() as conn:
            return _role_names_for(conn, user_id)

    def list_assignments(self, user_id: int | None = None) -> list[Assignment]:
        query = _user_roles.select().order_by(_user_roles.c.user_id, _user_roles.c.role_id)
        if user_id is not None:
            query = query.where(_user_roles.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [Assignment(user_id=r.user_id, role_id=r.role_id) for r in rows]

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def find_role_by_name(self, name: str) -> Role | None:
        key = normalize_key(name)
        if not key:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name_normalized == key)).fetchone()
        return _row_to_role(row) if row is not None else None

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def apply(self, mutations: Sequence[Mutation]) -> ApplyResult:
        """Commit a batch of mutations atomically.

        Returns ApplyResult with:
          COMMITTED -- every mutation landed.
          CONFLICT  -- a version check failed or a unique/foreign-key
                       constraint rejected a row. Nothing landed.
          NOT_FOUND -- an UpdateUser/DeleteUser target no longer exists.
                       Nothing landed.

        Any other database error is re-raised after the rollback.
        """
        inserted_user_id: int | None = None
        try:
            with self.engine.begin() as conn:
                for mutation in mutations:
                    new_id = self._apply_one(conn, mutation, inserted_user_id)
                    if new_id is not None:
                        inserted_user_id = new_id
        except _Abort as abort:
            logger.info("Transaction rolled back (%s): %s", abort.outcome.value, abort)
            return ApplyResult(abort.outcome)
        except IntegrityError as exc:
            logger.warning("Transaction rolled back by constraint violation: %s", exc.orig)
            return ApplyResult(Outcome.CONFLICT)
        return ApplyResult(Outcome.COMMITTED, inserted_user_id)

    def _apply_one(self, conn: Connection, mutation: Mutation, inserted_user_id: int | None) -> int | None:
        if isinstance(mutation, InsertUser):
            return self._insert_user(conn, mutation.user)

        if isinstance(mutation, UpdateUser):
            values = _user_values(mutation.fields)
            result = conn.execute(
                _users.update()
                .where((_users.c.id == mutation.user_id) & (_users.c.version == mutation.expected_version))
                .values(version=_users.c.version + 1, **values)
            )
            if result.rowcount == 0:
                _raise_missing_or_stale(conn, mutation.user_id)
            return None

        if isinstance(mutation, DeleteUser):
            condition = _users.c.id == mutation.user_id
            if mutation.expected_version is not None:
                condition = condition & (_users.c.version == mutation.expected_version)
            # Explicit delete keeps the no-orphan rule on backends without FK cascade.
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == mutation.user_id))
            result = conn.execute(_users.delete().where(condition))
            if result.rowcount == 0:
                _raise_missing_or_stale(conn, mutation.user_id)
            return None

        if isinstance(mutation, InsertAssignment):
            user_id = mutation.user_id
            if isinstance(user_id, _NewUser):
                if inserted_user_id is None:
                    raise ValueError("InsertAssignment(NEW_USER) requires an earlier InsertUser in the batch")
                user_id = inserted_user_id
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=mutation.role_id))
            return None

        if isinstance(mutation, DeleteAssignment):
            result = conn.execute(
                _user_roles.delete().where(
                    (_user_roles.c.user_id == mutation.user_id) & (_user_roles.c.role_id == mutation.role_id)
                )
            )
            if result.rowcount == 0:
                raise _Abort(Outcome.CONFLICT, f"assignment ({mutation.user_id}, {mutation.role_id}) already gone")
            return None

        if isinstance(mutation, InsertRole):
            name = mutation.name.strip()
            conn.execute(_roles.insert().values(name=name, name_normalized=normalize_key(name)))
            return None

        raise TypeError(f"Unknown mutation type: {type(mutation).__name__}")

    @staticmethod
    def _insert_user(conn: Connection, user: User) -> int:
        if not user.password_hash:
            raise ValueError("password_hash must not be empty")
        result = conn.execute(
            _users.insert().values(
                username=user.username.strip(),
                username_normalized=normalize_key(user.username),
                email=user.email.strip(),
                email_normalized=normalize_key(user.email),
                password_hash=user.password_hash,
                is_active=1 if user.is_active else 0,
                created_at=user.created_at or _now_iso(),
                version=1,
            )
        )
        return result.inserted_primary_key[0]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_values(fields: dict[str, Any]) -> dict[str, Any]:
    """Translate UpdateUser.fields into column values, adding normalized twins.

    Unknown keys raise ValueError rather than being silently ignored.
    """
    unknown = set(fields) - _UPDATABLE_USER_FIELDS
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
    values = dict(fields)
    if "username" in values:
        values["username"] = values["username"].strip()
        values["username_normalized"] = normalize_key(values["username"])
    if "email" in values:
        values["email"] = values["email"].strip()
        values["email_normalized"] = normalize_key(values["email"])
    if "password_hash" in values and not values["password_hash"]:
        raise ValueError("password_hash must not be empty")
    if "is_active" in values:
        values["is_active"] = 1 if values["is_active"] else 0
    return values


def _raise_missing_or_stale(conn: Connection, user_id: int) -> None:
    exists = conn.execute(select(_users.c.id).where(_users.c.id == user_id)).first()
    if exists is None:
        raise _Abort(Outcome.NOT_FOUND, f"user {user_id} does not exist")
    raise _Abort(Outcome.CONFLICT, f"user {user_id} was modified concurrently")


def _role_names_for(conn: Connection, user_id: int) -> list[str]:
    rows = conn.execute(
        select(_roles.c.name)
        .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
        .where(_user_roles.c.user_id == user_id)
        .order_by(_roles.c.id)
    ).fetchall()
    return [r.name for r in rows]


def _users_with_roles(condition=None):
    """users LEFT JOIN user_roles LEFT JOIN roles, one row per (user, role).

    SQLite runs a single statement against one snapshot even when no
    transaction is open, which two back-to-back SELECTs would not.
    """
    query = (
        select(_users, _roles.c.name.label("role_name"))
        .select_from(
            _users.outerjoin(_user_roles, _user_roles.c.user_id == _users.c.id).outerjoin(
                _roles, _roles.c.id == _user_roles.c.role_id
            )
        )
        .order_by(_users.c.id, _roles.c.id)
    )
    if condition is not None:
        query = query.where(condition)
    return query


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: list[str]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        version=row.version,
        roles=list(roles),
    )


def _rows_to_users(rows) -> list[User]:
    """Fold joined (user, role_name) rows into Users, preserving row order."""
    users: dict[int, User] = {}
    for row in rows:
        user = users.get(row.id)
        if user is None:
            user = users[row.id] = _row_to_user(row, [])
        if row.role_name is not None:
            user.roles.append(row.role_name)
    return list(users.values())


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name)
