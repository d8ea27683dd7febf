"""
auth/store.py -- SQLAlchemy Core persistence layer for users and roles.

Pattern: Repository + Data Mapper.
CredentialStore is the interface the auth core depends on; UserStore is the
SQLAlchemy-backed repository and _row_to_user is the mapper. Authenticator and
RoleRegistry code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Failure handling:
  Any database error other than a uniqueness violation is raised as
  StorageUnavailable so the transport layer answers 503 rather than treating
  it as a credential failure. Uniqueness violations are part of the normal
  control flow (idempotent role creation, concurrent first OAuth login) and
  are handled inside the store.

DB path: capgate_auth.db at the project root unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import StorageUnavailable
from auth.models import DEFAULT_ROLE, ROLES, User
from auth.passwords import make_unusable_password

logger = logging.getLogger("capgate.auth.store")

# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """Storage operations the auth core consumes. Each may raise StorageUnavailable."""

    def find_user_by_username(self, username: str) -> User | None: ...

    def find_user_by_id(self, user_id: int) -> User | None: ...

    def find_or_create_user_by_email(self, email: str) -> User: ...

    def create_user(self, user: User) -> int: ...

    def create_role_if_absent(self, name: str, capabilities: Iterable[str]) -> bool: ...

    def get_role_capabilities(self, name: str) -> list[str] | None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email", String(255), unique=True),  # NULL allowed for local-only users
    Column("role", String(30), nullable=False, server_default=DEFAULT_ROLE),
    Column("created_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role", String(30), nullable=False, unique=True),
    Column("capabilities", Text, nullable=False),  # JSON array, order preserved
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy implementation of CredentialStore.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.create_role_if_absent("admin", ["create", "read", "update", "delete"])
        uid = store.create_user(User(username="admin", hashed_password=hash_password("secret"), role="admin"))
        user = store.find_user_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        try:
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageUnavailable("Could not initialize the credential store.") from exc

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        """Yield a connection, translating infrastructure failures to StorageUnavailable.

        IntegrityError passes through untouched: callers decide whether a
        uniqueness violation is an error or an expected race.
        """
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Storage failure: %s", type(exc).__name__)
            raise StorageUnavailable("Credential store unavailable.") from exc

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned ID.

        Raises ValueError for a role outside the closed role set and
        sqlalchemy.exc.IntegrityError if the username or email already exists.
        """
        if user.role not in ROLES:
            raise ValueError(f"Unknown role {user.role!r}; expected one of {ROLES}")
        with self._connection() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    email=user.email,
                    role=user.role,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self._connection() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_id(self, user_id: int) -> User | None:
        with self._connection() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_email(self, email: str) -> User | None:
        with self._connection() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_or_create_user_by_email(self, email: str) -> User:
        """Return the user owning email, creating an OAuth-only account if none exists.

        New accounts use the email as username, get the default role and an
        unusable password: they can authenticate via OAuth or a previously
        issued token, never via basic credentials.

        Two concurrent first logins for the same email both try the INSERT;
        the loser hits the UNIQUE constraint and re-reads the winner's row.
        """
        existing = self.find_user_by_email(email)
        if existing is not None:
            return existing
        try:
            user_id = self.create_user(
                User(username=email, email=email, hashed_password=make_unusable_password(), role=DEFAULT_ROLE)
            )
        except IntegrityError:
            existing = self.find_user_by_email(email)
            if existing is None:
                # The username is taken by a local account with a different email.
                raise
            return existing
        logger.info("Created OAuth user id=%s", user_id)
        created = self.find_user_by_id(user_id)
        if created is None:
            raise StorageUnavailable(f"User id={user_id} vanished right after insert.")
        return created

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, hashed_password. Returns True if a row was
        updated, False if user_id was not found.
        """
        unknown = set(fields) - {"role", "hashed_password"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields and fields["role"] not in ROLES:
            raise ValueError(f"Unknown role {fields['role']!r}; expected one of {ROLES}")
        if not fields:
            return False
        with self._connection() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def create_role_if_absent(self, name: str, capabilities: Iterable[str]) -> bool:
        """Insert a role record. Returns False (and changes nothing) if it already exists."""
        caps = list(dict.fromkeys(capabilities))  # dedupe, keep order
        try:
            with self._connection() as conn:
                conn.execute(_roles.insert().values(role=name, capabilities=json.dumps(caps)))
                conn.commit()
        except IntegrityError:
            return False
        return True

    def get_role_capabilities(self, name: str) -> list[str] | None:
        """Return the ordered capability list of a role, or None if the role does not exist."""
        with self._connection() as conn:
            row = conn.execute(_roles.select().where(_roles.c.role == name)).fetchone()
        if row is None:
            return None
        return list(json.loads(row.capabilities))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        role=row.role,
        created_at=row.created_at,
    )
