"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store, registry,
token service and authenticator do the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Closed set of role names a user may hold.
ROLES: tuple[str, ...] = ("admin", "editor", "user")
DEFAULT_ROLE = "user"

# Built-in capability names. Roles may carry others; the set is extensible.
CREATE = "create"
READ = "read"
UPDATE = "update"
DELETE = "delete"

TOKEN_TYPE_USER = "user"  # normal login session, expires
TOKEN_TYPE_KEY = "key"  # long-lived programmatic access, never expires
TOKEN_TYPES: tuple[str, ...] = (TOKEN_TYPE_USER, TOKEN_TYPE_KEY)


@dataclass
class User:
    """A stored identity.

    hashed_password always holds a bcrypt hash or an unusable-password marker
    (OAuth-created accounts), never plaintext.
    """

    username: str
    hashed_password: str
    role: str = DEFAULT_ROLE
    email: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Role:
    name: str
    capabilities: tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, verified claims of a bearer token."""

    user_id: int
    capabilities: tuple[str, ...]
    type: str


@dataclass(frozen=True)
class Identity:
    """A verified caller, passed explicitly to the authorizer and handlers.

    capabilities is the snapshot the caller was granted: for bearer tokens it
    is the set frozen at issuance time, not the user's current role.
    """

    user_id: int
    capabilities: tuple[str, ...] = ()
    token_type: str = TOKEN_TYPE_USER


@dataclass(frozen=True)
class AuthSession:
    """Outcome of a successful authentication.

    token is the signed string the caller continues the session with. user is
    set only when the path looked the record up (basic, OAuth, signup).
    """

    identity: Identity
    token: str
    user: User | None = None


@dataclass
class SeedResult:
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
