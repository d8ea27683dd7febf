"""
auth/authenticator.py -- Resolve presented credentials into a verified identity.

Three credential shapes are accepted, each a small dataclass:
  BearerCredentials -- a signed token from a previous login. Verified by the
                       token service alone; the identity is the embedded
                       subject and capability snapshot, no store lookup.
  BasicCredentials  -- username + password. Looked up in the store; on success
                       capabilities are resolved fresh from the role registry
                       and a new session token is issued.
  OAuthCredentials  -- an email the OAuth layer has already verified. The user
                       is found or created, capabilities resolved fresh, and a
                       new session token issued.

All paths return an AuthSession. Callers thread session.identity explicitly
into the authorizer and downstream handlers; nothing is attached to a request
object here.

Security:
  [C1] Basic auth always runs bcrypt, against DUMMY_HASH when the username
       does not exist, so response time does not reveal valid usernames. Both
       failure modes raise the same InvalidCredentials.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import InvalidCredentials
from auth.models import DEFAULT_ROLE, AuthSession, Identity, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.roles import RoleRegistry
from auth.store import CredentialStore
from auth.tokens import TokenService

logger = logging.getLogger("capgate.auth.authenticator")


@dataclass(frozen=True)
class BearerCredentials:
    token: str


@dataclass(frozen=True)
class BasicCredentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicCredentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class OAuthCredentials:
    email: str


Credentials = BearerCredentials | BasicCredentials | OAuthCredentials


class Authenticator:
    def __init__(self, store: CredentialStore, registry: RoleRegistry, tokens: TokenService) -> None:
        self.store = store
        self.registry = registry
        self.tokens = tokens

    def authenticate(self, credentials: Credentials) -> AuthSession:
        """Dispatch on the credential kind. Raises an AuthError subclass on failure."""
        if isinstance(credentials, BearerCredentials):
            return self.authenticate_bearer(credentials.token)
        if isinstance(credentials, BasicCredentials):
            return self.authenticate_basic(credentials.username, credentials.password)
        if isinstance(credentials, OAuthCredentials):
            return self.authenticate_oauth(credentials.email)
        raise TypeError(f"Unsupported credentials: {type(credentials).__name__}")

    # ------------------------------------------------------------------
    # Credential paths
    # ------------------------------------------------------------------

    def authenticate_bearer(self, token: str | None) -> AuthSession:
        claims = self.tokens.verify(token)
        identity = Identity(user_id=claims.user_id, capabilities=claims.capabilities, token_type=claims.type)
        return AuthSession(identity=identity, token=token)

    def authenticate_basic(self, username: str, password: str) -> AuthSession:
        user = self.store.find_user_by_username(username)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, DUMMY_HASH)
            logger.info("Basic auth failed: unknown username")
            raise InvalidCredentials("Invalid username or password.")
        if not verify_password(password, user.hashed_password):
            logger.info("Basic auth failed: bad password for user_id=%s", user.id)
            raise InvalidCredentials("Invalid username or password.")
        return self._start_session(user)

    def authenticate_oauth(self, email: str) -> AuthSession:
        """Sign in (or sign up) the owner of an email verified by the OAuth layer.

        Raises InvalidCredentials if the email is already the username of a
        different local account.
        """
        if not email or not email.strip():
            raise InvalidCredentials("OAuth identity carries no email.")
        try:
            user = self.store.find_or_create_user_by_email(email.strip())
        except IntegrityError as exc:
            # The email is already some other local account's username.
            logger.info("OAuth sign-in refused: email collides with an existing username")
            raise InvalidCredentials("OAuth email is already taken as a username.") from exc
        return self._start_session(user)

    # ------------------------------------------------------------------
    # Account operations
    # ------------------------------------------------------------------

    def signup(self, username: str, password: str, email: str | None = None, role: str = DEFAULT_ROLE) -> AuthSession:
        """Create a local account and return its first session.

        Raises UnknownRole before anything is written if role is not
        registered, and sqlalchemy.exc.IntegrityError if the username or email
        is taken.
        """
        capabilities = self.registry.capabilities_for(role)
        user = User(username=username, hashed_password=hash_password(password), email=email, role=role)
        user.id = self.store.create_user(user)
        logger.info("Signed up user_id=%s role=%s", user.id, role)
        token = self.tokens.issue(user.id, capabilities)
        return AuthSession(identity=Identity(user_id=user.id, capabilities=capabilities), token=token, user=user)

    def create_key(self, identity: Identity) -> str:
        """Issue a non-expiring key token for identity's user.

        Capabilities come from the user's current role, not from the snapshot
        in the token the caller presented.
        """
        user = self.store.find_user_by_id(identity.user_id)
        if user is None:
            raise InvalidCredentials("Token subject no longer exists.")
        capabilities = self.registry.capabilities_for(user.role)
        logger.info("Issued key token for user_id=%s", user.id)
        return self.tokens.issue_key(user.id, capabilities)

    def _start_session(self, user: User) -> AuthSession:
        capabilities = self.registry.capabilities_for(user.role)
        token = self.tokens.issue(user.id, capabilities)
        identity = Identity(user_id=user.id, capabilities=capabilities)
        return AuthSession(identity=identity, token=token, user=user)
