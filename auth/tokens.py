"""
auth/tokens.py -- Signed bearer tokens and the single-use (used-token) set.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry user_id, a capability snapshot,
       the token type, iat, a random jti, and exp (absent for "key" tokens).
       The capability snapshot is copied from the user's role at issuance and
       is never re-resolved: a role change after issuance does not affect an
       already-issued token.

  Token types:
       "user" -- normal login session; expires after TOKEN_LIFETIME and, when
                 SINGLE_USE_TOKENS is on, verifies successfully exactly once.
       "key"  -- long-lived programmatic access; never expires and is never
                 consumed by single-use enforcement.

  Expiry: decoded with verify_exp disabled and checked here instead, so that
       a token whose exp equals the current second (ttl=0) counts as expired.

  Used-token set: process-wide, in-memory, never persisted and never shared
       between processes. Entries are only added, never evicted, so it grows
       for the life of the process. In a multi-instance deployment there is no
       cross-instance single-use guarantee; this is a known limitation of the
       design, not something this module tries to paper over.

  Concurrency: the membership check and insert happen under one lock in
       UsedTokenSet.add_if_absent(). Two simultaneous verifications of the
       same single-use token cannot both succeed.

  SECRET_KEY: sourced from core.config.get_settings(). A settings failure is
       reported as ConfigurationError.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from jose import JWTError, jwt
from pydantic import ValidationError

from auth.errors import ConfigurationError, MalformedToken, MissingToken, TokenExpired, TokenReused
from auth.models import TOKEN_TYPE_KEY, TOKEN_TYPE_USER, TOKEN_TYPES, TokenClaims
from core.config import Settings, get_settings

logger = logging.getLogger("capgate.auth.tokens")

_ALGORITHM = "HS256"


# ---------------------------------------------------------------------------
# Used-token set
# ---------------------------------------------------------------------------


class UsedTokenSet:
    """Thread-safe set of redeemed single-use token strings."""

    def __init__(self) -> None:
        self._tokens: set[str] = set()
        self._lock = threading.Lock()

    def add_if_absent(self, token: str) -> bool:
        """Record token as redeemed. Returns False if it was already recorded."""
        with self._lock:
            if token in self._tokens:
                return False
            self._tokens.add(token)
            return True

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


# Initialized empty at process start; lives until the process exits.
USED_TOKENS = UsedTokenSet()


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issue and verify signed tokens.

    Usage:
        service = TokenService(secret_key, lifetime=300, single_use=True)
        token = service.issue(user.id, ("read",))
        claims = service.verify(token)   # raises an AuthError subclass on failure
    """

    def __init__(
        self,
        secret_key: str,
        lifetime: int = 300,
        single_use: bool = False,
        used_tokens: UsedTokenSet | None = None,
    ) -> None:
        self._secret_key = secret_key
        self.lifetime = lifetime
        self.single_use = single_use
        self.used_tokens = used_tokens if used_tokens is not None else USED_TOKENS

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TokenService:
        if settings is None:
            try:
                settings = get_settings()
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid configuration: {exc.error_count()} error(s)") from exc
        return cls(
            secret_key=settings.secret_key,
            lifetime=settings.token_lifetime,
            single_use=settings.single_use_tokens,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(
        self,
        user_id: int,
        capabilities: Iterable[str],
        *,
        token_type: str = TOKEN_TYPE_USER,
        ttl: int | None = None,
    ) -> str:
        """Sign a token for user_id carrying a snapshot of capabilities.

        ttl is in seconds and defaults to the configured lifetime. It is
        ignored for "key" tokens, which never expire.
        """
        if not self._secret_key:
            raise ConfigurationError("SECRET_KEY is not set; cannot sign tokens.")
        if token_type not in TOKEN_TYPES:
            raise ValueError(f"Unknown token type {token_type!r}; expected one of {TOKEN_TYPES}")

        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "capabilities": list(capabilities),
            "type": token_type,
            "iat": now,
            "jti": secrets.token_hex(8),
        }
        if token_type != TOKEN_TYPE_KEY:
            duration = self.lifetime if ttl is None else ttl
            payload["exp"] = now + timedelta(seconds=duration)
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_key(self, user_id: int, capabilities: Iterable[str]) -> str:
        return self.issue(user_id, capabilities, token_type=TOKEN_TYPE_KEY)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str | None) -> TokenClaims:
        """Verify a token and return its claims.

        Raises, in check order: MissingToken, TokenReused, MalformedToken,
        TokenExpired, and TokenReused again if a concurrent verification
        redeemed the token first.
        """
        if not token:
            raise MissingToken("No token presented.")

        # Only non-key tokens are ever recorded, so membership alone is enough.
        if self.single_use and token in self.used_tokens:
            logger.info("Token rejected: token_reused")
            raise TokenReused("Token has already been used.")

        claims, expires_at = self._decode(token)

        if claims.type != TOKEN_TYPE_KEY and expires_at <= time.time():
            logger.info("Token rejected: token_expired")
            raise TokenExpired("Token has expired.")

        if self.single_use and claims.type != TOKEN_TYPE_KEY:
            if not self.used_tokens.add_if_absent(token):
                logger.info("Token rejected: token_reused (concurrent redemption)")
                raise TokenReused("Token has already been used.")

        return claims

    def _decode(self, token: str) -> tuple[TokenClaims, int | None]:
        """Check signature and claim shape. Returns the claims and the exp timestamp."""
        if not self._secret_key:
            raise ConfigurationError("SECRET_KEY is not set; cannot verify tokens.")
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.info("Token rejected: malformed_token (%s)", type(exc).__name__)
            raise MalformedToken("Token signature or structure is invalid.") from exc

        user_id = payload.get("user_id")
        capabilities = payload.get("capabilities")
        token_type = payload.get("type")
        if (
            not isinstance(user_id, int)
            or isinstance(user_id, bool)
            or not isinstance(capabilities, list)
            or not all(isinstance(c, str) for c in capabilities)
            or token_type not in TOKEN_TYPES
        ):
            logger.info("Token rejected: malformed_token (bad claims)")
            raise MalformedToken("Token claims are invalid.")
        if token_type != TOKEN_TYPE_KEY and not isinstance(payload.get("exp"), int):
            logger.info("Token rejected: malformed_token (missing exp)")
            raise MalformedToken("Token claims are invalid.")

        claims = TokenClaims(user_id=user_id, capabilities=tuple(capabilities), type=token_type)
        return claims, payload.get("exp")


@lru_cache
def get_token_service() -> TokenService:
    """Return the process-wide TokenService, sharing the process-wide USED_TOKENS set.

    In tests: build a TokenService directly with its own UsedTokenSet instead.
    """
    return TokenService.from_settings()
