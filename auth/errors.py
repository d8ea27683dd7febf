"""
auth/errors.py -- Exception taxonomy for the auth core.

Every failure the core can produce is an AuthError subclass carrying:
  code        -- stable machine-readable kind, used in logs.
  status_code -- the HTTP status the transport layer should answer with.
  public_code -- what untrusted callers are allowed to see.

Credential failures (401) and authorization failures (403) are terminal for
the request and are never retried. Their detailed kind (expired vs. reused vs.
malformed) is for internal logging only; callers see "unauthorized" or
"forbidden". Infrastructure failures surface as server errors and are the only
candidates for caller-level retry.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth core failures."""

    code = "auth_error"
    status_code = 401
    public_code = "unauthorized"
    public_message = "Authentication required."

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


# ---------------------------------------------------------------------------
# Credential failures -- 401
# ---------------------------------------------------------------------------


class CredentialError(AuthError):
    """The presented credentials do not establish an identity."""


class InvalidCredentials(CredentialError):
    code = "invalid_credentials"


class MissingToken(CredentialError):
    code = "missing_token"


class MalformedToken(CredentialError):
    code = "malformed_token"


class TokenExpired(CredentialError):
    code = "token_expired"


class TokenReused(CredentialError):
    code = "token_reused"


# ---------------------------------------------------------------------------
# Authorization failures -- 403
# ---------------------------------------------------------------------------


class AuthorizationError(AuthError):
    status_code = 403
    public_code = "forbidden"
    public_message = "Insufficient capabilities."


class UnknownRole(AuthorizationError):
    """No registry entry exists for a role. Always resolves to deny."""

    code = "unknown_role"


class PermissionDenied(AuthorizationError):
    code = "permission_denied"


# ---------------------------------------------------------------------------
# Infrastructure failures -- 5xx
# ---------------------------------------------------------------------------


class InfrastructureError(AuthError):
    status_code = 500
    public_code = "internal_error"
    public_message = "An unexpected error occurred."


class StorageUnavailable(InfrastructureError):
    code = "storage_unavailable"
    status_code = 503
    public_code = "service_unavailable"
    public_message = "Service temporarily unavailable."


class ConfigurationError(InfrastructureError):
    code = "configuration_error"


class HashingError(InfrastructureError):
    code = "hashing_error"
