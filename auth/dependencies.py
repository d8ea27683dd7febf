"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Credentials are read in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. Authorization: Basic <base64 user:pass> header -- scripted sign-in.
  3. "auth" cookie -- set by POST /auth/signup, /auth/signin and /auth/oauth.

All three converge on an AuthSession from the Authenticator held in
app.state.authenticator.

get_session() raises HTTP 401 if no credentials establish an identity.
get_identity() returns just the verified Identity.
require_capability(name) builds a dependency that also raises HTTP 403 unless
the identity holds the named capability.

Untrusted callers only ever see "unauthorized" / "forbidden" (or a generic
server error); the detailed failure kind is logged here.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.authenticator import Authenticator, BasicCredentials, BearerCredentials, Credentials
from auth.authorizer import require
from auth.errors import AuthError, InfrastructureError, MalformedToken, MissingToken
from auth.models import AuthSession, Identity

logger = logging.getLogger("capgate.auth.dependencies")

AUTH_COOKIE = "auth"


def to_http_exception(exc: AuthError) -> HTTPException:
    """Map an AuthError onto the public error envelope, hiding the detailed kind."""
    if isinstance(exc, InfrastructureError):
        logger.error("Auth infrastructure failure: %s", exc.code)
    else:
        logger.info("Auth failure: %s", exc.code)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.public_code, "message": exc.public_message},
        headers=headers,
    )


def read_credentials(request: Request) -> Credentials:
    """Extract credentials from the request. Raises MissingToken / MalformedToken."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    scheme = scheme.lower()

    if scheme == "bearer" and value.strip():
        return BearerCredentials(value.strip())

    if scheme == "basic" and value.strip():
        try:
            decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise MalformedToken("Basic credentials are not valid base64.") from exc
        username, sep, password = decoded.partition(":")
        if not sep:
            raise MalformedToken("Basic credentials must be username:password.")
        return BasicCredentials(username=username, password=password)

    # Any explicit Authorization header wins over the cookie.
    cookie = request.cookies.get(AUTH_COOKIE)
    if cookie:
        return BearerCredentials(cookie)

    raise MissingToken("No credentials presented.")


def get_session(request: Request) -> AuthSession:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: AuthSession = Depends(get_session)): ...
    """
    authenticator: Authenticator = request.app.state.authenticator
    try:
        return authenticator.authenticate(read_credentials(request))
    except AuthError as exc:
        raise to_http_exception(exc) from exc


def get_identity(session: AuthSession = Depends(get_session)) -> Identity:
    return session.identity


def require_capability(capability: str) -> Callable[..., Identity]:
    """Build a dependency that admits only identities holding capability.

    Use as a FastAPI dependency:
        @router.delete("/things/{id}")
        def route(identity: Identity = Depends(require_capability("delete"))): ...
    """

    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        try:
            return require(identity, capability)
        except AuthError as exc:
            raise to_http_exception(exc) from exc

    dependency.__name__ = f"require_{capability}"
    return dependency
