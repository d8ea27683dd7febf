"""
api/routes/v1/auth.py -- Sign-up, sign-in and key issuance endpoints.

Routes:
  POST /api/v1/auth/signup   -- create a local account; returns and cookies a token
  POST /api/v1/auth/signin   -- any credentials (Basic, Bearer or cookie); rate limited
  POST /api/v1/auth/oauth    -- sign in the owner of an OAuth-verified email
  GET  /api/v1/auth/me       -- identity carried by the presented credentials
  POST /api/v1/auth/keys     -- issue a non-expiring key token for the caller
  POST /api/v1/auth/roles    -- seed the default roles (idempotent)

Security:
  [H2] POST /signin is rate-limited per IP (SIGNIN_RATE_LIMIT).
  [C1] Basic sign-in goes through Authenticator.authenticate_basic(), which
       equalizes timing for unknown usernames -- never inline the lookup.
  [M5] Cache-Control: no-store on every response carrying a token.

All handlers are plain `def` so bcrypt and store calls run in FastAPI's
thread pool rather than blocking the event loop.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, signin_limit
from api.models import KeyResponse, MeResponse, OAuthRequest, SeedResponse, SignupRequest, TokenResponse
from auth.authenticator import Authenticator
from auth.dependencies import AUTH_COOKIE, get_identity, get_session, to_http_exception
from auth.errors import AuthError
from auth.models import AuthSession, Identity
from auth.roles import DEFAULT_ROLES, RoleRegistry

# Auth policy:
# - POST /api/v1/auth/signup:  public
# - POST /api/v1/auth/signin:  credentials required (get_session)
# - POST /api/v1/auth/oauth:   public -- the OAuth layer in front has verified the email
# - GET  /api/v1/auth/me:      credentials required (get_identity)
# - POST /api/v1/auth/keys:    credentials required (get_identity)
# - POST /api/v1/auth/roles:   public -- only ever creates missing default roles
router = APIRouter()


def _session_response(response: Response, session: AuthSession) -> TokenResponse:
    response.set_cookie(AUTH_COOKIE, value=session.token, httponly=True, samesite="lax")
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse.from_session(session)


@router.post("/auth/signup", response_model=TokenResponse, status_code=201)
def signup(request: Request, response: Response, body: SignupRequest) -> TokenResponse:
    authenticator: Authenticator = request.app.state.authenticator
    try:
        session = authenticator.signup(body.username, body.password, email=body.email, role=body.role)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username or email already exists."},
        ) from exc
    except AuthError as exc:
        raise to_http_exception(exc) from exc
    return _session_response(response, session)


@router.post("/auth/signin", response_model=TokenResponse)
@limiter.limit(signin_limit)  # [H2]
def signin(request: Request, response: Response, session: AuthSession = Depends(get_session)) -> TokenResponse:
    """Exchange credentials for a session token.

    Basic credentials yield a fresh token; a bearer token or cookie is echoed
    back (and, with single-use tokens on, consumed by the verification).
    """
    return _session_response(response, session)


@router.post("/auth/oauth", response_model=TokenResponse)
def oauth_signin(request: Request, response: Response, body: OAuthRequest) -> TokenResponse:
    authenticator: Authenticator = request.app.state.authenticator
    try:
        session = authenticator.authenticate_oauth(body.email)
    except AuthError as exc:
        raise to_http_exception(exc) from exc
    return _session_response(response, session)


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_identity)) -> MeResponse:
    return MeResponse(
        user_id=identity.user_id,
        capabilities=list(identity.capabilities),
        token_type=identity.token_type,
    )


@router.post("/auth/keys", response_model=KeyResponse, status_code=201)
def create_key(request: Request, response: Response, identity: Identity = Depends(get_identity)) -> KeyResponse:
    """Issue a long-lived key token. It is shown once and never stored server-side."""
    authenticator: Authenticator = request.app.state.authenticator
    try:
        key = authenticator.create_key(identity)
    except AuthError as exc:
        raise to_http_exception(exc) from exc
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return KeyResponse(key=key)


@router.post("/auth/roles", response_model=SeedResponse)
def seed_roles(request: Request) -> SeedResponse:
    registry: RoleRegistry = request.app.state.role_registry
    try:
        result = registry.seed(DEFAULT_ROLES)
    except AuthError as exc:
        raise to_http_exception(exc) from exc
    return SeedResponse(created=result.created, skipped=result.skipped)
