"""
Programmatic (JSON) routes.

Everything under ``/api`` is a programmatic caller: gate denials are 401 JSON
bodies, never redirects. Sign-in endpoints run the same flow functions as the
browser routes and also set the session cookie, so a browser-based client can
use either surface.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from app.auth.flows import (
    SignInOutcome,
    clear_session_cookie,
    complete_sign_in,
    resolve_client,
    set_session_cookie,
)
from app.auth.gate import ClientContext, RequestContext, get_request_context, require_authenticated
from app.auth.providers import parse_provider
from app.auth.state import PendingState
from app.clients import PublicClient
from app.dependencies import AppState, get_app_state
from app.models import (
    AuthorizationUrlResponse,
    ClientCreateRequest,
    ClientCreateResponse,
    LoginRequest,
    PrincipalOut,
    RegisterRequest,
    SignInResponse,
    StatusResponse,
    TokenVerifyRequest,
    TokenVerifyResponse,
)

logger = logging.getLogger("broker.api")


# =============================================================================
# Router Setup
# =============================================================================

api_router = APIRouter(prefix="/api")


def _sign_in_response(state: AppState, outcome: SignInOutcome, status_code: int = 200) -> JSONResponse:
    body = SignInResponse(
        user=PrincipalOut.from_public(outcome.principal.public()),
        token=outcome.token,
        redirect_url=outcome.redirect_url,
        expires_in=state.tokens.lifetime_seconds if outcome.token else None,
    )
    response = JSONResponse(
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        status_code=status_code,
    )
    set_session_cookie(response, state.settings, outcome.session_handle)
    return response


# =============================================================================
# Authentication
# =============================================================================

@api_router.post("/auth/login", tags=["authentication"])
async def api_login(
    body: LoginRequest,
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Authenticate with email and password.

    Returns:
        ``SignInResponse``; ``token`` and ``redirectUrl`` are present only when
        a valid client context was supplied

    Raises:
        UnknownClient / InvalidRedirect: 400 before credentials are checked
        InvalidCredentials: 401
    """
    client_context = ClientContext(body.client_id or None, body.redirect_url or None)
    client = await resolve_client(state, client_context)
    principal = await state.identity.find_by_credentials(body.email, body.password)
    outcome = await complete_sign_in(
        state, principal, client, client_context.redirect_url, ctx.session_handle
    )
    return _sign_in_response(state, outcome)


@api_router.post("/auth/register", tags=["authentication"])
async def api_register(
    body: RegisterRequest,
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Create a local account and sign it in.

    Raises:
        AlreadyExists: 409 when the username or email is taken
    """
    client_context = ClientContext(body.client_id or None, body.redirect_url or None)
    client = await resolve_client(state, client_context)
    try:
        principal = await state.identity.register(body.username, body.email, body.password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    outcome = await complete_sign_in(
        state, principal, client, client_context.redirect_url, ctx.session_handle
    )
    return _sign_in_response(state, outcome, status_code=status.HTTP_201_CREATED)


@api_router.get("/auth/{provider}", response_model=AuthorizationUrlResponse, tags=["authentication"])
async def api_federated_start(
    provider: str,
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """Return the provider authorization URL instead of redirecting to it."""
    tag = parse_provider(provider)
    await resolve_client(state, ctx.client_context)

    pending = PendingState(
        target_client_id=ctx.client_context.client_id,
        target_redirect_url=ctx.client_context.redirect_url,
    )
    request = await state.federation.begin(tag, pending, ctx.session_handle)
    return AuthorizationUrlResponse(provider=tag.value, authorization_url=request.url)


@api_router.post("/auth/logout", response_model=StatusResponse, tags=["authentication"])
async def api_logout(
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    if ctx.session_handle:
        await state.sessions.destroy(ctx.session_handle)
    response = JSONResponse(StatusResponse(message="Logged out").model_dump())
    clear_session_cookie(response, state.settings)
    return response


# =============================================================================
# Current Principal
# =============================================================================

@api_router.get("/users/me", response_model=PrincipalOut, tags=["users"])
async def current_user(ctx: RequestContext = Depends(require_authenticated)):
    """Public fields of the signed-in principal, or 401."""
    return PrincipalOut.from_public(ctx.principal.public())


# =============================================================================
# Clients
# =============================================================================

@api_router.post(
    "/clients",
    response_model=ClientCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["clients"],
)
async def create_client(
    body: ClientCreateRequest,
    state: AppState = Depends(get_app_state),
):
    """
    Register a client application.

    The response is the only place the client secret is ever returned.
    """
    try:
        client, secret = await state.clients.register(
            name=body.name,
            redirect_urls=body.redirect_urls,
            allowed_origins=body.allowed_origins,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ClientCreateResponse.from_public(PublicClient.from_client(client), secret)


# =============================================================================
# Tokens
# =============================================================================

@api_router.post("/token/verify", response_model=TokenVerifyResponse, tags=["tokens"])
async def verify_token(
    body: TokenVerifyRequest,
    state: AppState = Depends(get_app_state),
):
    """
    Verify a client token.

    Raises:
        TokenExpired: 401 ``token_expired``
        TokenInvalid: 401 ``token_invalid``
    """
    claims = state.tokens.verify(body.token)
    return TokenVerifyResponse(claims=claims.as_dict())
