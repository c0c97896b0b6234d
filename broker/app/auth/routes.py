"""
Browser sign-in routes.

Route classes (see ``app.auth.gate``):

    GET/POST /auth/login              guest-only
    GET/POST /auth/register           guest-only
    GET      /auth/logout             public
    GET      /auth/{provider}         public
    GET      /auth/{provider}/callback public
    GET      /profile                 protected

Every route that could redirect to, or mint a token for, a caller-supplied
(client, redirect) pair validates it with the client registry first.
"""

import logging
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends, Form, Query
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from app.dependencies import AppState, get_app_state
from app.errors import (
    GENERIC_SIGN_IN_ERROR,
    AlreadyExists,
    InvalidCredentials,
    InvalidRedirect,
    StateInvalid,
    UnknownClient,
)
from app.models import PrincipalOut
from app.auth.flows import (
    SignInOutcome,
    clear_session_cookie,
    complete_sign_in,
    resolve_client,
    set_session_cookie,
    token_delivery,
)
from app.auth.gate import (
    ClientContext,
    RequestContext,
    enforce_guest,
    get_request_context,
    landing_url,
    login_url,
    require_authenticated,
    require_guest,
)
from app.auth.pages import (
    render_broker_error,
    render_login_page,
    render_profile_page,
    render_register_page,
)
from app.auth.providers import parse_provider
from app.auth.state import PendingState

logger = logging.getLogger("broker.auth")


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)

profile_router = APIRouter(tags=["profile"])


def _form_context(client_id: Optional[str], redirect_url: Optional[str]) -> ClientContext:
    return ClientContext(client_id=client_id or None, redirect_url=redirect_url or None)


def _signed_in_response(state: AppState, outcome: SignInOutcome) -> RedirectResponse:
    """Redirect to the client with its token, or to the landing page with the outcome's notice."""
    notice = outcome.notices[0] if outcome.notices else None
    url = outcome.redirect_url or landing_url(notice=notice)
    response = RedirectResponse(url=url, status_code=302)
    set_session_cookie(response, state.settings, outcome.session_handle)
    return response


# =============================================================================
# Local Login
# =============================================================================

@auth_router.get("/login", response_class=HTMLResponse)
async def login_page(
    ctx: RequestContext = Depends(require_guest),
    state: AppState = Depends(get_app_state),
):
    """Render the login form, carrying any client context forward."""
    return render_login_page(
        ctx.client_context,
        providers=state.settings.federation.enabled,
        notices=ctx.notices,
    )


@auth_router.post("/login")
async def login_submit(
    email: str = Form(""),
    password: str = Form(""),
    client_id: Optional[str] = Form(None, alias="clientId"),
    redirect_url: Optional[str] = Form(None, alias="redirectUrl"),
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Authenticate with email and password.

    The client context is validated before the credentials are checked, so
    an invalid pair never reaches the identity store.

    Returns:
        Redirect to the client with a token, redirect to the landing page,
        or the login form again with a 401 on bad credentials
    """
    client_context = _form_context(client_id, redirect_url)
    enforce_guest(ctx, client_context)

    client = await resolve_client(state, client_context)
    try:
        principal = await state.identity.find_by_credentials(email, password)
    except InvalidCredentials as e:
        return render_login_page(
            client_context,
            providers=state.settings.federation.enabled,
            error=e.message,
            email=email,
            status_code=e.status_code,
        )

    outcome = await complete_sign_in(
        state, principal, client, client_context.redirect_url, ctx.session_handle,
        notice="Welcome back!",
    )
    return _signed_in_response(state, outcome)


# =============================================================================
# Registration
# =============================================================================

@auth_router.get("/register", response_class=HTMLResponse)
async def register_page(
    ctx: RequestContext = Depends(require_guest),
    state: AppState = Depends(get_app_state),
):
    return render_register_page(
        ctx.client_context,
        providers=state.settings.federation.enabled,
        notices=ctx.notices,
    )


@auth_router.post("/register")
async def register_submit(
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    client_id: Optional[str] = Form(None, alias="clientId"),
    redirect_url: Optional[str] = Form(None, alias="redirectUrl"),
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Create a local account and sign it in.

    Returns:
        Same shapes as login; the form is re-rendered with a 409 when the
        username or email is taken, or a 400 when a field is unusable
    """
    client_context = _form_context(client_id, redirect_url)
    enforce_guest(ctx, client_context)

    client = await resolve_client(state, client_context)

    def reprompt(message: str, status_code: int) -> HTMLResponse:
        return render_register_page(
            client_context,
            providers=state.settings.federation.enabled,
            error=message,
            username=username,
            email=email,
            status_code=status_code,
        )

    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return reprompt("Please enter a valid email address.", 400)

    try:
        principal = await state.identity.register(username, email, password)
    except AlreadyExists as e:
        return reprompt(e.message, e.status_code)
    except ValueError as e:
        return reprompt(str(e), 400)

    outcome = await complete_sign_in(
        state, principal, client, client_context.redirect_url, ctx.session_handle,
        notice="Your account has been created.",
    )
    return _signed_in_response(state, outcome)


# =============================================================================
# Logout
# =============================================================================

@auth_router.get("/logout")
async def logout(
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Terminate the session.

    With a client context the browser is sent back to the client, but only
    to an exactly registered redirect URL. An invalid pair renders the generic
    error page; the session is already gone by then and its cookie is cleared
    on that response too.
    """
    handle = ctx.session_handle
    if handle:
        await state.sessions.destroy(handle)

    if ctx.client_context.present:
        try:
            client = await resolve_client(state, ctx.client_context)
        except (UnknownClient, InvalidRedirect) as e:
            logger.info(f"Request failed: {e.code}", extra={"path": "/auth/logout", "error_code": e.code})
            response = render_broker_error(e, ctx.programmatic)
            clear_session_cookie(response, state.settings)
            return response
        url = ctx.client_context.redirect_url
        logger.info("Logout with client redirect", extra={"client_id": client.public_id})
    else:
        url = login_url(notice="You have been logged out.")

    response = RedirectResponse(url=url, status_code=302)
    clear_session_cookie(response, state.settings)
    return response


# =============================================================================
# Federated Login
# =============================================================================

@auth_router.get("/{provider}")
async def federated_start(
    provider: str,
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Send the browser to the provider's consent screen.

    The client context, when present, is validated here as well as on the
    callback so a bad pair fails before the user leaves the broker.

    Raises:
        UnknownProvider: If the path segment names no federated provider
        ProviderNotConfigured: If the provider's credentials are absent
    """
    tag = parse_provider(provider)
    await resolve_client(state, ctx.client_context)

    pending = PendingState(
        target_client_id=ctx.client_context.client_id,
        target_redirect_url=ctx.client_context.redirect_url,
    )
    request = await state.federation.begin(tag, pending, ctx.session_handle)
    return RedirectResponse(url=request.url, status_code=302)


@auth_router.get("/{provider}/callback")
async def federated_callback(
    provider: str,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    raw_state: Optional[str] = Query(None, alias="state", description="Echoed state value"),
    error: Optional[str] = Query(None, description="Error code if the provider refused"),
    ctx: RequestContext = Depends(get_request_context),
    state: AppState = Depends(get_app_state),
):
    """
    Complete a federated login.

    A state that decodes to a client pair is validated and answered with a
    token redirect, exactly like local login. A missing or unparsable state
    still signs the user in, landing on the profile page without a token. So
    does a pair the registry rejects: the session is kept, the token is not
    minted and the untrusted URL is never followed.
    """
    tag = parse_provider(provider)
    try:
        result = await state.federation.handle_callback(
            tag, code, raw_state, error=error, session_handle=ctx.session_handle
        )
    except StateInvalid as e:
        if e.principal is None:
            raise
        logger.warning("Signing in without client context after invalid state", extra={"provider": tag.value})
        outcome = await complete_sign_in(
            state,
            e.principal,
            previous_handle=ctx.session_handle,
            notice="Signed in, but the original sign-in request could not be resumed.",
        )
        return _signed_in_response(state, outcome)

    pending = result.pending
    target = ClientContext(pending.target_client_id, pending.target_redirect_url)
    try:
        client = await resolve_client(state, target)
    except (UnknownClient, InvalidRedirect) as e:
        logger.warning(
            "Rejected client context on federated callback",
            extra={"provider": tag.value, "client_id": target.client_id, "error_code": e.code}
        )
        outcome = await complete_sign_in(
            state,
            result.principal,
            previous_handle=ctx.session_handle,
            notice=GENERIC_SIGN_IN_ERROR,
        )
        return _signed_in_response(state, outcome)

    outcome = await complete_sign_in(
        state, result.principal, client, target.redirect_url, ctx.session_handle,
        notice=f"Signed in with {tag.value.capitalize()}.",
    )
    return _signed_in_response(state, outcome)


# =============================================================================
# Landing Page
# =============================================================================

@profile_router.get("/profile")
async def profile(
    ctx: RequestContext = Depends(require_authenticated),
    state: AppState = Depends(get_app_state),
):
    """
    Authenticated landing page.

    With a validated client context an already signed-in user is sent
    straight to the client with a fresh token.
    """
    client = await resolve_client(state, ctx.client_context)
    if client is not None:
        url = token_delivery(state, ctx.principal, client, ctx.client_context.redirect_url)
        return RedirectResponse(url=url, status_code=302)

    public = ctx.principal.public()
    if ctx.programmatic:
        return JSONResponse(PrincipalOut.from_public(public).model_dump(mode="json", by_alias=True))
    return render_profile_page(public, notices=ctx.notices)
