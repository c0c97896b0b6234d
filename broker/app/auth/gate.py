"""
Auth Gate
=========

The single policy point deciding what happens to a request given whether it
carries a live session and what kind of page it is entering.

    authenticated  page         caller          decision
    -------------  -----------  --------------  -------------------
    no             protected    programmatic    DENY_JSON
    no             protected    browser         REDIRECT_TO_LOGIN
    yes            guest-only   any             REDIRECT_TO_LANDING
    otherwise                                   PROCEED

A caller is programmatic when the path is under ``/api`` or it sends
``Accept: application/json``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import Depends, Request

from app.dependencies import AppState, get_app_state
from app.errors import NotFound, Unauthenticated
from app.identity import Principal

logger = logging.getLogger("broker.auth")

API_PREFIX = "/api"
LOGIN_PATH = "/auth/login"
LANDING_PATH = "/profile"


class PageKind(str, Enum):
    GUEST_ONLY = "guest_only"
    PROTECTED = "protected"


class GateDecision(str, Enum):
    PROCEED = "proceed"
    DENY_JSON = "deny_json"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REDIRECT_TO_LANDING = "redirect_to_landing"


def decide(authenticated: bool, page: PageKind, programmatic: bool) -> GateDecision:
    if page is PageKind.PROTECTED and not authenticated:
        return GateDecision.DENY_JSON if programmatic else GateDecision.REDIRECT_TO_LOGIN
    if page is PageKind.GUEST_ONLY and authenticated:
        return GateDecision.REDIRECT_TO_LANDING
    return GateDecision.PROCEED


class GateDenied(Unauthenticated):
    """Protected resource requested by a programmatic caller without a session."""


class GateRedirect(Exception):
    """Short-circuits a request into a browser redirect."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(url)


@dataclass(frozen=True)
class ClientContext:
    """An in-flight (client, redirect) pair supplied by the caller. Unvalidated."""
    client_id: Optional[str] = None
    redirect_url: Optional[str] = None

    @property
    def present(self) -> bool:
        return bool(self.client_id and self.redirect_url)

    def query(self) -> dict:
        if not self.present:
            return {}
        return {"clientId": self.client_id, "redirectUrl": self.redirect_url}


@dataclass
class RequestContext:
    """Everything a route needs to know about the caller, passed explicitly."""
    session_handle: Optional[str]
    principal: Optional[Principal]
    programmatic: bool
    client_context: ClientContext = field(default_factory=ClientContext)
    notices: List[str] = field(default_factory=list)

    @property
    def authenticated(self) -> bool:
        return self.principal is not None


def is_programmatic(request: Request) -> bool:
    if request.url.path.startswith(API_PREFIX):
        return True
    return "application/json" in request.headers.get("accept", "").lower()


def with_query(path: str, params: dict) -> str:
    params = {k: v for k, v in params.items() if v}
    return f"{path}?{urlencode(params)}" if params else path


def login_url(client_context: ClientContext = ClientContext(), notice: Optional[str] = None) -> str:
    return with_query(LOGIN_PATH, {**client_context.query(), "notice": notice})


def landing_url(client_context: ClientContext = ClientContext(), notice: Optional[str] = None) -> str:
    return with_query(LANDING_PATH, {**client_context.query(), "notice": notice})


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_request_context(
    request: Request,
    state: AppState = Depends(get_app_state),
) -> RequestContext:
    """Resolve the session cookie and collect the caller's client context."""
    handle = request.cookies.get(state.settings.SESSION_COOKIE_NAME)
    resolution = await state.sessions.resolve(handle)

    principal = None
    if resolution.authenticated:
        try:
            principal = await state.identity.get(resolution.principal_id)
        except NotFound:
            logger.warning("Session points at a missing principal; terminating it")
            await state.sessions.destroy(handle)
        else:
            if state.settings.SESSION_SLIDING:
                # Picked up by the sliding-session middleware in app.main.
                request.state.sliding_session = handle

    return RequestContext(
        session_handle=handle if principal else None,
        principal=principal,
        programmatic=is_programmatic(request),
        client_context=ClientContext(
            client_id=request.query_params.get("clientId") or None,
            redirect_url=request.query_params.get("redirectUrl") or None,
        ),
        notices=request.query_params.getlist("notice"),
    )


async def require_authenticated(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """
    Gate for protected routes.

    Raises:
        GateDenied: For programmatic callers without a session
        GateRedirect: To the login page for browsers without a session
    """
    decision = decide(ctx.authenticated, PageKind.PROTECTED, ctx.programmatic)
    if decision is GateDecision.DENY_JSON:
        raise GateDenied()
    if decision is GateDecision.REDIRECT_TO_LOGIN:
        raise GateRedirect(login_url(ctx.client_context, "Please log in to access this page"))
    return ctx


async def require_guest(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """
    Gate for login and registration pages.

    An authenticated caller is sent to the landing page, keeping any
    in-flight client context so the token exchange can still complete there.

    Raises:
        GateRedirect: To the landing page when a live session exists
    """
    enforce_guest(ctx)
    return ctx


def enforce_guest(ctx: RequestContext, client_context: Optional[ClientContext] = None) -> None:
    """Guest-only check for handlers whose client context arrives in a form body."""
    decision = decide(ctx.authenticated, PageKind.GUEST_ONLY, ctx.programmatic)
    if decision is GateDecision.REDIRECT_TO_LANDING:
        raise GateRedirect(landing_url(client_context or ctx.client_context))
