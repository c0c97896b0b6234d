"""
Sign-in outcomes shared by the browser routes and their JSON twins.

Both response styles run the same steps: validate the caller's client
context, establish a session, and, when a client is in play, mint a token and
build the redirect that delivers it. They differ only in how the outcome is
rendered.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import Response

from app.clients import Client
from app.config import Settings
from app.dependencies import AppState
from app.identity import Principal
from app.auth.gate import ClientContext

logger = logging.getLogger("broker.auth")


@dataclass
class SignInOutcome:
    """Result of a completed sign-in."""
    principal: Principal
    session_handle: str
    client: Optional[Client] = None
    token: Optional[str] = None
    redirect_url: Optional[str] = None
    notices: List[str] = field(default_factory=list)


def append_token(redirect_url: str, token: str) -> str:
    """
    Add ``token=<value>`` to a redirect URL, keeping any existing query.

    >>> append_token("https://app/cb", "abc")
    'https://app/cb?token=abc'
    """
    parts = urlsplit(redirect_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("token", token))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


async def resolve_client(state: AppState, client_context: ClientContext) -> Optional[Client]:
    """
    Validate an in-flight (client, redirect) pair.

    A partial pair counts as no client context.

    Raises:
        UnknownClient: If the client is not registered
        InvalidRedirect: If the URL is not an exact registered redirect
    """
    if not client_context.present:
        return None
    return await state.clients.validate(client_context.client_id, client_context.redirect_url)


def token_delivery(state: AppState, principal: Principal, client: Client, redirect_url: str) -> str:
    """Mint a token for a validated client and return the URL delivering it."""
    token = state.tokens.issue(principal, client)
    return append_token(redirect_url, token)


async def complete_sign_in(
    state: AppState,
    principal: Principal,
    client: Optional[Client] = None,
    redirect_url: Optional[str] = None,
    previous_handle: Optional[str] = None,
    notice: Optional[str] = None,
) -> SignInOutcome:
    """
    Establish a session for ``principal`` and deliver a token if a client is set.

    ``client`` must have been validated with ``redirect_url`` in the current
    request. Any previous session on the browser is terminated; a login always
    gets a fresh handle. ``notice`` is carried on the outcome for the page the
    browser lands on.
    """
    if previous_handle:
        await state.sessions.destroy(previous_handle)
    handle = await state.sessions.create(principal)

    outcome = SignInOutcome(
        principal=principal,
        session_handle=handle,
        client=client,
        notices=[notice] if notice else [],
    )
    if client is not None and redirect_url is not None:
        outcome.token = state.tokens.issue(principal, client)
        outcome.redirect_url = append_token(redirect_url, outcome.token)

    logger.info(
        "Sign-in complete",
        extra={
            "principal_id": principal.id,
            "client_id": client.public_id if client else None,
            "token_issued": outcome.token is not None,
        }
    )
    return outcome


# =============================================================================
# Session Cookie
# =============================================================================

def set_session_cookie(response: Response, settings: Settings, handle: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=handle,
        max_age=settings.SESSION_TTL_MINUTES * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
