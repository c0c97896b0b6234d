"""
Application state container and FastAPI dependencies that expose it.

Every collaborator of the sign-in core is built once per application in
``build_app_state`` and reached from routes through ``request.app.state``.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Optional

from fastapi import HTTPException, Request, status

from app.auth.federation import FederatedLoginOrchestrator, ProviderFactory
from app.auth.providers import HttpClientFactory, build_provider
from app.auth.session import SessionManager
from app.auth.state import StateCodec
from app.auth.tokens import TokenIssuer
from app.clients import ClientRegistry
from app.config import Settings
from app.identity import IdentityStore


@dataclass
class AppState:
    """
    Shared resources of one broker instance.

    Holds the client registry, identity store, session manager, token issuer
    and federated-login orchestrator.
    """
    settings: Settings
    clients: ClientRegistry
    identity: IdentityStore
    sessions: SessionManager
    tokens: TokenIssuer
    federation: FederatedLoginOrchestrator


def build_app_state(
    settings: Settings,
    provider_factory: Optional[ProviderFactory] = None,
    http_client_factory: Optional[HttpClientFactory] = None,
) -> AppState:
    """
    Wire the sign-in core from settings.

    Args:
        settings: Loaded settings
        provider_factory: Replaces the provider factory (tests)
        http_client_factory: HTTP client used for provider calls
    """
    identity = IdentityStore(linking_policy=settings.FEDERATED_EMAIL_LINKING)
    sessions = SessionManager(
        ttl=timedelta(minutes=settings.SESSION_TTL_MINUTES),
        sliding=settings.SESSION_SLIDING,
    )
    codec = StateCodec(
        secret=settings.TOKEN_SECRET,
        algorithm=settings.TOKEN_ALGORITHM,
        signed=settings.FEDERATION_STATE_SIGNED,
        ttl=timedelta(seconds=settings.FEDERATION_STATE_TTL_SECONDS),
    )
    if provider_factory is None:
        provider_factory = partial(
            build_provider,
            federation=settings.federation,
            callback_url=settings.callback_url,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            http_client_factory=http_client_factory,
        )

    return AppState(
        settings=settings,
        clients=ClientRegistry(),
        identity=identity,
        sessions=sessions,
        tokens=TokenIssuer(
            secret=settings.TOKEN_SECRET,
            algorithm=settings.TOKEN_ALGORITHM,
            lifetime=timedelta(minutes=settings.TOKEN_EXPIRY_MINUTES),
            issuer=settings.TOKEN_ISSUER,
        ),
        federation=FederatedLoginOrchestrator(
            identity=identity,
            sessions=sessions,
            codec=codec,
            provider_factory=provider_factory,
        ),
    )


def get_app_state(request: Request) -> AppState:
    """
    Dependency to get the broker state from the application.

    Raises:
        HTTPException: 503 if the application has not finished starting
    """
    state = getattr(request.app.state, "broker", None)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized"
        )
    return state
