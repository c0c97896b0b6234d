"""
Federated Login Orchestration
=============================

Splits "this browser wants to sign in with provider P and end up at client C,
redirect R" across the two unrelated HTTP exchanges that implement it:

1. browser -> broker -> provider  (``begin``)
2. provider -> broker             (``handle_callback`` / ``complete``)

No server-side transaction spans the two legs. The second leg may land on a
different instance or be the first request of a fresh browser, so the
continuation is carried entirely in the ``state`` value. When the browser
already has a live session at leg 1, the pending state is also recorded on
that session and its nonce must match at leg 2.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from app.errors import AuthFailed, StateInvalid
from app.identity import IdentityStore, Principal, Provider
from app.auth.providers import AuthorizationRequest, FederatedProvider, ProviderProfile
from app.auth.session import SessionManager
from app.auth.state import PendingState, StateCodec

logger = logging.getLogger("broker.federation")

ProviderFactory = Callable[[Provider], FederatedProvider]


@dataclass(frozen=True)
class FederatedLoginResult:
    principal: Principal
    pending: PendingState


class FederatedLoginOrchestrator:
    """
    Args:
        identity: Store used to resolve or create the principal
        sessions: Session manager, for optional nonce binding
        codec: Encodes and decodes the ``state`` round-trip value
        provider_factory: Builds a provider client for a tag; raises
            ``ProviderNotConfigured`` when its credentials are absent
    """

    def __init__(
        self,
        identity: IdentityStore,
        sessions: SessionManager,
        codec: StateCodec,
        provider_factory: ProviderFactory,
    ):
        self.identity = identity
        self.sessions = sessions
        self.codec = codec
        self.provider_factory = provider_factory

    async def begin(
        self,
        provider: Provider,
        pending: PendingState,
        session_handle: Optional[str] = None,
    ) -> AuthorizationRequest:
        """
        Build the outbound request to the provider.

        Raises:
            ProviderNotConfigured: If the provider's credentials are absent
        """
        client = self.provider_factory(provider)
        state = self.codec.encode(pending)
        await self.sessions.attach_pending(session_handle, pending)

        logger.info(
            "Starting federated login",
            extra={
                "provider": provider.value,
                "client_id": pending.target_client_id,
                "has_client_context": pending.has_client_context,
            }
        )
        return client.build_authorization_request(state)

    async def handle_callback(
        self,
        provider: Provider,
        code: Optional[str],
        raw_state: Optional[str],
        error: Optional[str] = None,
        session_handle: Optional[str] = None,
    ) -> FederatedLoginResult:
        """
        Run the whole second leg: provider verdict, code exchange, completion.

        Raises:
            AuthFailed: If the provider reported an error or the exchange failed
            StateInvalid: If the continuation is broken (``principal`` attached)
        """
        if error:
            logger.warning(
                "Provider rejected login",
                extra={"provider": provider.value, "provider_error": error}
            )
            raise AuthFailed("Authentication was cancelled or rejected by the provider.")

        profile = await self.provider_factory(provider).exchange_callback(code)
        return await self.complete(provider, profile, raw_state, session_handle)

    async def complete(
        self,
        provider: Provider,
        profile: ProviderProfile,
        raw_state: Optional[str],
        session_handle: Optional[str] = None,
    ) -> FederatedLoginResult:
        """
        Turn a provider profile plus echoed state into (principal, pending state).

        The principal is resolved even when the state is broken, because the
        user did authenticate with the provider; ``StateInvalid`` then carries
        it so the caller can sign the user in without honouring any client
        context.

        Raises:
            AuthFailed: If the profile belongs to another provider or cannot
                be mapped to a principal
            StateInvalid: If the state is absent, unparsable, or its nonce
                does not match the one recorded on the session
        """
        if profile.provider is not provider:
            raise AuthFailed("Provider profile does not match the callback")

        state_error: Optional[StateInvalid] = None
        pending: Optional[PendingState] = None
        try:
            pending = self.codec.decode(raw_state)
        except StateInvalid as e:
            state_error = e

        expected = await self.sessions.take_pending(session_handle)
        if pending is not None and expected is not None and expected.nonce != pending.nonce:
            logger.warning("Federation state nonce mismatch", extra={"provider": provider.value})
            state_error = StateInvalid()

        principal = await self.identity.find_or_create_federated(
            provider,
            profile.provider_user_id,
            profile.email,
            display_name=profile.display_name,
            avatar_url=profile.avatar_url,
        )

        if state_error is not None:
            state_error.principal = principal
            raise state_error

        return FederatedLoginResult(principal=principal, pending=pending)
