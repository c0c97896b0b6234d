"""
Identity Store
==============

Holds principals, verifies local credentials and links or creates federated
identities.

Uniqueness of email, username and ``(provider, provider_user_id)`` is enforced
under the store lock, which plays the role of a storage uniqueness constraint:
of two concurrent registrations for the same email exactly one succeeds.

The credential hash never leaves this module; callers that cross a
presentation boundary use ``Principal.public()``.
"""

import asyncio
import logging
import re
import uuid
from typing import Dict, Optional, Tuple

from app.errors import AlreadyExists, AuthFailed, InvalidCredentials, NotFound
from app.identity.passwords import hash_password_async, verify_password_async
from app.identity.principal import Principal, Provider, normalize_email

logger = logging.getLogger("broker.identity")

LINK_AUTO = "auto"
LINK_DISABLED = "disabled"

MIN_PASSWORD_LENGTH = 6


class IdentityStore:
    """
    In-memory identity store.

    Args:
        linking_policy: ``"auto"`` attaches a provider identity to an existing
            principal with the same email; ``"disabled"`` refuses the login.
    """

    def __init__(self, linking_policy: str = LINK_AUTO):
        self.linking_policy = linking_policy
        self._by_id: Dict[str, Principal] = {}
        self._by_email: Dict[str, str] = {}
        self._by_username: Dict[str, str] = {}
        self._by_federated: Dict[Tuple[Provider, str], str] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get(self, principal_id: str) -> Principal:
        principal = self._by_id.get(principal_id)
        if principal is None:
            raise NotFound("User not found")
        return principal

    async def find_by_credentials(self, email: str, password: str) -> Principal:
        """
        Authenticate a principal by email and password.

        Unknown email, wrong password and federation-only principals all raise
        the same error after the same amount of hashing work.

        Raises:
            InvalidCredentials: On any mismatch
        """
        principal_id = self._by_email.get(normalize_email(email))
        principal = self._by_id.get(principal_id) if principal_id else None
        stored_hash = principal.credential_hash if principal else None

        if not await verify_password_async(stored_hash, password or ""):
            logger.info("Rejected local credentials")
            raise InvalidCredentials()

        return principal

    # =========================================================================
    # Creation
    # =========================================================================

    async def register(self, username: str, email: str, password: str) -> Principal:
        """
        Create a password-based principal.

        Raises:
            AlreadyExists: If the email or the username is taken
            ValueError: If a field is empty or the password is too short
        """
        username = (username or "").strip()
        email = normalize_email(email)
        if not username or not email:
            raise ValueError("Username and email are required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        credential_hash = await hash_password_async(password)

        async with self._lock:
            if email in self._by_email or username.lower() in self._by_username:
                raise AlreadyExists()

            principal = Principal(
                id=uuid.uuid4().hex,
                username=username,
                email=email,
                credential_hash=credential_hash,
            )
            self._insert(principal)

        logger.info("Registered principal", extra={"principal_id": principal.id})
        return principal

    async def find_or_create_federated(
        self,
        provider: Provider,
        provider_user_id: str,
        email: Optional[str],
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Principal:
        """
        Resolve the principal behind a provider identity.

        Order: existing ``(provider, provider_user_id)`` link, then a principal
        with the same email (linking), then a new principal without a
        credential hash. Linking never touches the existing credentials.

        Raises:
            AuthFailed: If the provider gave no email for an unseen identity,
                or linking is disabled and the email is already in use
        """
        key = (provider, str(provider_user_id))
        email = normalize_email(email)

        async with self._lock:
            principal_id = self._by_federated.get(key)
            if principal_id:
                return self._by_id[principal_id]

            if not email:
                raise AuthFailed(f"{provider.value.capitalize()} did not share an email address.")

            principal_id = self._by_email.get(email)
            if principal_id:
                principal = self._by_id[principal_id]
                if self.linking_policy != LINK_AUTO:
                    logger.warning(
                        "Refused to link provider identity to existing principal",
                        extra={"provider": provider.value, "principal_id": principal.id}
                    )
                    raise AuthFailed(
                        "An account with this email already exists. Sign in with your password."
                    )
                if provider in principal.federated_identities:
                    # Same provider, different provider account: never overwrite.
                    raise AuthFailed("This account is already linked to another login.")

                principal.federated_identities[provider] = key[1]
                if avatar_url and not principal.display_image_url:
                    principal.display_image_url = avatar_url
                self._by_federated[key] = principal.id
                logger.info(
                    "Linked provider identity to existing principal",
                    extra={"provider": provider.value, "principal_id": principal.id}
                )
                return principal

            principal = Principal(
                id=uuid.uuid4().hex,
                username=self._available_username(display_name or email.split("@")[0]),
                email=email,
                federated_identities={provider: key[1]},
                display_image_url=avatar_url,
            )
            self._insert(principal)

        logger.info(
            "Created principal from provider identity",
            extra={"provider": provider.value, "principal_id": principal.id}
        )
        return principal

    # =========================================================================
    # Internals (call with the lock held)
    # =========================================================================

    def _insert(self, principal: Principal) -> None:
        if not principal.federated_identities and principal.credential_hash is None:
            raise ValueError("A principal without provider identities needs a password")

        self._by_id[principal.id] = principal
        self._by_email[principal.email] = principal.id
        self._by_username[principal.username.lower()] = principal.id
        for provider, provider_user_id in principal.federated_identities.items():
            self._by_federated[(provider, provider_user_id)] = principal.id

    def _available_username(self, wanted: str) -> str:
        base = re.sub(r"\s+", " ", wanted).strip() or "user"
        candidate = base
        suffix = 1
        while candidate.lower() in self._by_username:
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate
