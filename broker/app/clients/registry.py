"""
Client Registry
===============

Holds the third-party applications allowed to receive identity tokens and
answers the only question that matters before a redirect: is this exact URL
one of the client's registered redirect destinations?

Redirect validation is an exact string match against ``redirect_urls``.
No prefix, wildcard, scheme or trailing-slash normalisation is applied.
"""

import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Set, Tuple

from app.errors import InvalidRedirect, UnknownClient

logger = logging.getLogger("broker.clients")


@dataclass
class Client:
    """Registered client. ``secret`` never leaves this module after creation."""
    id: str
    public_id: str
    name: str
    secret: str
    redirect_urls: Set[str]
    allowed_origins: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PublicClient:
    public_id: str
    name: str
    redirect_urls: Tuple[str, ...]
    allowed_origins: Tuple[str, ...]
    created_at: datetime

    @classmethod
    def from_client(cls, client: Client) -> "PublicClient":
        return cls(
            public_id=client.public_id,
            name=client.name,
            redirect_urls=tuple(sorted(client.redirect_urls)),
            allowed_origins=tuple(sorted(client.allowed_origins)),
            created_at=client.created_at,
        )


class ClientRegistry:
    """
    In-memory client registry.

    Lookups are by ``public_id``, the only identifier callers ever see.
    """

    def __init__(self):
        self._clients: Dict[str, Client] = {}
        self._lock = asyncio.Lock()

    async def register(
        self,
        name: str,
        redirect_urls: Iterable[str],
        allowed_origins: Iterable[str] = (),
        public_id: Optional[str] = None,
    ) -> Tuple[Client, str]:
        """
        Register a new client and generate its secret.

        Args:
            name: Human-readable client name
            redirect_urls: Exact URLs tokens may be delivered to (non-empty)
            allowed_origins: Origins the client's browser code runs on
            public_id: Fixed public id (seeding only); a uuid4 otherwise

        Returns:
            Tuple of (client, secret). The secret is only returned here.

        Raises:
            ValueError: If no redirect URLs are given
        """
        urls = {url for url in redirect_urls if url}
        if not urls:
            raise ValueError("A client needs at least one redirect URL")

        secret = secrets.token_hex(32)
        client = Client(
            id=uuid.uuid4().hex,
            public_id=public_id or str(uuid.uuid4()),
            name=name.strip(),
            secret=secret,
            redirect_urls=urls,
            allowed_origins={origin for origin in allowed_origins if origin},
        )

        async with self._lock:
            if client.public_id in self._clients:
                raise ValueError(f"Client id already registered: {client.public_id}")
            self._clients[client.public_id] = client

        logger.info(
            "Registered client",
            extra={"client_id": client.public_id, "redirect_count": len(urls)}
        )
        return client, secret

    async def lookup(self, public_id: Optional[str]) -> Client:
        """
        Find a client by its public id.

        Raises:
            UnknownClient: If no client has this id
        """
        client = self._clients.get(public_id) if public_id else None
        if client is None:
            logger.warning("Unknown client id", extra={"client_id": public_id})
            raise UnknownClient()
        return client

    @staticmethod
    def is_redirect_allowed(client: Client, url: Optional[str]) -> bool:
        return url is not None and url in client.redirect_urls

    async def validate(self, public_id: Optional[str], redirect_url: Optional[str]) -> Client:
        """
        Resolve a (client, redirect) pair or refuse it.

        Every route that is about to mint a token for, or redirect a browser
        to, a caller-supplied pair goes through here first.

        Raises:
            UnknownClient: If the client is not registered
            InvalidRedirect: If the URL is not an exact registered redirect
        """
        client = await self.lookup(public_id)
        if not self.is_redirect_allowed(client, redirect_url):
            logger.warning(
                "Rejected redirect URL",
                extra={"client_id": client.public_id, "redirect_url": redirect_url}
            )
            raise InvalidRedirect()
        return client

    async def seed(self, entries: Iterable[dict]) -> None:
        """Register clients from configuration at startup."""
        for entry in entries:
            await self.register(
                name=entry.get("name", "Client"),
                redirect_urls=entry.get("redirect_urls", []),
                allowed_origins=entry.get("allowed_origins", []),
                public_id=entry.get("client_id"),
            )
