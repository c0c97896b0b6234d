"""
Principal records and the closed set of sign-in providers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional


class Provider(str, Enum):
    """Ways a principal can prove who they are."""
    LOCAL = "local"
    GOOGLE = "google"
    FACEBOOK = "facebook"

    @property
    def is_federated(self) -> bool:
        return self is not Provider.LOCAL


@dataclass
class Principal:
    """
    A user identity as held by the identity store.

    A principal without federated identities always has a credential hash.
    """
    id: str
    username: str
    email: str
    credential_hash: Optional[str] = None
    federated_identities: Dict[Provider, str] = field(default_factory=dict)
    display_image_url: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def public(self) -> "PublicPrincipal":
        return PublicPrincipal(
            id=self.id,
            username=self.username,
            email=self.email,
            display_image_url=self.display_image_url,
            providers=tuple(sorted(p.value for p in self.federated_identities)),
            has_password=self.credential_hash is not None,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class PublicPrincipal:
    """Principal as seen outside the identity store (no credential hash)."""
    id: str
    username: str
    email: str
    display_image_url: Optional[str]
    providers: tuple
    has_password: bool
    created_at: datetime


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()
