"""
Identity Package

Principals, password verification and federated identity linking.
"""

from app.identity.principal import Principal, Provider, PublicPrincipal, normalize_email
from app.identity.store import IdentityStore

__all__ = [
    "IdentityStore",
    "Principal",
    "Provider",
    "PublicPrincipal",
    "normalize_email",
]
