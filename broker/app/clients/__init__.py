"""
Clients Package

Registered third-party applications and exact-match redirect validation.
"""

from app.clients.registry import Client, ClientRegistry, PublicClient

__all__ = ["Client", "ClientRegistry", "PublicClient"]
