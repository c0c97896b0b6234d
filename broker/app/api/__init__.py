"""
JSON API package.

Programmatic twins of the browser sign-in routes, plus client registration,
token verification and the current-principal query.
"""

from app.api.routes import api_router

__all__ = ["api_router"]
