"""
Identity Broker Application
===========================

Authenticates end users with local credentials or a federated provider
(Google, Facebook) and issues short-lived, client-scoped tokens to registered
applications, delivered on their exactly registered redirect URLs.

Packages:
    - clients:  Client registry and redirect validation
    - identity: Principals, password hashing, account linking
    - auth:     Gate, sessions, federation, tokens, browser routes
    - api:      JSON twins of the browser routes

Run with::

    uvicorn app.main:app --app-dir broker --host 0.0.0.0 --port 8080
"""

__version__ = "1.0.0"
