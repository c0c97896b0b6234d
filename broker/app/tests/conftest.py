"""
Shared fixtures for broker tests.

Provides settings, an application built with a fake federated provider, a
started ``TestClient`` (lifespan run, client ``c1`` seeded) and helpers for
signing users in.
"""

import json
import os

import httpx
import pytest
from fastapi.testclient import TestClient

TEST_SECRET = "test-token-secret-0123456789abcdef0123456789"

# app.main builds a module-level app from the environment on import.
os.environ.setdefault("TOKEN_SECRET", TEST_SECRET)

from app.auth.providers import FederatedProvider, ProviderProfile  # noqa: E402
from app.config import ProviderCredentials, Settings  # noqa: E402
from app.errors import AuthFailed, ProviderNotConfigured  # noqa: E402
from app.identity import Provider  # noqa: E402
from app.main import create_app  # noqa: E402

CLIENT_ID = "c1"
CLIENT_REDIRECT = "https://app/cb"


# ============================================================================
# Fake Provider
# ============================================================================

class FakeProvider(FederatedProvider):
    """Federated provider whose codes map straight to canned profiles."""

    authorize_url = "https://idp.test/authorize"
    scopes = ["openid", "email"]

    def __init__(self, provider: Provider, profiles: dict, redirect_uri: str):
        super().__init__(
            ProviderCredentials(client_id="fake-client-id", client_secret="fake-client-secret"),
            redirect_uri=redirect_uri,
            http_client_factory=lambda: httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500))
            ),
        )
        self.provider = provider
        self.profiles = profiles

    async def _exchange(self, client: httpx.AsyncClient, code: str) -> ProviderProfile:
        if code not in self.profiles:
            raise AuthFailed("Unknown authorization code")
        return self.profiles[code]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """Settings with Google enabled, Facebook not, and client c1 seeded."""
    return Settings(
        _env_file=None,
        TOKEN_SECRET=TEST_SECRET,
        APP_URL="http://testserver",
        SESSION_COOKIE_SECURE=False,
        GOOGLE_CLIENT_ID="google-client-id",
        GOOGLE_CLIENT_SECRET="google-client-secret",
        REGISTERED_CLIENTS=json.dumps([
            {"client_id": CLIENT_ID, "name": "Test App", "redirect_urls": [CLIENT_REDIRECT]},
        ]),
    )


@pytest.fixture
def provider_profiles():
    """Authorization code -> profile the fake provider returns for it."""
    return {}


@pytest.fixture
def provider_factory(settings, provider_profiles):
    def factory(tag: Provider) -> FederatedProvider:
        if tag.value not in settings.federation.enabled:
            raise ProviderNotConfigured(tag.value)
        return FakeProvider(tag, provider_profiles, settings.callback_url(tag.value))
    return factory


@pytest.fixture
def app(settings, provider_factory):
    return create_app(settings=settings, provider_factory=provider_factory)


@pytest.fixture
def client(app):
    """Started test client; cookies persist across requests."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def broker(client):
    """The running application's ``AppState``."""
    return client.app.state.broker


@pytest.fixture
def register_user(client):
    """Register through the browser form without following the redirect."""
    def register(username="alice", email="alice@x.com", password="pw123456", **extra):
        return client.post(
            "/auth/register",
            data={"username": username, "email": email, "password": password, **extra},
            follow_redirects=False,
        )
    return register
