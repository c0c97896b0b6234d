"""
JSON API Tests

Programmatic login/registration twins, current user, client registration,
token verification, health and error shapes.
"""

import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.auth.tokens import TokenIssuer
from app.config import Settings
from app.main import create_app

from conftest import CLIENT_ID, CLIENT_REDIRECT, TEST_SECRET


@pytest.fixture
def alice(client):
    response = client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "alice@x.com", "password": "pw123456"},
    )
    assert response.status_code == 201
    return response.json()


# ============================================================================
# Authentication
# ============================================================================

def test_register_without_client(client, alice):
    assert alice["status"] == "success"
    assert alice["user"]["username"] == "alice"
    assert alice["user"]["email"] == "alice@x.com"
    assert "token" not in alice
    assert client.get("/api/users/me").json()["email"] == "alice@x.com"


def test_register_duplicate(client, alice):
    response = client.post(
        "/api/auth/register",
        json={"username": "other", "email": "ALICE@x.com", "password": "pw123456"},
    )

    assert response.status_code == 409
    assert response.json()["error"] == "already_exists"


@pytest.mark.parametrize("payload", [
    {"username": "bob", "email": "not-an-email", "password": "pw123456"},
    {"username": "bob", "email": "bob@x.com", "password": "123"},
    {"username": "", "email": "bob@x.com", "password": "pw123456"},
])
def test_register_validation(client, payload):
    assert client.post("/api/auth/register", json=payload).status_code == 422


def test_login_with_client_returns_token(client, alice):
    client.post("/api/auth/logout")

    response = client.post(
        "/api/auth/login",
        json={
            "email": "alice@x.com",
            "password": "pw123456",
            "clientId": CLIENT_ID,
            "redirectUrl": CLIENT_REDIRECT,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["redirectUrl"] == f"{CLIENT_REDIRECT}?token={body['token']}"
    assert body["expiresIn"] == 3600

    verified = client.post("/api/token/verify", json={"token": body["token"]})
    assert verified.status_code == 200
    assert verified.json()["claims"]["email"] == "alice@x.com"
    assert verified.json()["claims"]["clientId"] == CLIENT_ID


def test_login_invalid_credentials_are_uniform(client, alice):
    unknown = client.post("/api/auth/login", json={"email": "nobody@x.com", "password": "pw123456"})
    wrong = client.post("/api/auth/login", json={"email": "alice@x.com", "password": "nope"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {
        "status": "error",
        "error": "invalid_credentials",
        "message": "Invalid email or password.",
    }


def test_login_with_invalid_redirect(client, alice):
    response = client.post(
        "/api/auth/login",
        json={
            "email": "alice@x.com",
            "password": "pw123456",
            "clientId": CLIENT_ID,
            "redirectUrl": "https://app/cb/",
        },
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_redirect"
    assert "https://app/cb/" not in response.text


def test_partial_client_context_is_ignored(client, alice):
    response = client.post(
        "/api/auth/login",
        json={"email": "alice@x.com", "password": "pw123456", "clientId": CLIENT_ID},
    )

    assert response.status_code == 200
    assert "token" not in response.json()


def test_logout(client, alice):
    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert client.get("/api/users/me").status_code == 401


def test_federated_start_returns_url(client):
    response = client.get(
        "/api/auth/google",
        params={"clientId": CLIENT_ID, "redirectUrl": CLIENT_REDIRECT},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["provider"] == "google"
    assert body["authorizationUrl"].startswith("https://idp.test/authorize?")


def test_federated_start_not_configured(client):
    response = client.get("/api/auth/facebook")

    assert response.status_code == 503
    assert response.json()["error"] == "provider_not_configured"


# ============================================================================
# Current Principal
# ============================================================================

def test_me_requires_session(client):
    response = client.get("/api/users/me", follow_redirects=False)

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


def test_me_returns_public_fields(client, alice):
    body = client.get("/api/users/me").json()

    assert set(body) == {"id", "username", "email", "displayImageUrl", "providers", "hasPassword", "createdAt"}
    assert body["providers"] == []


# ============================================================================
# Clients
# ============================================================================

def test_create_client_returns_secret_once(client, broker):
    response = client.post(
        "/api/clients",
        json={"name": "New App", "redirectUrls": ["https://new/cb"], "allowedOrigins": ["https://new"]},
    )

    assert response.status_code == 201
    body = response.json()
    assert len(body["clientSecret"]) == 64
    assert body["redirectUrls"] == ["https://new/cb"]


def test_create_client_response_matches_public_view(client):
    response = client.post(
        "/api/clients",
        json={
            "name": "Two Urls",
            "redirectUrls": ["https://b.app/cb", "https://a.app/cb"],
            "allowedOrigins": ["https://b.app", "https://a.app"],
        },
    )

    body = response.json()
    assert body["redirectUrls"] == ["https://a.app/cb", "https://b.app/cb"]
    assert body["allowedOrigins"] == ["https://a.app", "https://b.app"]
    assert body["name"] == "Two Urls"
    assert set(body) == {"clientId", "clientSecret", "name", "redirectUrls", "allowedOrigins", "createdAt"}


def test_created_client_can_receive_tokens(client, alice):
    created = client.post("/api/clients", json={"name": "New App", "redirectUrls": ["https://new/cb"]}).json()

    response = client.get(
        "/profile",
        params={"clientId": created["clientId"], "redirectUrl": "https://new/cb"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://new/cb?token=")


def test_create_client_requires_redirect(client):
    response = client.post("/api/clients", json={"name": "New App", "redirectUrls": []})
    assert response.status_code == 422


# ============================================================================
# Token Verification
# ============================================================================

def test_verify_invalid_token(client):
    response = client.post("/api/token/verify", json={"token": "garbage"})

    assert response.status_code == 401
    assert response.json()["error"] == "token_invalid"


def test_verify_expired_token(client, broker, alice):
    principal = broker.identity._by_id[alice["user"]["id"]]
    seeded = broker.clients._clients[CLIENT_ID]
    short = TokenIssuer(secret=TEST_SECRET, lifetime=timedelta(seconds=1))
    token = short.issue(principal, seeded)
    time.sleep(1.1)

    response = client.post("/api/token/verify", json={"token": token})

    assert response.status_code == 401
    assert response.json()["error"] == "token_expired"


# ============================================================================
# System
# ============================================================================

def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["providers"] == ["google"]


def test_root(client):
    body = client.get("/").json()
    assert body["service"] == "identity-broker"


def test_state_unavailable_before_startup(settings):
    client = TestClient(create_app(settings=settings))
    response = client.get("/api/users/me")

    assert response.status_code == 503


def test_settings_reject_short_secret():
    with pytest.raises(ValueError):
        Settings(_env_file=None, TOKEN_SECRET="short")
