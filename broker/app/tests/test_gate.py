"""
Auth Gate Tests

The four-way decision table, programmatic caller detection, and the gate as
seen through real routes.
"""

from unittest.mock import Mock

import pytest

from app.auth.gate import (
    ClientContext,
    GateDecision,
    PageKind,
    decide,
    is_programmatic,
    landing_url,
    login_url,
)


@pytest.mark.parametrize("authenticated,page,programmatic,expected", [
    (False, PageKind.PROTECTED, True, GateDecision.DENY_JSON),
    (False, PageKind.PROTECTED, False, GateDecision.REDIRECT_TO_LOGIN),
    (True, PageKind.GUEST_ONLY, False, GateDecision.REDIRECT_TO_LANDING),
    (True, PageKind.GUEST_ONLY, True, GateDecision.REDIRECT_TO_LANDING),
    (False, PageKind.GUEST_ONLY, False, GateDecision.PROCEED),
    (False, PageKind.GUEST_ONLY, True, GateDecision.PROCEED),
    (True, PageKind.PROTECTED, False, GateDecision.PROCEED),
    (True, PageKind.PROTECTED, True, GateDecision.PROCEED),
])
def test_decision_table(authenticated, page, programmatic, expected):
    assert decide(authenticated, page, programmatic) is expected


def _request(path="/profile", accept=""):
    request = Mock()
    request.url.path = path
    request.headers = {"accept": accept} if accept else {}
    return request


@pytest.mark.parametrize("path,accept,expected", [
    ("/api/users/me", "", True),
    ("/api/auth/login", "text/html", True),
    ("/profile", "application/json", True),
    ("/profile", "text/html, application/json;q=0.9", True),
    ("/profile", "text/html", False),
    ("/auth/login", "", False),
])
def test_is_programmatic(path, accept, expected):
    assert is_programmatic(_request(path, accept)) is expected


def test_client_context_requires_both_halves():
    assert ClientContext("c1", "https://app/cb").present
    assert not ClientContext("c1", None).present
    assert not ClientContext(None, "https://app/cb").present
    assert ClientContext("c1", None).query() == {}


def test_redirect_urls_forward_client_context():
    ctx = ClientContext("c1", "https://app/cb")

    assert landing_url() == "/profile"
    assert landing_url(ctx) == "/profile?clientId=c1&redirectUrl=https%3A%2F%2Fapp%2Fcb"
    assert login_url(notice="Bye") == "/auth/login?notice=Bye"


# ============================================================================
# Through the application
# ============================================================================

def test_protected_page_redirects_browser_to_login(client):
    response = client.get("/profile", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].startswith("/auth/login?notice=")


def test_protected_page_denies_json_caller(client):
    response = client.get("/profile", headers={"Accept": "application/json"}, follow_redirects=False)

    assert response.status_code == 401
    assert response.json() == {
        "status": "error",
        "error": "unauthenticated",
        "message": "Authentication required",
    }


def test_api_namespace_never_redirects(client):
    response = client.get("/api/users/me", follow_redirects=False)

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


def test_guest_page_redirects_authenticated_user(client, register_user):
    register_user()

    for path in ("/auth/login", "/auth/register"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/profile"


def test_guest_page_forwards_client_context(client, register_user):
    register_user()

    response = client.get(
        "/auth/login",
        params={"clientId": "c1", "redirectUrl": "https://app/cb"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == landing_url(ClientContext("c1", "https://app/cb"))


def test_login_post_when_authenticated_goes_to_landing(client, register_user):
    register_user()

    response = client.post(
        "/auth/login",
        data={"email": "alice@x.com", "password": "pw123456"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/profile"


def test_expired_cookie_is_treated_as_guest(client, settings):
    client.cookies.set(settings.SESSION_COOKIE_NAME, "stale-handle")

    assert client.get("/auth/login").status_code == 200
    assert client.get("/api/users/me").status_code == 401
