"""
Identity Provider Tests

Google ID-token verification against a mocked JWKS, Facebook Graph profile
reading, and the provider factory. HTTP is served by ``httpx.MockTransport``.
"""

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from app.auth.providers import (
    FacebookProvider,
    GoogleProvider,
    build_provider,
    parse_provider,
)
from app.config import FederationConfig, ProviderCredentials
from app.errors import AuthFailed, ProviderNotConfigured, UnknownProvider
from app.identity import Provider

GOOGLE_CLIENT_ID = "google-client-id"
TEST_KID = "test-key-id-2024"


# Test RSA key pair generation for mocking JWKS
TEST_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def create_mock_jwks(kid: str = TEST_KID) -> dict:
    key = RSAAlgorithm.to_jwk(TEST_PRIVATE_KEY.public_key(), as_dict=True)
    key.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return {"keys": [key]}


def create_id_token(
    sub: str = "g-123",
    email: str = "bob@gmail.com",
    email_verified: bool = True,
    aud: str = GOOGLE_CLIENT_ID,
    iss: str = "https://accounts.google.com",
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": iss,
        "sub": sub,
        "aud": aud,
        "iat": now,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "email": email,
        "email_verified": email_verified,
        "name": "Bob Builder",
        "picture": "https://img/bob.png",
    }
    return jwt.encode(payload, TEST_PRIVATE_KEY, algorithm="RS256", headers={"kid": kid})


def google_transport(id_token: str, jwks: dict = None, calls: list = None) -> httpx.MockTransport:
    jwks = jwks or create_mock_jwks()

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        if request.url.host == "oauth2.googleapis.com":
            form = parse_qs(request.content.decode())
            if form.get("code") != ["good-code"]:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad code"})
            return httpx.Response(200, json={"access_token": "at", "id_token": id_token})
        if request.url.host == "www.googleapis.com":
            return httpx.Response(200, json=jwks)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def google(transport: httpx.MockTransport) -> GoogleProvider:
    return GoogleProvider(
        ProviderCredentials(client_id=GOOGLE_CLIENT_ID, client_secret="google-secret"),
        redirect_uri="http://testserver/auth/google/callback",
        http_client_factory=lambda: httpx.AsyncClient(transport=transport),
    )


# ============================================================================
# Google
# ============================================================================

class TestGoogleProvider:
    """Test suite for Google OpenID Connect exchange"""

    def test_authorization_request(self):
        provider = google(google_transport("unused"))
        request = provider.build_authorization_request("state-value")
        query = parse_qs(urlsplit(request.url).query)

        assert request.url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert query["client_id"] == [GOOGLE_CLIENT_ID]
        assert query["scope"] == ["openid email profile"]
        assert query["state"] == ["state-value"]
        assert request.state == "state-value"

    @pytest.mark.asyncio
    async def test_successful_exchange(self):
        provider = google(google_transport(create_id_token()))
        profile = await provider.exchange_callback("good-code")

        assert profile.provider is Provider.GOOGLE
        assert profile.provider_user_id == "g-123"
        assert profile.email == "bob@gmail.com"
        assert profile.display_name == "Bob Builder"
        assert profile.avatar_url == "https://img/bob.png"

    @pytest.mark.asyncio
    async def test_unverified_email_is_dropped(self):
        provider = google(google_transport(create_id_token(email_verified=False)))
        profile = await provider.exchange_callback("good-code")
        assert profile.email is None

    @pytest.mark.asyncio
    async def test_rejected_code(self):
        provider = google(google_transport(create_id_token()))
        with pytest.raises(AuthFailed) as exc_info:
            await provider.exchange_callback("bad-code")
        assert exc_info.value.message == "Bad code"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token_kwargs", [
        {"aud": "someone-else"},
        {"iss": "https://evil.example.com"},
        {"exp_delta_minutes": -30},
        {"kid": "unknown-kid"},
    ])
    async def test_invalid_id_tokens(self, token_kwargs):
        provider = google(google_transport(create_id_token(**token_kwargs)))
        with pytest.raises(AuthFailed):
            await provider.exchange_callback("good-code")

    @pytest.mark.asyncio
    async def test_token_signed_by_other_key(self):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        now = datetime.now(timezone.utc)
        forged = jwt.encode(
            {"iss": "https://accounts.google.com", "sub": "g-1", "aud": GOOGLE_CLIENT_ID,
             "iat": now, "exp": now + timedelta(minutes=5), "email": "bob@gmail.com"},
            other_key,
            algorithm="RS256",
            headers={"kid": TEST_KID},
        )
        with pytest.raises(AuthFailed):
            await google(google_transport(forged)).exchange_callback("good-code")

    @pytest.mark.asyncio
    async def test_jwks_is_cached(self):
        calls = []
        provider = google(google_transport(create_id_token(), calls=calls))

        await provider.exchange_callback("good-code")
        await provider.exchange_callback("good-code")

        assert calls.count("/oauth2/v3/certs") == 1

    @pytest.mark.asyncio
    async def test_unreachable_provider(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AuthFailed):
            await google(httpx.MockTransport(handler)).exchange_callback("good-code")

    @pytest.mark.asyncio
    async def test_missing_code(self):
        with pytest.raises(AuthFailed):
            await google(google_transport("unused")).exchange_callback("")


# ============================================================================
# Facebook
# ============================================================================

def facebook_transport(profile: dict) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/access_token"):
            if request.url.params.get("code") != "good-code":
                return httpx.Response(400, json={"error": {"message": "Invalid verification code"}})
            return httpx.Response(200, json={"access_token": "fb-token"})
        if request.url.path.endswith("/me"):
            assert request.url.params.get("access_token") == "fb-token"
            return httpx.Response(200, content=json.dumps(profile))
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def facebook(transport: httpx.MockTransport) -> FacebookProvider:
    return FacebookProvider(
        ProviderCredentials(client_id="fb-app-id", client_secret="fb-secret"),
        redirect_uri="http://testserver/auth/facebook/callback",
        http_client_factory=lambda: httpx.AsyncClient(transport=transport),
    )


class TestFacebookProvider:
    """Test suite for Facebook OAuth2 + Graph exchange"""

    def test_authorization_request_scopes(self):
        request = facebook(facebook_transport({})).build_authorization_request("s")
        query = parse_qs(urlsplit(request.url).query)

        assert "facebook.com" in request.url
        assert query["scope"] == ["email,public_profile"]

    @pytest.mark.asyncio
    async def test_successful_exchange(self):
        transport = facebook_transport({
            "id": "fb-42",
            "name": "Bob",
            "email": "bob@fb.com",
            "picture": {"data": {"url": "https://img/fb.png"}},
        })
        profile = await facebook(transport).exchange_callback("good-code")

        assert profile.provider is Provider.FACEBOOK
        assert profile.provider_user_id == "fb-42"
        assert profile.email == "bob@fb.com"
        assert profile.avatar_url == "https://img/fb.png"

    @pytest.mark.asyncio
    async def test_rejected_code(self):
        with pytest.raises(AuthFailed) as exc_info:
            await facebook(facebook_transport({})).exchange_callback("bad-code")
        assert exc_info.value.message == "Invalid verification code"

    @pytest.mark.asyncio
    async def test_profile_without_id(self):
        with pytest.raises(AuthFailed):
            await facebook(facebook_transport({"name": "Nobody"})).exchange_callback("good-code")


# ============================================================================
# Factory
# ============================================================================

def test_build_provider_matches_tag():
    federation = FederationConfig(google=ProviderCredentials("gid", "gsecret"))
    provider = build_provider(Provider.GOOGLE, federation, lambda p: f"https://broker/auth/{p}/callback")

    assert isinstance(provider, GoogleProvider)
    assert provider.redirect_uri == "https://broker/auth/google/callback"


def test_build_provider_not_configured():
    with pytest.raises(ProviderNotConfigured) as exc_info:
        build_provider(Provider.FACEBOOK, FederationConfig(), lambda p: p)
    assert exc_info.value.status_code == 503


def test_build_provider_refuses_local():
    with pytest.raises(UnknownProvider):
        build_provider(Provider.LOCAL, FederationConfig(), lambda p: p)


@pytest.mark.parametrize("name,expected", [("google", Provider.GOOGLE), ("Facebook", Provider.FACEBOOK)])
def test_parse_provider(name, expected):
    assert parse_provider(name) is expected


@pytest.mark.parametrize("name", ["local", "twitter", ""])
def test_parse_provider_unknown(name):
    with pytest.raises(UnknownProvider):
        parse_provider(name)
