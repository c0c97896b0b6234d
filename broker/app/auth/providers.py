"""
External identity providers.

Each provider knows two things: how to build the URL that sends a browser to
its consent screen, and how to turn the code it calls back with into a
``ProviderProfile``. Providers form a closed set (``Provider``); ``build_provider``
matches on the tag and refuses any provider whose credentials are not configured.

Google is OpenID Connect: the code is exchanged for an ID token whose
signature is checked against Google's JWKS (cached). Facebook is plain OAuth2:
the code is exchanged for an access token and the profile read from the Graph API.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from jose import jwk, jwt
from jose.exceptions import JOSEError

from app.config import FederationConfig, ProviderCredentials
from app.errors import AuthFailed, ProviderNotConfigured, UnknownProvider
from app.identity import Provider

logger = logging.getLogger("broker.federation")

HttpClientFactory = Callable[[], httpx.AsyncClient]


@dataclass(frozen=True)
class ProviderProfile:
    """What a provider tells us about the user after a successful login."""
    provider: Provider
    provider_user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything needed to send the browser to the provider."""
    provider: Provider
    url: str
    params: Dict[str, str]

    @property
    def state(self) -> str:
        return self.params["state"]


class FederatedProvider(ABC):
    """
    Base class for OAuth2 providers.

    Args:
        credentials: Client id and secret registered with the provider
        redirect_uri: This broker's callback URL for the provider
        timeout: Seconds to wait for provider HTTP calls
        http_client_factory: Builds the ``httpx.AsyncClient`` used for calls
    """

    provider: Provider
    authorize_url: str
    scopes: List[str]
    scope_separator = " "

    def __init__(
        self,
        credentials: ProviderCredentials,
        redirect_uri: str,
        timeout: float = 10.0,
        http_client_factory: Optional[HttpClientFactory] = None,
    ):
        self.credentials = credentials
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._http_client_factory = http_client_factory or (lambda: httpx.AsyncClient(timeout=timeout))

    def build_authorization_request(self, state: str) -> AuthorizationRequest:
        params = {
            "client_id": self.credentials.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }
        return AuthorizationRequest(
            provider=self.provider,
            url=f"{self.authorize_url}?{urlencode(params)}",
            params=params,
        )

    async def exchange_callback(self, code: str) -> ProviderProfile:
        """
        Exchange the callback code for the user's profile.

        Raises:
            AuthFailed: If the provider rejects the code or returns an
                unusable profile
        """
        if not code:
            raise AuthFailed("Missing authorization code")
        try:
            async with self._http_client_factory() as client:
                return await self._exchange(client, code)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"{self.provider.value} exchange failed: {e}",
                extra={"provider": self.provider.value}
            )
            raise AuthFailed("Unable to communicate with the identity provider") from e

    @abstractmethod
    async def _exchange(self, client: httpx.AsyncClient, code: str) -> ProviderProfile:
        ...


# =============================================================================
# Google (OpenID Connect)
# =============================================================================

GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")


class GoogleProvider(FederatedProvider):
    provider = Provider.GOOGLE
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    jwks_url = "https://www.googleapis.com/oauth2/v3/certs"
    scopes = ["openid", "email", "profile"]

    jwks_cache_seconds = 3600

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._jwks_cache: Optional[Dict[str, Any]] = None
        self._jwks_cache_time: float = 0.0

    async def _exchange(self, client: httpx.AsyncClient, code: str) -> ProviderProfile:
        response = await client.post(
            self.token_url,
            data={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not response.is_success:
            raise AuthFailed(_provider_error(response, "Token exchange failed"))

        id_token = response.json().get("id_token")
        if not id_token:
            raise AuthFailed("No ID token received from identity provider")

        claims = await self.verify_id_token(client, id_token)
        return ProviderProfile(
            provider=self.provider,
            provider_user_id=str(claims["sub"]),
            email=claims.get("email") if claims.get("email_verified", True) else None,
            display_name=claims.get("name") or claims.get("given_name"),
            avatar_url=claims.get("picture"),
        )

    async def fetch_jwks(self, client: httpx.AsyncClient, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch Google's signing keys, cached for ``jwks_cache_seconds``.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable
            AuthFailed: If the response has no keys
        """
        now = time.time()
        if not force_refresh and self._jwks_cache and (now - self._jwks_cache_time) < self.jwks_cache_seconds:
            return self._jwks_cache

        response = await client.get(self.jwks_url)
        response.raise_for_status()
        jwks_data = response.json()
        if "keys" not in jwks_data:
            raise AuthFailed("Invalid JWKS response from identity provider")

        self._jwks_cache = jwks_data
        self._jwks_cache_time = now
        return jwks_data

    async def verify_id_token(self, client: httpx.AsyncClient, id_token: str) -> Dict[str, Any]:
        """
        Verify an ID token's signature, audience, expiry and issuer.

        Raises:
            AuthFailed: If any check fails
        """
        try:
            kid = jwt.get_unverified_header(id_token).get("kid")
        except JOSEError as e:
            raise AuthFailed("Malformed ID token") from e

        signing_key = _find_key(await self.fetch_jwks(client), kid)
        if signing_key is None:
            # Keys may have rotated since the cache was filled.
            signing_key = _find_key(await self.fetch_jwks(client, force_refresh=True), kid)
        if signing_key is None:
            raise AuthFailed("Unable to find matching signing key for ID token")

        try:
            public_key = jwk.construct(signing_key, algorithm=signing_key.get("alg", "RS256"))
            claims = jwt.decode(
                id_token,
                public_key.to_pem().decode("utf-8"),
                algorithms=["RS256"],
                audience=self.credentials.client_id,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_exp": True,
                    "verify_at_hash": False,
                    "leeway": 10,
                },
            )
        except JOSEError as e:
            logger.warning(f"ID token verification failed: {e}", extra={"provider": "google"})
            raise AuthFailed("Unable to verify identity token") from e

        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise AuthFailed("ID token was not issued by Google")
        if not claims.get("sub"):
            raise AuthFailed("ID token has no subject")
        return claims


# =============================================================================
# Facebook (OAuth2 + Graph API)
# =============================================================================

class FacebookProvider(FederatedProvider):
    provider = Provider.FACEBOOK
    graph_version = "v19.0"
    authorize_url = f"https://www.facebook.com/{graph_version}/dialog/oauth"
    token_url = f"https://graph.facebook.com/{graph_version}/oauth/access_token"
    profile_url = f"https://graph.facebook.com/{graph_version}/me"
    scopes = ["email", "public_profile"]
    scope_separator = ","

    async def _exchange(self, client: httpx.AsyncClient, code: str) -> ProviderProfile:
        response = await client.get(
            self.token_url,
            params={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )
        if not response.is_success:
            raise AuthFailed(_provider_error(response, "Token exchange failed"))

        access_token = response.json().get("access_token")
        if not access_token:
            raise AuthFailed("No access token received from identity provider")

        response = await client.get(
            self.profile_url,
            params={"fields": "id,name,email,picture", "access_token": access_token},
        )
        response.raise_for_status()
        profile = response.json()
        if not profile.get("id"):
            raise AuthFailed("Identity provider returned no user id")

        picture = ((profile.get("picture") or {}).get("data") or {}).get("url")
        return ProviderProfile(
            provider=self.provider,
            provider_user_id=str(profile["id"]),
            email=profile.get("email"),
            display_name=profile.get("name"),
            avatar_url=picture,
        )


# =============================================================================
# Factory
# =============================================================================

def build_provider(
    provider: Provider,
    federation: FederationConfig,
    callback_url: Callable[[str], str],
    timeout: float = 10.0,
    http_client_factory: Optional[HttpClientFactory] = None,
) -> FederatedProvider:
    """
    Build the client for a federated provider.

    Raises:
        ProviderNotConfigured: If the provider's credentials are absent
        UnknownProvider: For ``Provider.LOCAL``, which has no redirect leg
    """
    if provider is Provider.GOOGLE:
        credentials, cls = federation.google, GoogleProvider
    elif provider is Provider.FACEBOOK:
        credentials, cls = federation.facebook, FacebookProvider
    else:
        raise UnknownProvider()

    if credentials is None:
        logger.error(
            f"{provider.value} login requested but not configured",
            extra={"provider": provider.value}
        )
        raise ProviderNotConfigured(provider.value)

    return cls(
        credentials,
        redirect_uri=callback_url(provider.value),
        timeout=timeout,
        http_client_factory=http_client_factory,
    )


def parse_provider(name: str) -> Provider:
    """Map a URL path segment to a federated provider."""
    try:
        provider = Provider(name.lower())
    except ValueError:
        raise UnknownProvider()
    if not provider.is_federated:
        raise UnknownProvider()
    return provider


def _find_key(jwks: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    if not kid:
        return None
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _provider_error(response: httpx.Response, fallback: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return fallback
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or fallback
    return data.get("error_description") or error or fallback
