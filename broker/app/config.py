"""
Configuration module for the Identity Broker.

This module uses Pydantic Settings to load and validate environment variables
for token signing, browser sessions, federated identity providers, client
seeding and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Provider Configuration
# =============================================================================

@dataclass(frozen=True)
class ProviderCredentials:
    """OAuth credentials for one external identity provider."""
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class FederationConfig:
    """
    Startup-time view of which federated providers are usable.

    A provider is present only when both halves of its credentials are set.
    """
    google: Optional[ProviderCredentials] = None
    facebook: Optional[ProviderCredentials] = None

    @property
    def enabled(self) -> List[str]:
        names = []
        if self.google:
            names.append("google")
        if self.facebook:
            names.append("facebook")
        return names


def _credentials(client_id: Optional[str], secret: Optional[str]) -> Optional[ProviderCredentials]:
    if client_id and secret:
        return ProviderCredentials(client_id=client_id, client_secret=secret)
    return None


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for token issuance, sessions, federated providers,
    and security policies are defined here.
    """

    # =========================================================================
    # Public Service Configuration
    # =========================================================================

    APP_URL: str = Field(
        default="http://localhost:8080",
        description="Public base URL of the broker (used to build provider callback URLs)",
        min_length=1,
    )

    BROKER_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the broker server",
    )

    BROKER_PORT: int = Field(
        default=8080,
        description="Port to bind the broker server",
        ge=1,
        le=65535,
    )

    # =========================================================================
    # Token Configuration
    # =========================================================================

    TOKEN_SECRET: str = Field(
        ...,
        description="Process-wide secret for signing client tokens and federation state",
        min_length=32,
    )

    TOKEN_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384, or HS512)",
    )

    TOKEN_EXPIRY_MINUTES: int = Field(
        default=60,
        description="Lifetime of issued client tokens in minutes",
        ge=1,
        le=1440,
    )

    TOKEN_ISSUER: str = Field(
        default="identity-broker",
        description="Issuer claim embedded in every token",
    )

    # =========================================================================
    # Browser Session Configuration
    # =========================================================================

    SESSION_TTL_MINUTES: int = Field(
        default=1440,
        description="Session lifetime in minutes",
        ge=1,
    )

    SESSION_SLIDING: bool = Field(
        default=False,
        description="Extend a session's expiry every time it is resolved",
    )

    SESSION_COOKIE_NAME: str = Field(
        default="broker_session",
        description="Name of the cookie carrying the session handle",
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=True,
        description="Only send the session cookie over HTTPS",
    )

    # =========================================================================
    # Federated Providers
    # =========================================================================

    GOOGLE_CLIENT_ID: Optional[str] = Field(None, description="Google OAuth client ID")
    GOOGLE_CLIENT_SECRET: Optional[str] = Field(None, description="Google OAuth client secret")
    FACEBOOK_APP_ID: Optional[str] = Field(None, description="Facebook app ID")
    FACEBOOK_APP_SECRET: Optional[str] = Field(None, description="Facebook app secret")

    FEDERATION_STATE_SIGNED: bool = Field(
        default=True,
        description="Sign and expire the state value carried through the provider round trip",
    )

    FEDERATION_STATE_TTL_SECONDS: int = Field(
        default=600,
        description="Lifetime of a signed federation state value",
        ge=30,
        le=3600,
    )

    FEDERATED_EMAIL_LINKING: str = Field(
        default="auto",
        description="'auto' links a provider identity to an existing principal with the same email; "
                    "'disabled' refuses the login instead",
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to identity providers",
        gt=0,
    )

    # =========================================================================
    # Clients & CORS
    # =========================================================================

    REGISTERED_CLIENTS: Optional[str] = Field(
        None,
        description="JSON list of clients to register at startup "
                    '(e.g. [{"name": "App", "redirect_urls": ["https://app/cb"]}])',
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def federation(self) -> FederationConfig:
        """Provider sub-configuration, one optional entry per provider."""
        return FederationConfig(
            google=_credentials(self.GOOGLE_CLIENT_ID, self.GOOGLE_CLIENT_SECRET),
            facebook=_credentials(self.FACEBOOK_APP_ID, self.FACEBOOK_APP_SECRET),
        )

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def registered_clients_list(self) -> List[Dict[str, Any]]:
        if not self.REGISTERED_CLIENTS:
            return []
        return json.loads(self.REGISTERED_CLIENTS)

    @property
    def app_url_str(self) -> str:
        return self.APP_URL.rstrip("/")

    def callback_url(self, provider: str) -> str:
        """Callback URL registered with a provider for this broker."""
        return f"{self.app_url_str}/auth/{provider}/callback"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("TOKEN_ALGORITHM")
    @classmethod
    def validate_token_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Args:
            v: JWT algorithm string

        Returns:
            Validated algorithm string

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("FEDERATED_EMAIL_LINKING")
    @classmethod
    def validate_linking_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("auto", "disabled"):
            raise ValueError(f"FEDERATED_EMAIL_LINKING must be 'auto' or 'disabled', got: {v}")
        return v

    @field_validator("REGISTERED_CLIENTS")
    @classmethod
    def validate_registered_clients(cls, v: Optional[str]) -> Optional[str]:
        """Reject seed entries that could never accept a redirect."""
        if not v:
            return v

        try:
            entries = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"REGISTERED_CLIENTS is not valid JSON: {e}") from e

        if not isinstance(entries, list):
            raise ValueError("REGISTERED_CLIENTS must be a JSON list")

        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("redirect_urls"):
                raise ValueError("Each registered client needs a non-empty 'redirect_urls' list")

        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup so operators see misconfiguration
    in the log before the first login attempt.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    if len(settings.TOKEN_SECRET) < 32:
        errors.append("TOKEN_SECRET is too short (minimum 32 characters)")

    if not settings.federation.enabled:
        warnings.append("No federated providers configured; only local login is available")

    if (settings.GOOGLE_CLIENT_ID is None) != (settings.GOOGLE_CLIENT_SECRET is None):
        warnings.append("Google login is half-configured (client id and secret must both be set)")

    if (settings.FACEBOOK_APP_ID is None) != (settings.FACEBOOK_APP_SECRET is None):
        warnings.append("Facebook login is half-configured (app id and secret must both be set)")

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is off; session cookies will be sent over plain HTTP")

    if not settings.FEDERATION_STATE_SIGNED:
        warnings.append("FEDERATION_STATE_SIGNED is off; provider callbacks carry unsigned state")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "providers": settings.federation.enabled,
        "token_expiry_minutes": settings.TOKEN_EXPIRY_MINUTES,
    }
