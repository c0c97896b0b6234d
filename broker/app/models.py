"""
Data Models Module

Pydantic request/response models for the programmatic (JSON) surface of the
broker. Browser routes take form fields and render HTML; these models are the
JSON twins of the same flows.

Models are organized by functional area:
- Authentication models (login, registration, sign-in result)
- Principal models (current-user view)
- Client models (registration request and one-time secret response)
- Token models (verification)
- System models (health, errors)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.clients import PublicClient
from app.identity import PublicPrincipal
from app.identity.store import MIN_PASSWORD_LENGTH


class CamelModel(BaseModel):
    """Accepts both snake_case field names and their camelCase aliases."""
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Authentication Models
# ============================================================================

class ClientContextFields(CamelModel):
    client_id: Optional[str] = Field(None, alias="clientId", description="Public id of the requesting client")
    redirect_url: Optional[str] = Field(None, alias="redirectUrl", description="Exact registered redirect URL")


class LoginRequest(ClientContextFields):
    """Local credential login, optionally on behalf of a client."""
    email: str = Field(..., description="Account email", min_length=1)
    password: str = Field(..., description="Account password", min_length=1)


class RegisterRequest(ClientContextFields):
    """Create a password-based account, optionally on behalf of a client."""
    username: str = Field(..., description="Unique username", min_length=1, max_length=64)
    email: EmailStr = Field(..., description="Unique email address")
    password: str = Field(..., description="Password", min_length=MIN_PASSWORD_LENGTH)


class PrincipalOut(CamelModel):
    """Public fields of a principal. Never carries the credential hash."""
    id: str
    username: str
    email: str
    display_image_url: Optional[str] = Field(None, alias="displayImageUrl")
    providers: List[str] = Field(default_factory=list)
    has_password: bool = Field(..., alias="hasPassword")
    created_at: datetime = Field(..., alias="createdAt")

    @classmethod
    def from_public(cls, principal: PublicPrincipal) -> "PrincipalOut":
        return cls(
            id=principal.id,
            username=principal.username,
            email=principal.email,
            display_image_url=principal.display_image_url,
            providers=list(principal.providers),
            has_password=principal.has_password,
            created_at=principal.created_at,
        )


class SignInResponse(CamelModel):
    """Result of a programmatic login or registration."""
    status: str = Field(default="success")
    user: PrincipalOut
    token: Optional[str] = Field(None, description="Client token, present only with a validated client context")
    redirect_url: Optional[str] = Field(None, alias="redirectUrl", description="Redirect URL carrying the token")
    expires_in: Optional[int] = Field(None, alias="expiresIn", description="Token lifetime in seconds")


class AuthorizationUrlResponse(CamelModel):
    provider: str
    authorization_url: str = Field(..., alias="authorizationUrl")


class StatusResponse(BaseModel):
    status: str = Field(default="success")
    message: Optional[str] = None


# ============================================================================
# Client Models
# ============================================================================

class ClientCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=128)
    redirect_urls: List[str] = Field(..., alias="redirectUrls", min_length=1)
    allowed_origins: List[str] = Field(default_factory=list, alias="allowedOrigins")


class ClientCreateResponse(CamelModel):
    """Returned once at registration. The secret is never shown again."""
    client_id: str = Field(..., alias="clientId")
    client_secret: str = Field(..., alias="clientSecret")
    name: str
    redirect_urls: List[str] = Field(..., alias="redirectUrls")
    allowed_origins: List[str] = Field(..., alias="allowedOrigins")
    created_at: datetime = Field(..., alias="createdAt")

    @classmethod
    def from_public(cls, client: PublicClient, secret: str) -> "ClientCreateResponse":
        return cls(
            client_id=client.public_id,
            client_secret=secret,
            name=client.name,
            redirect_urls=list(client.redirect_urls),
            allowed_origins=list(client.allowed_origins),
            created_at=client.created_at,
        )


# ============================================================================
# Token Models
# ============================================================================

class TokenVerifyRequest(BaseModel):
    token: str = Field(..., description="Client token to verify")


class TokenVerifyResponse(BaseModel):
    valid: bool = True
    claims: Dict[str, Any]


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp")
    providers: List[str] = Field(default_factory=list, description="Configured federated providers")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    status: str = Field(default="error")
    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
