"""
Client Token Module
===================

Mints and verifies the signed, time-bounded assertions handed to client
applications. One process-wide secret, one HMAC algorithm, strict expiry
(no leeway).

Claims::

    sub        principal id
    client_id  public id of the client the token was minted for
    username   principal username
    email      principal email
    iat / exp  issue and expiry time
    iss        broker issuer
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from app.clients import Client
from app.errors import TokenExpired, TokenInvalid
from app.identity import Principal

logger = logging.getLogger("broker.auth")


@dataclass(frozen=True)
class TokenClaims:
    principal_id: str
    client_public_id: str
    username: str
    email: str
    issued_at: datetime
    expires_at: datetime

    def as_dict(self) -> Dict[str, Any]:
        return {
            "principalId": self.principal_id,
            "clientId": self.client_public_id,
            "username": self.username,
            "email": self.email,
            "issuedAt": self.issued_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }


class TokenIssuer:
    """
    Issues client tokens.

    Args:
        secret: Signing secret shared by every broker instance
        algorithm: HS256, HS384 or HS512
        lifetime: Fixed validity window from issuance
        issuer: Value of the ``iss`` claim
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(hours=1),
        issuer: str = "identity-broker",
    ):
        if not secret:
            raise ValueError("Token secret not configured")
        self._secret = secret
        self._algorithm = algorithm
        self._lifetime = lifetime
        self._issuer = issuer

    @property
    def lifetime_seconds(self) -> int:
        return int(self._lifetime.total_seconds())

    def issue(self, principal: Principal, client: Client) -> str:
        """
        Mint a token binding a principal to a client.

        The client must already have been validated by the registry in the
        current request.

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": principal.id,
            "client_id": client.public_id,
            "username": principal.username,
            "email": principal.email,
            "iat": now,
            "exp": now + self._lifetime,
            "iss": self._issuer,
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)

        logger.info(
            "Issued client token",
            extra={"principal_id": principal.id, "client_id": client.public_id}
        )
        return token

    def verify(self, token: str) -> TokenClaims:
        """
        Verify a token and return its claims.

        Raises:
            TokenExpired: If the expiry has passed
            TokenInvalid: On a bad signature, wrong issuer, missing claims,
                or a value that is not a token at all
        """
        if not token:
            raise TokenInvalid("No token provided")

        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                leeway=0,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_iat": True,
                    "require": ["exp", "iat", "iss", "sub", "client_id", "email"],
                },
            )
        except ExpiredSignatureError:
            logger.info("Client token expired")
            raise TokenExpired()
        except InvalidTokenError as e:
            logger.warning(f"Invalid client token: {e}")
            raise TokenInvalid()

        return TokenClaims(
            principal_id=decoded["sub"],
            client_public_id=decoded["client_id"],
            username=decoded.get("username", ""),
            email=decoded["email"],
            issued_at=datetime.fromtimestamp(decoded["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(decoded["exp"], tz=timezone.utc),
        )
