"""
Federation state round trip.

The ``state`` parameter is the only thing that survives the trip out to an
identity provider and back, so everything needed to resume the flow (target
client, redirect URL, nonce) is packed into it.

Two encodings:

- signed (default): an HMAC-signed JWT with its own audience and a short
  expiry, so a forged or replayed-late callback is rejected;
- plain: base64url JSON, for deployments that opt out of signing.
"""

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError

from app.errors import StateInvalid

logger = logging.getLogger("broker.federation")

STATE_AUDIENCE = "federation-state"


@dataclass(frozen=True)
class PendingState:
    """Caller intent carried across the provider redirect."""
    target_client_id: Optional[str] = None
    target_redirect_url: Optional[str] = None
    nonce: str = field(default_factory=lambda: secrets.token_urlsafe(16))

    @property
    def has_client_context(self) -> bool:
        return bool(self.target_client_id and self.target_redirect_url)


class StateCodec:
    """Serializes ``PendingState`` into an opaque string and back."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        signed: bool = True,
        ttl: timedelta = timedelta(minutes=10),
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._signed = signed
        self._ttl = ttl

    def encode(self, pending: PendingState) -> str:
        payload = {
            "cid": pending.target_client_id,
            "ru": pending.target_redirect_url,
            "nonce": pending.nonce,
        }
        if not self._signed:
            raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
            return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

        now = datetime.now(timezone.utc)
        payload.update({"aud": STATE_AUDIENCE, "iat": now, "exp": now + self._ttl})
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, raw_state: Optional[str]) -> PendingState:
        """
        Rebuild the pending state from what the provider echoed back.

        Raises:
            StateInvalid: If the state is missing, malformed, tampered with
                or expired
        """
        if not raw_state:
            raise StateInvalid("Missing state parameter")

        if self._signed:
            try:
                payload = jwt.decode(
                    raw_state,
                    self._secret,
                    algorithms=[self._algorithm],
                    audience=STATE_AUDIENCE,
                    options={"require": ["exp", "aud", "nonce"]},
                )
            except InvalidTokenError as e:
                logger.warning(f"Rejected federation state: {e}")
                raise StateInvalid() from e
        else:
            try:
                padded = raw_state + "=" * (-len(raw_state) % 4)
                payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
            except (ValueError, binascii.Error, UnicodeError) as e:
                logger.warning(f"Unparsable federation state: {e}")
                raise StateInvalid() from e
            if not isinstance(payload, dict) or not payload.get("nonce"):
                raise StateInvalid()

        return PendingState(
            target_client_id=_opt_str(payload.get("cid")),
            target_redirect_url=_opt_str(payload.get("ru")),
            nonce=str(payload["nonce"]),
        )


def _opt_str(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None
