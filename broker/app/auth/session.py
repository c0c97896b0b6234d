"""
Browser Session Management Module
=================================

Maps an opaque, unguessable session handle to an authenticated principal.

Lifecycle per handle::

    Active --(expiry elapsed | logout)--> Terminated

Terminated is final: a fresh login always allocates a new handle. Expired
handles resolve exactly like unknown ones (guest) and are removed on sight.
All mutations of a handle happen under one asyncio lock, so a concurrent
resolve and destroy cannot lose an update.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from app.identity import Principal
from app.auth.state import PendingState

logger = logging.getLogger("broker.sessions")


@dataclass
class Session:
    handle: str
    principal_id: str
    created_at: datetime
    expires_at: datetime
    pending_federation: Optional[PendingState] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class SessionResolution:
    """Outcome of resolving a handle. ``principal_id`` is None for guests."""
    principal_id: Optional[str] = None
    handle: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.principal_id is not None


GUEST = SessionResolution()


class SessionManager:
    """
    In-memory session store with TTL.

    Args:
        ttl: Session lifetime
        sliding: Push the expiry forward each time the session is resolved
    """

    def __init__(self, ttl: timedelta = timedelta(hours=24), sliding: bool = False):
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._ttl = ttl
        self._sliding = sliding

    async def create(self, principal: Principal) -> str:
        """
        Start a session for a principal.

        Returns:
            A new handle (never a reused one)
        """
        now = datetime.now(timezone.utc)
        async with self._lock:
            handle = secrets.token_urlsafe(32)
            while handle in self._sessions:
                handle = secrets.token_urlsafe(32)
            self._sessions[handle] = Session(
                handle=handle,
                principal_id=principal.id,
                created_at=now,
                expires_at=now + self._ttl,
            )

        logger.info(
            "Session created",
            extra={"principal_id": principal.id, "total_sessions": len(self._sessions)}
        )
        return handle

    async def resolve(self, handle: Optional[str]) -> SessionResolution:
        """
        Resolve a handle to the principal it belongs to.

        Unknown, terminated and expired handles all resolve to ``GUEST``.
        """
        if not handle:
            return GUEST

        async with self._lock:
            session = self._live(handle)
            if session is None:
                return GUEST
            if self._sliding:
                session.expires_at = datetime.now(timezone.utc) + self._ttl
            return SessionResolution(principal_id=session.principal_id, handle=handle)

    async def destroy(self, handle: Optional[str]) -> bool:
        """Terminate a session. Returns True if a live session was removed."""
        if not handle:
            return False

        async with self._lock:
            session = self._sessions.pop(handle, None)

        if session is None:
            return False
        logger.info("Session destroyed", extra={"principal_id": session.principal_id})
        return True

    async def attach_pending(self, handle: Optional[str], pending: PendingState) -> bool:
        """Remember an in-flight federated login on a live session."""
        if not handle:
            return False
        async with self._lock:
            session = self._live(handle)
            if session is None:
                return False
            session.pending_federation = pending
            return True

    async def take_pending(self, handle: Optional[str]) -> Optional[PendingState]:
        """Remove and return the in-flight federated login, if any."""
        if not handle:
            return None
        async with self._lock:
            session = self._live(handle)
            if session is None:
                return None
            pending, session.pending_federation = session.pending_federation, None
            return pending

    async def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        async with self._lock:
            expired = [h for h, s in self._sessions.items() if s.is_expired(now)]
            for handle in expired:
                del self._sessions[handle]
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def _live(self, handle: str) -> Optional[Session]:
        # Lock must be held.
        session = self._sessions.get(handle)
        if session is None:
            return None
        if session.is_expired(datetime.now(timezone.utc)):
            del self._sessions[handle]
            logger.debug("Removed expired session", extra={"principal_id": session.principal_id})
            return None
        return session

    def __len__(self) -> int:
        return len(self._sessions)
