"""
Session credential management for HealthVault connections.

The cache holds the current session token and its shared secret. Expiry is
advisory: the service tells us when a token lapsed, and the executor then
asks the cache for exactly one refresh.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .errors import NotAuthenticatedError

logger = logging.getLogger(__name__)

# Advisory lifetime of a session token when the service does not state one
SESSION_TOKEN_LIFETIME = 4 * 60 * 60  # seconds


def redact_token(token: Optional[str]) -> str:
    """Shorten a token for safe logging."""
    if not token:
        return "<none>"
    return token[:6] + "..."


@dataclass(frozen=True)
class SessionCredential:
    """Authenticated session token plus the key used to sign requests."""
    token: str
    shared_secret: bytes
    expires_at: Optional[datetime] = None

    def remaining_seconds(self) -> Optional[float]:
        """Seconds until the advisory expiry, or None if unknown."""
        if self.expires_at is None:
            return None
        return (self.expires_at - datetime.now(timezone.utc)).total_seconds()

    def is_expired(self) -> bool:
        remaining = self.remaining_seconds()
        return remaining is not None and remaining <= 0


# Type alias for the handshake that produces a new session credential
SessionAuthenticator = Callable[[], Awaitable[SessionCredential]]


class SessionCredentialCache:
    """Holds the current session credential and single-flights refreshes."""

    def __init__(self, authenticator: SessionAuthenticator):
        self._authenticator = authenticator
        self._credential: Optional[SessionCredential] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.refresh_count = 0

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    def current(self) -> SessionCredential:
        """Get the last established credential."""
        if self._credential is None:
            raise NotAuthenticatedError("No session has been established; authenticate first")
        return self._credential

    async def refresh(self, stale: Optional[SessionCredential] = None) -> SessionCredential:
        """
        Run a new handshake and store its credential.

        Args:
            stale: The credential the caller saw rejected. If the cache has
                   already moved past it, the newer credential is returned
                   without another handshake.

        Returns:
            The freshly established credential.
        """
        if stale is not None and self._credential is not None and self._credential is not stale:
            return self._credential

        # No await between the check and the assignment, so every concurrent
        # caller joins the same task.
        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._run_handshake())
            task.add_done_callback(_retrieve_exception)
            self._refresh_task = task

        # A cancelled waiter must not cancel the handshake other callers share
        return await asyncio.shield(task)

    def cancel_refresh(self) -> None:
        """Cancel the in-flight handshake, if any. The stored credential is kept."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
        self._refresh_task = None

    async def _run_handshake(self) -> SessionCredential:
        try:
            credential = await self._authenticator()
            self._credential = credential
            self.refresh_count += 1
            logger.info(f"Session established (token {redact_token(credential.token)})")
            return credential
        except Exception as e:
            logger.error(f"Session handshake failed: {e}")
            raise
        finally:
            # A cancelled handshake may finish after a newer one was started
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None


def _retrieve_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()
