"""
NoteBuddy Client - Credential Store
====================================

What:  Holds the current identity and auth token and persists them across
       restarts.
How:   A single state holder over a KeyValueStore. The only mutation points
       are save_credential (login), touch (activity), and clear (logout or
       session expiry). The three are serialized on one asyncio.Lock, and
       touch() writes only when the credential it stamped is still current,
       so activity recorded by a late request can never bring back a session
       that clear() already removed.
Who:   SessionOrchestrator writes it; ResilientClient reads `auth_header`.
When:  Loaded at startup; written on login, after authenticated calls, and on
       logout/expiry.

Wire Format:
    The token is the literal string "Basic <identity>:<secret>", sent as the
    Authorization header. It is not RFC 7617 base64 encoding. The backend's
    decoding of this header is unknown from the client side, so the format
    is preserved as-is (see DESIGN.md).

Failure Model:
    Storage errors never propagate. A store that cannot be read means the
    session starts unauthenticated; a store that cannot be written means the
    session lives in memory only.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from notebuddy.models.session import Credential
from notebuddy.storage import KeyValueStore

logger = logging.getLogger(__name__)

IDENTITY_KEY = "identity"
TOKEN_KEY = "credentials"
ISSUED_AT_KEY = "issued_at"
LAST_ACTIVITY_KEY = "last_activity"
ALL_KEYS = (IDENTITY_KEY, TOKEN_KEY, ISSUED_AT_KEY, LAST_ACTIVITY_KEY)


def derive_token(identity: str, secret: str) -> str:
    """Build the Authorization header value for an identity/secret pair."""
    return f"Basic {identity}:{secret}"


def _parse_timestamp(raw: Optional[str], fallback: datetime) -> datetime:
    if not raw:
        return fallback
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return fallback


class CredentialStore:
    """
    Process-wide credential holder.

    Attributes:
        current: The active Credential, or None when unauthenticated
    """

    def __init__(self, storage: KeyValueStore):
        self._storage = storage
        self._current: Optional[Credential] = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[Credential]:
        return self._current

    @property
    def is_authenticated(self) -> bool:
        return self._current is not None and bool(self._current.token)

    @property
    def identity(self) -> Optional[str]:
        return self._current.identity if self._current else None

    @property
    def auth_header(self) -> Optional[str]:
        """Authorization header value, or None when unauthenticated."""
        return self._current.token if self.is_authenticated else None

    async def save_credential(self, identity: str, secret: str) -> Credential:
        """
        Persist identity + derived token and mark the session authenticated.

        The in-memory credential is set first, so a storage failure leaves a
        working (non-persistent) session.
        """
        now = datetime.now(timezone.utc)
        credential = Credential(
            identity=identity,
            token=derive_token(identity, secret),
            issued_at=now,
            last_activity=now,
        )
        self._current = credential
        async with self._lock:
            if self._current is not credential:
                return credential
            try:
                await self._storage.set_many({
                    IDENTITY_KEY: credential.identity,
                    TOKEN_KEY: credential.token,
                    ISSUED_AT_KEY: credential.issued_at.isoformat(),
                    LAST_ACTIVITY_KEY: credential.last_activity.isoformat(),
                })
                logger.info("Credential saved for %s", identity)
            except (OSError, ValueError) as e:
                logger.warning("Could not persist credential for %s: %s", identity, str(e))
        return credential

    async def load_credential(self) -> Optional[Credential]:
        """
        Restore a persisted credential.

        Returns:
            The restored Credential, or None when nothing usable is stored.
        """
        try:
            identity = await self._storage.get(IDENTITY_KEY)
            token = await self._storage.get(TOKEN_KEY)
            issued_raw = await self._storage.get(ISSUED_AT_KEY)
            activity_raw = await self._storage.get(LAST_ACTIVITY_KEY)
        except (OSError, ValueError) as e:
            logger.warning("Credential storage unavailable, starting unauthenticated: %s", str(e))
            self._current = None
            return None

        if not identity or not token:
            self._current = None
            return None

        now = datetime.now(timezone.utc)
        issued_at = _parse_timestamp(issued_raw, now)
        self._current = Credential(
            identity=identity,
            token=token,
            issued_at=issued_at,
            last_activity=_parse_timestamp(activity_raw, issued_at),
        )
        logger.info("Restored session for %s", identity)
        return self._current

    async def touch(self) -> None:
        """Record activity on the current session."""
        credential = self._current
        if credential is None:
            return
        credential.last_activity = datetime.now(timezone.utc)
        async with self._lock:
            # Logged out or replaced while waiting: nothing to record
            if self._current is not credential:
                return
            try:
                await self._storage.set_many({
                    LAST_ACTIVITY_KEY: credential.last_activity.isoformat(),
                })
            except (OSError, ValueError) as e:
                logger.debug("Could not persist last activity: %s", str(e))

    async def clear(self) -> None:
        """Remove all persisted session material. Idempotent."""
        identity = self.identity
        self._current = None
        async with self._lock:
            try:
                await self._storage.delete_many(ALL_KEYS)
            except (OSError, ValueError) as e:
                logger.warning("Could not remove persisted credential: %s", str(e))
        if identity:
            logger.info("Credential cleared for %s", identity)
