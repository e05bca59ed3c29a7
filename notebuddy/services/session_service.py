"""
NoteBuddy Client - Session Orchestrator
========================================

What:  The one authoritative owner of login, registration, logout and
       authenticated calls.
Why:   Every screen needs the same answer to "is the backend up, am I logged
       in, and what happens when the backend stops accepting my credential?".
       Keeping that policy in one place stops screens from drifting apart.
How:   Login/register gate on HealthMonitor.wait_for_ready first, so a cold
       backend is reported as `backend_starting` rather than as a wrong
       password. Authenticated calls go through the ResilientClient; a 401/403
       that survives its retries clears the CredentialStore and notifies the
       session-expired listeners (the UI routes to the login screen).
Who:   The UI layer, NoteService, TranscriptionJobController.

Outcome Matrix (login):
    backend never ready           → AuthResult(success=False, backend_starting=True)
    POST /login timed out         → AuthResult(success=False, backend_starting=True)
    POST /login transport error   → AuthResult(success=False, error="Network error...")
    POST /login non-2xx           → AuthResult(success=False, error=<backend error>)
    POST /login 2xx               → credential saved, AuthResult(success=True)
"""

import logging
from typing import Any, Callable, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from notebuddy.config import Settings, settings as default_settings
from notebuddy.exceptions import (
    BackendUnavailableError,
    NetworkError,
    SessionExpiredError,
    TimeoutExceededError,
)
from notebuddy.models.session import AuthResult
from notebuddy.schemas.note import AuthRequest, ErrorBody
from notebuddy.services.api_client import ResilientClient, is_auth_rejection
from notebuddy.services.credential_store import CredentialStore
from notebuddy.services.health_service import HealthMonitor

logger = logging.getLogger(__name__)

SessionExpiredListener = Callable[[SessionExpiredError], None]

BACKEND_STARTING_MESSAGE = "Backend is still starting up. Please try again in a moment."


def _error_text(response: httpx.Response, fallback: str) -> str:
    try:
        return ErrorBody.model_validate(response.json()).error or fallback
    except (ValueError, PydanticValidationError):
        return fallback


class SessionOrchestrator:
    """Composes HealthMonitor, CredentialStore and ResilientClient."""

    def __init__(
        self,
        client: ResilientClient,
        health: HealthMonitor,
        store: CredentialStore,
        settings: Optional[Settings] = None,
    ):
        self._client = client
        self._health = health
        self._store = store
        self._settings = settings or default_settings
        self._listeners: List[SessionExpiredListener] = []
        self.last_error: Optional[str] = None

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def is_authenticated(self) -> bool:
        return self._store.is_authenticated

    @property
    def identity(self) -> Optional[str]:
        return self._store.identity

    def add_session_expired_listener(self, listener: SessionExpiredListener) -> None:
        self._listeners.append(listener)

    # ══════════════════════════════════════════════════════════════════════
    # Authentication
    # ══════════════════════════════════════════════════════════════════════

    async def login(self, identity: str, secret: str) -> AuthResult:
        """Authenticate and persist the credential on success."""
        result = await self._authenticate("/login", identity, secret, action="Login")
        if result.success:
            await self._store.save_credential(identity, secret)
            logger.info("Logged in as %s", identity)
        return result

    async def register(self, identity: str, secret: str) -> AuthResult:
        """
        Create an account. Never stores a credential: the user logs in
        explicitly afterwards.
        """
        result = await self._authenticate("/register", identity, secret, action="Registration")
        if result.success:
            logger.info("Registered %s", identity)
        return result

    async def _authenticate(
        self, path: str, identity: str, secret: str, action: str
    ) -> AuthResult:
        self.last_error = None

        if not identity or not secret:
            return self._failed(AuthResult(success=False, error="Please enter a username and password"))

        ready = await self._health.wait_for_ready(
            max_attempts=self._settings.login_health_retries,
            interval=self._settings.health_wait_interval,
        )
        if not ready:
            logger.warning("%s for %s skipped: backend is starting", action, identity)
            return self._failed(
                AuthResult(success=False, backend_starting=True, error=BACKEND_STARTING_MESSAGE)
            )

        # A 401 here means wrong credentials, so no per-call retry
        try:
            response = await self._client.call(
                "POST",
                path,
                requires_auth=False,
                health_retries=0,
                fetch_retries=0,
                json=AuthRequest(username=identity, password=secret).model_dump(),
            )
        except (TimeoutExceededError, BackendUnavailableError) as e:
            logger.warning("%s for %s did not complete: %s", action, identity, e.message)
            return self._failed(
                AuthResult(success=False, backend_starting=True, error=BACKEND_STARTING_MESSAGE)
            )
        except NetworkError as e:
            return self._failed(AuthResult(success=False, error=e.message))

        if response.is_success:
            return AuthResult(success=True)

        message = _error_text(response, f"{action} failed")
        logger.info("%s for %s rejected with HTTP %d", action, identity, response.status_code)
        return self._failed(AuthResult(success=False, error=message))

    def _failed(self, result: AuthResult) -> AuthResult:
        self.last_error = result.error
        return result

    async def logout(self) -> None:
        await self._store.clear()
        logger.info("Logged out")

    async def restore(self) -> bool:
        """Reload a persisted session at startup."""
        return await self._store.load_credential() is not None

    # ══════════════════════════════════════════════════════════════════════
    # Authenticated Calls
    # ══════════════════════════════════════════════════════════════════════

    async def authenticated_call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Issue an authenticated call with the data-call retry policy.

        Raises:
            SessionExpiredError: no credential, or 401/403 after all retries.
                The store is cleared and listeners are notified first.
            BackendUnavailableError, TimeoutExceededError, NetworkError
        """
        kwargs.setdefault("health_retries", self._settings.call_health_retries)
        kwargs.setdefault("fetch_retries", self._settings.call_fetch_retries)
        try:
            response = await self._client.call(method, path, requires_auth=True, **kwargs)
        except SessionExpiredError as e:
            await self._expire(e)
            raise

        if is_auth_rejection(response):
            error = SessionExpiredError(
                context={"path": path, "status_code": response.status_code}
            )
            await self._expire(error)
            raise error

        await self._store.touch()
        return response

    async def _expire(self, error: SessionExpiredError) -> None:
        had_session = self._store.is_authenticated
        await self._store.clear()
        if had_session:
            logger.warning("Session expired for request to %s", error.context.get("path"))
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception as e:
                logger.error("Session-expired listener failed: %s", str(e), exc_info=True)
