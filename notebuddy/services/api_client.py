"""
NoteBuddy Client - Resilient Remote-Call Client
================================================

What:  The single path every backend request takes.
Why:   The backend cold-starts and occasionally answers 401/403 while it is
       mid-restart. Callers should see either a response or one classified
       error, never a raw httpx exception.
How:   1. Fail fast with SessionExpiredError when auth is required but absent.
       2. Gate on the HealthMonitor; an exhausted gate is BackendUnavailableError.
       3. Inject the Authorization and X-Request-ID headers.
       4. Send with tenacity: 401/403 and timeouts are retried after a fixed
          backoff, everything else returns (or raises) immediately.
Who:   SessionOrchestrator (login/register/authenticated calls), and through it
       NoteService and TranscriptionJobController.

Retry Flow (fetch_retries=2, auth_retry_delay=1s):
    attempt 1 ─401─▶ sleep 1s ─▶ attempt 2 ─401─▶ sleep 1s ─▶ attempt 3 ─200─▶ return
                                                             └─401─▶ return last 401

    Exhausted 401/403 is returned, not raised: deciding that a session is
    dead belongs to the SessionOrchestrator.

Error Translation:
    httpx.TimeoutException (every attempt)  → TimeoutExceededError
    any other httpx.RequestError             → NetworkError
    health gate exhausted                    → BackendUnavailableError
    no credential                            → SessionExpiredError
"""

import logging
import uuid
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from notebuddy.config import Settings, settings as default_settings
from notebuddy.exceptions import (
    ApiError,
    BackendUnavailableError,
    NetworkError,
    SessionExpiredError,
    TimeoutExceededError,
)
from notebuddy.scheduling import Scheduler
from notebuddy.schemas.note import ErrorBody
from notebuddy.services.credential_store import CredentialStore
from notebuddy.services.health_service import HealthMonitor

logger = logging.getLogger(__name__)

AUTH_REJECTED = frozenset({401, 403})


def new_request_id() -> str:
    """Short correlation id; 8 hex chars is enough to match log lines."""
    return str(uuid.uuid4())[:8]


def is_auth_rejection(response: httpx.Response) -> bool:
    return response.status_code in AUTH_REJECTED


def _return_last_outcome(retry_state: RetryCallState) -> httpx.Response:
    # Re-raises the last exception when the final attempt raised
    return retry_state.outcome.result()


def raise_for_api_error(response: httpx.Response, action: str = "Request") -> None:
    """
    Raise ApiError for a non-2xx response.

    The backend attaches `{"error": "..."}` to most failures; that text is
    preferred over the generic "<action> failed: <code>" message.
    """
    if response.is_success:
        return
    message = None
    try:
        message = ErrorBody.model_validate(response.json()).error
    except (ValueError, PydanticValidationError):
        pass
    raise ApiError(
        status_code=response.status_code,
        message=message or f"{action} failed: {response.status_code}",
        context={"path": response.request.url.path if response.request else None},
    )


class ResilientClient:
    """
    Health-gated, auth-injecting HTTP client with bounded per-call retry.

    Nothing here outlives a call: the tenacity state is local to `call()`
    and every backoff goes through `scheduler.sleep`, so cancelling the
    awaiting task cancels the backoff too.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        health: HealthMonitor,
        store: CredentialStore,
        scheduler: Scheduler,
        settings: Optional[Settings] = None,
    ):
        self._http = http
        self._health = health
        self._store = store
        self._scheduler = scheduler
        self._settings = settings or default_settings

    @property
    def health(self) -> HealthMonitor:
        return self._health

    async def call(
        self,
        method: str,
        path: str,
        *,
        requires_auth: bool = True,
        health_retries: Optional[int] = None,
        fetch_retries: Optional[int] = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """
        Send one logical request.

        Args:
            method: HTTP verb
            path: Path relative to the configured base URL
            requires_auth: Attach the stored credential (and require one)
            health_retries: Gate probes after the immediate one
            fetch_retries: Extra attempts on 401/403 or timeout
            **request_kwargs: Passed to httpx (json, files, params, headers...)

        Returns:
            The final httpx.Response (any status code).

        Raises:
            SessionExpiredError, BackendUnavailableError,
            TimeoutExceededError, NetworkError
        """
        rid = new_request_id()
        health_retries = (
            self._settings.call_health_retries if health_retries is None else health_retries
        )
        fetch_retries = (
            self._settings.call_fetch_retries if fetch_retries is None else fetch_retries
        )

        # Step 1: credential precondition (no network)
        if requires_auth and not self._store.is_authenticated:
            logger.info("[%s] %s %s rejected: no credential", rid, method, path)
            raise SessionExpiredError(context={"request_id": rid, "path": path})

        # Step 2: health gate, always resolved before the first attempt
        if not self._health.is_ready:
            logger.info("[%s] Backend not ready, gating %s %s", rid, method, path)
            ready = await self._health.wait_for_ready(max_attempts=health_retries)
            if not ready:
                logger.warning(
                    "[%s] Backend unavailable after %d probe(s)", rid, health_retries + 1
                )
                raise BackendUnavailableError(
                    attempts=health_retries + 1,
                    context={"request_id": rid, "path": path},
                )

        # Step 3: headers
        headers = dict(request_kwargs.pop("headers", None) or {})
        headers["X-Request-ID"] = rid
        if requires_auth:
            headers["Authorization"] = self._store.auth_header
        timeout = request_kwargs.pop("timeout", self._settings.request_timeout)

        # Step 4: bounded retry on 401/403 and timeouts
        def log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            reason = (
                type(outcome.exception()).__name__
                if outcome.failed
                else f"HTTP {outcome.result().status_code}"
            )
            logger.warning(
                "[%s] %s %s attempt %d/%d got %s, retrying in %.1fs",
                rid,
                method,
                path,
                retry_state.attempt_number,
                fetch_retries + 1,
                reason,
                retry_state.next_action.sleep,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(fetch_retries + 1),
            wait=wait_fixed(self._settings.auth_retry_delay),
            retry=(
                retry_if_result(is_auth_rejection)
                | retry_if_exception_type(httpx.TimeoutException)
            ),
            before_sleep=log_retry,
            retry_error_callback=_return_last_outcome,
            sleep=self._scheduler.sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._http.request(
                        method, path, headers=headers, timeout=timeout, **request_kwargs
                    )
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(response)
        except httpx.TimeoutException as e:
            logger.error(
                "[%s] %s %s timed out on all %d attempt(s)", rid, method, path, fetch_retries + 1
            )
            raise TimeoutExceededError(
                timeout=timeout if isinstance(timeout, (int, float)) else None,
                context={"request_id": rid, "path": path},
            ) from e
        except httpx.RequestError as e:
            # Transport failures, undecodable bodies, redirect loops
            logger.error("[%s] %s %s network error: %s", rid, method, path, str(e))
            raise NetworkError(context={"request_id": rid, "path": path}) from e

        if is_auth_rejection(response):
            logger.error(
                "[%s] %s %s still rejected with HTTP %d after %d attempt(s)",
                rid,
                method,
                path,
                response.status_code,
                fetch_retries + 1,
            )
        else:
            logger.debug("[%s] %s %s → %d", rid, method, path, response.status_code)
        return response
