"""
NoteBuddy Client - Backend Health Monitor
==========================================

What:  Tracks whether the backend is up, and gates expensive calls on it.
Why:   The backend is hosted on a platform that cold-starts idle services.
       A cheap 10 s liveness probe avoids spending a full 30 s request budget
       on a call that is bound to fail.
How:   `check_health()` probes GET /health and maps the outcome to a
       HealthStatus. `wait_for_ready()` repeats the probe with a fixed
       interval using tenacity. `start()` keeps the status fresh with a
       rescheduling background task.
Who:   ResilientClient (gate before each call) and SessionOrchestrator
       (gate before login/register).

Status Mapping:
    2xx + {"status": "healthy"}   → READY
    2xx + any other status        → STARTING (backend reports degraded)
    non-2xx / bad JSON / timeout  → STARTING
    transport error               → STARTING
"""

import logging
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from notebuddy.config import Settings, settings as default_settings
from notebuddy.models.session import HealthStatus
from notebuddy.scheduling import ScheduledTask, Scheduler, cancel_task
from notebuddy.schemas.note import HealthResponse

logger = logging.getLogger(__name__)


def _not_ready(result: HealthStatus) -> bool:
    return result is not HealthStatus.READY


class HealthMonitor:
    """
    Sole owner of the process-wide HealthStatus.

    Concurrency:
        Overlapping probes (e.g. the background refresh racing a gated call)
        each write their own result; the last one to finish wins. Every write
        is a complete HealthStatus value, so the status is never corrupted.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        scheduler: Scheduler,
        settings: Optional[Settings] = None,
    ):
        self._http = http
        self._scheduler = scheduler
        self._settings = settings or default_settings
        self._status = HealthStatus.UNKNOWN
        self._refresh_task: Optional[ScheduledTask] = None

    @property
    def status(self) -> HealthStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status is HealthStatus.READY

    async def check_health(self) -> HealthStatus:
        """
        Probe GET /health once.

        Never raises: every failure degrades to STARTING.
        """
        status = HealthStatus.STARTING
        try:
            response = await self._http.get(
                "/health",
                timeout=self._settings.health_timeout,
            )
            if response.is_success:
                body = HealthResponse.model_validate(response.json())
                if body.is_healthy:
                    status = HealthStatus.READY
                else:
                    logger.info("Backend is starting up (reported status=%s)", body.status)
            else:
                logger.info("Backend health check failed with HTTP %d", response.status_code)
        except httpx.TimeoutException:
            logger.info("Backend health check timed out after %.0fs", self._settings.health_timeout)
        except Exception as e:
            # Malformed body, transport error, anything else: treat as not ready
            logger.info("Backend health check error: %s", str(e) or type(e).__name__)

        if status is not self._status:
            logger.info("Backend status %s → %s", self._status.value, status.value)
        self._status = status
        return status

    async def wait_for_ready(
        self,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> bool:
        """
        Wait for the backend to report healthy.

        Args:
            max_attempts: Probes after the immediate one (default: login setting)
            interval: Seconds between probes (default: health_wait_interval)

        Returns:
            True on the first READY observation, False when every probe failed.
        """
        if self.is_ready:
            return True

        retries = self._settings.login_health_retries if max_attempts is None else max_attempts
        spacing = self._settings.health_wait_interval if interval is None else interval

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_fixed(spacing),
            retry=retry_if_result(_not_ready),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            sleep=self._scheduler.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Waiting for backend to start... Attempt %d/%d",
                        attempt.retry_state.attempt_number - 1,
                        retries,
                    )
                result = await self.check_health()
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)

        return self.is_ready

    # ── Background Refresh ────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done

    def start(self) -> None:
        """Begin periodic re-probing. Idempotent."""
        if self.running:
            return
        self._schedule_refresh()
        logger.debug(
            "Health refresh every %.0fs started", self._settings.health_refresh_interval
        )

    def stop(self) -> None:
        """Cancel periodic re-probing. Idempotent."""
        cancel_task(self._refresh_task)
        self._refresh_task = None

    def _schedule_refresh(self) -> None:
        self._refresh_task = self._scheduler.call_later(
            self._settings.health_refresh_interval, self._refresh
        )

    async def _refresh(self) -> None:
        await self.check_health()
        self._schedule_refresh()
