"""
NoteBuddy Client - Transcription Job Controller
================================================

What:  Drives one voice note from capture to transcript.
Why:   The backend transcribes asynchronously: an upload returns a job id that
       has to be polled. Every step can fail transiently, and the user can walk
       away at any point, so every timer must be owned and cancellable.
How:   An explicit state machine over WorkflowStage. Every timer (duration
       ticker, poll, polling ceiling, retry delay) is a ScheduledTask handle
       stored on the controller and cancelled on every exit transition.
       An epoch counter is bumped on reset, so a callback that was already
       running when the workflow was torn down cannot write into the new one.
Who:   The UI drives it; it talks to the backend only through the
       SessionOrchestrator.

State Machine:
    RECORDING ──stop──▶ REVIEW ──submit──▶ UPLOADING ──job id──▶ POLLING ──completed──▶ SUMMARY
        ▲                 │                  │    ▲                 │
        └────discard──────┘                  │    └─first poll err──┤
                                             ▼                      ▼
                                           FAILED ◀──────────── job failed / stalled
                                             │
                                             └──retry──▶ UPLOADING or POLLING

    reset()/close() return to RECORDING from any stage.

Retry Policy:
    One attempt = upload plus the first status check. A retryable failure in
    either schedules the whole attempt again after `workflow_retry_delay`,
    up to `workflow_max_attempts` attempts ("Attempt N/3"). Then the machine
    parks in FAILED until retry() is called, which starts a fresh cycle at 1.
    Session expiry and validation errors are never retried automatically.

Attempt Counter:
    0 while idle, 1 on submit() and on retry(), +1 per automatic retry,
    back to 0 on SUMMARY and on reset.
"""

import asyncio
import functools
import logging
from typing import Callable, Dict, FrozenSet, List, Optional

from pydantic import ValidationError as PydanticValidationError

from notebuddy.config import Settings, settings as default_settings
from notebuddy.exceptions import (
    ApiError,
    NoteBuddyError,
    PayloadTooLargeError,
    TranscriptionFailedError,
    ValidationError,
    WorkflowStateError,
)
from notebuddy.models.recording import (
    JobStatus,
    RecordingSession,
    TranscriptionJob,
    WorkflowStage,
)
from notebuddy.scheduling import ScheduledTask, Scheduler, cancel_task
from notebuddy.schemas.note import TranscriptionStatusResponse, UploadAudioResponse
from notebuddy.services.api_client import raise_for_api_error
from notebuddy.services.audio_base import AudioSource
from notebuddy.services.session_service import SessionOrchestrator

logger = logging.getLogger(__name__)

Listener = Callable[["TranscriptionJobController"], None]

# ── Transition Table ──────────────────────────────────────────────────────
# RECORDING is also reachable from every stage through reset()/close().
TRANSITIONS: Dict[WorkflowStage, FrozenSet[WorkflowStage]] = {
    WorkflowStage.RECORDING: frozenset({WorkflowStage.REVIEW}),
    WorkflowStage.REVIEW: frozenset({WorkflowStage.RECORDING, WorkflowStage.UPLOADING}),
    WorkflowStage.UPLOADING: frozenset({WorkflowStage.POLLING, WorkflowStage.FAILED}),
    WorkflowStage.POLLING: frozenset(
        {WorkflowStage.SUMMARY, WorkflowStage.FAILED, WorkflowStage.UPLOADING}
    ),
    WorkflowStage.FAILED: frozenset({WorkflowStage.UPLOADING, WorkflowStage.POLLING}),
    WorkflowStage.SUMMARY: frozenset(),
}

# ── User-facing Messages ──────────────────────────────────────────────────
MICROPHONE_ERROR = "Unable to access microphone. Please check permissions."
NO_RECORDING = "No recording available to process"
SIZE_WARNING = "Warning: Recording is getting large. Consider stopping soon to avoid upload issues."
STALLED = "Transcription is taking longer than expected."
LONG_RECORDING_SECONDS = 120


def format_duration(seconds: int) -> str:
    """MM:SS"""
    minutes, rest = divmod(max(seconds, 0), 60)
    return f"{minutes:02d}:{rest:02d}"


def _unexpected(error: Exception, action: str) -> NoteBuddyError:
    """Wrap a failure no service layer classified, keeping the machine recoverable."""
    return NoteBuddyError(
        message=f"{action} failed unexpectedly. Please try again.",
        context={"error_type": type(error).__name__, "error": str(error)},
    )


class TranscriptionJobController:
    """
    State machine for one recording dialog.

    Attributes exposed to the UI:
        stage:          Current WorkflowStage
        status_message: Progress or warning text ("Uploading audio... (Attempt 2/3)")
        retry_attempt:  Attempt counter (see module docstring)
        error:          Classified error while FAILED
        resume_stage:   Where retry() re-enters (UPLOADING or POLLING)
        transcript:     Result while in SUMMARY
    """

    def __init__(
        self,
        session: SessionOrchestrator,
        audio_source: AudioSource,
        scheduler: Scheduler,
        settings: Optional[Settings] = None,
    ):
        self._session = session
        self._audio = audio_source
        self._scheduler = scheduler
        self._settings = settings or default_settings

        self._stage = WorkflowStage.RECORDING
        self._recording: Optional[RecordingSession] = None
        self._job: Optional[TranscriptionJob] = None
        self._transcript: Optional[str] = None
        self._retry_attempt = 0
        self._status_message = ""
        self._error: Optional[NoteBuddyError] = None
        self._resume_stage: Optional[WorkflowStage] = None
        self._epoch = 0
        self._closed = False

        self._ticker: Optional[ScheduledTask] = None
        self._poll_task: Optional[ScheduledTask] = None
        self._ceiling_task: Optional[ScheduledTask] = None
        self._retry_task: Optional[ScheduledTask] = None
        self._upload_task: Optional[asyncio.Future] = None

        self._listeners: List[Listener] = []

    # ══════════════════════════════════════════════════════════════════════
    # Read Accessors
    # ══════════════════════════════════════════════════════════════════════

    @property
    def stage(self) -> WorkflowStage:
        return self._stage

    @property
    def recording(self) -> Optional[RecordingSession]:
        return self._recording

    @property
    def job(self) -> Optional[TranscriptionJob]:
        return self._job

    @property
    def transcript(self) -> Optional[str]:
        return self._transcript if self._stage is WorkflowStage.SUMMARY else None

    @property
    def retry_attempt(self) -> int:
        return self._retry_attempt

    @property
    def status_message(self) -> str:
        return self._status_message

    @property
    def error(self) -> Optional[NoteBuddyError]:
        return self._error

    @property
    def resume_stage(self) -> Optional[WorkflowStage]:
        return self._resume_stage

    @property
    def can_retry(self) -> bool:
        return self._stage is WorkflowStage.FAILED and self._resume_stage is not None

    @property
    def is_capturing(self) -> bool:
        return self._recording is not None and self._audio.active

    @property
    def duration_seconds(self) -> int:
        return self._recording.duration_seconds if self._recording else 0

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration_seconds)

    @property
    def long_recording(self) -> bool:
        """Capture has run past the length the backend transcribes comfortably."""
        return self.is_capturing and self.duration_seconds > LONG_RECORDING_SECONDS

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ══════════════════════════════════════════════════════════════════════
    # Capture
    # ══════════════════════════════════════════════════════════════════════

    async def start_recording(self) -> None:
        self._ensure_open("start recording")
        if self._stage is not WorkflowStage.RECORDING or self.is_capturing:
            raise WorkflowStateError(self._describe_stage(), "start recording")

        recording = RecordingSession(content_type=self._audio.content_type)
        self._recording = recording
        try:
            await self._audio.start(functools.partial(self._on_chunk, recording))
        except (OSError, RuntimeError) as e:
            self._recording = None
            logger.error("Audio capture could not start: %s", str(e))
            raise NoteBuddyError(message=MICROPHONE_ERROR, context={"error": str(e)}) from e

        self._status_message = ""
        self._error = None
        self._ticker = self._scheduler.call_later(1.0, functools.partial(self._tick, self._epoch))
        logger.info("Recording started")
        self._notify()

    async def stop_recording(self) -> None:
        if self._stage is not WorkflowStage.RECORDING or not self.is_capturing:
            raise WorkflowStateError(self._describe_stage(), "stop recording")
        cancel_task(self._ticker)
        self._ticker = None
        await self._audio.stop()
        logger.info(
            "Recording stopped after %ss (%d bytes)",
            self._recording.duration_seconds,
            self._recording.size_bytes,
        )
        self._transition(WorkflowStage.REVIEW, "stop recording")

    async def discard(self) -> None:
        """Drop the captured audio and go back to recording."""
        if self._stage is not WorkflowStage.REVIEW:
            raise WorkflowStateError(self._describe_stage(), "discard")
        await self._audio.release()
        self._recording = None
        self._status_message = ""
        self._transition(WorkflowStage.RECORDING, "discard")

    def _on_chunk(self, recording: RecordingSession, chunk: bytes) -> None:
        if recording is not self._recording:
            return
        recording.append(chunk)
        if (
            not recording.size_warning_issued
            and recording.size_bytes > self._settings.audio_size_warning
        ):
            recording.size_warning_issued = True
            self._status_message = SIZE_WARNING
            logger.warning("Recording passed %d bytes", self._settings.audio_size_warning)
            self._notify()

    async def _tick(self, epoch: int) -> None:
        if epoch != self._epoch or not self.is_capturing:
            return
        self._recording.duration_seconds += 1
        self._ticker = self._scheduler.call_later(1.0, functools.partial(self._tick, epoch))
        self._notify()

    # ══════════════════════════════════════════════════════════════════════
    # Submission & Retry
    # ══════════════════════════════════════════════════════════════════════

    async def submit(self) -> WorkflowStage:
        """
        Upload the reviewed recording and start polling.

        Returns once the first attempt has resolved: the stage is then
        POLLING, UPLOADING (automatic retry pending) or FAILED.

        Raises:
            WorkflowStateError: not in REVIEW
            ValidationError: nothing was recorded
            PayloadTooLargeError: recording exceeds the upload limit;
                raised before any network call, the stage stays REVIEW
        """
        if self._stage is not WorkflowStage.REVIEW:
            raise WorkflowStateError(self._describe_stage(), "submit")
        if self._recording is None or self._recording.is_empty:
            raise ValidationError(NO_RECORDING, field="audio")
        if self._recording.size_bytes > self._settings.max_audio_size:
            error = PayloadTooLargeError(
                self._recording.size_bytes, self._settings.max_audio_size, field="audio"
            )
            logger.warning("Upload refused: %s", error.message)
            raise error

        self._retry_attempt = 1
        self._error = None
        self._resume_stage = None
        self._transition(WorkflowStage.UPLOADING, "submit")
        await self._run_inline(self._attempt(self._epoch))
        return self._stage

    async def retry(self) -> WorkflowStage:
        """
        Manual retry from FAILED with a fresh attempt counter.

        Re-enters UPLOADING (upload failures, job failed on the backend) or
        POLLING (stalled job, status check failures) with the same recording.
        """
        if not self.can_retry:
            raise WorkflowStateError(self._describe_stage(), "retry")

        target = self._resume_stage
        self._retry_attempt = 1
        self._error = None
        self._resume_stage = None
        logger.info("Manual retry, resuming at %s", target.value)

        if target is WorkflowStage.POLLING and self._job is not None:
            self._transition(WorkflowStage.POLLING, "retry")
            self._status_message = "Checking transcription status..."
            self._begin_polling(self._epoch)
            return self._stage

        self._transition(WorkflowStage.UPLOADING, "retry")
        await self._run_inline(self._attempt(self._epoch))
        return self._stage

    async def _run_inline(self, coro) -> None:
        # Runs as its own task so close() can cancel it without cancelling the caller
        task = asyncio.ensure_future(coro)
        self._upload_task = task
        try:
            await asyncio.wait({task})
        finally:
            self._upload_task = None
        if not task.cancelled():
            task.result()

    async def _attempt(self, epoch: int) -> None:
        if epoch != self._epoch or self._stage is not WorkflowStage.UPLOADING:
            return
        self._status_message = (
            f"Uploading audio... (Attempt {self._retry_attempt}/{self._settings.workflow_max_attempts})"
            if self._retry_attempt > 1
            else "Uploading audio..."
        )
        self._notify()

        try:
            job_id = await self._upload()
        except NoteBuddyError as e:
            if epoch == self._epoch:
                self._attempt_failed(e, epoch)
            return
        except Exception as e:
            logger.error("Upload failed unexpectedly: %s", str(e), exc_info=True)
            if epoch == self._epoch:
                self._attempt_failed(_unexpected(e, "Upload"), epoch)
            return
        if epoch != self._epoch:
            return

        self._job = TranscriptionJob(id=job_id, retry_attempt=self._retry_attempt)
        logger.info("Audio uploaded, transcription job %s", job_id)
        self._transition(WorkflowStage.POLLING, "poll")
        self._status_message = "Transcribing audio..."
        self._begin_polling(epoch)

    async def _upload(self) -> str:
        recording = self._recording
        extension = recording.content_type.split("/")[-1].split(";")[0] or "webm"
        response = await self._session.authenticated_call(
            "POST",
            "/upload-audio",
            files={"audio": (f"recording.{extension}", recording.audio_bytes, recording.content_type)},
        )
        raise_for_api_error(response, "Upload")
        try:
            return UploadAudioResponse.model_validate(response.json()).transcription_id
        except (ValueError, PydanticValidationError) as e:
            raise ApiError(
                status_code=response.status_code,
                message="Upload failed: unexpected response from server",
                context={"error": str(e)},
            ) from e

    def _attempt_failed(self, error: NoteBuddyError, epoch: int) -> None:
        max_attempts = self._settings.workflow_max_attempts
        if not error.retryable:
            logger.warning("Attempt failed, not retrying: %s", error.message)
            self._fail(error, WorkflowStage.UPLOADING)
            return
        if self._retry_attempt >= max_attempts:
            logger.error("Transcription failed after %d attempts: %s", max_attempts, error.message)
            self._fail(error, WorkflowStage.UPLOADING, exhausted=True)
            return

        self._retry_attempt += 1
        self._cancel_polling()
        self._job = None
        if self._stage is WorkflowStage.POLLING:
            self._transition(WorkflowStage.UPLOADING, "retry upload")
        self._status_message = (
            f"{error.message} Retrying... ({self._retry_attempt}/{max_attempts})"
        )
        logger.warning(
            "Attempt failed (%s), retry %d/%d in %.0fs",
            error.message,
            self._retry_attempt,
            max_attempts,
            self._settings.workflow_retry_delay,
        )
        self._retry_task = self._scheduler.call_later(
            self._settings.workflow_retry_delay, functools.partial(self._attempt, epoch)
        )
        self._notify()

    # ══════════════════════════════════════════════════════════════════════
    # Polling
    # ══════════════════════════════════════════════════════════════════════

    def _begin_polling(self, epoch: int) -> None:
        self._ceiling_task = self._scheduler.call_later(
            self._settings.poll_ceiling, functools.partial(self._on_ceiling, epoch)
        )
        self._schedule_poll(epoch)

    def _schedule_poll(self, epoch: int) -> None:
        self._poll_task = self._scheduler.call_later(
            self._settings.poll_interval, functools.partial(self._poll, epoch)
        )

    async def _poll(self, epoch: int) -> None:
        if epoch != self._epoch or self._stage is not WorkflowStage.POLLING or self._job is None:
            return
        job = self._job
        first_check = job.polls == 0
        job.polls += 1

        try:
            response = await self._session.authenticated_call(
                "GET", f"/check-transcription/{job.id}"
            )
            raise_for_api_error(response, "Status check")
            try:
                body = TranscriptionStatusResponse.model_validate(response.json())
            except (ValueError, PydanticValidationError) as e:
                raise ApiError(
                    status_code=response.status_code,
                    message="Status check failed: unexpected response from server",
                    context={"error": str(e)},
                ) from e
        except NoteBuddyError as e:
            error = e
        except Exception as e:
            logger.error("Status check failed unexpectedly: %s", str(e), exc_info=True)
            error = _unexpected(e, "Status check")
        else:
            error = None

        if error is not None:
            if epoch != self._epoch:
                return
            if first_check:
                self._attempt_failed(error, epoch)
            else:
                logger.error("Status check for job %s failed: %s", job.id, error.message)
                self._fail(error, WorkflowStage.POLLING)
            return

        if epoch != self._epoch:
            return
        job.status = body.status
        logger.debug("Job %s poll %d: %s", job.id, job.polls, body.status.value)

        if body.status is JobStatus.COMPLETED:
            self._complete(job, body.transcript or "")
        elif body.status is JobStatus.FAILED:
            job.error = body.error or "Transcription failed"
            logger.error("Job %s failed on the backend: %s", job.id, job.error)
            self._fail(
                TranscriptionFailedError(job.error, context={"job_id": job.id}),
                WorkflowStage.UPLOADING,
            )
        else:
            self._status_message = (
                "Waiting in queue..." if body.status is JobStatus.QUEUED
                else "Transcription in progress..."
            )
            self._schedule_poll(epoch)
            self._notify()

    async def _on_ceiling(self, epoch: int) -> None:
        if epoch != self._epoch or self._stage is not WorkflowStage.POLLING:
            return
        logger.error(
            "Job %s stalled: no terminal status after %.0fs",
            self._job.id if self._job else "?",
            self._settings.poll_ceiling,
        )
        self._fail(
            TranscriptionFailedError(STALLED, stalled=True, context={"timeout": self._settings.poll_ceiling}),
            WorkflowStage.POLLING,
        )

    def _complete(self, job: TranscriptionJob, transcript: str) -> None:
        self._cancel_timers()
        self._transcript = transcript
        self._retry_attempt = 0
        self._recording = None
        self._status_message = "Transcription complete"
        logger.info("Job %s completed after %d poll(s)", job.id, job.polls)
        self._transition(WorkflowStage.SUMMARY, "complete")

    def _fail(self, error: NoteBuddyError, resume: WorkflowStage, exhausted: bool = False) -> None:
        self._cancel_timers()
        self._error = error
        self._resume_stage = resume
        self._status_message = (
            f"{error.message} Maximum retry attempts reached." if exhausted else error.message
        )
        self._transition(WorkflowStage.FAILED, "fail")

    # ══════════════════════════════════════════════════════════════════════
    # Teardown
    # ══════════════════════════════════════════════════════════════════════

    async def reset(self) -> None:
        """
        Return to RECORDING from any stage.

        Stops capture, cancels every timer and the in-flight upload, releases
        the audio source and drops the recording and job.
        """
        self._epoch += 1
        self._cancel_timers()
        if self._upload_task is not None and not self._upload_task.done():
            if self._upload_task is not asyncio.current_task():
                self._upload_task.cancel()
        if self._audio.active:
            await self._audio.stop()
        await self._audio.release()

        self._recording = None
        self._job = None
        self._transcript = None
        self._retry_attempt = 0
        self._status_message = ""
        self._error = None
        self._resume_stage = None
        if self._stage is not WorkflowStage.RECORDING:
            logger.info("Recording workflow reset from %s", self._stage.value)
        self._stage = WorkflowStage.RECORDING
        self._notify()

    async def close(self) -> None:
        """reset() and refuse further use."""
        await self.reset()
        self._closed = True

    def _cancel_polling(self) -> None:
        cancel_task(self._poll_task)
        cancel_task(self._ceiling_task)
        self._poll_task = None
        self._ceiling_task = None

    def _cancel_timers(self) -> None:
        self._cancel_polling()
        cancel_task(self._ticker)
        cancel_task(self._retry_task)
        self._ticker = None
        self._retry_task = None

    # ── Helpers ───────────────────────────────────────────────────────────

    def _ensure_open(self, requested: str) -> None:
        if self._closed:
            raise WorkflowStateError("closed", requested)

    def _describe_stage(self) -> str:
        return "closed" if self._closed else self._stage.value

    def _transition(self, target: WorkflowStage, requested: str) -> None:
        if target not in TRANSITIONS[self._stage]:
            raise WorkflowStateError(self._stage.value, requested)
        logger.info("Recording workflow %s → %s", self._stage.value, target.value)
        self._stage = target
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error("Workflow listener failed: %s", str(e), exc_info=True)
