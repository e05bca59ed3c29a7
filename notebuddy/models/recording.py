"""
NoteBuddy Client - Recording Workflow Models
=============================================

What:  State carried by the transcription workflow.
How:   Plain dataclasses plus explicit enumerations for every status, so the
       controller never reasons about ad hoc strings or boolean flags.

Lifecycle:
    RecordingSession  created when capture starts, grows with each chunk,
                      dropped on discard, reset or close
    TranscriptionJob  created when the upload returns a job id, polled until
                      a terminal status, dropped on reset or close
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class WorkflowStage(str, Enum):
    """Stages of the record → upload → poll → summary state machine."""

    RECORDING = "recording"
    REVIEW = "review"
    UPLOADING = "uploading"
    POLLING = "polling"
    SUMMARY = "summary"
    FAILED = "failed"


class JobStatus(str, Enum):
    """
    Backend job status. The backend reports failure as "error".

    Any status the client does not recognise is treated as PROCESSING, so
    polling continues until a terminal status or the polling ceiling.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @classmethod
    def parse(cls, raw: str) -> "JobStatus":
        value = (raw or "").strip().lower()
        if value in ("error", "failed"):
            return cls.FAILED
        try:
            return cls(value)
        except ValueError:
            return cls.PROCESSING


@dataclass
class RecordingSession:
    """Captured audio treated as an opaque blob."""

    chunks: List[bytes] = field(default_factory=list)
    duration_seconds: int = 0
    size_bytes: int = 0
    content_type: str = "audio/webm"
    size_warning_issued: bool = False

    def append(self, chunk: bytes) -> None:
        if not chunk:
            return
        self.chunks.append(chunk)
        self.size_bytes += len(chunk)

    @property
    def audio_bytes(self) -> bytes:
        return b"".join(self.chunks)

    @property
    def is_empty(self) -> bool:
        return self.size_bytes == 0


@dataclass
class TranscriptionJob:
    """Remote transcription job tracked by the controller."""

    id: str
    status: JobStatus = JobStatus.QUEUED
    transcript: Optional[str] = None
    retry_attempt: int = 0
    polls: int = 0
    error: Optional[str] = None
