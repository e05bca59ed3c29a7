"""
NoteBuddy Client - Pydantic Wire Schemas
=========================================

What:  Pydantic models for the JSON bodies exchanged with the backend.
How:   Requests are serialized with `model_dump(by_alias=True)`; responses are
       parsed with `model_validate(response.json())`. Aliases keep the
       backend's field names (`URL`, `Summary`, `note`) out of Python code.
Who:   NoteService, SessionOrchestrator, TranscriptionJobController, HealthMonitor.

Endpoint map:
    GET    /health                      → HealthResponse
    POST   /login, /register            ← AuthRequest
    GET    /userNotes                   → List[Note]
    POST   /postNote                    ← NoteCreateRequest
    DELETE /deleteNote/{id}
    POST   /summary                     ← VideoSummaryRequest  → VideoSummaryResponse
    POST   /upload-pdf  (multipart pdf) → SummaryResponse
    POST   /upload-audio (multipart)    → UploadAudioResponse
    GET    /check-transcription/{id}    → TranscriptionStatusResponse
    POST   /process-transcript          ← TranscriptRequest    → SummaryResponse
"""

from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from notebuddy.models.recording import JobStatus


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class AuthRequest(BaseModel):
    """Body of /login and /register."""
    username: str
    password: str


class NoteCreateRequest(BaseModel):
    """Body of /postNote. The backend calls the content field `note`."""
    title: str = Field(min_length=1)
    note: str


class VideoSummaryRequest(BaseModel):
    """Body of /summary."""
    url: str = Field(serialization_alias="URL")


class TranscriptRequest(BaseModel):
    """Body of /process-transcript."""
    transcript: str


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class HealthResponse(BaseModel):
    """Liveness body. Only `status` matters to the client."""
    status: str

    model_config = {"extra": "allow"}

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"


class Note(BaseModel):
    """
    A stored note as listed by /userNotes.

    The wire name of `content` is `note`; both names are accepted.
    """
    id: Union[int, str]
    title: str
    content: str = Field(default="", validation_alias="note")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class VideoSummaryResponse(BaseModel):
    """Reply of /summary."""
    summary: str = Field(validation_alias="Summary")


class SummaryResponse(BaseModel):
    """Reply of /upload-pdf and /process-transcript."""
    summary: str


class UploadAudioResponse(BaseModel):
    """Reply of /upload-audio."""
    transcription_id: str

    @field_validator("transcription_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v


class TranscriptionStatusResponse(BaseModel):
    """Reply of /check-transcription/{id}."""
    status: JobStatus
    transcript: Optional[str] = None
    error: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        """Accepts the backend's "error" spelling for failed jobs."""
        if isinstance(v, JobStatus):
            return v
        return JobStatus.parse(str(v))


class ErrorBody(BaseModel):
    """Error payload the backend attaches to non-2xx replies."""
    error: Optional[str] = None

    model_config = {"extra": "ignore"}


# ══════════════════════════════════════════════════════════════════════════
# Client-side Results
# ══════════════════════════════════════════════════════════════════════════


class NoteDraft(BaseModel):
    """
    Title/content pair handed to the note viewer after a note was created.

    This is the only thing the presentation layer consumes from the summary
    flows.
    """
    title: str
    content: str
