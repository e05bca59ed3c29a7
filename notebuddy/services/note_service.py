"""
NoteBuddy Client - Note Service (Summary → Note Orchestrator)
==============================================================

What:  Note CRUD plus the three "turn this into a note" flows: YouTube link,
       PDF upload, and a finished voice transcript.
Why:   Each flow is summarize-then-persist. Keeping the pair in one place
       means validation, default titles and error translation are identical
       no matter which screen started the flow.
How:   Validates input locally, then goes through
       SessionOrchestrator.authenticated_call (health gate, auth, retry,
       session expiry) and parses replies with the wire schemas.
Who:   The UI layer; save_transcript consumes TranscriptionJobController output.

Orchestration Flow (summary flows):
    ┌──────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────┐
    │ Validate │───▶│  Summarize   │───▶│  POST        │───▶│ NoteDraft│
    │ (local)  │    │  (/summary,  │    │  /postNote   │    │ returned │
    └──────────┘    │  /upload-pdf,│    └──────────────┘    └──────────┘
                    │  /process-   │
                    │  transcript) │
                    └──────────────┘

    On failure at any step:
    - ValidationError / PayloadTooLargeError before any request
    - ApiError with the backend's message for a non-2xx reply
    - SessionExpiredError, BackendUnavailableError, TimeoutExceededError,
      NetworkError propagate unchanged from the orchestrator
"""

import logging
from pathlib import PurePath
from typing import List, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from notebuddy.config import Settings, settings as default_settings
from notebuddy.exceptions import ApiError, PayloadTooLargeError, ValidationError
from notebuddy.schemas.note import (
    Note,
    NoteCreateRequest,
    NoteDraft,
    SummaryResponse,
    TranscriptRequest,
    VideoSummaryRequest,
    VideoSummaryResponse,
)
from notebuddy.services.api_client import raise_for_api_error
from notebuddy.services.session_service import SessionOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_TITLE = "Notes from YouTube Video"
PDF_CONTENT_TYPE = "application/pdf"


def _parse(model, response: httpx.Response, action: str):
    try:
        return model.model_validate(response.json())
    except (ValueError, PydanticValidationError) as e:
        raise ApiError(
            status_code=response.status_code,
            message=f"{action} failed: unexpected response from server",
            context={"error": str(e)},
        ) from e


class NoteService:
    """
    Business logic for notes on top of an authenticated session.

    Stateless apart from its collaborators; safe to share across screens.
    """

    def __init__(self, session: SessionOrchestrator, settings: Optional[Settings] = None):
        self._session = session
        self._settings = settings or default_settings

    # ══════════════════════════════════════════════════════════════════════
    # CRUD
    # ══════════════════════════════════════════════════════════════════════

    async def list_notes(self) -> List[Note]:
        """Notes of the logged-in user, in backend order."""
        response = await self._session.authenticated_call("GET", "/userNotes")
        raise_for_api_error(response, "Failed to fetch notes")
        try:
            payload = response.json()
            notes = [Note.model_validate(item) for item in payload]
        except (ValueError, TypeError, PydanticValidationError) as e:
            raise ApiError(
                status_code=response.status_code,
                message="Failed to fetch notes: unexpected response from server",
                context={"error": str(e)},
            ) from e
        logger.info("Fetched %d note(s)", len(notes))
        return notes

    async def create_note(self, title: str, content: str) -> NoteDraft:
        """
        Persist a note.

        Raises:
            ValidationError: empty title
            ApiError: backend rejected the note
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Please enter a title for your note", field="title")

        body = NoteCreateRequest(title=title, note=content or "")
        response = await self._session.authenticated_call(
            "POST", "/postNote", json=body.model_dump()
        )
        raise_for_api_error(response, "Failed to save note")
        logger.info("Note saved: %s", title)
        return NoteDraft(title=title, content=body.note)

    async def delete_note(self, note_id: Union[int, str]) -> None:
        response = await self._session.authenticated_call("DELETE", f"/deleteNote/{note_id}")
        raise_for_api_error(response, "Failed to delete note")
        logger.info("Note %s deleted", note_id)

    # ══════════════════════════════════════════════════════════════════════
    # Summary Flows
    # ══════════════════════════════════════════════════════════════════════

    async def summarize_video(self, url: str, title: Optional[str] = None) -> NoteDraft:
        """
        Summarize a YouTube video and save the summary as a note.

        Args:
            url: Video link as pasted by the user
            title: Note title; "Notes from YouTube Video" when blank
        """
        url = (url or "").strip()
        if not url:
            raise ValidationError("Please paste a YouTube link.", field="url")

        response = await self._session.authenticated_call(
            "POST",
            "/summary",
            json=VideoSummaryRequest(url=url).model_dump(by_alias=True),
        )
        raise_for_api_error(response, "Summary")
        summary = _parse(VideoSummaryResponse, response, "Summary").summary
        logger.info("Video summarized (%d chars)", len(summary))

        return await self.create_note((title or "").strip() or DEFAULT_VIDEO_TITLE, summary)

    async def summarize_pdf(
        self,
        filename: str,
        content: bytes,
        title: Optional[str] = None,
    ) -> NoteDraft:
        """
        Extract and summarize a PDF, then save the summary as a note.

        Validation happens before any request:
            - the file must be a .pdf
            - the file must not exceed `max_pdf_size` (10 MB)

        Args:
            filename: Original filename (used for the default title)
            content: Raw file bytes
            title: Note title; "Notes from <filename stem>" when blank
        """
        path = PurePath(filename or "")
        if path.suffix.lower() != ".pdf":
            raise ValidationError("Please select a PDF file.", field="pdf")
        if not content:
            raise ValidationError("Please select a PDF file first.", field="pdf")
        if len(content) > self._settings.max_pdf_size:
            raise PayloadTooLargeError(len(content), self._settings.max_pdf_size, field="pdf")

        response = await self._session.authenticated_call(
            "POST",
            "/upload-pdf",
            files={"pdf": (path.name, content, PDF_CONTENT_TYPE)},
        )
        raise_for_api_error(response, "PDF upload")
        summary = _parse(SummaryResponse, response, "PDF upload").summary
        logger.info("PDF %s summarized (%d chars)", path.name, len(summary))

        final_title = (title or "").strip() or f"Notes from {path.stem}"
        return await self.create_note(final_title, summary)

    async def save_transcript(self, title: str, transcript: Optional[str]) -> NoteDraft:
        """
        Format a finished transcript into a summary and save it as a note.

        The title is required here: voice notes have no natural default.
        """
        if not transcript:
            raise ValidationError("No transcript available", field="transcript")
        if not (title or "").strip():
            raise ValidationError("Please enter a title for your note", field="title")

        response = await self._session.authenticated_call(
            "POST",
            "/process-transcript",
            json=TranscriptRequest(transcript=transcript).model_dump(),
        )
        raise_for_api_error(response, "Processing")
        summary = _parse(SummaryResponse, response, "Processing").summary
        return await self.create_note(title, summary)
