"""
NoteBuddy Client - Note Service Tests
======================================

What:  Tests for note CRUD and the video/PDF/transcript summary flows.
How:   Validation and error translation against the scripted backend;
       full flows end-to-end against the in-memory FastAPI stub.

What we test:
    ✅ Local validation rejects bad input before any request
    ✅ Backend error messages surface as ApiError
    ✅ Summarize → save chains with the right default titles
    ✅ Notes parse the backend's "note" field into content
"""

import pytest

from notebuddy.config import MB
from notebuddy.exceptions import (
    ApiError,
    PayloadTooLargeError,
    SessionExpiredError,
    ValidationError,
)


async def sign_in(app, username="ada", password="secret"):
    assert (await app.session.register(username, password)).success
    assert (await app.session.login(username, password)).success


class TestValidation:

    @pytest.mark.asyncio
    async def test_empty_video_link(self, logged_in_app, backend):
        """A blank link never reaches the backend."""
        with pytest.raises(ValidationError) as exc_info:
            await logged_in_app.notes.summarize_video("   ")

        assert exc_info.value.message == "Please paste a YouTube link."
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_pdf_wrong_extension(self, logged_in_app, backend):
        with pytest.raises(ValidationError) as exc_info:
            await logged_in_app.notes.summarize_pdf("notes.txt", b"hello")

        assert exc_info.value.message == "Please select a PDF file."
        assert exc_info.value.field == "pdf"
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_pdf_empty(self, logged_in_app, backend):
        with pytest.raises(ValidationError):
            await logged_in_app.notes.summarize_pdf("report.pdf", b"")
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_pdf_too_large(self, make_app, backend, store):
        """Oversized PDFs are refused locally with the limit attached."""
        app = make_app(max_pdf_size=MB)
        await app.credentials.save_credential("ada", "secret")

        with pytest.raises(PayloadTooLargeError) as exc_info:
            await app.notes.summarize_pdf("Report.PDF", b"x" * (MB + 1))

        assert exc_info.value.limit_bytes == MB
        assert backend.requests == []
        await app.http.aclose()

    @pytest.mark.asyncio
    async def test_note_title_required(self, logged_in_app, backend):
        with pytest.raises(ValidationError) as exc_info:
            await logged_in_app.notes.create_note("  ", "content")

        assert exc_info.value.message == "Please enter a title for your note"
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_transcript_required(self, logged_in_app, backend):
        with pytest.raises(ValidationError) as exc_info:
            await logged_in_app.notes.save_transcript("Standup", None)

        assert exc_info.value.message == "No transcript available"
        assert backend.requests == []


class TestErrorTranslation:

    @pytest.mark.asyncio
    async def test_backend_message_becomes_api_error(self, logged_in_app, backend):
        """A 400 with an error body surfaces that message; no note is saved."""
        backend.script("POST", "/summary", (400, {"error": "Invalid YouTube URL"}))

        with pytest.raises(ApiError) as exc_info:
            await logged_in_app.notes.summarize_video("https://example.com/nope")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid YouTube URL"
        assert backend.calls("POST", "/postNote") == []

    @pytest.mark.asyncio
    async def test_malformed_summary_reply(self, logged_in_app, backend):
        backend.script("POST", "/summary", (200, {"unexpected": True}))

        with pytest.raises(ApiError) as exc_info:
            await logged_in_app.notes.summarize_video("https://youtu.be/abc")

        assert "unexpected response" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_video_request_uses_url_key(self, logged_in_app, backend):
        backend.script("POST", "/summary", (200, {"Summary": "Short"}))
        backend.script("POST", "/postNote", (200, {"message": "Note saved"}))

        draft = await logged_in_app.notes.summarize_video("https://youtu.be/abc", title="Talk")

        request = backend.calls("POST", "/summary")[0]
        assert b'"URL"' in request.content
        assert draft.title == "Talk"
        assert draft.content == "Short"

    @pytest.mark.asyncio
    async def test_expired_session_propagates(self, logged_in_app, backend):
        backend.script("GET", "/userNotes", (401, {}))

        with pytest.raises(SessionExpiredError):
            await logged_in_app.notes.list_notes()


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_video_summary_is_saved_with_default_title(self, stub_app):
        await sign_in(stub_app)

        draft = await stub_app.notes.summarize_video("https://youtu.be/abc")

        assert draft.title == "Notes from YouTube Video"
        notes = await stub_app.notes.list_notes()
        assert [(n.title, n.content) for n in notes] == [
            ("Notes from YouTube Video", "Summary of https://youtu.be/abc")
        ]

    @pytest.mark.asyncio
    async def test_pdf_summary_title_from_filename(self, stub_app):
        await sign_in(stub_app)

        draft = await stub_app.notes.summarize_pdf("report.pdf", b"%PDF-1.4 body")

        assert draft.title == "Notes from report"
        assert draft.content == "report.pdf: 13 bytes summarized"

    @pytest.mark.asyncio
    async def test_delete_note(self, stub_app):
        await sign_in(stub_app)
        await stub_app.notes.create_note("Groceries", "milk")
        note = (await stub_app.notes.list_notes())[0]

        await stub_app.notes.delete_note(note.id)

        assert await stub_app.notes.list_notes() == []

    @pytest.mark.asyncio
    async def test_delete_missing_note(self, stub_app):
        await sign_in(stub_app)

        with pytest.raises(ApiError) as exc_info:
            await stub_app.notes.delete_note(999)

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Note not found"

    @pytest.mark.asyncio
    async def test_save_transcript(self, stub_app):
        await sign_in(stub_app)

        draft = await stub_app.notes.save_transcript("Standup", "we shipped it")

        assert draft.content == "# Notes\n\nwe shipped it"
        assert stub_app.backend_state["notes"][0]["title"] == "Standup"

    @pytest.mark.asyncio
    async def test_notes_are_per_user(self, stub_app):
        """Each user sees only their own notes."""
        await sign_in(stub_app, "ada", "secret")
        await stub_app.notes.create_note("Ada's", "one")
        await stub_app.session.logout()

        await sign_in(stub_app, "bob", "hunter2")

        assert await stub_app.notes.list_notes() == []
