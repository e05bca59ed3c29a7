"""
NoteBuddy Client - File Audio Source Tests
===========================================

What:  Tests for FileAudioSource chunk pacing, flushing and release.
"""

import pytest

from notebuddy.exceptions import NoteBuddyError
from notebuddy.services.audio_base import FileAudioSource
from notebuddy.services.transcription_service import MICROPHONE_ERROR


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "memo.webm"
    path.write_bytes(bytes(range(150)))
    return path


class TestFileAudioSource:

    @pytest.mark.asyncio
    async def test_one_chunk_per_interval(self, audio_file, scheduler):
        """Each tick delivers chunk_size bytes; stop() flushes the remainder."""
        chunks = []
        source = FileAudioSource(str(audio_file), scheduler, chunk_size=64)

        await source.start(chunks.append)
        assert source.active

        await scheduler.advance(1)
        assert [len(c) for c in chunks] == [64]
        await scheduler.advance(1)
        assert [len(c) for c in chunks] == [64, 64]

        await source.stop()

        assert [len(c) for c in chunks] == [64, 64, 22]
        assert b"".join(chunks) == bytes(range(150))
        assert not source.active
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_release_allows_restart(self, audio_file, scheduler):
        chunks = []
        source = FileAudioSource(str(audio_file), scheduler, chunk_size=100)
        await source.start(chunks.append)
        await scheduler.advance(1)

        await source.release()
        assert scheduler.pending == 0

        await source.start(chunks.append)
        await source.stop()

        assert [len(c) for c in chunks] == [100, 150]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, scheduler):
        source = FileAudioSource(str(tmp_path / "nope.webm"), scheduler)

        with pytest.raises(FileNotFoundError):
            await source.start(lambda chunk: None)

        assert not source.active

    def test_content_type_from_extension(self, tmp_path, scheduler):
        assert FileAudioSource(str(tmp_path / "a.wav"), scheduler).content_type == "audio/wav"
        assert FileAudioSource(str(tmp_path / "a.webm"), scheduler).content_type == "audio/webm"
        assert FileAudioSource(
            str(tmp_path / "a.ogg"), scheduler, content_type="audio/ogg"
        ).content_type == "audio/ogg"

    @pytest.mark.asyncio
    async def test_missing_file_is_a_microphone_error(self, logged_in_app, tmp_path, scheduler):
        """The workflow reports an unusable source the same way as a denied microphone."""
        source = FileAudioSource(str(tmp_path / "gone.webm"), scheduler)
        workflow = logged_in_app.new_recording_workflow(source)

        with pytest.raises(NoteBuddyError) as exc_info:
            await workflow.start_recording()

        assert exc_info.value.message == MICROPHONE_ERROR
