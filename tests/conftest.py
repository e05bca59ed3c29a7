"""
NoteBuddy Client - Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Every service needs the same fakes: a clock, a backend, a store.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.
Who:   Used by all test files in the tests/ directory.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── scheduler: FakeScheduler, virtual time advanced explicitly
    ├── backend: FakeBackend, scripted replies behind httpx.MockTransport
    ├── test_settings: Settings pointed at http://test
    ├── store: MemoryStore
    ├── app: NoteBuddyApp wired to the fakes (not logged in)
    ├── logged_in_app: same, with a saved credential for "ada"
    ├── audio: FakeAudioSource
    └── stub_app: NoteBuddyApp talking to an in-memory FastAPI backend
"""

import asyncio
import heapq
import logging
import os
import tempfile
from itertools import count
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings for testing BEFORE any notebuddy imports
os.environ["NOTEBUDDY_API_BASE_URL"] = "http://test"
os.environ["NOTEBUDDY_CREDENTIAL_PATH"] = os.path.join(
    tempfile.mkdtemp(prefix="notebuddy_test_"), "credentials.json"
)
os.environ["NOTEBUDDY_LOG_LEVEL"] = "WARNING"  # Reduce noise during tests

from notebuddy.config import Settings  # noqa: E402
from notebuddy.main import NoteBuddyApp, create_app  # noqa: E402
from notebuddy.scheduling import ScheduledTask, Scheduler  # noqa: E402
from notebuddy.services.audio_base import AudioSource, ChunkCallback  # noqa: E402
from notebuddy.storage import MemoryStore  # noqa: E402

from stub_backend import build_stub_backend  # noqa: E402

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Fake Clock
# ══════════════════════════════════════════════════════════════════════════


class FakeTask(ScheduledTask):
    def __init__(self, deadline: float, callback):
        self.deadline = deadline
        self.callback = callback
        self.running = False
        self._cancelled = False
        self._finished = False

    def cancel(self) -> None:
        # A running callback cannot be interrupted by the fake clock
        if self._finished or self.running:
            return
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._finished or self._cancelled


class FakeScheduler(Scheduler):
    """
    Deterministic Scheduler.

    Nothing fires until `advance()` is awaited. `sleep()` moves the clock
    forward immediately and records the requested delay in `sleeps`.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: List[Tuple[float, int, FakeTask]] = []
        self._seq = count()
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += max(seconds, 0)
        await asyncio.sleep(0)

    def call_later(self, delay: float, callback) -> ScheduledTask:
        task = FakeTask(self._now + max(delay, 0), callback)
        heapq.heappush(self._queue, (task.deadline, next(self._seq), task))
        return task

    @property
    def pending(self) -> int:
        return sum(1 for _, _, task in self._queue if not task.done and not task.running)

    async def advance(self, seconds: float) -> None:
        """Run every callback due within `seconds`, in deadline order."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            deadline, _, task = heapq.heappop(self._queue)
            if task.done:
                continue
            self._now = max(self._now, deadline)
            task.running = True
            try:
                await task.callback()
            except Exception:
                logger.exception("Scheduled callback failed")
            finally:
                task.running = False
                task._finished = True
        self._now = max(self._now, target)


# ══════════════════════════════════════════════════════════════════════════
# Fake Backend
# ══════════════════════════════════════════════════════════════════════════

Reply = Any  # (status, json) tuple, Exception instance, or callable(request)


class FakeBackend:
    """
    Scripted backend behind httpx.MockTransport.

    `script(method, path, *replies)` sets the replies for one route; they are
    used in order and the last one repeats. Every request is logged.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], List[Reply]] = {}
        self.script("GET", "/health", (200, {"status": "healthy"}))

    def script(self, method: str, path: str, *replies: Reply) -> None:
        self._routes[(method, path)] = list(replies)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self._routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"error": "Not found"})
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        status, body = reply
        if isinstance(body, (str, bytes)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)


# ══════════════════════════════════════════════════════════════════════════
# Fake Audio
# ══════════════════════════════════════════════════════════════════════════


class FakeAudioSource(AudioSource):
    """Pushes chunks on demand with emit(); `tail` is flushed on stop()."""

    def __init__(self, tail: Optional[List[bytes]] = None, fail_with: Optional[Exception] = None):
        self.tail = list(tail or [])
        self.fail_with = fail_with
        self.started = 0
        self.stopped = 0
        self.released = 0
        self._on_chunk: Optional[ChunkCallback] = None

    @property
    def active(self) -> bool:
        return self._on_chunk is not None

    async def start(self, on_chunk: ChunkCallback) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self._on_chunk = on_chunk
        self.started += 1

    def emit(self, chunk: bytes) -> None:
        assert self._on_chunk is not None, "not recording"
        self._on_chunk(chunk)

    async def stop(self) -> None:
        if self._on_chunk is None:
            return
        on_chunk, self._on_chunk = self._on_chunk, None
        for chunk in self.tail:
            on_chunk(chunk)
        self.tail = []
        self.stopped += 1

    async def release(self) -> None:
        self._on_chunk = None
        self.released += 1


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """
    Settings for tests.

    What:    Production defaults, pointed at http://test with a temp store path.
    Why:     Timing constants stay at their real values; the fake clock makes
             them instant.
    """
    return Settings(
        api_base_url="http://test",
        credential_path=str(tmp_path / "credentials.json"),
        log_level="WARNING",
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def audio() -> FakeAudioSource:
    return FakeAudioSource()


@pytest.fixture
def make_app(test_settings, backend, scheduler, store) -> Callable[..., NoteBuddyApp]:
    """Factory for apps wired to the fakes; settings can be overridden."""
    created: List[NoteBuddyApp] = []

    def _make(**overrides) -> NoteBuddyApp:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        app = create_app(
            settings=settings,
            transport=httpx.MockTransport(backend.handler),
            scheduler=scheduler,
            store=store,
        )
        created.append(app)
        return app

    return _make


@pytest_asyncio.fixture
async def app(make_app):
    """
    Provides a NoteBuddyApp over the fake backend, not logged in.

    Usage:
        async def test_health(app, backend):
            assert await app.health.check_health() is HealthStatus.READY
    """
    instance = make_app()
    yield instance
    await instance.http.aclose()


@pytest_asyncio.fixture
async def logged_in_app(app):
    """Same as `app`, with a saved credential for ada/secret."""
    await app.credentials.save_credential("ada", "secret")
    yield app


@pytest_asyncio.fixture
async def stub_app(test_settings, scheduler, store):
    """
    Provides a NoteBuddyApp talking to the in-memory FastAPI stub backend.

    What:    End-to-end wiring over httpx.ASGITransport.
    Why:     Exercises real multipart/JSON encoding against a real ASGI app.
    How:     The stub's state is reachable as `stub_app.backend_state`.
    """
    api = build_stub_backend()
    instance = create_app(
        settings=test_settings,
        transport=httpx.ASGITransport(app=api),
        scheduler=scheduler,
        store=store,
    )
    instance.backend_state = api.state.data
    yield instance
    await instance.http.aclose()
