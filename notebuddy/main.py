"""
NoteBuddy Client - Application Factory
=======================================

What:  Builds the object graph of the client core and manages its lifecycle.
Why:   Every component takes its collaborators explicitly; this module is the
       one place that knows how they fit together.
How:   Factory pattern: create_app() returns a NoteBuddyApp holding one shared
       httpx.AsyncClient and one instance of each service. lifespan() wraps
       startup and shutdown around it.
Who:   The UI shell (or a script) creates the app once per process.

Object Graph:
    ┌──────────────────────────────────────────────────────────┐
    │                       NoteBuddyApp                       │
    │                                                          │
    │  httpx.AsyncClient ◀── HealthMonitor ◀──┐                │
    │        ▲                                │                │
    │        └────────── ResilientClient ─────┤                │
    │                          ▲         CredentialStore       │
    │                          │              ▲                │
    │                  SessionOrchestrator ───┘                │
    │                     ▲          ▲                         │
    │              NoteService   TranscriptionJobController    │
    │                            (one per recording dialog)    │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Restore a persisted session
    3. Probe the backend once (wakes a cold backend early)
    4. Start the background health refresh

    Shutdown:
    1. Stop the health refresh
    2. Close every open recording workflow
    3. Close the HTTP client
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

import httpx

from notebuddy.config import Settings, settings as default_settings
from notebuddy.scheduling import AsyncioScheduler, Scheduler
from notebuddy.services.api_client import ResilientClient
from notebuddy.services.audio_base import AudioSource
from notebuddy.services.credential_store import CredentialStore
from notebuddy.services.health_service import HealthMonitor
from notebuddy.services.note_service import NoteService
from notebuddy.services.session_service import SessionOrchestrator
from notebuddy.services.transcription_service import TranscriptionJobController
from notebuddy.storage import JsonFileStore, KeyValueStore

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure logging for the whole client.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Per-request lines carry their own "[request_id]" prefix.
    """
    settings = settings or default_settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # httpx logs every request at INFO
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application
# ══════════════════════════════════════════════════════════════════════════


class NoteBuddyApp:
    """Container for the wired services. Build it with create_app()."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        scheduler: Scheduler,
        store: KeyValueStore,
    ):
        self.settings = settings
        self.http = http
        self.scheduler = scheduler
        self.credentials = CredentialStore(store)
        self.health = HealthMonitor(http, scheduler, settings)
        self.client = ResilientClient(http, self.health, self.credentials, scheduler, settings)
        self.session = SessionOrchestrator(self.client, self.health, self.credentials, settings)
        self.notes = NoteService(self.session, settings)
        self._workflows: List[TranscriptionJobController] = []

    def new_recording_workflow(self, audio_source: AudioSource) -> TranscriptionJobController:
        """One controller per recording dialog; closed with the app."""
        workflow = TranscriptionJobController(
            self.session, audio_source, self.scheduler, self.settings
        )
        self._workflows.append(workflow)
        return workflow

    async def startup(self) -> None:
        restored = await self.session.restore()
        status = await self.health.check_health()
        self.health.start()
        logger.info(
            "NoteBuddy client started (backend=%s, status=%s, session=%s)",
            self.settings.api_base_url,
            status.value,
            "restored" if restored else "none",
        )

    async def shutdown(self) -> None:
        self.health.stop()
        for workflow in self._workflows:
            await workflow.close()
        self._workflows.clear()
        await self.http.aclose()
        logger.info("NoteBuddy client shut down")


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    scheduler: Optional[Scheduler] = None,
    store: Optional[KeyValueStore] = None,
) -> NoteBuddyApp:
    """
    Build a NoteBuddyApp.

    Args:
        settings: Defaults to the environment-loaded singleton
        transport: httpx transport override (mock or ASGI backend in tests)
        scheduler: Defaults to AsyncioScheduler
        store: Defaults to a JsonFileStore at settings.credential_path
    """
    settings = settings or default_settings
    http = httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
        transport=transport,
    )
    return NoteBuddyApp(
        settings=settings,
        http=http,
        scheduler=scheduler or AsyncioScheduler(),
        store=store or JsonFileStore(settings.credential_path),
    )


@asynccontextmanager
async def lifespan(app: NoteBuddyApp) -> AsyncGenerator[NoteBuddyApp, None]:
    """
    Run the app between startup and shutdown.

    Usage:
        async with lifespan(create_app()) as app:
            await app.session.login("ada", "secret")
    """
    setup_logging(app.settings)
    await app.startup()
    try:
        yield app
    finally:
        await app.shutdown()
