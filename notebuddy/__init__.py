"""
NoteBuddy Client - Package Initializer
======================================

What: Client core for the NoteBuddy note-capture backend.
Who:  Imported by UI shells, scripts and the test-suite (`from notebuddy.main import create_app`).

Architecture Note:
    The client follows the same layered shape as the backend it talks to:

    ┌─────────────────────────────────────────┐
    │   Workflows (recording, notes, session) │  ← what the UI calls
    ├─────────────────────────────────────────┤
    │        Resilient Client (api_client)    │  ← gate, auth, timeout, retry
    ├─────────────────────────────────────────┤
    │   Health Monitor  │  Credential Store   │  ← process-wide state holders
    ├─────────────────────────────────────────┤
    │   Scheduler  │  Key-value storage       │  ← timers and persistence
    └─────────────────────────────────────────┘

    Each layer only talks to the one below it, so every layer can be driven
    in tests with a fake transport and a fake clock.
"""

__version__ = "1.0.0"
