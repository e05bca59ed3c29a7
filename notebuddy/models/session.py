"""
NoteBuddy Client - Session Domain Models
=========================================

What:  In-memory state owned by the Credential Store and the Health Monitor.
Who:   CredentialStore creates Credential; HealthMonitor mutates HealthStatus;
       SessionOrchestrator returns AuthResult to the UI.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class HealthStatus(str, Enum):
    """
    Backend liveness as last observed by the Health Monitor.

    UNKNOWN   no probe has completed yet (process start)
    STARTING  last probe failed or reported a degraded backend
    READY     last probe returned status == "healthy"
    """

    UNKNOWN = "unknown"
    STARTING = "starting"
    READY = "ready"


@dataclass
class Credential:
    """
    Authenticated identity plus the header value sent with every call.

    Invariant: `token` is non-empty for as long as this object is the
    store's current credential.
    """

    identity: str
    token: str
    issued_at: datetime
    last_activity: datetime


@dataclass
class AuthResult:
    """
    Outcome of login/register.

    `backend_starting` is set when the backend never became ready (or timed
    out), so the UI can say "try again shortly" instead of "wrong password".
    """

    success: bool
    backend_starting: bool = False
    error: Optional[str] = None
