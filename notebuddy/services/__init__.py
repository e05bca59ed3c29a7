# Services package init
"""
NoteBuddy Client - Services Layer
==================================

What:  Everything between the UI and the wire.
How:   Services take their collaborators in the constructor; main.create_app()
       wires them together.

Service Inventory:
    - CredentialStore: identity + token, persisted across restarts
    - HealthMonitor: backend liveness, gate and background refresh
    - ResilientClient: health-gated, auth-injecting calls with bounded retry
    - SessionOrchestrator: login/register/logout and authenticated calls
    - AudioSource (abstract): capture contract; FileAudioSource replays a file
    - TranscriptionJobController: record → upload → poll → transcript
    - NoteService: note CRUD and summary flows
"""
