# Role: Shared singletons for the HTTP adapters. One Orchestrator (and so one SessionStore) per process;
# routers import from here so every endpoint sees the same sessions.

from __future__ import annotations

from errand_backend.core.orchestrator import Orchestrator

orchestrator = Orchestrator()
