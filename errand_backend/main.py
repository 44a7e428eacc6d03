# Role: FastAPI app bootstrap. Loads environment config early, registers routers, runs the session sweeper
# for the lifetime of the app, and exposes health/docs endpoints.

from contextlib import asynccontextmanager

from fastapi import FastAPI

import errand_backend.config
errand_backend.config.load_env()

from errand_backend.api.chat import router as chat_router
from errand_backend.api.deps import orchestrator
from errand_backend.api.state import router as state_router
from errand_backend.api.voice import router as voice_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator.store.start_sweeper()
    yield
    orchestrator.store.stop_sweeper()


app = FastAPI(title="Errand Router API", version="0.1.0", lifespan=lifespan)
app.include_router(chat_router)
app.include_router(voice_router)
app.include_router(state_router)


@app.get("/")
def root() -> dict:
    # Role: quick discoverability for clients (where are docs/health).
    return {
        "message": "Errand Router API is running",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "sessions": orchestrator.store.stats()}
