# Role: Central configuration module. Loads .env into environment variables and computes runtime flags (DEBUG).
# Importers read errand_backend.config.DEBUG to control trace output without threading flags through every call.
# Other settings are read lazily through small getters so tests can patch os.environ.

from __future__ import annotations

import os
from dotenv import load_dotenv

DEBUG: bool = False

DEFAULT_FAST_MODEL = "gemini-2.0-flash"
DEFAULT_ADVANCED_MODEL = "gemini-1.5-pro"


def load_env() -> None:
    """
    Load .env into os.environ, then recompute DEBUG.
    This makes DEBUG correct even if load_env() is called after import.
    """
    global DEBUG
    load_dotenv()
    # Key line: accept common truthy values.
    DEBUG = os.getenv("DEBUG", "0").lower() in {"1", "true", "yes"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def gemini_api_key() -> str:
    return (os.getenv("GEMINI_API_KEY") or "").strip()


def fast_model() -> str:
    return os.getenv("GEMINI_FAST_MODEL", DEFAULT_FAST_MODEL)


def advanced_model() -> str:
    return os.getenv("GEMINI_ADVANCED_MODEL", DEFAULT_ADVANCED_MODEL)


def google_maps_api_key() -> str:
    return (os.getenv("GOOGLE_MAPS_API_KEY") or "").strip()


def session_ttl_minutes() -> int:
    return _int_env("SESSION_TTL_MINUTES", 30)


def sweep_interval_seconds() -> int:
    return _int_env("SWEEP_INTERVAL_SECONDS", 300)


def clarification_ttl_seconds() -> int:
    return _int_env("CLARIFICATION_TTL_SECONDS", 60)


def max_tool_calls_per_turn() -> int:
    return _int_env("MAX_TOOL_CALLS_PER_TURN", 8)
