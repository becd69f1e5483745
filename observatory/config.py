"""Agent Observatory configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_path(name: str) -> Path | None:
    value = (os.getenv(name) or "").strip()
    if not value:
        return None
    return Path(value).expanduser().resolve()


# Runtime state root: <state>/agents/<agentId>/sessions/*.jsonl
STATE_DIR = _env_path("OBSERVATORY_STATE_DIR") or (Path.home() / ".openclaw")
# Workspace root; the memory corpus lives at <workspace>/memory
WORKSPACE_DIR = _env_path("OBSERVATORY_WORKSPACE_DIR")

# Collection defaults
DEFAULT_DAYS = _env_int("OBSERVATORY_DEFAULT_DAYS", 30)
DEFAULT_SESSION_LIMIT = _env_int("OBSERVATORY_SESSION_LIMIT", 250)
DEFAULT_CORPUS_FILE_LIMIT = _env_int("OBSERVATORY_CORPUS_FILE_LIMIT", 100)
DEFAULT_EVENT_LIMIT = _env_int("OBSERVATORY_EVENT_LIMIT", 240)
CACHE_TTL_SECONDS = _env_int("OBSERVATORY_CACHE_TTL_SECONDS", 15)

# Observability
OTEL_ENABLED = _env_bool("OBSERVATORY_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("OBSERVATORY_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("OBSERVATORY_OTEL_SERVICE_NAME", "agent-observatory")
PROM_PORT = _env_int("OBSERVATORY_PROM_PORT", 0)

# Server settings
HOST = os.getenv("OBSERVATORY_HOST", "127.0.0.1")
PORT = _env_int("OBSERVATORY_PORT", 3188)

# CORS
FRONTEND_ORIGIN = os.getenv("OBSERVATORY_FRONTEND_ORIGIN", "http://localhost:3000")
