"""tokenviz backend configuration."""
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


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value.strip()).expanduser()


# Project root (one level up from tokenviz/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Usage log discovery
LOGS_ROOT = _env_path("TOKENVIZ_LOGS_ROOT", Path.home() / ".claude" / "projects")
LOG_PATTERN = os.getenv("TOKENVIZ_LOG_PATTERN", "**/*.jsonl")
SCAN_WORKERS = max(1, _env_int("TOKENVIZ_SCAN_WORKERS", 4))

# Storage
DB_PATH = _env_path("TOKENVIZ_DB_PATH", PROJECT_ROOT / "data" / "tokenviz.db")
ALIASES_PATH = _env_path("TOKENVIZ_ALIASES_PATH", PROJECT_ROOT / "project-aliases.json")
LOCAL_CACHE_PATH = _env_path("TOKENVIZ_LOCAL_CACHE_PATH", Path.home() / ".cache" / "tokenviz" / "usages.json")

# Stats
STATS_TOP_SESSIONS = max(1, _env_int("TOKENVIZ_STATS_TOP_SESSIONS", 20))

# Startup / watcher
STARTUP_RESCAN = _env_bool("TOKENVIZ_STARTUP_RESCAN", True)
STARTUP_RESCAN_DELAY_SECONDS = _env_int("TOKENVIZ_STARTUP_RESCAN_DELAY_SECONDS", 0)
WATCH_ENABLED = _env_bool("TOKENVIZ_WATCH_ENABLED", False)

# Observability
OTEL_ENABLED = _env_bool("TOKENVIZ_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("TOKENVIZ_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("TOKENVIZ_OTEL_SERVICE_NAME", "tokenviz-backend")
PROM_PORT = _env_int("TOKENVIZ_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("TOKENVIZ_HOST", "127.0.0.1")
PORT = _env_int("TOKENVIZ_PORT", 3001)

# CORS
FRONTEND_ORIGIN = os.getenv("TOKENVIZ_FRONTEND_ORIGIN", "http://localhost:5173")
