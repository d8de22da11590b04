"""
Configuration helpers for the user directory backend.

Routers/services read settings through ``get_settings()`` instead of fetching
os.environ directly. Tests call ``get_settings.cache_clear()`` after patching
the environment.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import os

PACKAGE_DIR = Path(__file__).resolve().parents[1]

DEV_CORS_ORIGINS = (
    "http://localhost:4200",
    "http://127.0.0.1:4200",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    api_prefix: str
    users_data_file: Path
    log_level: str
    log_format: str
    cors_origins: tuple[str, ...]


def data_file_candidates(cwd: Path | None = None) -> list[Path]:
    """Locations probed for users.json, in priority order."""
    base = cwd or Path.cwd()
    return [
        PACKAGE_DIR / "data" / "users.json",
        base / "data" / "users.json",
        base / "api" / "data" / "users.json",
    ]


def resolve_data_file(explicit: str | None = None, cwd: Path | None = None) -> Path:
    """
    Pick the backing file: the explicit path when given, otherwise the first
    existing candidate, falling back to the first candidate.
    """
    if explicit:
        return Path(explicit).expanduser().resolve()
    candidates = data_file_candidates(cwd)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _origins(value: str | None) -> list[str]:
        if not value:
            return []
        return [item.strip().rstrip("/") for item in value.split(",") if item.strip()]

    app_env = (os.getenv("APP_ENV") or "dev").lower()
    prefix = "/" + (os.getenv("API_PREFIX", "/api").strip().strip("/"))
    origins = set(_origins(os.getenv("CORS_ORIGINS")))
    if app_env != "prod":
        origins.update(DEV_CORS_ORIGINS)

    return Settings(
        app_env=app_env,
        api_prefix="" if prefix == "/" else prefix,
        users_data_file=resolve_data_file(os.getenv("USERS_DATA_FILE")),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        log_format=(os.getenv("LOG_FORMAT") or ("json" if app_env == "prod" else "text")).lower(),
        cors_origins=tuple(sorted(origins)),
    )
