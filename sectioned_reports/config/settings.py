"""Environment-backed runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_ENV_FILE = _PROJECT_ROOT / ".env"
_DEFAULT_SQLITE_PATH = _PROJECT_ROOT / "data" / "sectioned_reports.db"

FETCHER_MODES = ("http", "llm", "demo")


def _parse_optional_int(name: str, raw_value: str | None) -> Optional[int]:
    """Parse optional integer env values such as LLM_MAX_TOKENS."""
    if raw_value is None:
        return None
    value = raw_value.strip()
    if value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer when set") from exc


def _parse_float(name: str, raw_value: str | None, default: float) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        return float(raw_value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a number when set") from exc


def _load_env_file(path: Path) -> None:
    """Populate process env vars from .env when present."""
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip("'\"")
        if key:
            os.environ.setdefault(key, value)


@dataclass(frozen=True)
class Settings:
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    LLM_MAX_TOKENS: Optional[int] = 4000
    SECTION_FETCHER_MODE: str = "demo"
    SECTION_ENDPOINT_URL: str = ""
    SECTION_REQUEST_TIMEOUT: float = 120.0
    SQLITE_DB_PATH: str = str(_DEFAULT_SQLITE_PATH)
    CORS_ALLOW_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"

    @classmethod
    def from_env(cls) -> "Settings":
        mode = os.getenv("SECTION_FETCHER_MODE", "demo").strip().lower() or "demo"
        if mode not in FETCHER_MODES:
            raise ValueError(
                f"SECTION_FETCHER_MODE must be one of {', '.join(FETCHER_MODES)}; got {mode!r}"
            )
        max_tokens = _parse_optional_int("LLM_MAX_TOKENS", os.getenv("LLM_MAX_TOKENS"))
        return cls(
            OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
            OPENAI_BASE_URL=os.getenv("OPENAI_BASE_URL", ""),
            OPENAI_MODEL=os.getenv("OPENAI_MODEL", "gpt-4o"),
            LLM_MAX_TOKENS=4000 if max_tokens is None else max_tokens,
            SECTION_FETCHER_MODE=mode,
            SECTION_ENDPOINT_URL=os.getenv("SECTION_ENDPOINT_URL", ""),
            SECTION_REQUEST_TIMEOUT=_parse_float(
                "SECTION_REQUEST_TIMEOUT", os.getenv("SECTION_REQUEST_TIMEOUT"), 120.0
            ),
            SQLITE_DB_PATH=os.getenv("SQLITE_DB_PATH", str(_DEFAULT_SQLITE_PATH)),
            CORS_ALLOW_ORIGINS=os.getenv(
                "CORS_ALLOW_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
            ),
        )


@lru_cache
def get_settings() -> Settings:
    _load_env_file(_ENV_FILE)
    return Settings.from_env()
