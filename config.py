from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from settings import SETTINGS

# Pick up a local .env (GEMINI_API_KEY etc.) without overriding real env vars.
load_dotenv(override=False)


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


class Config:
    """Runtime configuration: environment variables on top of `SETTINGS`.

    Values are read when the instance is created, so tests can monkeypatch the
    environment and build a fresh `Config()`.
    """

    def __init__(self) -> None:
        # Extraction service
        self.GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY") or None
        self.GEMINI_MODEL_NAME: str = _env_str(
            "GEMINI_MODEL_NAME", str(SETTINGS["GEMINI_MODEL_NAME"])
        )
        self.GEMINI_MAX_ATTEMPTS: int = _env_int(
            "GEMINI_MAX_ATTEMPTS", int(SETTINGS["GEMINI_MAX_ATTEMPTS"])
        )
        self.GEMINI_INITIAL_DELAY_SECONDS: float = _env_float(
            "GEMINI_INITIAL_DELAY_SECONDS",
            float(SETTINGS["GEMINI_INITIAL_DELAY_SECONDS"]),
        )
        self.GEMINI_MAX_BACKOFF_SECONDS: float = _env_float(
            "GEMINI_MAX_BACKOFF_SECONDS", float(SETTINGS["GEMINI_MAX_BACKOFF_SECONDS"])
        )
        self.GEMINI_JITTER_WITH_SUGGESTION_SECONDS: float = _env_float(
            "GEMINI_JITTER_WITH_SUGGESTION_SECONDS",
            float(SETTINGS["GEMINI_JITTER_WITH_SUGGESTION_SECONDS"]),
        )
        self.GEMINI_JITTER_WITHOUT_SUGGESTION_SECONDS: float = _env_float(
            "GEMINI_JITTER_WITHOUT_SUGGESTION_SECONDS",
            float(SETTINGS["GEMINI_JITTER_WITHOUT_SUGGESTION_SECONDS"]),
        )
        self.GEMINI_MAX_CONCURRENT_CALLS: int = _env_int(
            "GEMINI_MAX_CONCURRENT_CALLS", int(SETTINGS["GEMINI_MAX_CONCURRENT_CALLS"])
        )

        # Orchestration
        self.SYNC_MAX_CONCURRENT_ENTITIES: int = _env_int(
            "SYNC_MAX_CONCURRENT_ENTITIES",
            int(SETTINGS["SYNC_MAX_CONCURRENT_ENTITIES"]),
        )

        # Portal
        self.PORTAL_BASE_URL: str = _env_str(
            "PORTAL_BASE_URL", str(SETTINGS["PORTAL_BASE_URL"])
        ).rstrip("/")
        self.PAGE_LOAD_TIMEOUT_SECONDS: float = _env_float(
            "PAGE_LOAD_TIMEOUT_SECONDS", float(SETTINGS["PAGE_LOAD_TIMEOUT_SECONDS"])
        )
        self.DOWNLOAD_TIMEOUT_SECONDS: float = _env_float(
            "DOWNLOAD_TIMEOUT_SECONDS", float(SETTINGS["DOWNLOAD_TIMEOUT_SECONDS"])
        )
        self.PORTAL_USER_AGENT: str = _env_str(
            "PORTAL_USER_AGENT", str(SETTINGS["PORTAL_USER_AGENT"])
        )
        self.CRAWLER_HEADLESS: bool = _env_bool(
            "CRAWLER_HEADLESS", bool(SETTINGS["CRAWLER_HEADLESS"])
        )

        # Filesystem
        self.WORKING_DIR: Path = Path(
            _env_str("WORKING_DIR", str(SETTINGS["WORKING_DIR"]))
        )

        # Logging
        self.LOG_LEVEL: str = _env_str("LOG_LEVEL", str(SETTINGS["LOG_LEVEL"])).upper()

    @property
    def downloads_dir(self) -> Path:
        return self.WORKING_DIR / "downloads"

    @property
    def metadata_dir(self) -> Path:
        return self.WORKING_DIR / "metadata"

    def retry_policy(self):
        """Build the extraction retry policy from the current values."""

        # Local import keeps `config` importable without the genai SDK.
        from utils.gemini_client import RetryPolicy

        return RetryPolicy(
            max_attempts=self.GEMINI_MAX_ATTEMPTS,
            initial_delay=self.GEMINI_INITIAL_DELAY_SECONDS,
            max_backoff=self.GEMINI_MAX_BACKOFF_SECONDS,
            jitter_with_suggestion=self.GEMINI_JITTER_WITH_SUGGESTION_SECONDS,
            jitter_without_suggestion=self.GEMINI_JITTER_WITHOUT_SUGGESTION_SECONDS,
        )

    def summary(self) -> str:
        """Log-safe one-line summary (never includes the API key)."""

        return (
            f"model={self.GEMINI_MODEL_NAME} api_key={'<set>' if self.GEMINI_API_KEY else '<unset>'} "
            f"max_attempts={self.GEMINI_MAX_ATTEMPTS} max_calls={self.GEMINI_MAX_CONCURRENT_CALLS} "
            f"workers={self.SYNC_MAX_CONCURRENT_ENTITIES} portal={self.PORTAL_BASE_URL} "
            f"headless={self.CRAWLER_HEADLESS} working_dir={self.WORKING_DIR}"
        )
