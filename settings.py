"""App settings.

`config.Config` reads these as defaults and lets environment variables override
them. Keep secrets out of this file (set GEMINI_API_KEY in the environment or
in a local .env file).
"""

# Single source of truth for default configuration.
SETTINGS: dict[str, object] = {
    # Logging
    "LOG_LEVEL": "INFO",
    # Extraction service (Gemini)
    "GEMINI_MODEL_NAME": "gemini-2.5-flash-lite",
    "GEMINI_MAX_ATTEMPTS": 5,
    "GEMINI_INITIAL_DELAY_SECONDS": 3.0,
    "GEMINI_MAX_BACKOFF_SECONDS": 60.0,
    # The service-suggested delay is already a good estimate, so jitter is narrower.
    "GEMINI_JITTER_WITH_SUGGESTION_SECONDS": 1.0,
    "GEMINI_JITTER_WITHOUT_SUGGESTION_SECONDS": 3.0,
    "GEMINI_MAX_CONCURRENT_CALLS": 15,
    # Orchestration
    "SYNC_MAX_CONCURRENT_ENTITIES": 4,
    # Business registry portal
    "PORTAL_BASE_URL": "https://publicity.businessportal.gr",
    "PAGE_LOAD_TIMEOUT_SECONDS": 60.0,
    "DOWNLOAD_TIMEOUT_SECONDS": 120.0,
    "PORTAL_USER_AGENT": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "CRAWLER_HEADLESS": True,
    # Local working directory (downloads + JSON snapshots live underneath).
    "WORKING_DIR": "work",
}

# Optional convenience exports (mirrors earlier style).
LOG_LEVEL = SETTINGS["LOG_LEVEL"]
GEMINI_MODEL_NAME = SETTINGS["GEMINI_MODEL_NAME"]
PORTAL_BASE_URL = SETTINGS["PORTAL_BASE_URL"]
