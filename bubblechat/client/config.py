"""
client/config.py
----------------
Client-side settings, loaded from BUBBLECHAT_CLIENT_* environment variables.
Independent of the server Settings so the client never needs server secrets.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BUBBLECHAT_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    BASE_URL: str = "http://localhost:8000"
    REQUEST_TIMEOUT_SECONDS: float = 45.0

    # ── Reconciliation ───────────────────────────────────────────────────
    # Local and server copies of one message match when role and text prefix
    # agree and their timestamps are at most MATCH_TOLERANCE_MS apart.
    MATCH_TOLERANCE_MS: int = 10_000
    MATCH_PREFIX_LENGTH: int = 200
    # Unmatched provisional messages younger than this survive a reload.
    RECENT_WINDOW_MS: int = 120_000

    PAGE_SIZE: int = 100
    GREETING: str = "Hi! How can I help today? 😊"


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
