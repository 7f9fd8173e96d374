"""PULSE: Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Database ──
    database_url: str = ""

    # ── Security ──
    cron_secret: str = ""
    app_base_url: str = "http://localhost:8000"

    # ── Google OAuth (token refresh only) ──
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_token_url: str = "https://oauth2.googleapis.com/token"

    # ── LinkedIn OAuth (token refresh only) ──
    linkedin_client_id: Optional[str] = None
    linkedin_client_secret: Optional[str] = None
    linkedin_token_url: str = "https://www.linkedin.com/oauth/v2/accessToken"
    linkedin_api_version: str = "202405"

    # ── Provider endpoints ──
    ga_data_api_url: str = "https://analyticsdata.googleapis.com/v1beta"
    gsc_api_url: str = "https://www.googleapis.com/webmasters/v3"
    youtube_analytics_url: str = "https://youtubeanalytics.googleapis.com/v2"
    linkedin_api_url: str = "https://api.linkedin.com/rest"
    provider_timeout_seconds: float = 30.0

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    sync_hours: str = "6,18"  # Twice daily, UTC

    # ── Sync engine ──
    sync_batch_size: int = 3
    sync_batch_delay_ms: int = 1000
    sync_max_execution_ms: int = 270_000  # Leaves headroom under a 5 min host ceiling
    sync_backfill_days: int = 90
    sync_retry_attempts: int = 3
    sync_retry_initial_delay_ms: int = 1000
    sync_retry_backoff_factor: float = 2.0
    data_retention_days: int = 365

    # ── Cache TTLs (seconds) ──
    cache_ttl_realtime: int = 30
    cache_ttl_dashboard: int = 3600
    cache_ttl_daily_snapshot: int = 86_400
    cache_ttl_portfolio: int = 86_400
    cache_warm_after_sync: bool = True  # Rebuild 30-day snapshots once fresh data lands

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/pulse.db"
        return "sqlite:///./pulse.db"

    @property
    def cache_ttls(self) -> Dict[str, int]:
        return {
            "realtime": self.cache_ttl_realtime,
            "dashboard": self.cache_ttl_dashboard,
            "daily_snapshot": self.cache_ttl_daily_snapshot,
            "portfolio": self.cache_ttl_portfolio,
        }

    @property
    def sync_hour_list(self) -> List[int]:
        return [int(h) for h in self.sync_hours.split(",") if h.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
