"""PULSE: Analytics Cache Model & Cache Warm Report."""

from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import SQLModel, Field

from app.models.sync_models import CamelModel


class AnalyticsCache(SQLModel, table=True):
    """Short-lived computed payload for one company and data type.

    Writers delete-then-insert, so at most one live entry exists per
    (company_id, data_type, start_date, end_date).
    """

    __tablename__ = "analytics_cache"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True, description="Company id, or a portfolio key")
    data_type: str = Field(index=True, description="realtime | dashboard | daily_snapshot | portfolio")
    data_json: str = Field(description="Cached payload as JSON")
    start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime


class WarmResult(CamelModel):
    """Outcome of pre-building one cache entry."""

    key: str
    data_type: str
    status: str  # success | error
    error: Optional[str] = None


class CacheWarmReport(CamelModel):
    """Response body of the cache refresh endpoints."""

    message: str
    timestamp: str
    start_date: str
    end_date: str
    snapshots_warmed: int = 0
    portfolios_warmed: int = 0
    error_count: int = 0
    results: List[WarmResult] = []
