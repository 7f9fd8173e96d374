"""PULSE: Normalized Daily Metric Models.

Two layers:
  * Tagged pydantic variants (one per platform) that adapters must produce.
    Anything a provider returns is validated into one of these before it is
    allowed near the database.
  * One SQLModel fact table per platform, unique on (company_id, metric_date)
    so re-running a sync overwrites instead of duplicating.
"""

from datetime import datetime, timezone
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlmodel import SQLModel, Field, UniqueConstraint

from app.core.platform_registry import Platform


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────
# ADAPTER OUTPUT: closed set of tagged variants
# ─────────────────────────────────────────────


class _DailyRowBase(BaseModel):
    metric_date: str

    @field_validator("metric_date", mode="before")
    @classmethod
    def _normalize_date(cls, v):
        """Accept YYYY-MM-DD or the compact YYYYMMDD Google returns."""
        s = str(v)
        if len(s) == 8 and s.isdigit():
            s = f"{s[:4]}-{s[4:6]}-{s[6:]}"
        datetime.strptime(s, "%Y-%m-%d")
        return s

    def measures(self) -> Dict[str, float]:
        """Measure columns only, ready for the fact table."""
        return self.model_dump(exclude={"platform", "metric_date"})


class GADailyRow(_DailyRowBase):
    platform: Literal["ga"] = "ga"
    total_users: int = 0
    new_users: int = 0
    sessions: int = 0
    page_views: int = 0
    avg_session_duration: float = 0.0
    bounce_rate: float = 0.0
    key_events: float = 0.0
    user_key_event_rate: float = 0.0


class GSCDailyRow(_DailyRowBase):
    platform: Literal["gsc"] = "gsc"
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0
    avg_position: float = 0.0


class YouTubeDailyRow(_DailyRowBase):
    platform: Literal["youtube"] = "youtube"
    views: int = 0
    watch_time_seconds: float = 0.0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    subscribers_gained: int = 0
    subscribers_lost: int = 0
    avg_view_duration: float = 0.0


class LinkedInDailyRow(_DailyRowBase):
    platform: Literal["linkedin"] = "linkedin"
    desktop_visitors: int = 0
    mobile_visitors: int = 0
    organic_follower_gain: int = 0
    paid_follower_gain: int = 0
    impressions: int = 0
    clicks: int = 0
    reactions: int = 0
    comments: int = 0
    shares: int = 0


DailyRow = Annotated[
    Union[GADailyRow, GSCDailyRow, YouTubeDailyRow, LinkedInDailyRow],
    PydanticField(discriminator="platform"),
]


class DailyRowBatch(BaseModel):
    """Envelope used to validate a provider's rows in one go."""

    rows: List[DailyRow] = []


class GAChannelRow(_DailyRowBase):
    """Sessions for one GA default channel group on one day."""

    channel: str
    sessions: int = 0


# ─────────────────────────────────────────────
# DATABASE MODELS: per-platform fact tables
# ─────────────────────────────────────────────


class _FactBase(SQLModel):
    company_id: str = Field(index=True, foreign_key="companies.id")
    metric_date: str = Field(index=True, description="YYYY-MM-DD")
    updated_at: datetime = Field(default_factory=_now)


class GADailyMetric(_FactBase, table=True):
    __tablename__ = "ga_daily_metrics"
    __table_args__ = (
        UniqueConstraint("company_id", "metric_date", name="uq_ga_daily"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    total_users: int = 0
    new_users: int = 0
    sessions: int = 0
    page_views: int = 0
    avg_session_duration: float = 0.0
    bounce_rate: float = 0.0
    key_events: float = 0.0
    user_key_event_rate: float = 0.0


class GSCDailyMetric(_FactBase, table=True):
    __tablename__ = "gsc_daily_metrics"
    __table_args__ = (
        UniqueConstraint("company_id", "metric_date", name="uq_gsc_daily"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0
    avg_position: float = 0.0


class YouTubeDailyMetric(_FactBase, table=True):
    __tablename__ = "yt_daily_metrics"
    __table_args__ = (
        UniqueConstraint("company_id", "metric_date", name="uq_yt_daily"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    views: int = 0
    watch_time_seconds: float = 0.0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    subscribers_gained: int = 0
    subscribers_lost: int = 0
    avg_view_duration: float = 0.0


class LinkedInDailyMetric(_FactBase, table=True):
    __tablename__ = "li_daily_metrics"
    __table_args__ = (
        UniqueConstraint("company_id", "metric_date", name="uq_li_daily"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    desktop_visitors: int = 0
    mobile_visitors: int = 0
    organic_follower_gain: int = 0
    paid_follower_gain: int = 0
    impressions: int = 0
    clicks: int = 0
    reactions: int = 0
    comments: int = 0
    shares: int = 0


class GAChannelDaily(_FactBase, table=True):
    __tablename__ = "ga_channel_daily"
    __table_args__ = (
        UniqueConstraint("company_id", "metric_date", "channel", name="uq_ga_channel_daily"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    channel: str = Field(index=True)
    sessions: int = 0


FACT_TABLES: Dict[Platform, type] = {
    Platform.GA: GADailyMetric,
    Platform.GSC: GSCDailyMetric,
    Platform.YOUTUBE: YouTubeDailyMetric,
    Platform.LINKEDIN: LinkedInDailyMetric,
}

# Per-day breakdowns that sit beside the fact tables; same retention rules
BREAKDOWN_TABLES: List[type] = [GAChannelDaily]
