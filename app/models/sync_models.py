"""PULSE: Sync Status & Sync Result Models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import SQLModel, Field, UniqueConstraint


# ─────────────────────────────────────────────
# DATABASE MODEL: one row per (company, platform)
# ─────────────────────────────────────────────


class SyncStatus(SQLModel, table=True):
    """Last known sync state for one company's platform.

    Rows are created lazily before each run and only mutated by the
    sync task on completion.
    """

    __tablename__ = "sync_status"
    __table_args__ = (
        UniqueConstraint("company_id", "platform", name="uq_sync_status"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True, foreign_key="companies.id")
    platform: str = Field(index=True)
    sync_state: str = Field(default="idle", description="idle | success | error")
    last_success_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    consecutive_failures: int = Field(default=0)
    last_error: Optional[str] = None
    data_start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    data_end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")


# ─────────────────────────────────────────────
# RUN RESULTS
# ─────────────────────────────────────────────


class SyncOutcome(str, Enum):
    """How one (company, platform) sync ended."""

    SUCCESS = "success"
    SKIPPED = "skipped"  # No mapping configured
    AUTH_REQUIRED = "auth_required"  # Credential missing/expired/scope
    API_ERROR = "api_error"  # Provider failure after retries
    STORE_ERROR = "store_error"  # Persisting rows failed

    @property
    def is_failure(self) -> bool:
        return self not in (SyncOutcome.SUCCESS, SyncOutcome.SKIPPED)


class CamelModel(BaseModel):
    """Serialises to camelCase for the dashboard client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncResult(CamelModel):
    """Result of one (company, platform) task."""

    company_id: str
    company: str
    platform: str
    status: SyncOutcome
    rows_synced: int = 0
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    error: Optional[str] = None


class PerformanceMetrics(CamelModel):
    """Batch-level counters for one run. Times are epoch milliseconds."""

    start_time: int
    end_time: Optional[int] = None
    duration: Optional[int] = None
    batches_processed: int = 0
    success_count: int = 0
    error_count: int = 0


class SyncRunReport(CamelModel):
    """Response body of GET /sync-analytics."""

    message: str
    timestamp: str
    results: List[SyncResult] = []
    performance: PerformanceMetrics
    partial_run: bool = False
    batches_total: int = 0


class StatusRow(CamelModel):
    """A sync_status row as shown on the admin sync-status screen."""

    company_id: str
    company_name: str = ""
    platform: str
    sync_state: str
    last_success_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    data_start_date: Optional[str] = None
    data_end_date: Optional[str] = None
