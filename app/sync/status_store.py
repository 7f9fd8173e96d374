"""PULSE: Sync Status Store.

Persists one SyncStatus row per (company, platform). Writes here are
bookkeeping: a failure to record status is logged and swallowed so it can
never abort the batch that produced it.
"""

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.core.clock import as_utc, utcnow
from app.core.logging import get_logger
from app.database import upsert_rows
from app.models.sync_models import SyncOutcome, SyncStatus

logger = get_logger("sync.status")

MAX_ERROR_LENGTH = 500


@dataclass(frozen=True)
class StatusView:
    """Immutable copy of a SyncStatus row taken at the start of a run."""

    company_id: str
    platform: str
    last_success_at: Optional[datetime]
    last_attempt_at: Optional[datetime]
    consecutive_failures: int
    last_error: Optional[str]
    data_start_date: Optional[str] = None
    data_end_date: Optional[str] = None

    @classmethod
    def from_row(cls, row: SyncStatus) -> "StatusView":
        return cls(
            company_id=row.company_id,
            platform=row.platform,
            last_success_at=as_utc(row.last_success_at),
            last_attempt_at=as_utc(row.last_attempt_at),
            consecutive_failures=row.consecutive_failures,
            last_error=row.last_error,
            data_start_date=row.data_start_date,
            data_end_date=row.data_end_date,
        )


# company_id -> platform -> StatusView, read-only for the whole run
StatusSnapshot = Mapping[str, Mapping[str, StatusView]]


def build_snapshot(rows: Iterable[SyncStatus]) -> StatusSnapshot:
    """Freeze status rows into a nested read-only lookup."""
    grouped: Dict[str, Dict[str, StatusView]] = {}
    for row in rows:
        grouped.setdefault(row.company_id, {})[row.platform] = StatusView.from_row(row)
    return MappingProxyType(
        {cid: MappingProxyType(platforms) for cid, platforms in grouped.items()}
    )


class SyncStatusStore:
    """Reads and writes sync_status rows, one short session per call."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def ensure_rows(self, company_ids: Iterable[str], platforms: Iterable[str]) -> bool:
        """Insert a row for every missing (company, platform) pair.

        Existing rows are never touched. Returns False if the insert failed.
        """
        platforms = [str(getattr(p, "value", p)) for p in platforms]
        rows = [
            {
                "company_id": cid,
                "platform": p,
                "sync_state": "idle",
                "consecutive_failures": 0,
            }
            for cid in company_ids
            for p in platforms
        ]
        try:
            with Session(self.engine) as session:
                upsert_rows(session, SyncStatus, rows, ["company_id", "platform"])
                session.commit()
            return True
        except Exception as e:
            logger.error(f"Error ensuring sync_status rows: {e}")
            return False

    def list_all(self) -> List[SyncStatus]:
        with Session(self.engine) as session:
            return list(session.exec(select(SyncStatus)).all())

    def snapshot(self) -> StatusSnapshot:
        return build_snapshot(self.list_all())

    def get(self, company_id: str, platform: str) -> Optional[SyncStatus]:
        with Session(self.engine) as session:
            return session.exec(
                select(SyncStatus).where(
                    SyncStatus.company_id == company_id,
                    SyncStatus.platform == platform,
                )
            ).first()

    def _load_or_new(self, session: Session, company_id: str, platform: str) -> SyncStatus:
        row = session.exec(
            select(SyncStatus).where(
                SyncStatus.company_id == company_id,
                SyncStatus.platform == platform,
            )
        ).first()
        if row is None:
            row = SyncStatus(company_id=company_id, platform=platform)
        return row

    def record_result(
        self,
        company_id: str,
        platform: str,
        outcome: SyncOutcome,
        error: Optional[str] = None,
        window: Optional[Tuple[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Persist the outcome of one task. Never raises.

        Skipped outcomes leave the row alone: nothing was attempted.
        """
        if outcome == SyncOutcome.SKIPPED:
            return
        now = now or utcnow()
        try:
            with Session(self.engine) as session:
                row = self._load_or_new(session, company_id, platform)
                row.last_attempt_at = now
                if outcome == SyncOutcome.SUCCESS:
                    row.sync_state = "success"
                    row.last_success_at = now
                    row.consecutive_failures = 0
                    row.last_error = None
                    if window:
                        start, end = window
                        if not row.data_start_date or start < row.data_start_date:
                            row.data_start_date = start
                        if not row.data_end_date or end > row.data_end_date:
                            row.data_end_date = end
                else:
                    row.sync_state = "error"
                    row.consecutive_failures = (row.consecutive_failures or 0) + 1
                    message = f"{outcome.value}: {error or 'unknown error'}"
                    row.last_error = message[:MAX_ERROR_LENGTH]
                session.add(row)
                session.commit()
        except Exception as e:
            logger.error(
                f"Could not record {outcome.value} for {platform}: {e}",
                extra={"company_id": company_id, "platform": platform},
            )
