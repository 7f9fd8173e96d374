"""PULSE: Read-Through Analytics Cache.

Entries live in analytics_cache keyed by (company_id, data_type[, start_date,
end_date]). Expiry is lazy: get() deletes a stale entry when it finds one.
put() deletes then inserts inside one transaction, so readers see either the
old entry or the new one, never half of either. Two concurrent puts for the
same key can both land; cached payloads are derivable, so that only wastes
work.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.config import settings
from app.core.clock import as_utc, utcnow
from app.core.logging import get_logger
from app.models.cache_models import AnalyticsCache

logger = get_logger("services.cache")

DEFAULT_TTL_SECONDS = 3600


def ttl_for(data_type: str) -> int:
    """TTL in seconds; volatile data types expire sooner."""
    return settings.cache_ttls.get(data_type, DEFAULT_TTL_SECONDS)


def _key_filter(company_id: str, data_type: str, start_date: Optional[str], end_date: Optional[str]):
    clauses = [
        AnalyticsCache.company_id == company_id,
        AnalyticsCache.data_type == data_type,
    ]
    clauses.append(
        AnalyticsCache.start_date == start_date
        if start_date is not None
        else AnalyticsCache.start_date.is_(None)  # type: ignore
    )
    clauses.append(
        AnalyticsCache.end_date == end_date
        if end_date is not None
        else AnalyticsCache.end_date.is_(None)  # type: ignore
    )
    return clauses


class AnalyticsCacheService:
    """TTL cache backed by the analytics_cache table."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._clock = clock

    def get(
        self,
        company_id: str,
        data_type: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Optional[Any]:
        """Cached payload, or None on a miss. Expired entries are deleted."""
        now = self._clock()
        clauses = _key_filter(company_id, data_type, start_date, end_date)
        with Session(self.engine) as session:
            entry = session.exec(
                select(AnalyticsCache)
                .where(*clauses)
                .order_by(AnalyticsCache.created_at.desc())  # type: ignore
            ).first()
            if entry is None:
                return None

            if as_utc(entry.expires_at) <= now:
                session.connection().execute(delete(AnalyticsCache).where(*clauses))
                session.commit()
                logger.info(
                    f"Evicted stale {data_type} cache entry",
                    extra={"company_id": company_id},
                )
                return None

            try:
                return json.loads(entry.data_json)
            except ValueError:
                logger.warning(f"Corrupt {data_type} cache entry ignored", extra={"company_id": company_id})
                return None

    def put(
        self,
        company_id: str,
        data_type: str,
        data: Any,
        ttl: Optional[int] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> bool:
        """Replace the entry for this key. Failures are logged, not raised."""
        now = self._clock()
        ttl = ttl if ttl is not None else ttl_for(data_type)
        try:
            payload = json.dumps(data, default=str)
            with Session(self.engine) as session:
                session.connection().execute(
                    delete(AnalyticsCache).where(
                        *_key_filter(company_id, data_type, start_date, end_date)
                    )
                )
                session.add(
                    AnalyticsCache(
                        company_id=company_id,
                        data_type=data_type,
                        data_json=payload,
                        start_date=start_date,
                        end_date=end_date,
                        created_at=now,
                        expires_at=now + timedelta(seconds=ttl),
                    )
                )
                session.commit()
            return True
        except Exception as e:
            logger.error(f"Cache write failed for {data_type}: {e}", extra={"company_id": company_id})
            return False

    async def get_or_compute(
        self,
        company_id: str,
        data_type: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Tuple[Any, bool]:
        """Return (data, served_from_cache), computing and caching on a miss."""
        cached = self.get(company_id, data_type, start_date, end_date)
        if cached is not None:
            return cached, True
        fresh = await compute()
        self.put(company_id, data_type, fresh, ttl, start_date, end_date)
        return fresh, False

    def clear_all(self) -> int:
        """Delete every cache entry. Returns rows deleted."""
        with Session(self.engine) as session:
            result = session.connection().execute(delete(AnalyticsCache))
            session.commit()
        deleted = result.rowcount or 0
        logger.info(f"Analytics cache cleared ({deleted} rows)")
        return deleted

    def evict_expired(self) -> int:
        """Bulk-delete entries past their expiry. Never raises."""
        try:
            with Session(self.engine) as session:
                result = session.connection().execute(
                    delete(AnalyticsCache).where(AnalyticsCache.expires_at <= self._clock())
                )
                session.commit()
            return result.rowcount or 0
        except Exception as e:
            logger.error(f"Cache eviction failed: {e}")
            return 0
