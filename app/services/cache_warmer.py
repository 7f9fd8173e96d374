"""PULSE: Cache Warmer.

Pre-builds the default-range views so the first dashboard request after a
sync is served from cache:
  * one daily_snapshot entry per company (its dashboard payload)
  * one portfolio entry per user holding a role on a warmed company

Everything is computed from the synced fact tables; no provider is called.
A failure on one entry is recorded and never stops the rest.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.analyzer.aggregation import build_company_dashboard, build_portfolio, default_range
from app.core.clock import utcnow
from app.core.logging import get_logger, log_timing
from app.database import run_blocking
from app.models.cache_models import CacheWarmReport, WarmResult
from app.models.tenant_models import Company, UserCompany
from app.services.cache_service import AnalyticsCacheService

logger = get_logger("services.cache_warmer")

SNAPSHOT = "daily_snapshot"
PORTFOLIO = "portfolio"


def portfolio_key(user_id: str) -> str:
    """Cache key the portfolio view is stored under for one user."""
    return f"portfolio:{user_id}"


def _company_ids(engine: Engine, company_ids: Optional[Sequence[str]]) -> List[str]:
    with Session(engine) as session:
        query = select(Company.id).order_by(Company.name)
        if company_ids:
            query = query.where(Company.id.in_(list(company_ids)))  # type: ignore
        return list(session.exec(query).all())


def _memberships(engine: Engine, company_ids: Sequence[str], user_ids: Optional[Sequence[str]]) -> Dict[str, List[str]]:
    """user_id -> every company that user can see, for users on company_ids."""
    with Session(engine) as session:
        members = select(UserCompany.user_id).where(
            UserCompany.company_id.in_(list(company_ids))  # type: ignore
        )
        if user_ids is not None:
            members = members.where(UserCompany.user_id.in_(list(user_ids)))  # type: ignore
        wanted = set(session.exec(members).all())
        if not wanted:
            return {}
        rows = session.exec(
            select(UserCompany.user_id, UserCompany.company_id).where(
                UserCompany.user_id.in_(list(wanted))  # type: ignore
            )
        ).all()
    visible: Dict[str, List[str]] = defaultdict(list)
    for user_id, company_id in rows:
        visible[user_id].append(company_id)
    return {user_id: sorted(ids) for user_id, ids in sorted(visible.items())}


def _warm_snapshot(engine: Engine, cache: AnalyticsCacheService, company_id: str, start: str, end: str) -> WarmResult:
    try:
        with Session(engine) as session:
            data = build_company_dashboard(session, company_id, start, end)
    except Exception as e:
        logger.error(f"Snapshot build failed: {e}", extra={"company_id": company_id})
        return WarmResult(key=company_id, data_type=SNAPSHOT, status="error", error=str(e))
    if not cache.put(company_id, SNAPSHOT, data, start_date=start, end_date=end):
        return WarmResult(key=company_id, data_type=SNAPSHOT, status="error", error="cache write failed")
    return WarmResult(key=company_id, data_type=SNAPSHOT, status="success")


def _warm_portfolio(
    engine: Engine, cache: AnalyticsCacheService, user_id: str, company_ids: List[str], start: str, end: str
) -> WarmResult:
    key = portfolio_key(user_id)
    try:
        with Session(engine) as session:
            data = build_portfolio(session, company_ids, start, end)
    except Exception as e:
        logger.error(f"Portfolio build failed for user {user_id}: {e}")
        return WarmResult(key=key, data_type=PORTFOLIO, status="error", error=str(e))
    if not cache.put(key, PORTFOLIO, data, start_date=start, end_date=end):
        return WarmResult(key=key, data_type=PORTFOLIO, status="error", error="cache write failed")
    return WarmResult(key=key, data_type=PORTFOLIO, status="success")


async def warm_caches(
    engine: Engine,
    company_ids: Optional[Sequence[str]] = None,
    user_ids: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> CacheWarmReport:
    """Rebuild snapshots for company_ids (default: all) and matching portfolios.

    With user_ids, only those users' portfolios are rebuilt.
    """
    start, end = default_range(now or utcnow())
    cache = AnalyticsCacheService(engine)
    results: List[WarmResult] = []

    with log_timing(logger, "Cache warm finished"):
        targets = await run_blocking(engine, _company_ids, engine, company_ids)
        for company_id in targets:
            results.append(await run_blocking(engine, _warm_snapshot, engine, cache, company_id, start, end))

        portfolios = await run_blocking(engine, _memberships, engine, targets, user_ids) if targets else {}
        for user_id, visible in portfolios.items():
            results.append(
                await run_blocking(engine, _warm_portfolio, engine, cache, user_id, visible, start, end)
            )

    ok = [r for r in results if r.status == "success"]
    report = CacheWarmReport(
        message="Cache refresh complete",
        timestamp=utcnow().isoformat(),
        start_date=start,
        end_date=end,
        snapshots_warmed=sum(1 for r in ok if r.data_type == SNAPSHOT),
        portfolios_warmed=sum(1 for r in ok if r.data_type == PORTFOLIO),
        error_count=len(results) - len(ok),
        results=results,
    )
    logger.info(
        f"Warmed {report.snapshots_warmed} snapshots and {report.portfolios_warmed} portfolios "
        f"for {start}..{end}, {report.error_count} failed"
    )
    return report
