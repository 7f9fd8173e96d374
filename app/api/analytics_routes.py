"""PULSE: Dashboard Analytics Routes (read-through cache)."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.analyzer.aggregation import (
    build_company_dashboard,
    build_portfolio,
    default_range,
    parse_date,
)
from app.api.deps import get_current_user, get_db, get_realtime_provider, get_token_service
from app.connectors.base import AuthRequiredError, ProviderAPIError
from app.connectors.google.analytics import GoogleAnalyticsProvider
from app.core.clock import utcnow
from app.core.logging import get_logger
from app.core.platform_registry import Platform
from app.database import get_engine, run_blocking
from app.models.tenant_models import User, UserCompany
from app.services.cache_service import AnalyticsCacheService
from app.services.cache_warmer import PORTFOLIO, SNAPSHOT, portfolio_key
from app.services.company_service import has_access
from app.services.token_service import TokenService
from app.sync.task import resolve_account

logger = get_logger("api.analytics")

router = APIRouter(prefix="/analytics", tags=["Analytics"])


def _date_range(start_date: Optional[str], end_date: Optional[str]) -> tuple[str, str]:
    start, end = parse_date(start_date), parse_date(end_date)
    if start and end:
        if start > end:
            raise HTTPException(status_code=400, detail="start_date must not be after end_date")
        return start, end
    return default_range(utcnow())


@router.get("/portfolio")
async def get_portfolio(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """Headline metrics for every company the user can see."""
    start, end = _date_range(start_date, end_date)
    company_ids = list(
        session.exec(select(UserCompany.company_id).where(UserCompany.user_id == user.id)).all()
    )
    if not company_ids:
        return {"companies": [], "aggregateMetrics": {}, "cached": False}

    async def compute():
        return build_portfolio(session, company_ids, start, end)

    data, cached = await AnalyticsCacheService(engine).get_or_compute(
        portfolio_key(user.id), PORTFOLIO, compute, start_date=start, end_date=end
    )
    return {**data, "cached": cached}


@router.get("/{company_id}")
async def get_company_analytics(
    company_id: str,
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """Dashboard payload for one company from the normalized tables."""
    if not has_access(session, user.id, company_id):
        raise HTTPException(status_code=403, detail="You do not have access to this company")

    start, end = _date_range(start_date, end_date)
    cache = AnalyticsCacheService(engine)

    # Pre-built by the cache warmer for the default range
    snapshot = cache.get(company_id, SNAPSHOT, start, end)
    if snapshot is not None:
        return {**snapshot, "cached": True}

    async def compute():
        return build_company_dashboard(session, company_id, start, end)

    data, cached = await cache.get_or_compute(
        company_id, "dashboard", compute, start_date=start, end_date=end
    )
    return {**data, "cached": cached}


@router.get("/{company_id}/realtime")
async def get_realtime(
    company_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
    tokens: TokenService = Depends(get_token_service),
    provider: GoogleAnalyticsProvider = Depends(get_realtime_provider),
):
    """Live GA active users, cached for a few seconds."""
    if not has_access(session, user.id, company_id):
        raise HTTPException(status_code=403, detail="You do not have access to this company")

    cache = AnalyticsCacheService(engine)
    cached = cache.get(company_id, "realtime")
    if cached is not None:
        return {**cached, "cached": True}

    account = await run_blocking(engine, resolve_account, engine, company_id, Platform.GA)
    if account is None:
        raise HTTPException(
            status_code=404,
            detail="No Google Analytics account mapped to this company",
        )

    try:
        access_token = await tokens.get_access_token(account.user_id, Platform.GA)
        realtime = await provider.fetch_realtime(access_token, account.external_id)
    except AuthRequiredError as e:
        raise HTTPException(
            status_code=403,
            detail={"error": str(e), "requiresReauth": True, "errorType": "auth_required"},
        )
    except ProviderAPIError as e:
        logger.error(f"GA realtime fetch failed: {e}", extra={"company_id": company_id})
        raise HTTPException(status_code=502, detail=f"Realtime fetch failed: {e}")
    finally:
        await provider.close()

    result = {**realtime, "timestamp": utcnow().isoformat(), "dataSource": "realtime"}
    cache.put(company_id, "realtime", result)
    return {**result, "cached": False}
