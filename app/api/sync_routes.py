"""PULSE: Sync Trigger & Admin Routes."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.api.deps import get_current_user, get_db
from app.config import settings
from app.core.clock import utcnow
from app.core.logging import get_logger, log_timing
from app.database import get_engine
from app.models.sync_models import StatusRow, SyncStatus
from app.models.tenant_models import Company, User
from app.services.cache_service import AnalyticsCacheService
from app.services.cache_warmer import warm_caches
from app.services.company_service import companies_with_role
from app.services.dispatch import SyncDispatcher, get_dispatcher
from app.services.token_service import token_health
from app.sync.engine import SyncPreconditionError, run_sync

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])


# ── Request Models ──


class TriggerSyncRequest(BaseModel):
    """Request body for POST /trigger-sync."""

    company_ids: Optional[List[str]] = Field(default=None, alias="companyIds")
    """Companies to sync. Omit to sync every company you administer."""
    force: bool = False
    """Re-fetch the full backfill window instead of topping up."""

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [{"companyIds": ["c0ffee00-0000-4000-8000-000000000001"]}, {}]
        },
    }


def _require_admin(session: Session, user: User) -> List[str]:
    """Company ids the user administers; 403 if none."""
    permitted = companies_with_role(session, user.id)
    if not permitted:
        raise HTTPException(status_code=403, detail="Forbidden: owner or admin role required")
    return permitted


# ── Endpoints ──


@router.get("/sync-analytics")
async def sync_analytics(
    secret: Optional[str] = Query(None),
    company_ids: Optional[str] = Query(None, alias="companyIds"),
    force: bool = Query(False),
    engine: Engine = Depends(get_engine),
):
    """Run one incremental sync pass (cron entry point).

    Authenticated by shared secret. Returns per-(company, platform) results
    and batch performance counters.
    """
    if not settings.cron_secret or secret != settings.cron_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")

    ids = [c.strip() for c in (company_ids or "").split(",") if c.strip()]
    try:
        with log_timing(logger, "Sync request served", endpoint="/sync-analytics"):
            report = await run_sync(engine, company_ids=ids or None, force=force)
    except SyncPreconditionError as e:
        logger.error(f"Sync aborted: {e}", extra={"endpoint": "/sync-analytics"})
        raise HTTPException(status_code=500, detail=str(e))

    return report.model_dump(by_alias=True, mode="json")


@router.post("/trigger-sync")
async def trigger_sync(
    request: Optional[TriggerSyncRequest] = Body(default=None),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
    dispatcher: SyncDispatcher = Depends(get_dispatcher),
):
    """Start a sync in the background and return immediately.

    Requires owner/admin on every targeted company.
    """
    if not settings.cron_secret:
        raise HTTPException(status_code=500, detail="Sync not configured")

    permitted = _require_admin(session, user)
    requested = (request.company_ids if request else None) or []
    if requested:
        denied = [cid for cid in requested if cid not in permitted]
        if denied:
            raise HTTPException(
                status_code=403,
                detail=f"Forbidden: no owner/admin role on {', '.join(denied)}",
            )
        targets = requested
    else:
        targets = sorted(permitted)

    ack = dispatcher.dispatch(targets, force=bool(request and request.force))
    logger.info(f"Sync {ack.dispatch_id} triggered by {user.email} for {len(targets)} companies")

    return {
        "status": "started",
        "message": "Sync has been triggered. Data will be available shortly.",
        "companyIds": ack.company_ids,
        "dispatchId": ack.dispatch_id,
    }


@router.get("/sync-status")
async def sync_status(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    """Per-(company, platform) sync health plus OAuth token health.

    Limited to the companies the caller administers.
    """
    permitted = _require_admin(session, user)

    rows = session.exec(
        select(SyncStatus, Company.name)
        .join(Company, Company.id == SyncStatus.company_id)
        .where(SyncStatus.company_id.in_(permitted))  # type: ignore
        .order_by(SyncStatus.company_id, SyncStatus.platform)
    ).all()

    statuses = [
        StatusRow(
            company_id=s.company_id,
            company_name=name,
            platform=s.platform,
            sync_state=s.sync_state,
            last_success_at=s.last_success_at,
            last_attempt_at=s.last_attempt_at,
            consecutive_failures=s.consecutive_failures,
            last_error=s.last_error,
            data_start_date=s.data_start_date,
            data_end_date=s.data_end_date,
        ).model_dump(by_alias=True, mode="json")
        for s, name in rows
    ]

    return {
        "syncStatuses": statuses,
        "tokenHealth": token_health(session, company_ids=permitted),
        "lastUpdated": utcnow().isoformat(),
    }


@router.post("/clear-cache")
async def clear_cache(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """Delete every analytics cache entry."""
    _require_admin(session, user)
    try:
        deleted = AnalyticsCacheService(engine).clear_all()
    except Exception as e:
        logger.error(f"Error clearing cache: {e}")
        raise HTTPException(status_code=500, detail="Failed to clear cache")

    return {
        "success": True,
        "message": "Analytics cache cleared successfully",
        "rowsDeleted": deleted,
    }


@router.get("/refresh-cache")
async def refresh_cache(
    secret: Optional[str] = Query(None),
    engine: Engine = Depends(get_engine),
):
    """Pre-build every company's 30-day snapshot and every portfolio (cron entry point)."""
    if not settings.cron_secret or secret != settings.cron_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")

    with log_timing(logger, "Cache refresh served", endpoint="/refresh-cache"):
        report = await warm_caches(engine)
    return report.model_dump(by_alias=True, mode="json")


@router.post("/warm-cache")
async def warm_cache(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    """Pre-build snapshots for the companies you administer, plus your portfolio."""
    permitted = _require_admin(session, user)
    report = await warm_caches(engine, company_ids=permitted, user_ids=[user.id])
    return {
        "success": report.error_count == 0,
        "message": "Cache warmed successfully" if report.error_count == 0 else "Cache warmed with errors",
        "snapshotsWarmed": report.snapshots_warmed,
        "portfoliosWarmed": report.portfolios_warmed,
        "errorCount": report.error_count,
    }
