"""PULSE: Analytics Sync Engine.

One sync pass:
  list companies -> ensure status rows -> snapshot -> rank -> batch schedule
  -> retention cleanup -> report

Only failing to list companies aborts the run; everything after that is
isolated per (company, platform) and reported in the results.
"""

import asyncio
from datetime import date, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.config import settings
from app.connectors.registry import ProviderFactory, default_provider_factory
from app.core.clock import iso_date, utcnow
from app.core.logging import get_logger
from app.core.platform_registry import ALL_PLATFORMS
from app.database import run_blocking
from app.models.metric_models import BREAKDOWN_TABLES, FACT_TABLES
from app.models.sync_models import SyncRunReport
from app.models.tenant_models import Company
from app.services.cache_service import AnalyticsCacheService
from app.services.token_service import TokenService
from app.sync.ranking import rank
from app.sync.scheduler import BatchScheduler
from app.sync.status_store import SyncStatusStore
from app.sync.task import CompanyRef, CredentialResolver, SyncContext, sync_company

logger = get_logger("sync.engine")


class SyncPreconditionError(Exception):
    """The run cannot start at all (e.g. companies cannot be listed)."""


def list_companies(engine: Engine, company_ids: Optional[Sequence[str]] = None) -> List[CompanyRef]:
    """Companies to sync, in name order, optionally narrowed to company_ids."""
    try:
        with Session(engine) as session:
            query = select(Company).order_by(Company.name)
            if company_ids:
                query = query.where(Company.id.in_(list(company_ids)))  # type: ignore
            return [CompanyRef(id=c.id, name=c.name) for c in session.exec(query).all()]
    except Exception as e:
        raise SyncPreconditionError(f"Failed to fetch companies: {e}") from e


def cleanup_old_data(engine: Engine, today: date, retention_days: int) -> int:
    """Drop fact rows older than the retention window. Never raises."""
    cutoff = iso_date(today - timedelta(days=retention_days))
    removed = 0
    try:
        with Session(engine) as session:
            for model in [*FACT_TABLES.values(), *BREAKDOWN_TABLES]:
                result = session.connection().execute(
                    delete(model).where(model.metric_date < cutoff)
                )
                removed += result.rowcount or 0
            session.commit()
        logger.info(f"Cleanup removed {removed} fact rows older than {cutoff}")
    except Exception as e:
        logger.error(f"Cleanup failed: {e}")
    return removed


async def run_sync(
    engine: Engine,
    company_ids: Optional[Sequence[str]] = None,
    force: bool = False,
    tokens: Optional[CredentialResolver] = None,
    provider_factory: ProviderFactory = default_provider_factory,
    scheduler: Optional[BatchScheduler] = None,
    today: Optional[date] = None,
    retry_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    cleanup: bool = True,
) -> SyncRunReport:
    """Run one full sync pass and return the report served by /sync-analytics."""
    scheduler = scheduler or BatchScheduler(
        batch_size=settings.sync_batch_size,
        batch_delay_ms=settings.sync_batch_delay_ms,
        max_execution_ms=settings.sync_max_execution_ms,
    )
    logger.info(f"Starting analytics sync at {utcnow().isoformat()}")

    companies = await run_blocking(engine, list_companies, engine, company_ids)
    logger.info(f"Found {len(companies)} companies to sync")

    status_store = SyncStatusStore(engine)
    await run_blocking(engine, status_store.ensure_rows, [c.id for c in companies], ALL_PLATFORMS)

    # Read-only for the rest of the run; writes go to the store only
    snapshot = await run_blocking(engine, status_store.snapshot)
    ordered = rank(companies, snapshot)

    ctx = SyncContext(
        engine=engine,
        status_store=status_store,
        tokens=tokens or TokenService(engine),
        provider_factory=provider_factory,
        today=today or utcnow().date(),
        backfill_days=settings.sync_backfill_days,
        force=force,
        retry_attempts=settings.sync_retry_attempts,
        retry_initial_delay=settings.sync_retry_initial_delay_ms / 1000,
        retry_backoff=settings.sync_retry_backoff_factor,
        sleep=retry_sleep,
    )

    outcome = await scheduler.run(ordered, lambda company: sync_company(ctx, company, snapshot))

    if cleanup:
        await run_blocking(engine, cleanup_old_data, engine, ctx.today, settings.data_retention_days)
        await run_blocking(engine, AnalyticsCacheService(engine).evict_expired)

    message = "Analytics sync complete"
    if outcome.partial_run:
        message = (
            f"Analytics sync stopped at time limit after "
            f"{outcome.batches_completed}/{outcome.batches_total} batches"
        )
    logger.info(
        f"{message}: {outcome.success_count} ok, {outcome.error_count} failed",
        extra={"duration_ms": outcome.elapsed_ms},
    )

    return SyncRunReport(
        message=message,
        timestamp=utcnow().isoformat(),
        results=outcome.results,
        performance=outcome.performance,
        partial_run=outcome.partial_run,
        batches_total=outcome.batches_total,
    )
