"""PULSE: Per-Company-Per-Platform Sync Task.

Brings one company's one platform up to date, strictly in order:
  window -> mapping -> credential -> fetch (with retry) -> upsert -> status
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.connectors.base import AuthRequiredError, ProviderAPIError, is_transient
from app.connectors.registry import ProviderFactory, default_provider_factory
from app.core.clock import iso_date, utcnow
from app.core.logging import get_logger, with_context
from app.core.platform_registry import ALL_PLATFORMS, Platform, get_platform
from app.core.retry import with_retry
from app.database import run_blocking, upsert_rows
from app.models.metric_models import FACT_TABLES, GAChannelDaily
from app.models.sync_models import SyncOutcome, SyncResult
from app.models.tenant_models import PlatformAccount, PlatformMapping
from app.sync.status_store import StatusSnapshot, StatusView, SyncStatusStore

logger = get_logger("sync.task")


class CredentialResolver(Protocol):
    async def get_access_token(self, user_id: str, platform: Platform) -> str: ...


@dataclass(frozen=True)
class CompanyRef:
    """The two company fields the sync engine needs."""

    id: str
    name: str


@dataclass
class SyncContext:
    """Everything a sync task needs, built once per run."""

    engine: Engine
    status_store: SyncStatusStore
    tokens: CredentialResolver
    provider_factory: ProviderFactory = default_provider_factory
    today: date = field(default_factory=lambda: utcnow().date())
    backfill_days: int = 90
    force: bool = False
    retry_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_backoff: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


# ─────────────────────────────────────────────
# STEP HELPERS
# ─────────────────────────────────────────────


def resolve_window(
    status: Optional[StatusView],
    today: date,
    backfill_days: int = 90,
    force: bool = False,
) -> Tuple[str, str]:
    """Inclusive (start, end) dates to fetch.

    Never synced (or forced): backfill_days ending today.
    Otherwise a top-up from the last success's date through today; the last
    day is always fetched again since upserts make that free.
    """
    end = today
    if force or status is None or status.last_success_at is None:
        start = today - timedelta(days=backfill_days)
    else:
        start = min(status.last_success_at.date(), today)
    return iso_date(start), iso_date(end)


def resolve_account(engine: Engine, company_id: str, platform: Platform) -> Optional[PlatformAccount]:
    """The account mapped to this company for this platform, if any."""
    with Session(engine) as session:
        return session.exec(
            select(PlatformAccount)
            .join(PlatformMapping, PlatformMapping.account_id == PlatformAccount.id)
            .where(
                PlatformMapping.company_id == company_id,
                PlatformMapping.platform == platform.value,
            )
        ).first()


def upsert_daily_rows(engine: Engine, company_id: str, platform: Platform, rows: List[Any]) -> int:
    """Write daily rows, last write wins on (company_id, metric_date)."""
    if not rows:
        return 0
    model = FACT_TABLES[platform]
    now = utcnow()
    # Duplicate dates in one payload would trip ON CONFLICT; keep the last
    by_date: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        by_date[r.metric_date] = {
            "company_id": company_id,
            "metric_date": r.metric_date,
            "updated_at": now,
            **r.measures(),
        }
    records = list(by_date.values())
    update_columns = [c for c in records[0] if c not in ("company_id", "metric_date")]
    with Session(engine) as session:
        written = upsert_rows(session, model, records, ["company_id", "metric_date"], update_columns)
        session.commit()
    return written


def upsert_channel_rows(engine: Engine, company_id: str, rows: List[Any]) -> int:
    """Write per-channel sessions, last write wins on (company, date, channel)."""
    if not rows:
        return 0
    now = utcnow()
    by_key: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for r in rows:
        by_key[(r.metric_date, r.channel)] = {
            "company_id": company_id,
            "metric_date": r.metric_date,
            "channel": r.channel,
            "sessions": r.sessions,
            "updated_at": now,
        }
    with Session(engine) as session:
        written = upsert_rows(
            session,
            GAChannelDaily,
            list(by_key.values()),
            ["company_id", "metric_date", "channel"],
            ["sessions", "updated_at"],
        )
        session.commit()
    return written


def _result(
    company: CompanyRef,
    platform: Platform,
    outcome: SyncOutcome,
    window: Optional[Tuple[str, str]] = None,
    rows: int = 0,
    error: Optional[str] = None,
) -> SyncResult:
    return SyncResult(
        company_id=company.id,
        company=company.name,
        platform=platform.value,
        status=outcome,
        rows_synced=rows,
        start_date=window[0] if window else None,
        end_date=window[1] if window else None,
        error=error,
    )


async def _finish(
    ctx: SyncContext,
    company: CompanyRef,
    platform: Platform,
    outcome: SyncOutcome,
    window: Tuple[str, str],
    rows: int = 0,
    error: Optional[str] = None,
) -> SyncResult:
    await run_blocking(
        ctx.status_store.engine,
        ctx.status_store.record_result,
        company.id, platform.value, outcome, error=error, window=window,
    )
    log = with_context(logger, company_id=company.id, platform=platform.value)
    if outcome == SyncOutcome.SUCCESS:
        log.info(f"{company.name}: synced {rows} days {window[0]}..{window[1]}")
    else:
        log.error(f"{company.name}: {outcome.value}: {error}")
    return _result(company, platform, outcome, window, rows, error)


# ─────────────────────────────────────────────
# TASKS
# ─────────────────────────────────────────────


async def sync_platform(
    ctx: SyncContext,
    company: CompanyRef,
    platform: Platform,
    status: Optional[StatusView] = None,
) -> SyncResult:
    """Sync one platform for one company. Expected failures become results."""
    window = resolve_window(status, ctx.today, ctx.backfill_days, ctx.force)

    account = await run_blocking(ctx.engine, resolve_account, ctx.engine, company.id, platform)
    if account is None:
        return _result(company, platform, SyncOutcome.SKIPPED, error="No mapping configured")

    try:
        access_token = await ctx.tokens.get_access_token(account.user_id, platform)
    except AuthRequiredError as e:
        return await _finish(ctx, company, platform, SyncOutcome.AUTH_REQUIRED, window, error=str(e))
    except ProviderAPIError as e:
        return await _finish(ctx, company, platform, SyncOutcome.API_ERROR, window, error=str(e))

    provider = ctx.provider_factory(platform)

    async def fetch():
        daily = await provider.fetch_daily(access_token, account.external_id, window[0], window[1])
        channels = await provider.fetch_channels(access_token, account.external_id, window[0], window[1])
        return daily, channels

    try:
        rows, channels = await with_retry(
            fetch,
            max_attempts=ctx.retry_attempts,
            initial_delay=ctx.retry_initial_delay,
            backoff_factor=ctx.retry_backoff,
            retry_if=is_transient,
            sleep=ctx.sleep,
            label=f"{platform.value} fetch for {company.name}",
        )
    except AuthRequiredError as e:
        return await _finish(ctx, company, platform, SyncOutcome.AUTH_REQUIRED, window, error=str(e))
    except ProviderAPIError as e:
        return await _finish(ctx, company, platform, SyncOutcome.API_ERROR, window, error=str(e))
    finally:
        await provider.close()

    try:
        written = await run_blocking(ctx.engine, upsert_daily_rows, ctx.engine, company.id, platform, rows)
        await run_blocking(ctx.engine, upsert_channel_rows, ctx.engine, company.id, channels)
    except Exception as e:
        return await _finish(ctx, company, platform, SyncOutcome.STORE_ERROR, window, error=str(e))

    return await _finish(ctx, company, platform, SyncOutcome.SUCCESS, window, rows=written)


async def sync_company(
    ctx: SyncContext,
    company: CompanyRef,
    snapshot: StatusSnapshot,
) -> List[SyncResult]:
    """Sync every platform of one company.

    Non-sequential platforms run concurrently; sequential ones (LinkedIn)
    run afterwards one at a time. A crash on one platform is recorded and
    never stops the others.
    """
    statuses = snapshot.get(company.id, {})
    parallel = [p for p in ALL_PLATFORMS if not get_platform(p).sequential]
    sequential = [p for p in ALL_PLATFORMS if get_platform(p).sequential]

    async def crashed(platform: Platform, exc: BaseException) -> SyncResult:
        window = resolve_window(statuses.get(platform.value), ctx.today, ctx.backfill_days, ctx.force)
        return await _finish(
            ctx, company, platform, SyncOutcome.API_ERROR, window,
            error=f"{type(exc).__name__}: {exc}",
        )

    results: List[SyncResult] = []
    settled = await asyncio.gather(
        *(sync_platform(ctx, company, p, statuses.get(p.value)) for p in parallel),
        return_exceptions=True,
    )
    for platform, outcome in zip(parallel, settled):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            outcome = await crashed(platform, outcome)
        results.append(outcome)

    for platform in sequential:
        try:
            results.append(await sync_platform(ctx, company, platform, statuses.get(platform.value)))
        except Exception as e:
            results.append(await crashed(platform, e))

    return results
