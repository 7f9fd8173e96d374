from datetime import datetime, timezone

import pytest

from app.config import settings
from app.core.platform_registry import Platform
from app.models.metric_models import GADailyRow
from app.models.sync_models import PerformanceMetrics, SyncRunReport
from app.scheduler import jobs
from app.services import cache_warmer
from app.services.cache_service import AnalyticsCacheService
from app.services.cache_warmer import PORTFOLIO, SNAPSHOT, portfolio_key, warm_caches
from app.sync.task import upsert_daily_rows
from tests.conftest import add_company, add_user

NOW = datetime(2026, 10, 19, 6, tzinfo=timezone.utc)
START, END = "2026-09-19", "2026-10-19"


@pytest.fixture
def seeded(engine):
    acme = add_company(engine, "Acme")
    globex = add_company(engine, "Globex")
    admin = add_user(engine, "admin@agency.test", {acme.id: "admin", globex.id: "owner"})
    viewer = add_user(engine, "client@acme.test", {acme.id: "viewer"})
    upsert_daily_rows(engine, acme.id, Platform.GA, [GADailyRow(metric_date="2026-10-18", sessions=12)])
    upsert_daily_rows(engine, globex.id, Platform.GA, [GADailyRow(metric_date="2026-10-18", sessions=5)])
    return {"acme": acme, "globex": globex, "admin": admin, "viewer": viewer}


@pytest.mark.asyncio
async def test_warms_a_snapshot_per_company_and_a_portfolio_per_member(engine, seeded):
    report = await warm_caches(engine, now=NOW)

    assert (report.start_date, report.end_date) == (START, END)
    assert (report.snapshots_warmed, report.portfolios_warmed, report.error_count) == (2, 2, 0)

    cache = AnalyticsCacheService(engine)
    snapshot = cache.get(seeded["acme"].id, SNAPSHOT, START, END)
    assert snapshot["platforms"]["ga"]["metrics"]["sessions"] == 12

    admin_view = cache.get(portfolio_key(seeded["admin"].id), PORTFOLIO, START, END)
    viewer_view = cache.get(portfolio_key(seeded["viewer"].id), PORTFOLIO, START, END)
    assert admin_view["aggregateMetrics"]["ga"]["sessions"] == 17
    assert [c["name"] for c in viewer_view["companies"]] == ["Acme"]


@pytest.mark.asyncio
async def test_scoped_warm_touches_only_the_named_company_and_user(engine, seeded):
    report = await warm_caches(
        engine, company_ids=[seeded["acme"].id], user_ids=[seeded["admin"].id], now=NOW
    )

    assert [(r.data_type, r.key) for r in report.results] == [
        (SNAPSHOT, seeded["acme"].id),
        (PORTFOLIO, portfolio_key(seeded["admin"].id)),
    ]
    cache = AnalyticsCacheService(engine)
    assert cache.get(seeded["globex"].id, SNAPSHOT, START, END) is None
    assert cache.get(portfolio_key(seeded["viewer"].id), PORTFOLIO, START, END) is None
    # The portfolio still spans every company the user can see
    admin_view = cache.get(portfolio_key(seeded["admin"].id), PORTFOLIO, START, END)
    assert [c["name"] for c in admin_view["companies"]] == ["Acme", "Globex"]


@pytest.mark.asyncio
async def test_one_failed_snapshot_does_not_stop_the_rest(engine, seeded, monkeypatch):
    real_build = cache_warmer.build_company_dashboard

    def flaky_build(session, company_id, start, end):
        if company_id == seeded["acme"].id:
            raise RuntimeError("database is locked")
        return real_build(session, company_id, start, end)

    monkeypatch.setattr(cache_warmer, "build_company_dashboard", flaky_build)

    report = await warm_caches(engine, now=NOW)

    assert (report.snapshots_warmed, report.portfolios_warmed, report.error_count) == (1, 2, 1)
    [failed] = [r for r in report.results if r.status == "error"]
    assert (failed.key, failed.error) == (seeded["acme"].id, "database is locked")


@pytest.mark.asyncio
async def test_companies_without_members_warm_no_portfolio(engine):
    add_company(engine, "Orphan")

    report = await warm_caches(engine, now=NOW)

    assert (report.snapshots_warmed, report.portfolios_warmed) == (1, 0)


# ── Scheduled job ──


def _report():
    return SyncRunReport(
        message="Analytics sync complete",
        timestamp=NOW.isoformat(),
        performance=PerformanceMetrics(start_time=0),
    )


@pytest.mark.asyncio
async def test_scheduled_job_warms_after_a_sync(monkeypatch):
    calls = []

    async def fake_run_sync(engine):
        calls.append("sync")
        return _report()

    async def fake_warm(engine):
        calls.append("warm")

    monkeypatch.setattr(jobs, "run_sync", fake_run_sync)
    monkeypatch.setattr(jobs, "warm_caches", fake_warm)
    monkeypatch.setattr(settings, "cache_warm_after_sync", True)

    await jobs.scheduled_sync_job()

    assert calls == ["sync", "warm"]


@pytest.mark.asyncio
async def test_scheduled_job_skips_the_warm_when_the_sync_fails(monkeypatch):
    calls = []

    async def failing_run_sync(engine):
        raise RuntimeError("no companies table")

    async def fake_warm(engine):
        calls.append("warm")

    monkeypatch.setattr(jobs, "run_sync", failing_run_sync)
    monkeypatch.setattr(jobs, "warm_caches", fake_warm)

    await jobs.scheduled_sync_job()

    assert calls == []
