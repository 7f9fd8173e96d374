import pytest
from sqlmodel import Session, select

from app.models.cache_models import AnalyticsCache
from app.services.cache_service import AnalyticsCacheService, ttl_for
from tests.conftest import FakeDateTimeClock


def _entries(engine):
    with Session(engine) as session:
        return session.exec(select(AnalyticsCache)).all()


def test_entry_expires_after_ttl_and_is_deleted(engine):
    clock = FakeDateTimeClock()
    cache = AnalyticsCacheService(engine, clock=clock)

    assert cache.put("acme", "realtime", {"activeUsers": 12}, ttl=30)
    assert cache.get("acme", "realtime") == {"activeUsers": 12}

    clock.advance(31)

    assert cache.get("acme", "realtime") is None
    assert _entries(engine) == []


def test_put_replaces_the_existing_entry(engine):
    cache = AnalyticsCacheService(engine, clock=FakeDateTimeClock())
    cache.put("acme", "dashboard", {"v": 1}, start_date="2026-09-19", end_date="2026-10-19")
    cache.put("acme", "dashboard", {"v": 2}, start_date="2026-09-19", end_date="2026-10-19")

    assert cache.get("acme", "dashboard", "2026-09-19", "2026-10-19") == {"v": 2}
    assert len(_entries(engine)) == 1


def test_date_range_is_part_of_the_key(engine):
    cache = AnalyticsCacheService(engine, clock=FakeDateTimeClock())
    cache.put("acme", "dashboard", {"range": "sep"}, start_date="2026-09-01", end_date="2026-09-30")
    cache.put("acme", "dashboard", {"range": "none"})

    assert cache.get("acme", "dashboard", "2026-09-01", "2026-09-30") == {"range": "sep"}
    assert cache.get("acme", "dashboard") == {"range": "none"}
    assert cache.get("acme", "dashboard", "2026-10-01", "2026-10-19") is None
    assert cache.get("globex", "dashboard") is None


def test_default_ttls_by_data_type():
    assert ttl_for("realtime") == 30
    assert ttl_for("dashboard") == 3600
    assert ttl_for("daily_snapshot") == 86_400
    assert ttl_for("something_new") == 3600


@pytest.mark.asyncio
async def test_get_or_compute_only_computes_on_miss(engine):
    cache = AnalyticsCacheService(engine, clock=FakeDateTimeClock())
    calls = []

    async def compute():
        calls.append(1)
        return {"sessions": 40}

    first = await cache.get_or_compute("acme", "dashboard", compute)
    second = await cache.get_or_compute("acme", "dashboard", compute)

    assert first == ({"sessions": 40}, False)
    assert second == ({"sessions": 40}, True)
    assert len(calls) == 1


def test_clear_all_and_evict_expired(engine):
    clock = FakeDateTimeClock()
    cache = AnalyticsCacheService(engine, clock=clock)
    cache.put("acme", "realtime", {}, ttl=30)
    cache.put("acme", "dashboard", {}, ttl=3600)
    cache.put("globex", "dashboard", {}, ttl=3600)

    clock.advance(60)
    assert cache.evict_expired() == 1
    assert len(_entries(engine)) == 2

    assert cache.clear_all() == 2
    assert _entries(engine) == []
