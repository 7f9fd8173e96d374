from sqlmodel import Session

from app.analyzer.aggregation import (
    aggregate_rows,
    build_company_dashboard,
    build_portfolio,
    parse_date,
    previous_period,
)
from app.core.platform_registry import Platform
from app.models.metric_models import GAChannelRow, GADailyRow, GSCDailyRow
from app.sync.task import upsert_channel_rows, upsert_daily_rows
from tests.conftest import add_company


def test_previous_period_has_same_length():
    assert previous_period("2026-10-01", "2026-10-10") == ("2026-09-21", "2026-09-30")
    assert previous_period("2026-10-19", "2026-10-19") == ("2026-10-18", "2026-10-18")


def test_sums_counts_and_averages_rates():
    rows = [
        GADailyRow(metric_date="2026-10-18", sessions=10, bounce_rate=0.5),
        GADailyRow(metric_date="2026-10-19", sessions=30, bounce_rate=0.3),
    ]
    totals = aggregate_rows(Platform.GA, rows)

    assert totals["sessions"] == 40
    assert totals["bounce_rate"] == 0.4


def test_gsc_ctr_is_recomputed_from_totals():
    rows = [
        GSCDailyRow(metric_date="2026-10-18", impressions=100, clicks=10, ctr=0.1),
        GSCDailyRow(metric_date="2026-10-19", impressions=900, clicks=10, ctr=0.011),
    ]
    assert aggregate_rows(Platform.GSC, rows)["ctr"] == 0.02
    assert aggregate_rows(Platform.GSC, [])["ctr"] == 0.0


def test_dashboard_includes_only_platforms_with_data(engine):
    acme = add_company(engine, "Acme")
    upsert_daily_rows(
        engine,
        acme.id,
        Platform.GA,
        [
            GADailyRow(metric_date="2026-10-08", sessions=7),
            GADailyRow(metric_date="2026-10-15", sessions=3),
            GADailyRow(metric_date="2026-10-16", sessions=5),
        ],
    )

    with Session(engine) as session:
        dashboard = build_company_dashboard(session, acme.id, "2026-10-13", "2026-10-19")

    assert list(dashboard["platforms"]) == ["ga"]
    ga = dashboard["platforms"]["ga"]
    assert ga["metrics"]["sessions"] == 8
    assert ga["previousPeriod"]["sessions"] == 7
    assert [d["date"] for d in ga["daily"]] == ["2026-10-15", "2026-10-16"]
    assert ga["daysWithData"] == 2


def test_ga_dashboard_lists_channel_totals_largest_first(engine):
    acme = add_company(engine, "Acme")
    upsert_daily_rows(engine, acme.id, Platform.GA, [GADailyRow(metric_date="2026-10-18", sessions=12)])
    upsert_channel_rows(
        engine,
        acme.id,
        [
            GAChannelRow(metric_date="2026-10-17", channel="direct", sessions=3),
            GAChannelRow(metric_date="2026-10-18", channel="direct", sessions=2),
            GAChannelRow(metric_date="2026-10-18", channel="organic_search", sessions=9),
            GAChannelRow(metric_date="2026-09-01", channel="referral", sessions=40),
        ],
    )

    with Session(engine) as session:
        dashboard = build_company_dashboard(session, acme.id, "2026-10-13", "2026-10-19")

    assert dashboard["platforms"]["ga"]["channels"] == {"organic_search": 9, "direct": 5}


def test_portfolio_aggregates_across_companies(engine):
    acme = add_company(engine, "Acme", industry="Retail")
    globex = add_company(engine, "Globex")
    upsert_daily_rows(engine, acme.id, Platform.GA, [GADailyRow(metric_date="2026-10-18", sessions=4)])
    upsert_daily_rows(engine, globex.id, Platform.GA, [GADailyRow(metric_date="2026-10-18", sessions=6)])

    with Session(engine) as session:
        portfolio = build_portfolio(session, [acme.id, globex.id], "2026-10-01", "2026-10-19")

    assert [c["name"] for c in portfolio["companies"]] == ["Acme", "Globex"]
    assert portfolio["companies"][0]["industry"] == "Retail"
    assert portfolio["companies"][1]["metrics"]["ga"]["sessions"] == 6
    assert portfolio["aggregateMetrics"]["ga"]["sessions"] == 10


def test_parse_date_rejects_garbage():
    assert parse_date("2026-10-19") == "2026-10-19"
    assert parse_date("19/10/2026") is None
    assert parse_date(None) is None
