"""PULSE: Normalized Table Aggregation.

Rolls daily fact rows up into period totals (with a same-length previous
period for comparison). Used by the per-company dashboard and the portfolio
view, both of which sit behind the read-through cache.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from app.core.platform_registry import ALL_PLATFORMS, Aggregation, Platform, get_platform
from app.models.metric_models import FACT_TABLES, GAChannelDaily
from app.models.tenant_models import Company

DATE_FMT = "%Y-%m-%d"


def previous_period(start_date: str, end_date: str) -> Tuple[str, str]:
    """The window of equal length ending the day before start_date."""
    start = datetime.strptime(start_date, DATE_FMT)
    end = datetime.strptime(end_date, DATE_FMT)
    days = (end - start).days + 1
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=days - 1)
    return prev_start.strftime(DATE_FMT), prev_end.strftime(DATE_FMT)


def aggregate_rows(platform: Platform, rows: Sequence[Any]) -> Dict[str, float]:
    """Sum count columns, average rate columns."""
    totals: Dict[str, float] = {}
    for metric in get_platform(platform).metrics:
        values = [float(getattr(r, metric.name, 0) or 0) for r in rows]
        if metric.aggregation == Aggregation.SUM:
            totals[metric.name] = sum(values)
        else:
            totals[metric.name] = round(sum(values) / len(values), 4) if values else 0.0

    # Period CTR is clicks over impressions, not a mean of daily CTRs
    if platform == Platform.GSC:
        impressions = totals.get("impressions", 0)
        totals["ctr"] = round(totals.get("clicks", 0) / impressions, 4) if impressions else 0.0
    return totals


def _fetch(session: Session, platform: Platform, company_ids: Sequence[str], start: str, end: str) -> List[Any]:
    model = FACT_TABLES[platform]
    return list(
        session.exec(
            select(model)
            .where(
                model.company_id.in_(list(company_ids)),  # type: ignore
                model.metric_date >= start,
                model.metric_date <= end,
            )
            .order_by(model.metric_date)
        ).all()
    )


def _daily_series(platform: Platform, rows: Sequence[Any]) -> List[Dict[str, Any]]:
    names = [m.name for m in get_platform(platform).metrics]
    return [{"date": r.metric_date, **{n: getattr(r, n) for n in names}} for r in rows]


def _channel_totals(session: Session, company_id: str, start: str, end: str) -> Dict[str, int]:
    """GA sessions per channel over the period, largest first."""
    rows = session.exec(
        select(GAChannelDaily).where(
            GAChannelDaily.company_id == company_id,
            GAChannelDaily.metric_date >= start,
            GAChannelDaily.metric_date <= end,
        )
    ).all()
    totals: Dict[str, int] = defaultdict(int)
    for r in rows:
        totals[r.channel] += r.sessions
    return dict(sorted(totals.items(), key=lambda kv: (-kv[1], kv[0])))


def build_company_dashboard(
    session: Session, company_id: str, start_date: str, end_date: str
) -> Dict[str, Any]:
    """Per-platform totals, previous-period totals and daily series."""
    prev_start, prev_end = previous_period(start_date, end_date)
    platforms: Dict[str, Any] = {}

    for platform in ALL_PLATFORMS:
        current = _fetch(session, platform, [company_id], start_date, end_date)
        previous = _fetch(session, platform, [company_id], prev_start, prev_end)
        if not current and not previous:
            continue
        platforms[platform.value] = {
            "metrics": aggregate_rows(platform, current),
            "previousPeriod": aggregate_rows(platform, previous) if previous else None,
            "daily": _daily_series(platform, current),
            "daysWithData": len(current),
        }
        if platform == Platform.GA:
            platforms[platform.value]["channels"] = _channel_totals(
                session, company_id, start_date, end_date
            )

    return {
        "companyId": company_id,
        "startDate": start_date,
        "endDate": end_date,
        "previousStartDate": prev_start,
        "previousEndDate": prev_end,
        "platforms": platforms,
    }


def build_portfolio(
    session: Session, company_ids: Sequence[str], start_date: str, end_date: str
) -> Dict[str, Any]:
    """Headline totals per company plus a cross-company aggregate."""
    companies = session.exec(
        select(Company).where(Company.id.in_(list(company_ids))).order_by(Company.name)  # type: ignore
    ).all()

    per_company: Dict[str, Dict[str, Dict[str, float]]] = defaultdict(dict)
    aggregate: Dict[str, Dict[str, float]] = {}

    for platform in ALL_PLATFORMS:
        rows = _fetch(session, platform, company_ids, start_date, end_date)
        by_company: Dict[str, List[Any]] = defaultdict(list)
        for r in rows:
            by_company[r.company_id].append(r)
        for cid, company_rows in by_company.items():
            per_company[cid][platform.value] = aggregate_rows(platform, company_rows)
        if rows:
            aggregate[platform.value] = aggregate_rows(platform, rows)

    return {
        "startDate": start_date,
        "endDate": end_date,
        "companies": [
            {
                "id": c.id,
                "name": c.name,
                "industry": c.industry,
                "color": c.color,
                "metrics": per_company.get(c.id, {}),
            }
            for c in companies
        ],
        "aggregateMetrics": aggregate,
    }


def default_range(today: datetime, days: int = 30) -> Tuple[str, str]:
    """Last `days` days ending today."""
    return (today - timedelta(days=days)).strftime(DATE_FMT), today.strftime(DATE_FMT)


def parse_date(value: Optional[str]) -> Optional[str]:
    """Return the string if it is a valid YYYY-MM-DD date, else None."""
    if not value:
        return None
    try:
        datetime.strptime(value, DATE_FMT)
        return value
    except ValueError:
        return None
