"""PULSE: Google Analytics 4 Data API Adapter."""

from typing import Any, Dict, List, Tuple

from pydantic import BaseModel

from app.config import settings
from app.connectors.base import HTTPMetricsProvider, parse_payload
from app.core.logging import get_logger
from app.core.platform_registry import Platform
from app.models.metric_models import DailyRowBatch, GAChannelRow, GADailyRow

logger = get_logger("connectors.ga")

# GA4 metric name -> fact column
METRIC_COLUMNS = {
    "totalUsers": "total_users",
    "newUsers": "new_users",
    "sessions": "sessions",
    "screenPageViews": "page_views",
    "averageSessionDuration": "avg_session_duration",
    "bounceRate": "bounce_rate",
    "keyEvents": "key_events",
    "userKeyEventRate": "user_key_event_rate",
}

# sessionDefaultChannelGroup (lowercased, spaces removed) -> stored channel;
# first match wins, anything else is "unassigned"
CHANNEL_BUCKETS = (
    ("direct", "direct"),
    ("paidsearch", "paid_search"),
    ("organicsearch", "organic_search"),
    ("paidother", "paid_other"),
    ("paidvideo", "paid_other"),
    ("paidsocial", "paid_other"),
    ("referral", "referral"),
    ("crossnetwork", "cross_network"),
    ("cross-network", "cross_network"),
    ("organicsocial", "organic_social"),
)


def channel_bucket(group: str) -> str:
    key = "".join(group.lower().split())
    for needle, channel in CHANNEL_BUCKETS:
        if needle in key:
            return channel
    return "unassigned"


# ── Response schema ──


class _Header(BaseModel):
    name: str


class _Value(BaseModel):
    value: str = ""


class _ReportRow(BaseModel):
    dimensionValues: List[_Value] = []
    metricValues: List[_Value]


class RunReportResponse(BaseModel):
    dimensionHeaders: List[_Header] = []
    metricHeaders: List[_Header] = []
    rows: List[_ReportRow] = []


class _Count(BaseModel):
    value: float = 0.0


class GoogleAnalyticsProvider(HTTPMetricsProvider):
    """Daily traffic metrics from the GA4 Data API."""

    platform = Platform.GA

    def _property_url(self, property_id: str, method: str) -> str:
        pid = property_id.split("/")[-1]
        return f"{settings.ga_data_api_url}/properties/{pid}:{method}"

    async def fetch_daily(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[GADailyRow]:
        body = {
            "dateRanges": [{"startDate": start_date, "endDate": end_date}],
            "dimensions": [{"name": "date"}],
            "metrics": [{"name": m} for m in METRIC_COLUMNS],
            "orderBys": [{"dimension": {"dimensionName": "date"}}],
            "limit": 10000,
        }
        raw = await self._request(
            "POST",
            self._property_url(external_id, "runReport"),
            access_token,
            json_body=body,
        )
        report = parse_payload(RunReportResponse, raw)

        # Column order follows metricHeaders, not our request order
        names = [h.name for h in report.metricHeaders] or list(METRIC_COLUMNS)
        rows: List[Dict[str, Any]] = []
        for r in report.rows:
            if not r.dimensionValues:
                continue
            row: Dict[str, Any] = {
                "platform": "ga",
                "metric_date": r.dimensionValues[0].value,
            }
            for name, mv in zip(names, r.metricValues):
                column = METRIC_COLUMNS.get(name)
                if column:
                    row[column] = mv.value or 0
            rows.append(row)

        parsed = parse_payload(DailyRowBatch, {"rows": rows}).rows
        logger.info(f"GA property {external_id}: {len(parsed)} days")
        return parsed

    async def fetch_channels(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[GAChannelRow]:
        """Daily sessions per default channel group, zero days dropped."""
        body = {
            "dateRanges": [{"startDate": start_date, "endDate": end_date}],
            "dimensions": [{"name": "date"}, {"name": "sessionDefaultChannelGroup"}],
            "metrics": [{"name": "sessions"}],
            "orderBys": [{"dimension": {"dimensionName": "date"}}],
            "limit": 10000,
        }
        raw = await self._request(
            "POST",
            self._property_url(external_id, "runReport"),
            access_token,
            json_body=body,
        )
        report = parse_payload(RunReportResponse, raw)

        sessions: Dict[Tuple[str, str], int] = {}
        for r in report.rows:
            if len(r.dimensionValues) < 2 or not r.metricValues:
                continue
            day = r.dimensionValues[0].value
            channel = channel_bucket(r.dimensionValues[1].value)
            count = parse_payload(_Count, {"value": r.metricValues[0].value or 0}).value
            sessions[(day, channel)] = sessions.get((day, channel), 0) + int(count)

        rows = [
            {"metric_date": day, "channel": channel, "sessions": total}
            for (day, channel), total in sessions.items()
            if total > 0
        ]
        parsed = [parse_payload(GAChannelRow, row) for row in rows]
        logger.info(f"GA property {external_id}: {len(parsed)} channel-days")
        return parsed

    async def fetch_realtime(
        self, access_token: str, property_id: str
    ) -> Dict[str, Any]:
        """Active users over the last 30 minutes, split by device."""
        body = {
            "dimensions": [{"name": "deviceCategory"}],
            "metrics": [{"name": "activeUsers"}],
        }
        raw = await self._request(
            "POST",
            self._property_url(property_id, "runRealtimeReport"),
            access_token,
            json_body=body,
        )
        report = parse_payload(RunReportResponse, raw)

        by_device: Dict[str, int] = {}
        for r in report.rows:
            device = r.dimensionValues[0].value if r.dimensionValues else "unknown"
            raw_count = r.metricValues[0].value if r.metricValues else ""
            count = parse_payload(_Count, {"value": raw_count or 0}).value
            by_device[device] = by_device.get(device, 0) + int(count)
        return {"activeUsers": sum(by_device.values()), "byDevice": by_device}
