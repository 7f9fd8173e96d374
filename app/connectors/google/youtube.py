"""PULSE: YouTube Analytics Adapter."""

from typing import Any, Dict, List, Union

from pydantic import BaseModel

from app.config import settings
from app.connectors.base import HTTPMetricsProvider, parse_payload
from app.core.logging import get_logger
from app.core.platform_registry import Platform
from app.models.metric_models import DailyRowBatch, YouTubeDailyRow

logger = get_logger("connectors.youtube")

REPORT_METRICS = (
    "views,estimatedMinutesWatched,likes,comments,shares,"
    "subscribersGained,subscribersLost,averageViewDuration"
)

COLUMN_MAP = {
    "views": "views",
    "likes": "likes",
    "comments": "comments",
    "shares": "shares",
    "subscribersGained": "subscribers_gained",
    "subscribersLost": "subscribers_lost",
    "averageViewDuration": "avg_view_duration",
}


class _ColumnHeader(BaseModel):
    name: str


class ReportResponse(BaseModel):
    columnHeaders: List[_ColumnHeader]
    rows: List[List[Union[str, float, int]]] = []


class _WatchTime(BaseModel):
    estimatedMinutesWatched: float = 0.0


class YouTubeProvider(HTTPMetricsProvider):
    """Daily channel metrics from the YouTube Analytics API."""

    platform = Platform.YOUTUBE

    async def fetch_daily(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[YouTubeDailyRow]:
        params = {
            "ids": f"channel=={external_id}",
            "startDate": start_date,
            "endDate": end_date,
            "metrics": REPORT_METRICS,
            "dimensions": "day",
            "sort": "day",
        }
        raw = await self._request(
            "GET", f"{settings.youtube_analytics_url}/reports", access_token, params=params
        )
        report = parse_payload(ReportResponse, raw)
        headers = [h.name for h in report.columnHeaders]

        rows: List[Dict[str, Any]] = []
        for values in report.rows:
            record = dict(zip(headers, values))
            minutes = parse_payload(_WatchTime, record).estimatedMinutesWatched
            row: Dict[str, Any] = {
                "platform": "youtube",
                "metric_date": record.get("day", ""),
                "watch_time_seconds": minutes * 60,
            }
            for source, column in COLUMN_MAP.items():
                if source in record:
                    row[column] = record[source]
            rows.append(row)

        parsed = parse_payload(DailyRowBatch, {"rows": rows}).rows
        logger.info(f"YouTube channel {external_id}: {len(parsed)} days")
        return parsed
