"""PULSE: Google Search Console Adapter."""

from typing import List
from urllib.parse import quote

from pydantic import BaseModel

from app.config import settings
from app.connectors.base import HTTPMetricsProvider, parse_payload
from app.core.logging import get_logger
from app.core.platform_registry import Platform
from app.models.metric_models import DailyRowBatch, GSCDailyRow

logger = get_logger("connectors.gsc")


class _QueryRow(BaseModel):
    keys: List[str]
    clicks: float = 0
    impressions: float = 0
    ctr: float = 0
    position: float = 0


class SearchAnalyticsResponse(BaseModel):
    # Search Console omits "rows" entirely when there is no data
    rows: List[_QueryRow] = []


class SearchConsoleProvider(HTTPMetricsProvider):
    """Daily search performance for a verified site."""

    platform = Platform.GSC

    async def fetch_daily(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[GSCDailyRow]:
        url = (
            f"{settings.gsc_api_url}/sites/{quote(external_id, safe='')}"
            "/searchAnalytics/query"
        )
        body = {
            "startDate": start_date,
            "endDate": end_date,
            "dimensions": ["date"],
            "rowLimit": 25000,
        }
        raw = await self._request("POST", url, access_token, json_body=body)
        result = parse_payload(SearchAnalyticsResponse, raw)

        rows = [
            {
                "platform": "gsc",
                "metric_date": r.keys[0] if r.keys else "",
                "impressions": int(r.impressions),
                "clicks": int(r.clicks),
                "ctr": r.ctr,
                "avg_position": r.position,
            }
            for r in result.rows
        ]
        parsed = parse_payload(DailyRowBatch, {"rows": rows}).rows
        logger.info(f"GSC site {external_id}: {len(parsed)} days")
        return parsed
