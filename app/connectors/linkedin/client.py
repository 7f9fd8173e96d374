"""PULSE: LinkedIn Organization Analytics Adapter.

Daily page views, follower gains and share statistics come from three
separate Rest.li finders; they are merged into one row per day.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from pydantic import BaseModel

from app.config import settings
from app.connectors.base import HTTPMetricsProvider, parse_payload
from app.core.logging import get_logger
from app.core.platform_registry import Platform
from app.models.metric_models import DailyRowBatch, LinkedInDailyRow

logger = get_logger("connectors.linkedin")


# ── Response schema ──


class _TimeRange(BaseModel):
    start: int
    end: int


class _PageViews(BaseModel):
    pageViews: int = 0


class _Views(BaseModel):
    allDesktopPageViews: _PageViews = _PageViews()
    allMobilePageViews: _PageViews = _PageViews()


class _TotalPageStatistics(BaseModel):
    views: _Views = _Views()


class _PageStatElement(BaseModel):
    timeRange: _TimeRange
    totalPageStatistics: _TotalPageStatistics = _TotalPageStatistics()


class _FollowerGains(BaseModel):
    organicFollowerGain: int = 0
    paidFollowerGain: int = 0


class _FollowerElement(BaseModel):
    timeRange: _TimeRange
    followerGains: _FollowerGains = _FollowerGains()


class _ShareStatistics(BaseModel):
    impressionCount: int = 0
    clickCount: int = 0
    likeCount: int = 0
    commentCount: int = 0
    shareCount: int = 0


class _ShareElement(BaseModel):
    timeRange: _TimeRange
    totalShareStatistics: _ShareStatistics = _ShareStatistics()


class PageStatsResponse(BaseModel):
    elements: List[_PageStatElement] = []


class FollowerStatsResponse(BaseModel):
    elements: List[_FollowerElement] = []


class ShareStatsResponse(BaseModel):
    elements: List[_ShareElement] = []


def _epoch_ms(date_str: str, offset_days: int = 0) -> int:
    d = datetime.strptime(date_str, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int((d + timedelta(days=offset_days)).timestamp() * 1000)


def _day_of(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


class LinkedInProvider(HTTPMetricsProvider):
    """Daily organization page metrics from the LinkedIn Marketing API."""

    platform = Platform.LINKEDIN

    def _auth_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "LinkedIn-Version": settings.linkedin_api_version,
            "X-Restli-Protocol-Version": "2.0.0",
        }

    def _finder_url(
        self, resource: str, finder: str, param: str, org_id: str, start: str, end: str
    ) -> str:
        # Rest.li tuples must reach LinkedIn unencoded, so the query is built by hand
        urn = f"urn%3Ali%3Aorganization%3A{org_id.split(':')[-1]}"
        interval = (
            f"(timeRange:(start:{_epoch_ms(start)},end:{_epoch_ms(end, 1)}),"
            "timeGranularityType:DAY)"
        )
        return (
            f"{settings.linkedin_api_url}/{resource}"
            f"?q={finder}&{param}={urn}&timeIntervals={interval}"
        )

    async def fetch_daily(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[LinkedInDailyRow]:
        # Sequential on purpose: LinkedIn's per-member throttle is tight
        pages = parse_payload(
            PageStatsResponse,
            await self._request(
                "GET",
                self._finder_url(
                    "organizationPageStatistics", "organization", "organization",
                    external_id, start_date, end_date,
                ),
                access_token,
            ),
        )
        followers = parse_payload(
            FollowerStatsResponse,
            await self._request(
                "GET",
                self._finder_url(
                    "organizationalEntityFollowerStatistics", "organizationalEntity",
                    "organizationalEntity", external_id, start_date, end_date,
                ),
                access_token,
            ),
        )
        shares = parse_payload(
            ShareStatsResponse,
            await self._request(
                "GET",
                self._finder_url(
                    "organizationalEntityShareStatistics", "organizationalEntity",
                    "organizationalEntity", external_id, start_date, end_date,
                ),
                access_token,
            ),
        )

        by_day: Dict[str, Dict[str, Any]] = {}

        def day_row(epoch_ms: int) -> Dict[str, Any]:
            day = _day_of(epoch_ms)
            return by_day.setdefault(day, {"platform": "linkedin", "metric_date": day})

        for el in pages.elements:
            row = day_row(el.timeRange.start)
            row["desktop_visitors"] = el.totalPageStatistics.views.allDesktopPageViews.pageViews
            row["mobile_visitors"] = el.totalPageStatistics.views.allMobilePageViews.pageViews
        for el in followers.elements:
            row = day_row(el.timeRange.start)
            row["organic_follower_gain"] = el.followerGains.organicFollowerGain
            row["paid_follower_gain"] = el.followerGains.paidFollowerGain
        for el in shares.elements:
            row = day_row(el.timeRange.start)
            stats = el.totalShareStatistics
            row["impressions"] = stats.impressionCount
            row["clicks"] = stats.clickCount
            row["reactions"] = stats.likeCount
            row["comments"] = stats.commentCount
            row["shares"] = stats.shareCount

        rows = [by_day[d] for d in sorted(by_day)]
        parsed = parse_payload(DailyRowBatch, {"rows": rows}).rows
        logger.info(f"LinkedIn org {external_id}: {len(parsed)} days")
        return parsed
