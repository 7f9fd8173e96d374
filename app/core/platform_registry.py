"""PULSE: Platform & Metric Registry.

Defines the closed set of platforms the sync engine knows about, which OAuth
provider backs each one, and how each daily metric column aggregates over a
period. Adding a platform means registering it here, adding a connector, and
adding its fact table.
"""

from enum import Enum
from typing import Dict, List


class Platform(str, Enum):
    """A distinct external metrics source."""

    GA = "ga"
    GSC = "gsc"
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"


class Aggregation(str, Enum):
    """How a daily column rolls up across a period."""

    SUM = "sum"  # Counts: sessions, clicks, views
    AVG = "avg"  # Per-day rates: bounce rate, position


class MetricDefinition:
    """Describes a single daily metric column."""

    def __init__(self, name: str, aggregation: Aggregation, description: str = ""):
        self.name = name
        self.aggregation = aggregation
        self.description = description

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.aggregation.value})>"


class PlatformDefinition:
    """Describes one platform."""

    def __init__(
        self,
        platform: Platform,
        label: str,
        oauth_provider: str,
        required_scope: str,
        metrics: List[MetricDefinition],
        sequential: bool = False,
    ):
        self.platform = platform
        self.label = label
        self.oauth_provider = oauth_provider
        self.required_scope = required_scope
        self.metrics = metrics
        # Sequential platforms run after the others finish, never alongside
        self.sequential = sequential

    def __repr__(self) -> str:
        return f"<Platform {self.platform.value} via {self.oauth_provider}>"


# ─────────────────────────────────────────────
# PLATFORMS: Canonical Registry
# ─────────────────────────────────────────────

PLATFORMS: Dict[Platform, PlatformDefinition] = {
    Platform.GA: PlatformDefinition(
        Platform.GA,
        "Google Analytics",
        "google",
        "https://www.googleapis.com/auth/analytics.readonly",
        [
            MetricDefinition("total_users", Aggregation.SUM, "Active users"),
            MetricDefinition("new_users", Aggregation.SUM, "First-time users"),
            MetricDefinition("sessions", Aggregation.SUM, "Sessions"),
            MetricDefinition("page_views", Aggregation.SUM, "Screen/page views"),
            MetricDefinition(
                "avg_session_duration", Aggregation.AVG, "Seconds per session"
            ),
            MetricDefinition("bounce_rate", Aggregation.AVG, "Bounce rate (0-1)"),
            MetricDefinition("key_events", Aggregation.SUM, "Key events"),
            MetricDefinition(
                "user_key_event_rate", Aggregation.AVG, "Users with a key event"
            ),
        ],
    ),
    Platform.GSC: PlatformDefinition(
        Platform.GSC,
        "Search Console",
        "google",
        "https://www.googleapis.com/auth/webmasters.readonly",
        [
            MetricDefinition("impressions", Aggregation.SUM, "Search impressions"),
            MetricDefinition("clicks", Aggregation.SUM, "Search clicks"),
            MetricDefinition("ctr", Aggregation.AVG, "Click-through rate"),
            MetricDefinition("avg_position", Aggregation.AVG, "Average position"),
        ],
    ),
    Platform.YOUTUBE: PlatformDefinition(
        Platform.YOUTUBE,
        "YouTube",
        "google",
        "https://www.googleapis.com/auth/yt-analytics.readonly",
        [
            MetricDefinition("views", Aggregation.SUM, "Video views"),
            MetricDefinition("watch_time_seconds", Aggregation.SUM, "Watch time"),
            MetricDefinition("likes", Aggregation.SUM, "Likes"),
            MetricDefinition("comments", Aggregation.SUM, "Comments"),
            MetricDefinition("shares", Aggregation.SUM, "Shares"),
            MetricDefinition("subscribers_gained", Aggregation.SUM, "New subs"),
            MetricDefinition("subscribers_lost", Aggregation.SUM, "Lost subs"),
            MetricDefinition(
                "avg_view_duration", Aggregation.AVG, "Seconds per view"
            ),
        ],
    ),
    Platform.LINKEDIN: PlatformDefinition(
        Platform.LINKEDIN,
        "LinkedIn",
        "linkedin",
        "r_organization_social",
        [
            MetricDefinition("desktop_visitors", Aggregation.SUM, "Page views, desktop"),
            MetricDefinition("mobile_visitors", Aggregation.SUM, "Page views, mobile"),
            MetricDefinition("organic_follower_gain", Aggregation.SUM, "Organic follows"),
            MetricDefinition("paid_follower_gain", Aggregation.SUM, "Sponsored follows"),
            MetricDefinition("impressions", Aggregation.SUM, "Share impressions"),
            MetricDefinition("clicks", Aggregation.SUM, "Share clicks"),
            MetricDefinition("reactions", Aggregation.SUM, "Likes and reactions"),
            MetricDefinition("comments", Aggregation.SUM, "Comments"),
            MetricDefinition("shares", Aggregation.SUM, "Shares"),
        ],
        sequential=True,  # LinkedIn throttles per member token
    ),
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

ALL_PLATFORMS: List[Platform] = list(PLATFORMS.keys())


def get_platform(platform: Platform | str) -> PlatformDefinition:
    """Look up a platform definition."""
    return PLATFORMS[Platform(platform)]


def platforms_for_provider(oauth_provider: str) -> List[Platform]:
    """Return all platforms authorised through a given OAuth provider."""
    return [p for p, d in PLATFORMS.items() if d.oauth_provider == oauth_provider]
