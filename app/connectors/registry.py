"""PULSE: Provider Registry.

Maps each platform to its adapter. A fresh adapter (and HTTP client) is built
per sync task and closed when the task ends.
"""

from typing import Callable, Dict

from app.connectors.base import MetricsProvider
from app.connectors.google.analytics import GoogleAnalyticsProvider
from app.connectors.google.search_console import SearchConsoleProvider
from app.connectors.google.youtube import YouTubeProvider
from app.connectors.linkedin.client import LinkedInProvider
from app.core.platform_registry import Platform

ProviderFactory = Callable[[Platform], MetricsProvider]

PROVIDER_CLASSES: Dict[Platform, type] = {
    Platform.GA: GoogleAnalyticsProvider,
    Platform.GSC: SearchConsoleProvider,
    Platform.YOUTUBE: YouTubeProvider,
    Platform.LINKEDIN: LinkedInProvider,
}


def default_provider_factory(platform: Platform) -> MetricsProvider:
    """Build the live adapter for a platform."""
    return PROVIDER_CLASSES[Platform(platform)]()
