import os
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

# Keep the import-time engine off the developer's database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from app.connectors.base import AuthRequiredError, MetricsProvider
from app.core.platform_registry import Platform, get_platform
from app.database import init_db
from app.models.metric_models import (
    GAChannelRow,
    GADailyRow,
    GSCDailyRow,
    LinkedInDailyRow,
    YouTubeDailyRow,
)
from app.models.tenant_models import (
    Company,
    OAuthToken,
    PlatformAccount,
    PlatformMapping,
    User,
    UserCompany,
)

TODAY = date(2026, 10, 19)

ROW_TYPES = {
    Platform.GA: GADailyRow,
    Platform.GSC: GSCDailyRow,
    Platform.YOUTUBE: YouTubeDailyRow,
    Platform.LINKEDIN: LinkedInDailyRow,
}


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


# ── Seeding helpers ──


def add_company(engine, name: str, **kw) -> Company:
    with Session(engine) as session:
        company = Company(name=name, **kw)
        session.add(company)
        session.commit()
        session.refresh(company)
        return company


def add_user(engine, email: str, companies: Optional[Dict[str, str]] = None) -> User:
    """Create a user holding company_id -> role."""
    with Session(engine) as session:
        user = User(email=email)
        session.add(user)
        session.commit()
        session.refresh(user)
        for company_id, role in (companies or {}).items():
            session.add(UserCompany(user_id=user.id, company_id=company_id, role=role))
        session.commit()
        session.refresh(user)
        return user


def map_platform(engine, company_id: str, platform: Platform, user_id: str, external_id: str) -> PlatformAccount:
    with Session(engine) as session:
        account = PlatformAccount(
            platform=platform.value, external_id=external_id, user_id=user_id
        )
        session.add(account)
        session.commit()
        session.refresh(account)
        session.add(
            PlatformMapping(company_id=company_id, platform=platform.value, account_id=account.id)
        )
        session.commit()
        session.refresh(account)
        return account


def add_token(
    engine,
    user_id: str,
    provider: str = "google",
    scope: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    refresh_token: Optional[str] = "refresh-1",
    access_token: str = "access-1",
) -> OAuthToken:
    if scope is None:
        scope = " ".join(
            get_platform(p).required_scope
            for p in Platform
            if get_platform(p).oauth_provider == provider
        )
    with Session(engine) as session:
        token = OAuthToken(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scope=scope,
        )
        session.add(token)
        session.commit()
        session.refresh(token)
        return token


# ── Fakes ──


class FakeTokens:
    """Credential resolver that hands out a token unless told otherwise."""

    def __init__(self, denied_users=()):
        self.denied_users = set(denied_users)
        self.calls: List[tuple] = []

    async def get_access_token(self, user_id: str, platform: Platform) -> str:
        self.calls.append((user_id, platform))
        if user_id in self.denied_users:
            raise AuthRequiredError("NO_TOKENS: no credential for owner")
        return f"token-{user_id}"


def _days(start_date: str, end_date: str) -> List[str]:
    day = datetime.strptime(start_date, "%Y-%m-%d").date()
    end = datetime.strptime(end_date, "%Y-%m-%d").date()
    days = []
    while day <= end:
        days.append(day.isoformat())
        day += timedelta(days=1)
    return days


class FakeProvider(MetricsProvider):
    """Returns one row per day in the window; fails for configured ids."""

    def __init__(
        self, platform: Platform, fail_for=(), error: Optional[Exception] = None, log=None, channels=None
    ):
        self.platform = platform
        self.channels = channels or {}
        self.fail_for = set(fail_for)
        self.error = error
        self.log = log if log is not None else []
        self.closed = False

    async def fetch_daily(self, access_token, external_id, start_date, end_date):
        self.log.append((self.platform, external_id, start_date, end_date))
        if external_id in self.fail_for:
            raise self.error
        row_type = ROW_TYPES[self.platform]
        return [row_type(metric_date=day) for day in _days(start_date, end_date)]

    async def fetch_channels(self, access_token, external_id, start_date, end_date):
        if self.platform != Platform.GA:
            return []
        if external_id in self.fail_for:
            raise self.error
        return [
            GAChannelRow(metric_date=day, channel=channel, sessions=sessions)
            for day in _days(start_date, end_date)
            for channel, sessions in self.channels.items()
        ]

    async def close(self):
        self.closed = True


def provider_factory(fail_for=(), error=None, log=None, channels=None) -> Callable[[Platform], MetricsProvider]:
    log = log if log is not None else []

    def build(platform: Platform) -> MetricsProvider:
        return FakeProvider(platform, fail_for=fail_for, error=error, log=log, channels=channels)

    return build


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def no_sleep(_seconds: float) -> None:
    return None
