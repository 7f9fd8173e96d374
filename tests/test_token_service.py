from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlmodel import Session, select

from app.config import settings
from app.connectors.base import AuthRequiredError, ProviderAPIError
from app.core.platform_registry import Platform
from app.models.tenant_models import OAuthToken
from app.services.token_service import TokenService, token_health
from tests.conftest import add_company, add_token, add_user, map_platform

_RealAsyncClient = httpx.AsyncClient


def _mock_token_endpoint(monkeypatch, handler):
    def client_factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr("app.services.token_service.httpx.AsyncClient", client_factory)


@pytest.fixture
def google_client(monkeypatch):
    monkeypatch.setattr(settings, "google_client_id", "client-id")
    monkeypatch.setattr(settings, "google_client_secret", "client-secret")


@pytest.mark.asyncio
async def test_valid_token_is_returned_as_is(engine):
    owner = add_user(engine, "owner@agency.test")
    add_token(engine, owner.id, expires_at=datetime.now(timezone.utc) + timedelta(hours=1))

    assert await TokenService(engine).get_access_token(owner.id, Platform.GA) == "access-1"


@pytest.mark.asyncio
async def test_missing_token_requires_reauth(engine):
    owner = add_user(engine, "owner@agency.test")
    add_token(engine, owner.id)

    with pytest.raises(AuthRequiredError, match="NO_TOKENS"):
        await TokenService(engine).get_access_token(owner.id, Platform.LINKEDIN)


@pytest.mark.asyncio
async def test_missing_scope_requires_reauth(engine):
    owner = add_user(engine, "owner@agency.test")
    add_token(engine, owner.id, scope="https://www.googleapis.com/auth/analytics.readonly")

    service = TokenService(engine)
    assert await service.get_access_token(owner.id, Platform.GA) == "access-1"
    with pytest.raises(AuthRequiredError, match="MISSING_SCOPE"):
        await service.get_access_token(owner.id, Platform.YOUTUBE)


@pytest.mark.asyncio
async def test_expired_token_without_refresh_token(engine):
    owner = add_user(engine, "owner@agency.test")
    add_token(
        engine,
        owner.id,
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        refresh_token=None,
    )

    with pytest.raises(AuthRequiredError):
        await TokenService(engine).get_access_token(owner.id, Platform.GSC)


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(engine, monkeypatch, google_client):
    owner = add_user(engine, "owner@agency.test")
    add_token(engine, owner.id, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3599})

    _mock_token_endpoint(monkeypatch, handler)

    assert await TokenService(engine).get_access_token(owner.id, Platform.GA) == "access-2"
    assert "grant_type=refresh_token" in seen["body"]
    assert "refresh_token=refresh-1" in seen["body"]

    with Session(engine) as session:
        stored = session.exec(select(OAuthToken)).one()
    assert stored.access_token == "access-2"
    assert stored.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_rejected_refresh_requires_reauth(engine, monkeypatch, google_client):
    owner = add_user(engine, "owner@agency.test")
    add_token(engine, owner.id, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    _mock_token_endpoint(monkeypatch, lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(AuthRequiredError, match="TOKEN_REFRESH_FAILED"):
        await TokenService(engine).get_access_token(owner.id, Platform.GA)


@pytest.mark.asyncio
async def test_refresh_outage_is_retryable(engine, monkeypatch, google_client):
    owner = add_user(engine, "owner@agency.test")
    add_token(engine, owner.id, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    _mock_token_endpoint(monkeypatch, lambda request: httpx.Response(503))

    with pytest.raises(ProviderAPIError) as exc_info:
        await TokenService(engine).get_access_token(owner.id, Platform.GA)
    assert exc_info.value.retryable


def test_token_health_flags_expiry_and_lists_companies(engine):
    now = datetime(2026, 10, 19, 12, tzinfo=timezone.utc)
    acme = add_company(engine, "Acme")
    globex = add_company(engine, "Globex")
    google_owner = add_user(engine, "google@agency.test")
    li_owner = add_user(engine, "li@agency.test")
    map_platform(engine, globex.id, Platform.GA, google_owner.id, "properties/2")
    map_platform(engine, acme.id, Platform.GSC, google_owner.id, "https://acme.test/")
    add_token(engine, google_owner.id, expires_at=now + timedelta(hours=3))
    add_token(engine, li_owner.id, provider="linkedin", expires_at=now - timedelta(days=1))

    with Session(engine) as session:
        health = {h["provider"]: h for h in token_health(session, now=now)}

    assert health["google"]["isExpired"] is False
    assert health["google"]["expiresSoon"] is True
    assert health["google"]["companyIds"] == sorted([acme.id, globex.id])
    assert health["linkedin"]["isExpired"] is True
    assert health["linkedin"]["expiresSoon"] is False
    assert health["linkedin"]["companyIds"] == []
    assert health["linkedin"]["platforms"] == ["linkedin"]
    assert health["google"]["platforms"] == ["ga", "gsc", "youtube"]


def test_token_health_narrowed_to_visible_companies(engine):
    acme = add_company(engine, "Acme")
    rival = add_company(engine, "Rival")
    shared = add_user(engine, "shared@agency.test")
    rival_only = add_user(engine, "rival@agency.test")
    map_platform(engine, acme.id, Platform.GA, shared.id, "properties/1")
    map_platform(engine, rival.id, Platform.GSC, shared.id, "https://rival.test/")
    map_platform(engine, rival.id, Platform.GA, rival_only.id, "properties/2")
    add_token(engine, shared.id)
    add_token(engine, rival_only.id)

    with Session(engine) as session:
        health = token_health(session, company_ids=[acme.id])

    assert [(h["userId"], h["companyIds"]) for h in health] == [(shared.id, [acme.id])]
