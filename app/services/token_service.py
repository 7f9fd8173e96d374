"""PULSE: OAuth Credential Resolution & Token Health.

Token *acquisition* (consent screens, callbacks) lives elsewhere; this module
only reads stored tokens, refreshes expired ones and reports their health.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Collection, Dict, List, Optional, Set

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.config import settings
from app.connectors.base import AuthRequiredError, ProviderAPIError
from app.core.clock import as_utc, utcnow
from app.core.logging import get_logger
from app.core.platform_registry import Platform, get_platform, platforms_for_provider
from app.database import run_blocking
from app.models.tenant_models import OAuthToken, PlatformAccount, PlatformMapping

logger = get_logger("services.tokens")

# Refresh a little early so a token cannot expire mid-request
EXPIRY_SKEW = timedelta(seconds=60)
EXPIRES_SOON = timedelta(hours=24)


class TokenService:
    """Resolves a usable access token for an account owner."""

    def __init__(self, engine: Engine, timeout: Optional[float] = None):
        self.engine = engine
        self.timeout = timeout or settings.provider_timeout_seconds

    def _token_endpoint(self, provider: str) -> Dict[str, Optional[str]]:
        if provider == "google":
            return {
                "url": settings.google_token_url,
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
            }
        return {
            "url": settings.linkedin_token_url,
            "client_id": settings.linkedin_client_id,
            "client_secret": settings.linkedin_client_secret,
        }

    def _load(self, user_id: str, provider: str) -> Optional[OAuthToken]:
        with Session(self.engine) as session:
            return session.exec(
                select(OAuthToken).where(
                    OAuthToken.user_id == user_id,
                    OAuthToken.provider == provider,
                )
            ).first()

    def _save(self, token_id: int, changes: Dict[str, Any]) -> None:
        with Session(self.engine) as session:
            stored = session.get(OAuthToken, token_id)
            if stored is None:
                return
            for key, value in changes.items():
                setattr(stored, key, value)
            session.add(stored)
            session.commit()

    async def get_access_token(self, user_id: str, platform: Platform) -> str:
        """Return a valid access token or raise AuthRequiredError."""
        definition = get_platform(platform)

        token = await run_blocking(self.engine, self._load, user_id, definition.oauth_provider)
        if token is None:
            raise AuthRequiredError(
                f"NO_TOKENS: no {definition.oauth_provider} credential for owner"
            )

        if definition.required_scope not in token.scope.split():
            raise AuthRequiredError(
                f"MISSING_SCOPE: token lacks {definition.required_scope}"
            )

        expires_at = as_utc(token.expires_at)
        if expires_at is None or expires_at - EXPIRY_SKEW > utcnow():
            return token.access_token

        return await self._refresh(token)

    async def _refresh(self, token: OAuthToken) -> str:
        """Exchange the refresh token and persist the new access token."""
        if not token.refresh_token:
            raise AuthRequiredError("TOKEN_EXPIRED: no refresh token stored")

        endpoint = self._token_endpoint(token.provider)
        if not endpoint["client_id"] or not endpoint["client_secret"]:
            raise AuthRequiredError(
                f"TOKEN_REFRESH_FAILED: {token.provider} OAuth client not configured"
            )

        form = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": endpoint["client_id"],
            "client_secret": endpoint["client_secret"],
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(endpoint["url"], data=form)
        except httpx.RequestError as e:
            raise ProviderAPIError(
                f"Token refresh for {token.provider} unreachable: {e}", retryable=True
            ) from e

        if resp.status_code >= 500:
            raise ProviderAPIError(
                f"Token refresh for {token.provider} failed: {resp.status_code}",
                status_code=resp.status_code,
                retryable=True,
            )
        if resp.status_code != 200:
            logger.warning(
                f"Refresh rejected for user {token.user_id} ({token.provider}): "
                f"{resp.status_code}"
            )
            raise AuthRequiredError(
                f"TOKEN_REFRESH_FAILED: {token.provider} returned {resp.status_code}"
            )

        body = resp.json()
        access_token = body.get("access_token")
        if not access_token:
            raise AuthRequiredError("TOKEN_REFRESH_FAILED: no access_token in response")

        changes: Dict[str, Any] = {
            "access_token": access_token,
            "expires_at": utcnow() + timedelta(seconds=int(body.get("expires_in", 3600))),
            "updated_at": utcnow(),
        }
        if body.get("refresh_token"):
            changes["refresh_token"] = body["refresh_token"]
        if body.get("scope"):
            changes["scope"] = body["scope"]
        await run_blocking(self.engine, self._save, token.id, changes)

        logger.info(f"Refreshed {token.provider} token for user {token.user_id}")
        return access_token


def token_health(
    session: Session,
    now: Optional[datetime] = None,
    company_ids: Optional[Collection[str]] = None,
) -> List[Dict[str, Any]]:
    """Expiry state of stored tokens plus the companies each one serves.

    With company_ids, only tokens serving one of those companies are listed
    and their companyIds are narrowed to that set.
    """
    now = now or utcnow()
    visible = set(company_ids) if company_ids is not None else None

    user_companies: Dict[str, Set[str]] = defaultdict(set)
    mappings = session.exec(
        select(PlatformMapping.company_id, PlatformAccount.user_id).join(
            PlatformAccount, PlatformAccount.id == PlatformMapping.account_id
        )
    ).all()
    for company_id, user_id in mappings:
        if visible is None or company_id in visible:
            user_companies[user_id].add(company_id)

    health: List[Dict[str, Any]] = []
    for t in session.exec(select(OAuthToken)).all():
        if visible is not None and t.user_id not in user_companies:
            continue
        expires_at = as_utc(t.expires_at)
        is_expired = expires_at is not None and expires_at < now
        hours_left = (
            (expires_at - now).total_seconds() / 3600 if expires_at is not None else None
        )
        health.append(
            {
                "userId": t.user_id,
                "provider": t.provider,
                "platforms": [p.value for p in platforms_for_provider(t.provider)],
                "expiresAt": expires_at.isoformat() if expires_at else None,
                "updatedAt": as_utc(t.updated_at).isoformat(),
                "isExpired": is_expired,
                "expiresSoon": hours_left is not None and 0 < hours_left < EXPIRES_SOON.total_seconds() / 3600,
                "companyIds": sorted(user_companies.get(t.user_id, set())),
            }
        )
    return health
