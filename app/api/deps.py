"""PULSE: Shared API Dependencies.

Session mechanics are owned by the auth gateway in front of this service;
it forwards the authenticated user's id in the X-User-Id header.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.connectors.google.analytics import GoogleAnalyticsProvider
from app.database import get_engine
from app.services.token_service import TokenService
from app.models.tenant_models import User


def get_db(engine: Engine = Depends(get_engine)):
    """Dependency: a session bound to the (overridable) engine."""
    with Session(engine) as session:
        yield session


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    session: Session = Depends(get_db),
) -> User:
    """Resolve the forwarded user id, 401 if absent or unknown."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = session.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def get_token_service(engine: Engine = Depends(get_engine)) -> TokenService:
    return TokenService(engine)


def get_realtime_provider() -> GoogleAnalyticsProvider:
    return GoogleAnalyticsProvider()
