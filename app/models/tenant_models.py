"""PULSE: Tenant, Identity & Credential Models."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field, UniqueConstraint


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Company(SQLModel, table=True):
    """A client company (tenant). Never mutated by the sync engine."""

    __tablename__ = "companies"

    id: str = Field(default_factory=_uuid, primary_key=True)
    name: str = Field(index=True)
    industry: str = Field(default="")
    color: str = Field(default="#3b82f6", description="Display color for charts")
    created_at: datetime = Field(default_factory=_now)


class User(SQLModel, table=True):
    """Internal user: agency staff or a client contact."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid, primary_key=True)
    email: str = Field(index=True, unique=True)


class UserCompany(SQLModel, table=True):
    """Role a user holds on a company: owner | admin | viewer."""

    __tablename__ = "user_companies"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_user_company"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, foreign_key="users.id")
    company_id: str = Field(index=True, foreign_key="companies.id")
    role: str = Field(default="viewer")


class PlatformAccount(SQLModel, table=True):
    """An externally-owned identity: GA property, GSC site, channel or page.

    Owned by the internal user who holds the OAuth credential.
    """

    __tablename__ = "platform_accounts"
    __table_args__ = (
        UniqueConstraint(
            "platform", "external_id", "user_id", name="uq_platform_account"
        ),
    )

    id: str = Field(default_factory=_uuid, primary_key=True)
    platform: str = Field(index=True, description="ga | gsc | youtube | linkedin")
    external_id: str = Field(
        description="Property id, site URL, channel id or organization id"
    )
    display_name: str = Field(default="")
    user_id: str = Field(index=True, foreign_key="users.id")


class PlatformMapping(SQLModel, table=True):
    """Links a company to the account supplying its data for one platform.

    At most one mapping per (company, platform); a mapping record is never
    shared between companies.
    """

    __tablename__ = "platform_mappings"
    __table_args__ = (
        UniqueConstraint("company_id", "platform", name="uq_mapping_company_platform"),
        UniqueConstraint("account_id", name="uq_mapping_account"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True, foreign_key="companies.id")
    platform: str = Field(index=True)
    account_id: str = Field(foreign_key="platform_accounts.id")
    created_at: datetime = Field(default_factory=_now)


class OAuthToken(SQLModel, table=True):
    """Stored OAuth credential for one user and provider (google | linkedin)."""

    __tablename__ = "oauth_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_oauth_user_provider"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, foreign_key="users.id")
    provider: str = Field(index=True)
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: str = Field(default="", description="Space-separated granted scopes")
    updated_at: datetime = Field(default_factory=_now)
