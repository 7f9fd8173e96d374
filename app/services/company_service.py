"""PULSE: Company Lifecycle Helpers."""

from typing import Dict, List

from sqlalchemy import delete
from sqlmodel import Session, select

from app.core.logging import get_logger
from app.models.cache_models import AnalyticsCache
from app.models.metric_models import BREAKDOWN_TABLES, FACT_TABLES
from app.models.sync_models import SyncStatus
from app.models.tenant_models import Company, PlatformMapping, UserCompany

logger = get_logger("services.company")

ADMIN_ROLES = ("owner", "admin")


def delete_company(session: Session, company_id: str) -> Dict[str, int]:
    """Delete a company and every row it owns.

    Platform accounts are not deleted: they belong to the user holding the
    credential, and may still serve other companies.
    """
    counts: Dict[str, int] = {}
    conn = session.connection()
    for label, model in (
        ("mappings", PlatformMapping),
        ("sync_status", SyncStatus),
        ("cache", AnalyticsCache),
        ("user_companies", UserCompany),
    ):
        counts[label] = conn.execute(delete(model).where(model.company_id == company_id)).rowcount or 0
    for platform, model in FACT_TABLES.items():
        counts[f"{platform.value}_rows"] = (
            conn.execute(delete(model).where(model.company_id == company_id)).rowcount or 0
        )
    for model in BREAKDOWN_TABLES:
        counts[f"{model.__tablename__}_rows"] = (
            conn.execute(delete(model).where(model.company_id == company_id)).rowcount or 0
        )
    counts["companies"] = conn.execute(delete(Company).where(Company.id == company_id)).rowcount or 0
    session.commit()
    logger.info(f"Deleted company {company_id}: {counts}", extra={"company_id": company_id})
    return counts


def companies_with_role(session: Session, user_id: str, roles=ADMIN_ROLES) -> List[str]:
    """Company ids on which the user holds one of roles."""
    return list(
        session.exec(
            select(UserCompany.company_id).where(
                UserCompany.user_id == user_id,
                UserCompany.role.in_(list(roles)),  # type: ignore
            )
        ).all()
    )


def has_access(session: Session, user_id: str, company_id: str) -> bool:
    """Whether the user holds any role on the company."""
    return (
        session.exec(
            select(UserCompany).where(
                UserCompany.user_id == user_id,
                UserCompany.company_id == company_id,
            )
        ).first()
        is not None
    )
