"""
Monthly quota accounting.

Usage is always computed from the requests table; quotas are never
decremented in place.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from health_requests.config import get_settings
from health_requests.database import (
    ConsultationType as ConsultationTypeDB,
    ExamType as ExamTypeDB,
    ServiceRequest as RequestDB,
)
from health_requests.exceptions import ValidationError
from health_requests.models.request import QuotaUsage, ServiceKind

logger = logging.getLogger(__name__)


def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    """Return ``[start, next_start)`` for a calendar month."""
    if month < 1 or month > 12:
        raise ValidationError("Mês inválido")
    if year < 2020 or year > 2100:
        raise ValidationError("Ano inválido")
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return start, end


def _usage_rows(db: Session, model, fk_column, start: datetime, end: datetime, kind: ServiceKind) -> List[QuotaUsage]:
    rows = (
        db.query(model.id, model.name, model.monthly_quota, func.count(RequestDB.id))
        .outerjoin(
            RequestDB,
            (fk_column == model.id) & (RequestDB.created_at >= start) & (RequestDB.created_at < end)
        )
        .filter(model.is_active == True)  # noqa: E712
        .group_by(model.id, model.name, model.monthly_quota)
        .order_by(model.name)
        .all()
    )
    return [
        QuotaUsage(
            kind=kind,
            service_id=service_id,
            name=name,
            quota=quota,
            used=used,
            remaining=max(0, quota - used),
            exhausted=used >= quota
        )
        for service_id, name, quota, used in rows
    ]


def quota_usage(db: Session, year: Optional[int] = None, month: Optional[int] = None) -> List[QuotaUsage]:
    """Per-service ``used`` vs ``quota`` for the given month (default: current)."""
    now = datetime.utcnow()
    start, end = month_bounds(year or now.year, month or now.month)

    usage = _usage_rows(db, ExamTypeDB, RequestDB.exam_type_id, start, end, ServiceKind.EXAM)
    usage += _usage_rows(db, ConsultationTypeDB, RequestDB.consultation_type_id, start, end, ServiceKind.CONSULTATION)
    return usage


def usage_for(db: Session, selections: Iterable) -> List[QuotaUsage]:
    """Quota snapshot restricted to the selected services."""
    wanted = {(s.service_kind, s.service_id) for s in selections}
    return [u for u in quota_usage(db) if (u.kind, u.service_id) in wanted]


def exhausted_services(db: Session, selections: Iterable) -> Dict[Tuple[ServiceKind, int], QuotaUsage]:
    """Selected services whose monthly quota is already used up."""
    return {(u.kind, u.service_id): u for u in usage_for(db, selections) if u.exhausted}


def quota_is_enforced() -> bool:
    return get_settings().quota_is_hard_cap
