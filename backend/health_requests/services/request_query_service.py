"""
Read-side queries over requests: panel views, duplicate lookup and counters.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from health_requests.config import get_settings
from health_requests.database import ServiceRequest as RequestDB
from health_requests.exceptions import Conflict, NotFoundError
from health_requests.models.request import (
    LEGACY_STATUS_ALIASES, RequestStatus, RequestStats, ServiceKind, normalize_status
)
from health_requests.services.quota_service import month_bounds

logger = logging.getLogger(__name__)

CLOSED_STATUSES = [RequestStatus.COMPLETED.value, RequestStatus.SUSPENSO.value]

# Unmigrated rows with this label stay off the main panels until migrate_legacy_statuses runs
AWAITING_ANALYSIS_LABEL = "Aguardando Análise"


def status_labels(status: RequestStatus) -> List[str]:
    """Stored labels that mean ``status`` (legacy aliases included)."""
    labels = [status.value]
    labels += [alias for alias, target in LEGACY_STATUS_ALIASES.items() if target == status]
    return labels


def _base_query(db: Session):
    return db.query(RequestDB).options(
        joinedload(RequestDB.patient),
        joinedload(RequestDB.exam_type),
        joinedload(RequestDB.consultation_type),
    )


def _next_month_start(now: datetime) -> datetime:
    return month_bounds(now.year, now.month)[1]


def get_request(db: Session, request_id: int) -> RequestDB:
    request = _base_query(db).filter(RequestDB.id == request_id).first()
    if not request:
        raise NotFoundError("Requisição não encontrada")
    return request


def active_requests(
    db: Session,
    now: Optional[datetime] = None,
    requester_id: Optional[int] = None,
    urgent_only: bool = False
) -> List[RequestDB]:
    """
    Requests still being worked on: not completed, not suspended and not
    labelled "Aguardando Análise", created in the current month or earlier.
    Oldest first.
    """
    now = now or datetime.utcnow()
    query = _base_query(db).filter(
        RequestDB.status.notin_(CLOSED_STATUSES + [AWAITING_ANALYSIS_LABEL]),
        RequestDB.created_at < _next_month_start(now)
    )
    if requester_id is not None:
        query = query.filter(RequestDB.requester_id == requester_id)
    if urgent_only:
        query = query.filter(RequestDB.is_urgent == True)  # noqa: E712
    return query.order_by(RequestDB.created_at.asc(), RequestDB.id.asc()).all()


def urgent_requests(db: Session, now: Optional[datetime] = None, requester_id: Optional[int] = None) -> List[RequestDB]:
    return active_requests(db, now=now, requester_id=requester_id, urgent_only=True)


def completed_requests(
    db: Session,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
    requester_id: Optional[int] = None
) -> List[RequestDB]:
    """Requests completed this month, newest first, capped."""
    now = now or datetime.utcnow()
    start, end = month_bounds(now.year, now.month)
    query = _base_query(db).filter(
        RequestDB.status == RequestStatus.COMPLETED.value,
        RequestDB.created_at >= start,
        RequestDB.created_at < end
    )
    if requester_id is not None:
        query = query.filter(RequestDB.requester_id == requester_id)
    return (
        query.order_by(RequestDB.created_at.desc(), RequestDB.id.desc())
        .limit(limit or get_settings().completed_view_limit)
        .all()
    )


def suspended_requests(
    db: Session,
    now: Optional[datetime] = None,
    requester_id: Optional[int] = None
) -> List[RequestDB]:
    now = now or datetime.utcnow()
    query = _base_query(db).filter(
        RequestDB.status == RequestStatus.SUSPENSO.value,
        RequestDB.created_at < _next_month_start(now)
    )
    if requester_id is not None:
        query = query.filter(RequestDB.requester_id == requester_id)
    return query.order_by(RequestDB.created_at.asc(), RequestDB.id.asc()).all()


def list_requests(
    db: Session,
    status: Optional[str] = None,
    is_urgent: Optional[bool] = None,
    requester_id: Optional[int] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    skip: int = 0,
    limit: int = 100
) -> List[RequestDB]:
    """Generic filtered listing; ``status`` accepts legacy labels."""
    query = _base_query(db)
    if status:
        query = query.filter(RequestDB.status.in_(status_labels(normalize_status(status))))
    if is_urgent is not None:
        query = query.filter(RequestDB.is_urgent == is_urgent)
    if requester_id is not None:
        query = query.filter(RequestDB.requester_id == requester_id)
    if year and month:
        start, end = month_bounds(year, month)
        query = query.filter(RequestDB.created_at >= start, RequestDB.created_at < end)
    return query.order_by(RequestDB.created_at.desc(), RequestDB.id.desc()).offset(skip).limit(limit).all()


def patient_requests(db: Session, patient_id: int) -> List[RequestDB]:
    return (
        _base_query(db)
        .filter(RequestDB.patient_id == patient_id)
        .order_by(RequestDB.created_at.desc(), RequestDB.id.desc())
        .all()
    )


def find_duplicates(
    db: Session,
    patient_id: int,
    services: Iterable,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None
) -> List[Conflict]:
    """
    Live (non-suspended) requests of the patient for any of ``services``
    created inside the rolling window. One conflict per service.
    """
    now = now or datetime.utcnow()
    window = window_days if window_days is not None else get_settings().duplicate_window_days
    since = now - timedelta(days=window)

    conflicts = []
    for selection in services:
        column = RequestDB.exam_type_id if selection.service_kind == ServiceKind.EXAM else RequestDB.consultation_type_id
        existing = (
            _base_query(db)
            .filter(
                RequestDB.patient_id == patient_id,
                column == selection.service_id,
                RequestDB.status != RequestStatus.SUSPENSO.value,
                RequestDB.created_at >= since
            )
            .order_by(RequestDB.created_at.desc())
            .first()
        )
        if existing:
            conflicts.append(Conflict(
                service_kind=selection.service_kind.value,
                service_id=selection.service_id,
                service_name=existing.service_name,
                request_id=existing.id,
                created_at=existing.created_at
            ))
    return conflicts


def request_stats(db: Session, year: Optional[int] = None, month: Optional[int] = None) -> RequestStats:
    """Per-status counters, optionally restricted to one month."""
    query = db.query(RequestDB.status, func.count(RequestDB.id))
    if year and month:
        start, end = month_bounds(year, month)
        query = query.filter(RequestDB.created_at >= start, RequestDB.created_at < end)

    stats = RequestStats()
    for status, count in query.group_by(RequestDB.status).all():
        try:
            canonical = normalize_status(status)
        except ValueError:
            logger.warning(f"Ignoring unknown request status in stats: {status}")
            continue
        setattr(stats, canonical.value, getattr(stats, canonical.value) + count)
    return stats
