"""
Monthly spending and authorization reports.

Spend is the catalog unit price times the number of requests created in the
month. Like quota usage it is always computed from the requests table, so a
forwarded request counts in the month it was moved to.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import case, desc, extract, func
from sqlalchemy.orm import Session

from health_requests.database import (
    ActivityLog as ActivityLogDB,
    ConsultationType as ConsultationTypeDB,
    ExamType as ExamTypeDB,
    ServiceRequest as RequestDB,
    User as UserDB,
)
from health_requests.models.notification import ActivityLogResponse
from health_requests.models.report import (
    AuthorizationSummary, AvailableMonth, MonthlyAuthorizationReport, RegulatorTally,
    RequesterTally, SpendingLine, SpendingOverview
)
from health_requests.models.request import RequestStatus, ServiceKind
from health_requests.models.user import Role
from health_requests.services.quota_service import month_bounds
from health_requests.services.request_query_service import status_labels

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "Janeiro", "Fevereiro", "Março", "Abril", "Maio", "Junho",
    "Julho", "Agosto", "Setembro", "Outubro", "Novembro", "Dezembro",
]

RECEIVED_LABELS = status_labels(RequestStatus.RECEIVED)
CONFIRMED_LABELS = [
    RequestStatus.ACCEPTED.value,
    RequestStatus.CONFIRMED.value,
    RequestStatus.COMPLETED.value,
]
# Everything that has not been suspended
AUTHORIZED_LABELS = RECEIVED_LABELS + CONFIRMED_LABELS

ACTIVITY_LIMIT = 200


def _resolve_month(year: Optional[int], month: Optional[int]) -> Tuple[int, int]:
    now = datetime.utcnow()
    return year or now.year, month or now.month


def _spending_rows(
    db: Session, model, fk_column, start: datetime, end: datetime, labels: List[str], kind: ServiceKind
) -> List[SpendingLine]:
    rows = (
        db.query(model.id, model.name, model.price, func.count(RequestDB.id))
        .outerjoin(
            RequestDB,
            (fk_column == model.id)
            & (RequestDB.created_at >= start)
            & (RequestDB.created_at < end)
            & RequestDB.status.in_(labels)
        )
        .filter(model.is_active == True)  # noqa: E712
        .group_by(model.id, model.name, model.price)
        .order_by(model.name)
        .all()
    )
    return [
        SpendingLine(
            kind=kind,
            service_id=service_id,
            name=name,
            requests=count,
            unit_price=price or 0,
            total=(price or 0) * count
        )
        for service_id, name, price, count in rows
    ]


def monthly_spending(
    db: Session, labels: List[str], year: Optional[int] = None, month: Optional[int] = None
) -> List[SpendingLine]:
    """Spend per active service for requests whose stored status is one of ``labels``."""
    year, month = _resolve_month(year, month)
    start, end = month_bounds(year, month)

    lines = _spending_rows(db, ExamTypeDB, RequestDB.exam_type_id, start, end, labels, ServiceKind.EXAM)
    lines += _spending_rows(
        db, ConsultationTypeDB, RequestDB.consultation_type_id, start, end, labels, ServiceKind.CONSULTATION
    )
    return lines


def _total(lines: List[SpendingLine]) -> int:
    return sum(line.total for line in lines)


def spending_overview(db: Session, year: Optional[int] = None, month: Optional[int] = None) -> SpendingOverview:
    """
    Received (not yet analysed), confirmed (accepted onwards) and forecast
    spend for a month. The forecast is what the month costs if every
    non-suspended request goes ahead.
    """
    year, month = _resolve_month(year, month)
    received = monthly_spending(db, RECEIVED_LABELS, year, month)
    confirmed = monthly_spending(db, CONFIRMED_LABELS, year, month)
    forecast = monthly_spending(db, AUTHORIZED_LABELS, year, month)

    logger.info(f"Spending {year}-{month:02d}: forecast {_total(forecast)} cents")
    return SpendingOverview(
        year=year,
        month=month,
        received=received,
        confirmed=confirmed,
        forecast=forecast,
        received_total=_total(received),
        confirmed_total=_total(confirmed),
        forecast_total=_total(forecast)
    )


def available_months(db: Session) -> List[AvailableMonth]:
    """Months that have at least one request, newest first."""
    year_col = extract("year", RequestDB.created_at)
    month_col = extract("month", RequestDB.created_at)
    rows = (
        db.query(year_col, month_col, func.count(RequestDB.id))
        .group_by(year_col, month_col)
        .order_by(desc(year_col), desc(month_col))
        .all()
    )
    return [
        AvailableMonth(
            year=int(year),
            month=int(month),
            month_name=MONTH_NAMES[int(month) - 1],
            total_requests=count
        )
        for year, month, count in rows
    ]


def _requester_tallies(db: Session, start: datetime, end: datetime) -> List[RequesterTally]:
    rows = (
        db.query(
            UserDB.full_name,
            func.count(RequestDB.exam_type_id),
            func.count(RequestDB.consultation_type_id)
        )
        .join(RequestDB, RequestDB.requester_id == UserDB.id)
        .filter(
            RequestDB.created_at >= start,
            RequestDB.created_at < end,
            RequestDB.status.in_(AUTHORIZED_LABELS)
        )
        .group_by(UserDB.id, UserDB.full_name)
        .order_by(UserDB.full_name)
        .all()
    )
    return [
        RequesterTally(name=name, exams=exams, consultations=consultations, total=exams + consultations)
        for name, exams, consultations in rows
    ]


def _regulator_tallies(db: Session, start: datetime, end: datetime) -> List[RegulatorTally]:
    approved = func.sum(case((ActivityLogDB.new_status.in_(CONFIRMED_LABELS), 1), else_=0))
    suspended = func.sum(case((ActivityLogDB.new_status == RequestStatus.SUSPENSO.value, 1), else_=0))
    rows = (
        db.query(ActivityLogDB.user_name, approved, suspended)
        .filter(
            ActivityLogDB.user_role == Role.REGULACAO.value,
            ActivityLogDB.created_at >= start,
            ActivityLogDB.created_at < end
        )
        .group_by(ActivityLogDB.user_name)
        .order_by(ActivityLogDB.user_name)
        .all()
    )
    return [
        RegulatorTally(name=name, approved=int(approved or 0), suspended=int(suspended or 0))
        for name, approved, suspended in rows
        if approved or suspended
    ]


def monthly_authorizations(
    db: Session, year: Optional[int] = None, month: Optional[int] = None
) -> MonthlyAuthorizationReport:
    """Requests authorized in a month, their value, and who registered and regulated them."""
    year, month = _resolve_month(year, month)
    start, end = month_bounds(year, month)

    by_type = [line for line in monthly_spending(db, AUTHORIZED_LABELS, year, month) if line.requests]
    exams = sum(line.requests for line in by_type if line.kind == ServiceKind.EXAM)
    consultations = sum(line.requests for line in by_type if line.kind == ServiceKind.CONSULTATION)

    activities = (
        db.query(ActivityLogDB)
        .filter(ActivityLogDB.created_at >= start, ActivityLogDB.created_at < end)
        .order_by(desc(ActivityLogDB.created_at), desc(ActivityLogDB.id))
        .limit(ACTIVITY_LIMIT)
        .all()
    )

    return MonthlyAuthorizationReport(
        year=year,
        month=month,
        period=f"{MONTH_NAMES[month - 1]} de {year}",
        summary=AuthorizationSummary(
            total_authorized=exams + consultations,
            exams_authorized=exams,
            consultations_authorized=consultations,
            total_value=_total(by_type)
        ),
        by_type=by_type,
        by_requester=_requester_tallies(db, start, end),
        by_regulator=_regulator_tallies(db, start, end),
        activities=[ActivityLogResponse.model_validate(a) for a in activities]
    )
