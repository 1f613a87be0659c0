"""
Monthly report routes for admin and regulation.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from health_requests.database import get_db
from health_requests.exceptions import RequestLifecycleError
from health_requests.models.report import MonthlyAuthorizationReport
from health_requests.models.user import User
from health_requests.routers.errors import to_http
from health_requests.services.auth_service import require
from health_requests.services.permissions import Action
from health_requests.services.report_service import monthly_authorizations

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/monthly-authorizations", response_model=MonthlyAuthorizationReport)
def get_monthly_authorizations(
    response: Response,
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.VIEW_ACTIVITY))
):
    """Authorized requests, their value and staff tallies for one month."""
    try:
        report = monthly_authorizations(db, year=year, month=month)
    except RequestLifecycleError as e:
        raise to_http(e)
    response.headers["Cache-Control"] = "no-store"
    return report
