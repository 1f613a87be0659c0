"""
Dashboard routes: quota usage, status counters and spending.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from health_requests.database import get_db
from health_requests.exceptions import RequestLifecycleError
from health_requests.models.report import AvailableMonth, SpendingOverview
from health_requests.models.request import QuotaUsage, RequestStats
from health_requests.models.user import User
from health_requests.routers.errors import to_http
from health_requests.services.auth_service import get_current_active_user
from health_requests.services.quota_service import quota_usage, quota_is_enforced
from health_requests.services.report_service import available_months, spending_overview
from health_requests.services.request_query_service import request_stats

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/quota-usage", response_model=List[QuotaUsage])
def get_quota_usage(
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Monthly quota vs requests created, per active service. Defaults to the current month."""
    try:
        return quota_usage(db, year=year, month=month)
    except RequestLifecycleError as e:
        raise to_http(e)


@router.get("/stats", response_model=RequestStats)
def get_stats(
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Number of requests in each status, optionally for one month."""
    try:
        return request_stats(db, year=year, month=month)
    except RequestLifecycleError as e:
        raise to_http(e)


@router.get("/quota-policy")
def get_quota_policy(current_user: User = Depends(get_current_active_user)):
    return {"hard_cap": quota_is_enforced()}


@router.get("/spending", response_model=SpendingOverview)
def get_spending(
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Received, confirmed and forecast spend per service (cents). Defaults to the current month."""
    try:
        return spending_overview(db, year=year, month=month)
    except RequestLifecycleError as e:
        raise to_http(e)


@router.get("/available-months", response_model=List[AvailableMonth])
def get_available_months(db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)):
    """Months with requests, for the dashboard month picker."""
    return available_months(db)
