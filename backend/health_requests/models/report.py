"""
Spending and monthly report models. Money values are in cents.
"""
from pydantic import BaseModel
from typing import List

from health_requests.models.notification import ActivityLogResponse
from health_requests.models.request import ServiceKind


class SpendingLine(BaseModel):
    """Requests of one catalog service in a month, valued at its unit price."""
    kind: ServiceKind
    service_id: int
    name: str
    requests: int
    unit_price: int
    total: int


class SpendingOverview(BaseModel):
    year: int
    month: int
    received: List[SpendingLine]
    confirmed: List[SpendingLine]
    forecast: List[SpendingLine]
    received_total: int
    confirmed_total: int
    forecast_total: int


class AvailableMonth(BaseModel):
    year: int
    month: int
    month_name: str
    total_requests: int


class AuthorizationSummary(BaseModel):
    total_authorized: int = 0
    exams_authorized: int = 0
    consultations_authorized: int = 0
    total_value: int = 0


class RequesterTally(BaseModel):
    """Authorized requests registered by one staff member."""
    name: str
    exams: int
    consultations: int
    total: int


class RegulatorTally(BaseModel):
    """Status changes made by one regulation staff member."""
    name: str
    approved: int
    suspended: int


class MonthlyAuthorizationReport(BaseModel):
    year: int
    month: int
    period: str
    summary: AuthorizationSummary
    by_type: List[SpendingLine]
    by_requester: List[RequesterTally]
    by_regulator: List[RegulatorTally]
    activities: List[ActivityLogResponse]
