"""
Pydantic models for the Health Request Regulation service.
"""
from health_requests.models.user import Role, User, UserCreate, UserResponse, Token
from health_requests.models.patient import PatientCreate, PatientUpdate, PatientResponse, PhotoSide
from health_requests.models.document import DocumentSlot, StoredFile, DocumentResponse
from health_requests.models.request import (
    RequestStatus, ServiceKind, ServiceSelection, IntakeSubmission, RequestResponse,
    QuotaUsage, IntakeResponse, CompletionResponse, normalize_status
)
from health_requests.models.catalog import ServiceTypeCreate, ServiceTypeResponse, HealthUnitResponse
from health_requests.models.notification import NotificationKind, NotificationResponse, ActivityLogResponse

__all__ = [
    "Role", "User", "UserCreate", "UserResponse", "Token",
    "PatientCreate", "PatientUpdate", "PatientResponse", "PhotoSide",
    "DocumentSlot", "StoredFile", "DocumentResponse",
    "RequestStatus", "ServiceKind", "ServiceSelection", "IntakeSubmission", "RequestResponse",
    "QuotaUsage", "IntakeResponse", "CompletionResponse", "normalize_status",
    "ServiceTypeCreate", "ServiceTypeResponse", "HealthUnitResponse",
    "NotificationKind", "NotificationResponse", "ActivityLogResponse"
]
