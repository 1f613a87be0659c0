"""
Request models: lifecycle states, intake selections and API responses.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
import re

from health_requests.models.patient import PatientCreate


class RequestStatus(str, Enum):
    """Lifecycle states of a request."""
    RECEIVED = "received"
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    SUSPENSO = "suspenso"


# Legacy labels still found in older rows; they mean "received"
LEGACY_STATUS_ALIASES = {
    "pending": RequestStatus.RECEIVED,
    "Aguardando Análise": RequestStatus.RECEIVED,
}


def normalize_status(value: str) -> RequestStatus:
    """Map a stored or user-supplied status label to its canonical state."""
    if value in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[value]
    return RequestStatus(value)


class ServiceKind(str, Enum):
    """The two kinds of catalog service a request may target."""
    EXAM = "exam"
    CONSULTATION = "consultation"


class ServiceSelection(BaseModel):
    """One exam or consultation selected at intake."""
    service_kind: ServiceKind
    service_id: int
    is_urgent: bool = False
    urgency_explanation: Optional[str] = None
    comment: Optional[str] = None

    @property
    def key(self) -> str:
        """Attachment key, e.g. ``exam-3``."""
        return f"{self.service_kind.value}-{self.service_id}"


class IntakeSubmission(BaseModel):
    """
    Body of a request submission (sent as JSON in the ``payload`` form field).
    Either ``patient_id`` of an existing patient or ``patient`` data to
    register/refresh by CPF.
    """
    patient_id: Optional[int] = None
    patient: Optional[PatientCreate] = None
    health_unit_id: Optional[int] = None
    services: List[ServiceSelection] = Field(default_factory=list)


class DuplicateCheck(BaseModel):
    patient_id: int
    services: List[ServiceSelection] = Field(default_factory=list)


class StatusUpdate(BaseModel):
    status: RequestStatus

    @field_validator("status", mode="before")
    @classmethod
    def accept_legacy_labels(cls, value):
        if isinstance(value, str):
            return normalize_status(value)
        return value


class SuspendRequest(BaseModel):
    reason: str


class NotesUpdate(BaseModel):
    notes: Optional[str] = None


class ForwardRequest(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2024, le=2100)
    reason: Optional[str] = None


class BatchForwardRequest(ForwardRequest):
    request_ids: List[int] = Field(..., min_length=1)


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")


class RequestResponse(BaseModel):
    """Request model for API responses."""
    id: int
    patient_id: int
    patient_name: Optional[str] = None
    requester_id: int
    health_unit_id: int
    exam_type_id: Optional[int] = None
    consultation_type_id: Optional[int] = None
    service_kind: ServiceKind
    service_name: str
    is_urgent: bool = False
    urgency_explanation: Optional[str] = None
    status: RequestStatus
    registrar_id: Optional[int] = None
    notes: Optional[str] = None
    has_attachment: bool = False
    has_additional_document: bool = False
    exam_location: Optional[str] = None
    exam_date: Optional[str] = None
    exam_time: Optional[str] = None
    has_result: bool = False
    completed_date: Optional[datetime] = None
    forwarded_to_month: Optional[int] = None
    forwarded_to_year: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_db(cls, request) -> "RequestResponse":
        return cls(
            id=request.id,
            patient_id=request.patient_id,
            patient_name=request.patient.name if request.patient else None,
            requester_id=request.requester_id,
            health_unit_id=request.health_unit_id,
            exam_type_id=request.exam_type_id,
            consultation_type_id=request.consultation_type_id,
            service_kind=ServiceKind(request.service_kind),
            service_name=request.service_name,
            is_urgent=bool(request.is_urgent),
            urgency_explanation=request.urgency_explanation,
            status=normalize_status(request.status),
            registrar_id=request.registrar_id,
            notes=request.notes,
            has_attachment=bool(request.attachment_ref),
            has_additional_document=bool(request.additional_document_ref),
            exam_location=request.exam_location,
            exam_date=request.exam_date,
            exam_time=request.exam_time,
            has_result=bool(request.result_ref),
            completed_date=request.completed_date,
            forwarded_to_month=request.forwarded_to_month,
            forwarded_to_year=request.forwarded_to_year,
            created_at=request.created_at,
            updated_at=request.updated_at
        )


class QuotaUsage(BaseModel):
    """Monthly consumption of one catalog service."""
    kind: ServiceKind
    service_id: int
    name: str
    quota: int
    used: int
    remaining: int
    exhausted: bool


class IntakeResponse(BaseModel):
    message: str
    count: int
    requests: List[RequestResponse]
    failures: List[Dict[str, Any]] = Field(default_factory=list)
    quota: List[QuotaUsage] = Field(default_factory=list)


class OutboundMessageResponse(BaseModel):
    phone: str
    text: str
    link: str


class CompletionResponse(BaseModel):
    request: RequestResponse
    message: OutboundMessageResponse


class RequestStats(BaseModel):
    received: int = 0
    accepted: int = 0
    confirmed: int = 0
    completed: int = 0
    suspenso: int = 0
