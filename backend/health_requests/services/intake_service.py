"""
Intake gate: validates a submission and creates one request per selected
service.

All checks run before any request row is written. Creation is then done
service by service: the row is committed, the supporting document is stored
and linked, and if that step fails the row is deleted again so no request is
left without its attachment. Siblings are independent of each other.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from health_requests.database import (
    ConsultationType as ConsultationTypeDB,
    ExamType as ExamTypeDB,
    Patient as PatientDB,
    ServiceRequest as RequestDB,
)
from health_requests.exceptions import (
    CollaboratorError, DuplicateRequestError, RequestLifecycleError, ServiceFailure, ValidationError
)
from health_requests.models.request import QuotaUsage, RequestStatus, ServiceKind, ServiceSelection
from health_requests.models.user import User
from health_requests.services import quota_service
from health_requests.services.activity_service import describe, record_activity
from health_requests.services.file_store import FileStore
from health_requests.services.patient_service import PatientService
from health_requests.services.permissions import Action, authorize
from health_requests.services.request_query_service import find_duplicates

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    """Supporting document uploaded for one selected service."""
    data: bytes
    filename: str
    mime_type: str


@dataclass
class IntakeResult:
    created: List[RequestDB] = field(default_factory=list)
    failures: List[ServiceFailure] = field(default_factory=list)
    quota: List[QuotaUsage] = field(default_factory=list)


def _find_service(db: Session, selection: ServiceSelection):
    model = ExamTypeDB if selection.service_kind == ServiceKind.EXAM else ConsultationTypeDB
    return db.query(model).filter(model.id == selection.service_id).first()


def _load_services(db: Session, selections: List[ServiceSelection]) -> Dict[str, object]:
    """Resolve every selection to an active catalog row, keyed by selection key."""
    services = {}
    for selection in selections:
        service = _find_service(db, selection)
        if not service or not service.is_active:
            label = "Exame" if selection.service_kind == ServiceKind.EXAM else "Consulta"
            raise ValidationError(f"{label} {selection.service_id} não encontrado ou inativo")
        services[selection.key] = service
    return services


def validate_submission(
    db: Session,
    patient: PatientDB,
    selections: List[ServiceSelection],
    attachments: Dict[str, Attachment],
    now: Optional[datetime] = None
) -> Dict[str, object]:
    """
    Run every intake check in order and return the resolved catalog rows.
    Raises ``ValidationError`` / ``DuplicateRequestError`` on the first failure.
    """
    if not selections:
        raise ValidationError("Selecione pelo menos um exame ou consulta")

    keys = [s.key for s in selections]
    if len(set(keys)) != len(keys):
        raise ValidationError("O mesmo serviço foi selecionado mais de uma vez")

    if not PatientService.has_id_photos(patient):
        missing = []
        if not patient.id_photo_front:
            missing.append("frente")
        if not patient.id_photo_back:
            missing.append("verso")
        raise ValidationError(f"Foto do documento de identidade obrigatória ({' e '.join(missing)})")

    missing_attachments = [
        s for s in selections
        if s.key not in attachments or not attachments[s.key].data
    ]
    if missing_attachments:
        names = []
        for selection in missing_attachments:
            service = _find_service(db, selection)
            names.append(service.name if service else selection.key)
        raise ValidationError(f"Anexo obrigatório não enviado para: {', '.join(names)}")

    services = _load_services(db, selections)

    conflicts = find_duplicates(db, patient.id, selections, now=now)
    if conflicts:
        logger.warning(f"Duplicate requests for patient {patient.id}: {[c.service_name for c in conflicts]}")
        raise DuplicateRequestError(conflicts)

    if quota_service.quota_is_enforced():
        exhausted = quota_service.exhausted_services(db, selections)
        if exhausted:
            names = ", ".join(u.name for u in exhausted.values())
            raise ValidationError(f"Cota mensal esgotada para: {names}")

    return services


def _create_one(
    db: Session,
    patient: PatientDB,
    selection: ServiceSelection,
    attachment: Attachment,
    actor: User,
    health_unit_id: int,
    file_store: FileStore
) -> RequestDB:
    request = RequestDB(
        patient_id=patient.id,
        requester_id=actor.id,
        health_unit_id=health_unit_id,
        exam_type_id=selection.service_id if selection.service_kind == ServiceKind.EXAM else None,
        consultation_type_id=selection.service_id if selection.service_kind == ServiceKind.CONSULTATION else None,
        is_urgent=selection.is_urgent,
        urgency_explanation=selection.urgency_explanation if selection.is_urgent else None,
        notes=selection.comment,
        status=RequestStatus.RECEIVED.value
    )
    db.add(request)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create request for {selection.key}: {e}")
        raise CollaboratorError("Falha ao salvar a requisição") from e
    db.refresh(request)

    stored = None
    try:
        stored = file_store.store(
            attachment.data, attachment.filename, attachment.mime_type, folder=f"requests/{request.id}"
        )
        now = datetime.utcnow()
        request.attachment_ref = stored.reference
        request.attachment_filename = stored.filename
        request.attachment_mime_type = stored.mime_type
        request.attachment_size = stored.size
        request.attachment_uploaded_at = now
        request.attachment_uploaded_by = actor.id

        record_activity(
            db, actor, request, "created",
            describe(actor, "cadastrou", request) + (" (URGENTE)" if request.is_urgent else ""),
            new_status=request.status
        )
        db.commit()
    except (RequestLifecycleError, SQLAlchemyError) as e:
        db.rollback()
        logger.warning(f"Attachment failed for request {request.id}; deleting it: {e}")
        db.delete(request)
        db.commit()
        if stored is not None:
            try:
                file_store.delete(stored.reference)
            except CollaboratorError:
                logger.warning(f"Could not remove orphaned attachment {stored.reference}")
        if isinstance(e, RequestLifecycleError):
            raise
        raise CollaboratorError("Falha ao salvar o anexo") from e

    db.refresh(request)
    return request


def submit(
    db: Session,
    actor: User,
    patient: PatientDB,
    selections: List[ServiceSelection],
    attachments: Dict[str, Attachment],
    file_store: FileStore,
    health_unit_id: Optional[int] = None,
    now: Optional[datetime] = None
) -> IntakeResult:
    """
    Validate the whole submission, then create one request per service.
    Per-service failures after validation are collected, not raised.
    """
    authorize(actor.role, Action.CREATE_REQUEST)

    unit_id = health_unit_id or actor.health_unit_id
    if not unit_id:
        raise ValidationError("Unidade de saúde é obrigatória")

    services = validate_submission(db, patient, selections, attachments, now=now)

    result = IntakeResult()
    for selection in selections:
        try:
            request = _create_one(
                db, patient, selection, attachments[selection.key], actor, unit_id, file_store
            )
            result.created.append(request)
            logger.info(f"Created request {request.id} ({selection.key}) for patient {patient.id}")
        except RequestLifecycleError as e:
            result.failures.append(ServiceFailure(
                service_kind=selection.service_kind.value,
                service_id=selection.service_id,
                service_name=services[selection.key].name,
                reason=e.message
            ))

    result.quota = quota_service.usage_for(db, selections)
    if result.failures:
        logger.warning(f"Intake for patient {patient.id}: {len(result.failures)} service(s) failed")
    return result
