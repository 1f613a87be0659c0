"""
Request lifecycle state machine.

    received -> accepted -> confirmed -> completed
        \\          |            /
         +-----> suspenso <----+          suspenso -> received (revert)

Every mutation goes through ``permissions.authorize`` first and writes an
activity log row in the same commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from health_requests.database import ServiceRequest as RequestDB
from health_requests.exceptions import CollaboratorError, ValidationError
from health_requests.models.document import DocumentSlot, StoredFile
from health_requests.models.request import (
    DATE_PATTERN, TIME_PATTERN, RequestStatus, normalize_status
)
from health_requests.models.user import Role, User
from health_requests.services.activity_service import describe, record_activity
from health_requests.services.file_store import FileStore
from health_requests.services.notification_channel import (
    NotificationChannel, OutboundMessage, format_completion_message, format_date_br,
    format_time, result_view_url
)
from health_requests.services.permissions import Action, authorize

logger = logging.getLogger(__name__)


# (from, to) -> action required. Completion is reachable only through complete_request.
TRANSITIONS: Dict[Tuple[RequestStatus, RequestStatus], Action] = {
    (RequestStatus.RECEIVED, RequestStatus.ACCEPTED): Action.ACCEPT,
    (RequestStatus.ACCEPTED, RequestStatus.CONFIRMED): Action.CONFIRM,
    (RequestStatus.CONFIRMED, RequestStatus.COMPLETED): Action.COMPLETE,
    (RequestStatus.RECEIVED, RequestStatus.SUSPENSO): Action.SUSPEND,
    (RequestStatus.ACCEPTED, RequestStatus.SUSPENSO): Action.SUSPEND,
    (RequestStatus.CONFIRMED, RequestStatus.SUSPENSO): Action.SUSPEND,
    (RequestStatus.SUSPENSO, RequestStatus.RECEIVED): Action.REVERT_SUSPENSION,
}

STATUS_LABELS = {
    RequestStatus.RECEIVED: "Recebido",
    RequestStatus.ACCEPTED: "Aceito",
    RequestStatus.CONFIRMED: "Confirmado",
    RequestStatus.COMPLETED: "Finalizado",
    RequestStatus.SUSPENSO: "Suspenso",
}

VERBS = {
    RequestStatus.ACCEPTED: "aceitou",
    RequestStatus.CONFIRMED: "confirmou",
    RequestStatus.COMPLETED: "concluiu",
    RequestStatus.SUSPENSO: "suspendeu",
    RequestStatus.RECEIVED: "reativou",
}


@dataclass
class ResultUpload:
    """The result document handed to the completion action."""
    data: bytes
    filename: str
    mime_type: str


@dataclass
class CompletionOutcome:
    request: RequestDB
    message: OutboundMessage


def required_action(current: RequestStatus, target: RequestStatus) -> Action:
    action = TRANSITIONS.get((current, target))
    if action is None:
        raise ValidationError(
            f"Transição inválida: {STATUS_LABELS[current]} -> {STATUS_LABELS[target]}"
        )
    return action


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to persist {what}: {e}")
        raise CollaboratorError("Falha ao salvar no banco de dados") from e


def transition(
    db: Session,
    request: RequestDB,
    target: RequestStatus,
    actor: User,
    reason: Optional[str] = None
) -> RequestDB:
    """
    Move ``request`` to ``target``. Completion must go through
    ``complete_request`` because it carries the scheduling fields.
    """
    current = normalize_status(request.status)
    if target == RequestStatus.COMPLETED:
        raise ValidationError("Use a ação de conclusão: local, data, horário e resultado são obrigatórios")

    action = required_action(current, target)
    authorize(actor.role, action)

    if target == RequestStatus.SUSPENSO:
        if not reason or not reason.strip():
            raise ValidationError("Motivo da suspensão é obrigatório")
        request.notes = reason.strip()
    elif target == RequestStatus.RECEIVED:
        # Reverting clears the suspension reason
        request.notes = None

    request.status = target.value
    request.updated_at = datetime.utcnow()
    if actor.role == Role.REGULACAO:
        request.registrar_id = actor.id

    if target == RequestStatus.SUSPENSO:
        action_name = "suspended"
    elif target == RequestStatus.RECEIVED:
        action_name = "reverted"
    else:
        action_name = "status_changed"

    record_activity(
        db, actor, request, action_name,
        describe(actor, VERBS[target], request),
        old_status=current.value, new_status=target.value
    )
    _commit(db, f"status of request {request.id}")
    db.refresh(request)

    logger.info(f"Request {request.id}: {current.value} -> {target.value} by {actor.username}")
    return request


def suspend(db: Session, request: RequestDB, actor: User, reason: str) -> RequestDB:
    return transition(db, request, RequestStatus.SUSPENSO, actor, reason=reason)


def revert_suspension(db: Session, request: RequestDB, actor: User) -> RequestDB:
    if normalize_status(request.status) != RequestStatus.SUSPENSO:
        raise ValidationError("Apenas requisições suspensas podem ser revertidas")
    return transition(db, request, RequestStatus.RECEIVED, actor)


def _validate_completion_fields(location: str, exam_date: str, exam_time: str, result: Optional[ResultUpload]) -> None:
    if not (location and location.strip()) or not exam_date or not exam_time:
        raise ValidationError("Local, data e horário são obrigatórios")
    if not DATE_PATTERN.match(exam_date):
        raise ValidationError("Data deve estar no formato AAAA-MM-DD")
    try:
        datetime.strptime(exam_date, "%Y-%m-%d")
    except ValueError:
        raise ValidationError("Data inválida")
    if not TIME_PATTERN.match(exam_time):
        raise ValidationError("Horário deve estar no formato HH:MM")
    if result is None or not result.data:
        raise ValidationError("Upload da cópia do resultado é obrigatório")


def complete_request(
    db: Session,
    request: RequestDB,
    actor: User,
    location: str,
    exam_date: str,
    exam_time: str,
    result: Optional[ResultUpload],
    file_store: FileStore,
    channel: NotificationChannel
) -> CompletionOutcome:
    """
    Complete a confirmed request. Location, date, time and the result file
    are written in one commit; the stored result file is removed again if
    that commit fails.
    """
    current = normalize_status(request.status)
    authorize(actor.role, Action.COMPLETE)
    required_action(current, RequestStatus.COMPLETED)
    _validate_completion_fields(location, exam_date, exam_time, result)

    stored: StoredFile = file_store.store(
        result.data, result.filename, result.mime_type, folder=f"requests/{request.id}"
    )

    now = datetime.utcnow()
    request.status = RequestStatus.COMPLETED.value
    request.completed_date = now
    request.exam_location = location.strip()
    request.exam_date = exam_date
    request.exam_time = format_time(exam_time)
    request.result_ref = stored.reference
    request.result_filename = stored.filename
    request.result_mime_type = stored.mime_type
    request.result_size = stored.size
    request.result_uploaded_at = now
    request.result_uploaded_by = actor.id
    request.updated_at = now
    if actor.role == Role.REGULACAO:
        request.registrar_id = actor.id

    record_activity(
        db, actor, request, "completed",
        describe(actor, VERBS[RequestStatus.COMPLETED], request)
        + f" - Agendado para {format_date_br(exam_date)} às {request.exam_time} em {request.exam_location}",
        old_status=current.value, new_status=RequestStatus.COMPLETED.value
    )

    try:
        _commit(db, f"completion of request {request.id}")
    except CollaboratorError:
        file_store.delete(stored.reference)
        raise
    db.refresh(request)

    text = format_completion_message(
        patient_name=request.patient.name,
        service_kind=request.service_kind,
        service_name=request.service_name,
        exam_date=request.exam_date,
        exam_time=request.exam_time,
        exam_location=request.exam_location,
        result_url=result_view_url(request.id),
        staff_name=actor.full_name
    )
    message = channel.compose(request.patient.phone, text)

    logger.info(f"Request {request.id} completed by {actor.username}; message composed for {message.phone}")
    return CompletionOutcome(request=request, message=message)


def delete_request(db: Session, request: RequestDB, actor: User, file_store: FileStore) -> None:
    """Delete a request and ask the file store to drop its documents."""
    authorize(actor.role, Action.DELETE_REQUEST, request_status=request.status)

    references = [request.attachment_ref, request.additional_document_ref, request.result_ref]
    request_id = request.id

    record_activity(
        db, actor, request, "deleted",
        describe(actor, "excluiu", request),
        old_status=request.status, keep_request_link=False
    )
    db.delete(request)
    _commit(db, f"deletion of request {request_id}")

    for reference in references:
        if not reference:
            continue
        try:
            file_store.delete(reference)
        except CollaboratorError:
            # The row is gone; an orphaned file is left for cleanup
            logger.warning(f"Request {request_id} deleted but file {reference} was not removed")

    logger.info(f"Request {request_id} deleted by {actor.username}")


def update_notes(db: Session, request: RequestDB, actor: User, notes: Optional[str]) -> RequestDB:
    authorize(actor.role, Action.UPDATE_NOTES)
    request.notes = notes
    request.updated_at = datetime.utcnow()
    _commit(db, f"notes of request {request.id}")
    db.refresh(request)
    return request


def forward_request(
    db: Session,
    request: RequestDB,
    actor: User,
    month: int,
    year: int,
    reason: Optional[str] = None
) -> RequestDB:
    """
    Move a request to another month's queue: its creation date becomes the
    first day of that month and it goes back to ``received``.
    """
    authorize(actor.role, Action.FORWARD_REQUEST)
    if month < 1 or month > 12 or year < 2024 or year > 2100:
        raise ValidationError("Mês e ano inválidos")
    if normalize_status(request.status) == RequestStatus.COMPLETED:
        raise ValidationError("Requisições concluídas não podem ser encaminhadas")

    old_status = request.status
    now = datetime.utcnow()
    request.forwarded_to_month = month
    request.forwarded_to_year = year
    request.forwarded_by = actor.id
    request.forwarded_at = now
    request.forwarded_reason = reason
    request.created_at = datetime(year, month, 1)
    request.status = RequestStatus.RECEIVED.value
    request.updated_at = now

    record_activity(
        db, actor, request, "forwarded",
        describe(actor, "encaminhou", request) + f" para {month:02d}/{year}",
        old_status=old_status, new_status=RequestStatus.RECEIVED.value
    )
    _commit(db, f"forwarding of request {request.id}")
    db.refresh(request)

    logger.info(f"Request {request.id} forwarded to {month}/{year} by {actor.username}")
    return request


def attach_document(
    db: Session,
    request: RequestDB,
    actor: User,
    slot: DocumentSlot,
    data: bytes,
    filename: str,
    mime_type: str,
    file_store: FileStore
) -> RequestDB:
    """Store a supporting or additional document and link it to the request."""
    authorize(actor.role, Action.UPLOAD_DOCUMENT)
    if slot == DocumentSlot.RESULT:
        raise ValidationError("O resultado só pode ser enviado na conclusão da requisição")

    stored = file_store.store(data, filename, mime_type, folder=f"requests/{request.id}")
    prefix = slot.value
    previous = getattr(request, f"{prefix}_ref")

    now = datetime.utcnow()
    setattr(request, f"{prefix}_ref", stored.reference)
    setattr(request, f"{prefix}_filename", stored.filename)
    setattr(request, f"{prefix}_mime_type", stored.mime_type)
    setattr(request, f"{prefix}_size", stored.size)
    setattr(request, f"{prefix}_uploaded_at", now)
    setattr(request, f"{prefix}_uploaded_by", actor.id)
    request.updated_at = now

    try:
        _commit(db, f"{prefix} of request {request.id}")
    except CollaboratorError:
        file_store.delete(stored.reference)
        raise
    db.refresh(request)

    if previous:
        file_store.delete(previous)

    logger.info(f"Request {request.id}: {prefix} uploaded by {actor.username}")
    return request
