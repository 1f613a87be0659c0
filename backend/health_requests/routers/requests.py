"""
Request intake, lifecycle and document routes.
"""
import json
import logging
from typing import Dict, List, Optional
from urllib.parse import quote
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request, UploadFile, File, Form
from fastapi.responses import Response
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile as StarletteUploadFile

from health_requests.database import get_db
from health_requests.exceptions import RequestLifecycleError
from health_requests.models.document import DocumentSlot, DocumentResponse
from health_requests.models.patient import PhotoSide
from health_requests.models.request import (
    IntakeSubmission, DuplicateCheck, StatusUpdate, SuspendRequest, NotesUpdate,
    ForwardRequest, BatchForwardRequest, RequestResponse, IntakeResponse,
    CompletionResponse, OutboundMessageResponse, RequestStatus
)
from health_requests.models.user import User, Role
from health_requests.routers.errors import to_http
from health_requests.services import intake_service, lifecycle_service
from health_requests.services import request_query_service as queries
from health_requests.services.auth_service import AuthService, get_current_active_user
from health_requests.services.file_store import FileStore, get_file_store
from health_requests.services.notification_channel import NotificationChannel, get_notification_channel
from health_requests.services.patient_service import PatientService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["Requests"])


def _scope(current_user: User) -> Optional[int]:
    """Reception only sees the requests it registered."""
    return current_user.id if current_user.role == Role.RECEPCAO else None


def _load(db: Session, request_id: int, current_user: Optional[User] = None):
    try:
        request = queries.get_request(db, request_id)
    except RequestLifecycleError as e:
        raise to_http(e)
    requester_id = _scope(current_user) if current_user is not None else None
    if requester_id is not None and request.requester_id != requester_id:
        raise HTTPException(status_code=404, detail="Requisição não encontrada")
    return request


def _responses(requests) -> List[RequestResponse]:
    return [RequestResponse.from_db(r) for r in requests]


@router.post("/", response_model=IntakeResponse, status_code=status.HTTP_201_CREATED)
async def submit_requests(
    request: Request,
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """
    Submit one request per selected exam or consultation.

    Multipart form fields:
    - ``payload``: JSON ``IntakeSubmission``
    - ``id_photo_front`` / ``id_photo_back``: optional, replace the patient's ID photos
    - ``exam-<id>`` / ``consultation-<id>``: supporting document for each selected service
    """
    form = await request.form()

    raw_payload = form.get("payload")
    if not raw_payload or not isinstance(raw_payload, str):
        raise HTTPException(status_code=400, detail="Campo 'payload' obrigatório")
    try:
        submission = IntakeSubmission(**json.loads(raw_payload))
    except (json.JSONDecodeError, TypeError) as e:
        raise HTTPException(status_code=400, detail=f"Payload inválido: {e}")
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=json.loads(e.json()))

    files: Dict[str, StarletteUploadFile] = {
        key: value for key, value in form.multi_items() if isinstance(value, StarletteUploadFile)
    }

    try:
        if submission.patient is not None:
            patient = PatientService.get_or_create(db, submission.patient)
        elif submission.patient_id is not None:
            patient = PatientService.get(db, submission.patient_id)
        else:
            raise HTTPException(status_code=400, detail="Informe o paciente")

        for side in PhotoSide:
            upload = files.get(f"id_photo_{side.value}")
            if upload is not None:
                content = await upload.read()
                patient = PatientService.set_id_photo(
                    db, patient, side, content, upload.filename or "", upload.content_type or "", file_store
                )

        attachments = {}
        for selection in submission.services:
            upload = files.get(selection.key)
            if upload is not None:
                attachments[selection.key] = intake_service.Attachment(
                    data=await upload.read(),
                    filename=upload.filename or "",
                    mime_type=upload.content_type or ""
                )

        result = intake_service.submit(
            db, current_user, patient, submission.services, attachments, file_store,
            health_unit_id=submission.health_unit_id
        )
    except RequestLifecycleError as e:
        raise to_http(e)

    if not result.created:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Nenhuma requisição foi criada",
                "failures": [f.to_dict() for f in result.failures],
            }
        )

    count = len(result.created)
    return IntakeResponse(
        message=f"{count} requisição(ões) criada(s) com sucesso",
        count=count,
        requests=_responses(result.created),
        failures=[f.to_dict() for f in result.failures],
        quota=result.quota
    )


@router.post("/check-duplicates")
def check_duplicates(
    data: DuplicateCheck,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Report live requests of the patient for the selected services inside the duplicate window."""
    conflicts = queries.find_duplicates(db, data.patient_id, data.services)
    return {
        "has_duplicates": bool(conflicts),
        "duplicates": [c.to_dict() for c in conflicts],
    }


@router.get("/", response_model=List[RequestResponse])
def list_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    is_urgent: Optional[bool] = None,
    year: Optional[int] = Query(None, ge=2020, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """List requests with optional filters. ``status`` accepts legacy labels."""
    try:
        requests = queries.list_requests(
            db, status=status_filter, is_urgent=is_urgent, requester_id=_scope(current_user),
            year=year, month=month, skip=skip, limit=limit
        )
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Status inválido: {status_filter}")
    return _responses(requests)


@router.get("/active", response_model=List[RequestResponse])
def list_active(db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)):
    """Requests still in progress, oldest first."""
    return _responses(queries.active_requests(db, requester_id=_scope(current_user)))


@router.get("/urgent", response_model=List[RequestResponse])
def list_urgent(db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)):
    return _responses(queries.urgent_requests(db, requester_id=_scope(current_user)))


@router.get("/completed", response_model=List[RequestResponse])
def list_completed(db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)):
    """Requests completed this month, newest first."""
    return _responses(queries.completed_requests(db, requester_id=_scope(current_user)))


@router.get("/suspended", response_model=List[RequestResponse])
def list_suspended(db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)):
    return _responses(queries.suspended_requests(db, requester_id=_scope(current_user)))


@router.post("/batch-forward", response_model=List[RequestResponse])
def batch_forward(
    data: BatchForwardRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Forward several requests to the same month. Stops at the first failure."""
    forwarded = []
    try:
        for request_id in data.request_ids:
            request = queries.get_request(db, request_id)
            forwarded.append(
                lifecycle_service.forward_request(
                    db, request, current_user, data.month, data.year, data.reason
                )
            )
    except RequestLifecycleError as e:
        raise to_http(e)
    return _responses(forwarded)


@router.get("/{request_id}", response_model=RequestResponse)
def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return RequestResponse.from_db(_load(db, request_id, current_user))


@router.patch("/{request_id}/status", response_model=RequestResponse)
def update_status(
    request_id: int,
    data: StatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Accept, confirm or reactivate a request. Suspension and completion have their own routes."""
    request = _load(db, request_id, current_user)
    if data.status == RequestStatus.SUSPENSO:
        raise HTTPException(status_code=400, detail="Use a rota de suspensão informando o motivo")
    try:
        request = lifecycle_service.transition(db, request, data.status, current_user)
    except RequestLifecycleError as e:
        raise to_http(e)
    return RequestResponse.from_db(request)


@router.post("/{request_id}/suspend", response_model=RequestResponse)
def suspend_request(
    request_id: int,
    data: SuspendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    request = _load(db, request_id, current_user)
    try:
        request = lifecycle_service.suspend(db, request, current_user, data.reason)
    except RequestLifecycleError as e:
        raise to_http(e)
    return RequestResponse.from_db(request)


@router.post("/{request_id}/revert", response_model=RequestResponse)
def revert_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Bring a suspended request back to the queue."""
    request = _load(db, request_id, current_user)
    try:
        request = lifecycle_service.revert_suspension(db, request, current_user)
    except RequestLifecycleError as e:
        raise to_http(e)
    return RequestResponse.from_db(request)


@router.post("/{request_id}/complete", response_model=CompletionResponse)
async def complete_request(
    request_id: int,
    exam_location: str = Form(...),
    exam_date: str = Form(..., description="YYYY-MM-DD"),
    exam_time: str = Form(..., description="HH:MM"),
    result_file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    channel: NotificationChannel = Depends(get_notification_channel),
    current_user: User = Depends(get_current_active_user)
):
    """
    Complete a confirmed request with its schedule and result file.
    Returns the WhatsApp message to be sent to the patient.
    """
    request = _load(db, request_id, current_user)

    result = None
    if result_file is not None:
        result = lifecycle_service.ResultUpload(
            data=await result_file.read(),
            filename=result_file.filename or "",
            mime_type=result_file.content_type or ""
        )

    try:
        outcome = lifecycle_service.complete_request(
            db, request, current_user, exam_location, exam_date, exam_time, result, file_store, channel
        )
    except RequestLifecycleError as e:
        raise to_http(e)

    return CompletionResponse(
        request=RequestResponse.from_db(outcome.request),
        message=OutboundMessageResponse(**outcome.message.to_dict())
    )


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_request(
    request_id: int,
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    request = _load(db, request_id, current_user)
    try:
        lifecycle_service.delete_request(db, request, current_user, file_store)
    except RequestLifecycleError as e:
        raise to_http(e)
    return None


@router.patch("/{request_id}/notes", response_model=RequestResponse)
def update_notes(
    request_id: int,
    data: NotesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    request = _load(db, request_id, current_user)
    try:
        request = lifecycle_service.update_notes(db, request, current_user, data.notes)
    except RequestLifecycleError as e:
        raise to_http(e)
    return RequestResponse.from_db(request)


@router.post("/{request_id}/forward", response_model=RequestResponse)
def forward_request(
    request_id: int,
    data: ForwardRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Move a request to another month's queue."""
    request = _load(db, request_id, current_user)
    try:
        request = lifecycle_service.forward_request(
            db, request, current_user, data.month, data.year, data.reason
        )
    except RequestLifecycleError as e:
        raise to_http(e)
    return RequestResponse.from_db(request)


@router.post("/{request_id}/documents/{slot}", response_model=RequestResponse)
async def upload_document(
    request_id: int,
    slot: DocumentSlot,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """Upload or replace the supporting attachment or the additional document."""
    request = _load(db, request_id, current_user)
    content = await file.read()
    try:
        request = lifecycle_service.attach_document(
            db, request, current_user, slot, content,
            file.filename or "", file.content_type or "", file_store
        )
    except RequestLifecycleError as e:
        raise to_http(e)
    return RequestResponse.from_db(request)


@router.get("/{request_id}/documents", response_model=List[DocumentResponse])
def list_documents(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Metadata of the files linked to a request."""
    request = _load(db, request_id, current_user)
    documents = []
    for slot in DocumentSlot:
        if not getattr(request, f"{slot.value}_ref"):
            continue
        documents.append(DocumentResponse(
            request_id=request.id,
            slot=slot,
            filename=getattr(request, f"{slot.value}_filename") or "",
            mime_type=getattr(request, f"{slot.value}_mime_type"),
            size=getattr(request, f"{slot.value}_size"),
            uploaded_at=getattr(request, f"{slot.value}_uploaded_at"),
            uploaded_by=getattr(request, f"{slot.value}_uploaded_by")
        ))
    return documents


def _content_disposition(filename: str) -> str:
    """``inline`` header with an RFC 5987 ``filename*`` for names that are not plain ASCII."""
    quoted = quote(filename, safe="")
    if quoted == filename:
        return f'inline; filename="{filename}"'
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "").replace("\\", "")
    return f"inline; filename=\"{fallback or 'documento'}\"; filename*=utf-8''{quoted}"


def _download(request, slot: DocumentSlot, file_store: FileStore) -> Response:
    reference = getattr(request, f"{slot.value}_ref")
    if not reference:
        raise HTTPException(status_code=404, detail="Documento não encontrado")
    try:
        data, mime_type = file_store.fetch(reference)
    except RequestLifecycleError as e:
        raise to_http(e)
    filename = getattr(request, f"{slot.value}_filename") or reference.rsplit("/", 1)[-1]
    return Response(
        content=data,
        media_type=getattr(request, f"{slot.value}_mime_type") or mime_type,
        headers={"Content-Disposition": _content_disposition(filename)}
    )


@router.get("/{request_id}/documents/{slot}")
def download_document(
    request_id: int,
    slot: DocumentSlot,
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """Stream the attachment, additional document or result file."""
    return _download(_load(db, request_id, current_user), slot, file_store)


@router.get("/{request_id}/result")
def view_result(
    request_id: int,
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """Result file, for staff."""
    return _download(_load(db, request_id, current_user), DocumentSlot.RESULT, file_store)


@router.get("/{request_id}/result/view")
def view_result_from_link(
    request_id: int,
    token: str = Query(..., description="Signed token from the completion message"),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store)
):
    """Result view opened by the patient from the completion message. No staff login."""
    if not AuthService.verify_result_token(token, request_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Link inválido ou expirado")
    return _download(_load(db, request_id), DocumentSlot.RESULT, file_store)
