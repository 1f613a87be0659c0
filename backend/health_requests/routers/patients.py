"""
Patient registration routes.
"""
import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Query, UploadFile, File
from fastapi.responses import Response
from sqlalchemy.orm import Session

from health_requests.database import get_db, ServiceRequest as RequestDB
from health_requests.exceptions import RequestLifecycleError
from health_requests.models.patient import PatientCreate, PatientUpdate, PatientResponse, PhotoSide
from health_requests.models.request import RequestResponse
from health_requests.models.user import User
from health_requests.routers.errors import to_http
from health_requests.services.auth_service import get_current_active_user
from health_requests.services.file_store import FileStore, get_file_store
from health_requests.services.patient_service import PatientService
from health_requests.services.request_query_service import patient_requests

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["Patients"])


def _load(db: Session, patient_id: int):
    try:
        return PatientService.get(db, patient_id)
    except RequestLifecycleError as e:
        raise to_http(e)


def _request_count(db: Session, patient_id: int) -> int:
    return db.query(RequestDB).filter(RequestDB.patient_id == patient_id).count()


@router.post("/", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def create_or_update_patient(
    patient_data: PatientCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Register a patient, or refresh the record of the patient with this CPF."""
    patient = PatientService.get_or_create(db, patient_data)
    return PatientResponse.from_db(patient, _request_count(db, patient.id))


@router.get("/search", response_model=List[PatientResponse])
def search_patients(
    q: str = Query(..., min_length=2, description="Name, social name or CPF prefix"),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Autocomplete search for patients."""
    return [PatientResponse.from_db(p) for p in PatientService.search(db, q, limit)]


@router.get("/by-cpf/{cpf}", response_model=PatientResponse)
def get_patient_by_cpf(
    cpf: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Look a patient up by CPF (formatted or digits only)."""
    patient = PatientService.get_by_cpf(db, cpf)
    if not patient:
        raise HTTPException(status_code=404, detail="Paciente não encontrado")
    return PatientResponse.from_db(patient, _request_count(db, patient.id))


@router.get("/{patient_id}", response_model=PatientResponse)
def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Get a specific patient by ID."""
    patient = _load(db, patient_id)
    return PatientResponse.from_db(patient, _request_count(db, patient.id))


@router.patch("/{patient_id}", response_model=PatientResponse)
def update_patient(
    patient_id: int,
    patient_data: PatientUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Update a patient record."""
    try:
        patient = PatientService.update(db, _load(db, patient_id), patient_data)
    except RequestLifecycleError as e:
        raise to_http(e)
    return PatientResponse.from_db(patient, _request_count(db, patient.id))


@router.get("/{patient_id}/requests", response_model=List[RequestResponse])
def list_patient_requests(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Request history of a patient, newest first."""
    _load(db, patient_id)
    return [RequestResponse.from_db(r) for r in patient_requests(db, patient_id)]


@router.post("/{patient_id}/id-photo/{side}", response_model=PatientResponse)
async def upload_id_photo(
    patient_id: int,
    side: PhotoSide,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """Upload the front or back photo of the patient's identity document."""
    patient = _load(db, patient_id)
    content = await file.read()
    try:
        patient = PatientService.set_id_photo(
            db, patient, side, content, file.filename or "", file.content_type or "", file_store
        )
    except RequestLifecycleError as e:
        raise to_http(e)
    return PatientResponse.from_db(patient, _request_count(db, patient.id))


@router.get("/{patient_id}/id-photo/{side}")
def get_id_photo(
    patient_id: int,
    side: PhotoSide,
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """Download one side of the patient's identity document."""
    patient = _load(db, patient_id)
    reference = getattr(patient, f"id_photo_{side.value}")
    if not reference:
        raise HTTPException(status_code=404, detail="Foto não encontrada")
    try:
        data, mime_type = file_store.fetch(reference)
    except RequestLifecycleError as e:
        raise to_http(e)
    return Response(content=data, media_type=mime_type)


@router.delete("/{patient_id}/id-photo/{side}", response_model=PatientResponse)
def delete_id_photo(
    patient_id: int,
    side: PhotoSide,
    db: Session = Depends(get_db),
    file_store: FileStore = Depends(get_file_store),
    current_user: User = Depends(get_current_active_user)
):
    """Remove one side of the patient's identity document."""
    patient = _load(db, patient_id)
    try:
        patient = PatientService.remove_id_photo(db, patient, side, file_store)
    except RequestLifecycleError as e:
        raise to_http(e)
    return PatientResponse.from_db(patient, _request_count(db, patient.id))
