"""
Patient registration, keyed by CPF.
"""
import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from health_requests.database import Patient as PatientDB
from health_requests.exceptions import NotFoundError, ValidationError
from health_requests.models.patient import (
    PatientCreate, PatientUpdate, PhotoSide, age_from_birth_date, normalize_cpf
)
from health_requests.services.file_store import FileStore

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ["name", "social_name", "address", "city", "state", "birth_date", "age", "phone", "notes"]


class PatientService:
    """Service for patient lookup and maintenance."""

    @staticmethod
    def get(db: Session, patient_id: int) -> PatientDB:
        patient = db.query(PatientDB).filter(PatientDB.id == patient_id).first()
        if not patient:
            raise NotFoundError("Paciente não encontrado")
        return patient

    @staticmethod
    def get_by_cpf(db: Session, cpf: str) -> Optional[PatientDB]:
        digits = normalize_cpf(cpf)
        if not digits:
            return None
        return db.query(PatientDB).filter(PatientDB.cpf == digits).first()

    @staticmethod
    def search(db: Session, term: str, limit: int = 20) -> List[PatientDB]:
        term = (term or "").strip()
        if len(term) < 2:
            return []
        filters = [PatientDB.name.ilike(f"%{term}%"), PatientDB.social_name.ilike(f"%{term}%")]
        digits = normalize_cpf(term)
        if digits:
            filters.append(PatientDB.cpf.like(f"{digits}%"))
        return db.query(PatientDB).filter(or_(*filters)).order_by(PatientDB.name).limit(limit).all()

    @staticmethod
    def _apply(patient: PatientDB, data: dict) -> None:
        for key, value in data.items():
            if isinstance(value, str):
                value = value.strip() or None
            setattr(patient, key, value)
        if patient.birth_date is not None:
            patient.age = age_from_birth_date(patient.birth_date)

    @staticmethod
    def get_or_create(db: Session, data: PatientCreate) -> PatientDB:
        """
        Find the patient by CPF and refresh their contact data, or create them.
        """
        patient = PatientService.get_by_cpf(db, data.cpf)
        payload = data.model_dump(include=set(CONTACT_FIELDS))

        if patient:
            # Keep stored values for fields the caller left empty
            payload = {k: v for k, v in payload.items() if v not in (None, "")}
            PatientService._apply(patient, payload)
            logger.info(f"Updating existing patient {patient.id} found by CPF")
        else:
            patient = PatientDB(cpf=data.cpf)
            PatientService._apply(patient, payload)
            db.add(patient)
            logger.info("Creating new patient")

        db.commit()
        db.refresh(patient)
        return patient

    @staticmethod
    def update(db: Session, patient: PatientDB, data: PatientUpdate) -> PatientDB:
        PatientService._apply(patient, data.model_dump(exclude_unset=True))
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to update patient {patient.id}: {e}")
            raise ValidationError("Dados do paciente inválidos") from e
        db.refresh(patient)
        return patient

    @staticmethod
    def has_id_photos(patient: PatientDB) -> bool:
        return bool(patient.id_photo_front) and bool(patient.id_photo_back)

    @staticmethod
    def set_id_photo(
        db: Session,
        patient: PatientDB,
        side: PhotoSide,
        data: bytes,
        filename: str,
        mime_type: str,
        file_store: FileStore
    ) -> PatientDB:
        if mime_type and not mime_type.startswith("image/") and mime_type != "application/pdf":
            raise ValidationError("A foto do documento deve ser uma imagem")

        stored = file_store.store(data, filename, mime_type, folder=f"patients/{patient.id}")
        column = f"id_photo_{side.value}"
        previous = getattr(patient, column)
        setattr(patient, column, stored.reference)
        db.commit()
        db.refresh(patient)

        if previous:
            file_store.delete(previous)
        logger.info(f"Patient {patient.id}: ID photo ({side.value}) updated")
        return patient

    @staticmethod
    def remove_id_photo(db: Session, patient: PatientDB, side: PhotoSide, file_store: FileStore) -> PatientDB:
        column = f"id_photo_{side.value}"
        reference = getattr(patient, column)
        if not reference:
            raise NotFoundError("Foto não encontrada")
        setattr(patient, column, None)
        db.commit()
        db.refresh(patient)
        file_store.delete(reference)
        return patient
