"""
Patient models for patient registration.
"""
import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, date
from enum import Enum


def normalize_cpf(value: str) -> str:
    """Strip formatting ("123.456.789-01" -> "12345678901")."""
    return re.sub(r"\D", "", value or "")


def age_from_birth_date(birth_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    had_birthday = (today.month, today.day) >= (birth_date.month, birth_date.day)
    return today.year - birth_date.year - (0 if had_birthday else 1)


class PhotoSide(str, Enum):
    """Sides of the patient identity document."""
    FRONT = "front"
    BACK = "back"


class PatientBase(BaseModel):
    """Base patient model."""
    name: str = Field(..., min_length=2, max_length=255)
    social_name: Optional[str] = None
    cpf: str = Field(..., description="Brazilian CPF, formatted or digits only")
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(None, max_length=2)
    birth_date: Optional[date] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    phone: str = Field(..., min_length=8)
    notes: Optional[str] = None

    @field_validator("cpf")
    @classmethod
    def validate_cpf(cls, value: str) -> str:
        digits = normalize_cpf(value)
        if len(digits) != 11:
            raise ValueError("CPF deve ter 11 dígitos")
        return digits


class PatientCreate(PatientBase):
    """Model for creating (or finding by CPF) a patient."""
    pass


class PatientUpdate(BaseModel):
    """Model for updating patient data. Only the fields sent are changed."""
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    social_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(None, max_length=2)
    birth_date: Optional[date] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    phone: Optional[str] = Field(None, min_length=8)
    notes: Optional[str] = None

    class Config:
        str_strip_whitespace = True

    @field_validator("name", "phone")
    @classmethod
    def required_fields_stay_filled(cls, value: Optional[str]) -> str:
        # Only runs for values that were sent; null would clear a required column
        if value is None:
            raise ValueError("Campo obrigatório não pode ser removido")
        return value


class PatientResponse(PatientBase):
    """Patient model for API responses."""
    id: int
    has_id_photo_front: bool = False
    has_id_photo_back: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    request_count: Optional[int] = 0

    @classmethod
    def from_db(cls, patient, request_count: int = 0) -> "PatientResponse":
        return cls(
            id=patient.id,
            name=patient.name,
            social_name=patient.social_name,
            cpf=patient.cpf,
            address=patient.address,
            city=patient.city,
            state=patient.state,
            birth_date=patient.birth_date,
            age=patient.age,
            phone=patient.phone,
            notes=patient.notes,
            has_id_photo_front=bool(patient.id_photo_front),
            has_id_photo_back=bool(patient.id_photo_back),
            created_at=patient.created_at,
            updated_at=patient.updated_at,
            request_count=request_count
        )
