"""
Pytest fixtures for backend tests.
"""
import os
import tempfile
from datetime import datetime
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="health-requests-"))
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PUBLIC_BASE_URL", "https://regulacao.example.gov.br")

from health_requests.main import app
from health_requests.config import get_settings
from health_requests.database import (
    Base, engine, SessionLocal,
    HealthUnit as HealthUnitDB,
    User as UserDB,
    ExamType as ExamTypeDB,
    ConsultationType as ConsultationTypeDB,
    Patient as PatientDB,
    ServiceRequest as RequestDB,
)
from health_requests.models.user import Role
from health_requests.services.auth_service import AuthService
from health_requests.services.file_store import LocalFileStore, get_file_store

PNG = b"\x89PNG\r\n\x1a\nfake-image-bytes"
PDF = b"%PDF-1.4\nfake-pdf-bytes"


@pytest.fixture(autouse=True)
def setup_database() -> Generator[None, None, None]:
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def quota_mode():
    """Restore the quota policy after tests that switch it."""
    settings = get_settings()
    original = settings.quota_enforcement
    yield settings
    settings.quota_enforcement = original


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def file_store(tmp_path) -> LocalFileStore:
    return LocalFileStore(root=str(tmp_path / "uploads"))


@pytest.fixture
def health_unit(db) -> HealthUnitDB:
    unit = HealthUnitDB(name="UBS Centro", address="Rua Principal, 100", phone="3333-0000")
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return unit


@pytest.fixture
def users(db, health_unit):
    """One account per role, keyed by role."""
    accounts = {}
    for role, name in [
        (Role.ADMIN, "Ana Admin"),
        (Role.REGULACAO, "Maria Regulação"),
        (Role.RECEPCAO, "Rita Recepção"),
    ]:
        user = UserDB(
            username=role.value,
            full_name=name,
            role=role.value,
            health_unit_id=health_unit.id,
            hashed_password=AuthService.get_password_hash("senha-segura"),
            is_active=True
        )
        db.add(user)
        accounts[role] = user
    db.commit()
    for user in accounts.values():
        db.refresh(user)
    return accounts


@pytest.fixture
def actors(users):
    """The same accounts as the service layer sees them."""
    return {role: AuthService.to_user(user) for role, user in users.items()}


@pytest.fixture
def auth_headers(users):
    def _headers(role: Role) -> dict:
        return {"Authorization": f"Bearer {AuthService.token_for(users[role])}"}
    return _headers


@pytest.fixture
def exam_type(db) -> ExamTypeDB:
    exam = ExamTypeDB(name="Raio X", monthly_quota=2, price=5000)
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


@pytest.fixture
def consultation_type(db) -> ConsultationTypeDB:
    consultation = ConsultationTypeDB(name="Cardiologia", monthly_quota=10, price=15000)
    db.add(consultation)
    db.commit()
    db.refresh(consultation)
    return consultation


@pytest.fixture
def patient(db) -> PatientDB:
    """Patient with both ID photo sides on file."""
    record = PatientDB(
        name="João da Silva",
        cpf="12345678901",
        phone="(11) 98765-4321",
        id_photo_front="patients/1/front.png",
        id_photo_back="patients/1/back.png"
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def make_request(db, patient, users, health_unit):
    """Insert a request row directly, bypassing the intake gate."""

    def _make(service, status="received", created_at=None, requester=Role.RECEPCAO, is_urgent=False, **fields):
        request = RequestDB(
            patient_id=fields.pop("patient_id", patient.id),
            requester_id=users[requester].id,
            health_unit_id=health_unit.id,
            exam_type_id=service.id if isinstance(service, ExamTypeDB) else None,
            consultation_type_id=service.id if isinstance(service, ConsultationTypeDB) else None,
            status=status,
            is_urgent=is_urgent,
            created_at=created_at or datetime.utcnow(),
            **fields
        )
        db.add(request)
        db.commit()
        db.refresh(request)
        return request

    return _make


@pytest.fixture
def client(file_store) -> Generator[TestClient, None, None]:
    """Test client with the file store pointed at a temporary directory."""
    app.dependency_overrides[get_file_store] = lambda: file_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
