"""
PostgreSQL database connection and models using SQLAlchemy.
"""
from sqlalchemy import (
    create_engine, Column, String, DateTime, Date, Text, Boolean, ForeignKey, Integer,
    CheckConstraint
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, relationship
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func
from health_requests.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads (TestClient)
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    return create_engine(
        database_url.replace("postgresql://", "postgresql+psycopg://"),
        echo=settings.debug,
        pool_pre_ping=True
    )


engine = _build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# SQLAlchemy Models
class HealthUnit(Base):
    __tablename__ = "health_units"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=False)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="recepcao")  # recepcao, regulacao, admin
    health_unit_id = Column(Integer, ForeignKey("health_units.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    health_unit = relationship("HealthUnit")


class ExamType(Base):
    __tablename__ = "exam_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    monthly_quota = Column(Integer, nullable=False, default=0)
    price = Column(Integer, nullable=False, default=0)  # cents
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ConsultationType(Base):
    __tablename__ = "consultation_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    monthly_quota = Column(Integer, nullable=False, default=0)
    price = Column(Integer, nullable=False, default=0)  # cents
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    social_name = Column(String(255), nullable=True)
    cpf = Column(String(11), unique=True, nullable=False, index=True)  # digits only
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    birth_date = Column(Date, nullable=True)
    age = Column(Integer, nullable=True)
    phone = Column(String(30), nullable=False)
    notes = Column(Text, nullable=True)
    id_photo_front = Column(String(500), nullable=True)  # file store reference
    id_photo_back = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    requests = relationship("ServiceRequest", back_populates="patient")


class ServiceRequest(Base):
    """One exam or consultation requested for one patient."""
    __tablename__ = "requests"
    __table_args__ = (
        CheckConstraint(
            "(exam_type_id IS NULL) <> (consultation_type_id IS NULL)",
            name="ck_requests_exactly_one_service"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    health_unit_id = Column(Integer, ForeignKey("health_units.id"), nullable=False)
    exam_type_id = Column(Integer, ForeignKey("exam_types.id"), nullable=True, index=True)
    consultation_type_id = Column(Integer, ForeignKey("consultation_types.id"), nullable=True, index=True)
    is_urgent = Column(Boolean, default=False)
    urgency_explanation = Column(Text, nullable=True)
    status = Column(String(30), nullable=False, default="received", index=True)
    registrar_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)  # comments; suspension reason while suspenso

    # Supporting document (mandatory at intake)
    attachment_ref = Column(String(500), nullable=True)
    attachment_filename = Column(String(255), nullable=True)
    attachment_mime_type = Column(String(100), nullable=True)
    attachment_size = Column(Integer, nullable=True)
    attachment_uploaded_at = Column(DateTime(timezone=True), nullable=True)
    attachment_uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    additional_document_ref = Column(String(500), nullable=True)
    additional_document_filename = Column(String(255), nullable=True)
    additional_document_mime_type = Column(String(100), nullable=True)
    additional_document_size = Column(Integer, nullable=True)
    additional_document_uploaded_at = Column(DateTime(timezone=True), nullable=True)
    additional_document_uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Completion fields, written together by the completion action
    exam_location = Column(String(255), nullable=True)
    exam_date = Column(String(10), nullable=True)  # YYYY-MM-DD
    exam_time = Column(String(5), nullable=True)  # HH:MM
    result_ref = Column(String(500), nullable=True)
    result_filename = Column(String(255), nullable=True)
    result_mime_type = Column(String(100), nullable=True)
    result_size = Column(Integer, nullable=True)
    result_uploaded_at = Column(DateTime(timezone=True), nullable=True)
    result_uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Month forwarding
    forwarded_to_month = Column(Integer, nullable=True)
    forwarded_to_year = Column(Integer, nullable=True)
    forwarded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    forwarded_at = Column(DateTime(timezone=True), nullable=True)
    forwarded_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient = relationship("Patient", back_populates="requests")
    requester = relationship("User", foreign_keys=[requester_id])
    registrar = relationship("User", foreign_keys=[registrar_id])
    health_unit = relationship("HealthUnit")
    exam_type = relationship("ExamType")
    consultation_type = relationship("ConsultationType")

    @property
    def service_kind(self) -> str:
        return "exam" if self.exam_type_id is not None else "consultation"

    @property
    def service_id(self) -> int:
        return self.exam_type_id if self.exam_type_id is not None else self.consultation_type_id

    @property
    def service_name(self) -> str:
        service = self.exam_type if self.exam_type_id is not None else self.consultation_type
        if service is not None:
            return service.name
        return "Exame" if self.service_kind == "exam" else "Consulta"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    kind = Column(String(20), nullable=False, default="info")  # info, warning, success, error
    target_role = Column(String(50), nullable=True)  # None broadcasts to every role
    is_active = Column(Boolean, default=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    user_name = Column(String(255), nullable=False)
    user_role = Column(String(50), nullable=False)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="SET NULL"), nullable=True)
    patient_name = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False)  # created, status_changed, completed, suspended, reverted, forwarded, deleted
    description = Column(Text, nullable=False)
    request_kind = Column(String(20), nullable=True)  # exam, consultation
    request_name = Column(String(255), nullable=True)
    old_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")


def init_db():
    """Create all tables."""
    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables created successfully!")


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def migrate_legacy_statuses(db) -> int:
    """Rewrite old status labels ('pending', 'Aguardando Análise') to 'received'."""
    from health_requests.models.request import LEGACY_STATUS_ALIASES

    migrated = 0
    for label, canonical in LEGACY_STATUS_ALIASES.items():
        migrated += (
            db.query(ServiceRequest)
            .filter(ServiceRequest.status == label)
            .update({ServiceRequest.status: canonical.value}, synchronize_session=False)
        )
    db.commit()
    if migrated:
        logger.info(f"Migrated {migrated} request(s) with legacy status labels")
    return migrated
