"""
Service catalog routes: exam types, consultation types and health units.
"""
import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from health_requests.database import (
    get_db,
    ExamType as ExamTypeDB,
    ConsultationType as ConsultationTypeDB,
    HealthUnit as HealthUnitDB,
)
from health_requests.models.catalog import (
    ServiceTypeCreate, ServiceTypeUpdate, ServiceTypeResponse,
    HealthUnitCreate, HealthUnitUpdate, HealthUnitResponse
)
from health_requests.models.request import ServiceKind
from health_requests.models.user import User
from health_requests.services.auth_service import get_current_active_user, require
from health_requests.services.permissions import Action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["Catalog"])

MODELS = {
    ServiceKind.EXAM: ExamTypeDB,
    ServiceKind.CONSULTATION: ConsultationTypeDB,
}

# URL segment -> kind
SEGMENTS = {
    "exam-types": ServiceKind.EXAM,
    "consultation-types": ServiceKind.CONSULTATION,
}


def _kind(segment: str) -> ServiceKind:
    if segment not in SEGMENTS:
        raise HTTPException(status_code=404, detail="Catálogo não encontrado")
    return SEGMENTS[segment]


def _get_service(db: Session, kind: ServiceKind, service_id: int):
    model = MODELS[kind]
    service = db.query(model).filter(model.id == service_id).first()
    if not service:
        raise HTTPException(status_code=404, detail="Serviço não encontrado")
    return service


@router.get("/health-units", response_model=List[HealthUnitResponse])
def list_health_units(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = db.query(HealthUnitDB)
    if not include_inactive:
        query = query.filter(HealthUnitDB.is_active == True)  # noqa: E712
    return query.order_by(HealthUnitDB.name).all()


@router.post("/health-units", response_model=HealthUnitResponse, status_code=status.HTTP_201_CREATED)
def create_health_unit(
    data: HealthUnitCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_CATALOG))
):
    unit = HealthUnitDB(**data.model_dump())
    db.add(unit)
    db.commit()
    db.refresh(unit)
    logger.info(f"Health unit {unit.name} created by {admin.username}")
    return unit


@router.patch("/health-units/{unit_id}", response_model=HealthUnitResponse)
def update_health_unit(
    unit_id: int,
    data: HealthUnitUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_CATALOG))
):
    unit = db.query(HealthUnitDB).filter(HealthUnitDB.id == unit_id).first()
    if not unit:
        raise HTTPException(status_code=404, detail="Unidade não encontrada")

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(unit, key, value)
    db.commit()
    db.refresh(unit)
    return unit


@router.get("/{segment}", response_model=List[ServiceTypeResponse])
def list_services(
    segment: str,
    include_inactive: bool = Query(False, description="Also list deactivated services"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """List exam or consultation types, active only by default."""
    model = MODELS[_kind(segment)]
    query = db.query(model)
    if not include_inactive:
        query = query.filter(model.is_active == True)  # noqa: E712
    return query.order_by(model.name).all()


@router.post("/{segment}", response_model=ServiceTypeResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    segment: str,
    data: ServiceTypeCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_CATALOG))
):
    kind = _kind(segment)
    service = MODELS[kind](**data.model_dump())
    db.add(service)
    db.commit()
    db.refresh(service)
    logger.info(f"{kind.value} type '{service.name}' created by {admin.username} (quota {service.monthly_quota})")
    return service


@router.get("/{segment}/{service_id}", response_model=ServiceTypeResponse)
def get_service(
    segment: str,
    service_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return _get_service(db, _kind(segment), service_id)


@router.patch("/{segment}/{service_id}", response_model=ServiceTypeResponse)
def update_service(
    segment: str,
    service_id: int,
    data: ServiceTypeUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_CATALOG))
):
    """Update name, quota, price or active flag of a catalog service."""
    service = _get_service(db, _kind(segment), service_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(service, key, value)
    db.commit()
    db.refresh(service)
    return service


@router.delete("/{segment}/{service_id}", response_model=ServiceTypeResponse)
def deactivate_service(
    segment: str,
    service_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_CATALOG))
):
    """Deactivate a service. Rows are kept because requests reference them."""
    service = _get_service(db, _kind(segment), service_id)
    service.is_active = False
    db.commit()
    db.refresh(service)
    logger.info(f"Service {segment}/{service_id} deactivated by {admin.username}")
    return service
