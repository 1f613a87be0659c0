"""
Activity log for request lifecycle events.
"""
import logging
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from health_requests.database import ActivityLog as ActivityLogDB, ServiceRequest as RequestDB
from health_requests.models.user import ROLE_LABELS, Role, User

logger = logging.getLogger(__name__)

KIND_LABELS = {"exam": "exame", "consultation": "consulta"}


def describe(actor: User, verb: str, request: RequestDB) -> str:
    """e.g. 'Regulação Maria aceitou o exame "Raio X" do paciente João'."""
    role_label = ROLE_LABELS.get(Role(actor.role), actor.role)
    kind = KIND_LABELS[request.service_kind]
    patient_name = request.patient.name if request.patient else "?"
    return f'{role_label} {actor.full_name} {verb} o {kind} "{request.service_name}" do paciente {patient_name}'


def record_activity(
    db: Session,
    actor: User,
    request: RequestDB,
    action: str,
    description: str,
    old_status: Optional[str] = None,
    new_status: Optional[str] = None,
    keep_request_link: bool = True
) -> ActivityLogDB:
    """Add an activity row to the session. The caller commits."""
    log = ActivityLogDB(
        user_id=actor.id,
        user_name=actor.full_name,
        user_role=actor.role.value if hasattr(actor.role, "value") else str(actor.role),
        request_id=request.id if keep_request_link else None,
        patient_name=request.patient.name if request.patient else "",
        action=action,
        description=description,
        request_kind=request.service_kind,
        request_name=request.service_name,
        old_status=old_status,
        new_status=new_status
    )
    db.add(log)
    return log


def list_activity(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    request_id: Optional[int] = None
) -> List[ActivityLogDB]:
    query = db.query(ActivityLogDB)

    if action:
        query = query.filter(ActivityLogDB.action == action)
    if user_id:
        query = query.filter(ActivityLogDB.user_id == user_id)
    if request_id:
        query = query.filter(ActivityLogDB.request_id == request_id)

    return query.order_by(desc(ActivityLogDB.created_at), desc(ActivityLogDB.id)).offset(skip).limit(limit).all()
