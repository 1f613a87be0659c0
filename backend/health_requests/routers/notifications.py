"""
Notification banner routes.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from health_requests.database import get_db, Notification as NotificationDB
from health_requests.models.notification import NotificationCreate, NotificationUpdate, NotificationResponse
from health_requests.models.user import User, Role
from health_requests.services.auth_service import get_current_active_user, require
from health_requests.services.permissions import Action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _for_role(query, role: Optional[Role]):
    """Banners addressed to ``role`` or to everyone."""
    if role is None:
        return query
    return query.filter(or_(NotificationDB.target_role == role.value, NotificationDB.target_role.is_(None)))


def _get(db: Session, notification_id: int) -> NotificationDB:
    notification = db.query(NotificationDB).filter(NotificationDB.id == notification_id).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notificação não encontrada")
    return notification


@router.get("/", response_model=List[NotificationResponse])
def list_notifications(
    role: Optional[Role] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.MANAGE_NOTIFICATIONS))
):
    """Every banner, newest first, optionally only those a role would see."""
    query = _for_role(db.query(NotificationDB), role)
    return query.order_by(desc(NotificationDB.created_at), desc(NotificationDB.id)).all()


@router.get("/active", response_model=List[NotificationResponse])
def list_active_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Active banners for the current user's role."""
    query = _for_role(db.query(NotificationDB), current_user.role).filter(
        NotificationDB.is_active == True  # noqa: E712
    )
    return query.order_by(desc(NotificationDB.created_at), desc(NotificationDB.id)).all()


@router.post("/", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
def create_notification(
    data: NotificationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.MANAGE_NOTIFICATIONS))
):
    notification = NotificationDB(
        title=data.title,
        message=data.message,
        kind=data.kind.value,
        target_role=data.target_role.value if data.target_role else None,
        is_active=True,
        created_by=current_user.id
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    logger.info(f"Notification {notification.id} created by {current_user.username}")
    return notification


@router.patch("/{notification_id}", response_model=NotificationResponse)
def update_notification(
    notification_id: int,
    data: NotificationUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.MANAGE_NOTIFICATIONS))
):
    notification = _get(db, notification_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        if key in ("kind", "target_role") and value is not None:
            value = value.value
        setattr(notification, key, value)
    db.commit()
    db.refresh(notification)
    return notification


@router.put("/{notification_id}/toggle", response_model=NotificationResponse)
def toggle_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.MANAGE_NOTIFICATIONS))
):
    notification = _get(db, notification_id)
    notification.is_active = not notification.is_active
    db.commit()
    db.refresh(notification)
    return notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.MANAGE_NOTIFICATIONS))
):
    db.delete(_get(db, notification_id))
    db.commit()
    logger.info(f"Notification {notification_id} deleted by {current_user.username}")
    return None
