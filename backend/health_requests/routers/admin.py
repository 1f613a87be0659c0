"""
Admin routes for staff accounts and the activity log.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import desc

from health_requests.database import get_db, User as UserDB
from health_requests.models.notification import ActivityLogResponse
from health_requests.models.user import User, UserCreate, UserResponse, UserUpdate
from health_requests.services.activity_service import list_activity
from health_requests.services.auth_service import AuthService, require
from health_requests.services.permissions import Action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def _get_user(db: Session, user_id: int) -> UserDB:
    user = db.query(UserDB).filter(UserDB.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")
    return user


@router.get("/users", response_model=List[UserResponse])
def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    search: str = Query(None),
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_USERS))
):
    """List staff accounts (admin only)."""
    query = db.query(UserDB)

    if search:
        query = query.filter(
            (UserDB.username.ilike(f"%{search}%")) |
            (UserDB.full_name.ilike(f"%{search}%"))
        )

    return query.order_by(desc(UserDB.created_at), desc(UserDB.id)).offset(skip).limit(limit).all()


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    user_data: UserCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_USERS))
):
    """Create a staff account (admin only)."""
    user = AuthService.create_user(db, user_data)
    logger.info(f"User {user.username} ({user.role}) created by {admin.username}")
    return user


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_USERS))
):
    return _get_user(db, user_id)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    data: UserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_USERS))
):
    """Update name, email, role or health unit of an account."""
    user = _get_user(db, user_id)
    changes = data.model_dump(exclude_unset=True)

    if "role" in changes and changes["role"] is not None:
        if user.id == admin.id:
            raise HTTPException(status_code=400, detail="Não é possível alterar o próprio perfil")
        changes["role"] = changes["role"].value

    for key, value in changes.items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.username} updated by {admin.username}: {sorted(changes)}")
    return user


@router.put("/users/{user_id}/toggle-active")
def toggle_user_active(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_USERS))
):
    """Toggle user active status (admin only)."""
    user = _get_user(db, user_id)

    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="Não é possível desativar a si mesmo")

    user.is_active = not user.is_active
    db.commit()

    logger.info(f"User {user.username} {'activated' if user.is_active else 'deactivated'} by {admin.username}")
    return {"message": f"Usuário {'ativado' if user.is_active else 'desativado'}", "is_active": user.is_active}


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require(Action.MANAGE_USERS))
):
    """Delete a staff account (admin only, never the caller's own)."""
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="Não é possível excluir a si mesmo")

    db.delete(user)
    db.commit()
    logger.info(f"User {user_id} deleted by {admin.username}")
    return None


@router.get("/activity-logs", response_model=List[ActivityLogResponse])
def get_activity_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    request_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require(Action.VIEW_ACTIVITY))
):
    """Request lifecycle history, newest first."""
    return list_activity(db, skip=skip, limit=limit, action=action, user_id=user_id, request_id=request_id)
