"""
Authentication routes for staff login.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from health_requests.database import get_db
from health_requests.models.user import UserResponse, Token, User, PasswordChange
from health_requests.services.auth_service import AuthService, get_current_active_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Authenticate a staff member and return a JWT token.
    """
    user = AuthService.authenticate_user(db, form_data.username, form_data.password)

    if not user:
        logger.warning(f"Failed login for {form_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Usuário ou senha incorretos",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user account"
        )

    return Token(access_token=AuthService.token_for(user), token_type="bearer")


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_active_user)):
    """Get current authenticated user information."""
    return UserResponse(
        id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        full_name=current_user.full_name,
        role=current_user.role,
        health_unit_id=current_user.health_unit_id,
        is_active=current_user.is_active,
        created_at=None
    )


@router.post("/change-password")
def change_password(
    data: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Change the current user's password."""
    user = AuthService.get_user_by_id(db, current_user.id)
    if not AuthService.verify_password(data.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Senha atual incorreta")

    user.hashed_password = AuthService.get_password_hash(data.new_password)
    db.commit()
    logger.info(f"Password changed for {user.username}")
    return {"message": "Senha alterada com sucesso"}


@router.post("/refresh", response_model=Token)
def refresh_token(db: Session = Depends(get_db), current_user: User = Depends(get_current_active_user)):
    """Refresh JWT token for authenticated user."""
    user = AuthService.get_user_by_id(db, current_user.id)
    return Token(access_token=AuthService.token_for(user), token_type="bearer")
