"""
Authentication service for staff accounts and JWT handling.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status, Header
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from health_requests.config import get_settings
from health_requests.database import get_db, User as UserDB
from health_requests.models.user import UserCreate, User, Role
from health_requests.services.permissions import Action, authorize
from health_requests.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

settings = get_settings()

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# OAuth2 scheme (kept for OpenAPI schema, but we manually parse the header)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_v1_prefix}/auth/login")

RESULT_TOKEN_SCOPE = "result_view"


class AuthService:
    """Service for authentication and account management."""

    @staticmethod
    def _truncate_password(password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit)."""
        return password.encode('utf-8')[:72].decode('utf-8', errors='ignore')

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against a hash."""
        truncated = AuthService._truncate_password(plain_password)
        return pwd_context.verify(truncated, hashed_password)

    @staticmethod
    def get_password_hash(password: str) -> str:
        """Hash a password."""
        truncated = AuthService._truncate_password(password)
        return pwd_context.hash(truncated)

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token."""
        to_encode = data.copy()
        expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    @staticmethod
    def token_for(user: UserDB) -> str:
        return AuthService.create_access_token(
            data={"sub": str(user.id), "username": user.username, "role": user.role}
        )

    @staticmethod
    def create_result_token(request_id: int) -> str:
        """Signed link token that lets the patient open one request's result."""
        return AuthService.create_access_token(
            data={"sub": str(request_id), "scope": RESULT_TOKEN_SCOPE},
            expires_delta=timedelta(days=settings.result_link_expire_days)
        )

    @staticmethod
    def verify_result_token(token: str, request_id: int) -> bool:
        try:
            payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        except JWTError as e:
            logger.warning(f"Rejected result link for request {request_id}: {e}")
            return False
        return payload.get("scope") == RESULT_TOKEN_SCOPE and payload.get("sub") == str(request_id)

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[UserDB]:
        return db.query(UserDB).filter(UserDB.username == username).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[UserDB]:
        return db.query(UserDB).filter(UserDB.id == user_id).first()

    @staticmethod
    def authenticate_user(db: Session, username: str, password: str) -> Optional[UserDB]:
        """Authenticate a user with username and password."""
        user = AuthService.get_user_by_username(db, username)
        if not user or not AuthService.verify_password(password, user.hashed_password):
            return None
        return user

    @staticmethod
    def create_user(db: Session, user_data: UserCreate) -> UserDB:
        """Create a new staff account."""
        if AuthService.get_user_by_username(db, user_data.username):
            raise HTTPException(status_code=400, detail="Nome de usuário já cadastrado")
        if user_data.email and db.query(UserDB).filter(UserDB.email == user_data.email).first():
            raise HTTPException(status_code=400, detail="Email já cadastrado")

        db_user = UserDB(
            username=user_data.username,
            email=user_data.email,
            hashed_password=AuthService.get_password_hash(user_data.password),
            full_name=user_data.full_name,
            role=user_data.role.value,
            health_unit_id=user_data.health_unit_id,
            is_active=True
        )

        db.add(db_user)
        db.commit()
        db.refresh(db_user)

        return db_user

    @staticmethod
    def to_user(user: UserDB) -> User:
        return User(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            role=Role(user.role),
            health_unit_id=user.health_unit_id,
            is_active=user.is_active
        )


def get_current_user(authorization: str = Header(None), db: Session = Depends(get_db)) -> User:
    """Dependency to get current authenticated user from JWT token.

    The ``Authorization: Bearer <token>`` header is parsed by hand rather than
    through ``OAuth2PasswordBearer`` so that frontend and CLI clients get the
    same behaviour.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not authorization:
        logger.error("Missing Authorization header")
        raise credentials_exception

    # Expect header of the form: "Bearer <token>"
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.error("Invalid Authorization header format")
        raise credentials_exception

    token = parts[1]

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id = payload.get("sub")
        if user_id is None:
            logger.error("No 'sub' (user_id) claim in token")
            raise credentials_exception
        if payload.get("scope") is not None:
            logger.error(f"Scoped token ({payload.get('scope')}) used as staff credentials")
            raise credentials_exception
    except JWTError as e:
        logger.error(f"JWT decode error: {e}")
        raise credentials_exception

    try:
        user = AuthService.get_user_by_id(db, int(user_id))
    except ValueError:
        raise credentials_exception
    if user is None:
        logger.error(f"User not found: {user_id}")
        raise credentials_exception

    try:
        return AuthService.to_user(user)
    except ValueError:
        logger.error(f"User {user.id} has unknown role {user.role}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Perfil desconhecido")


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is active."""
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


def require(action: Action):
    """Dependency factory: the current user must be allowed to perform ``action``."""

    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        try:
            authorize(current_user.role, action)
        except AuthorizationError as e:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
        return current_user

    return dependency
