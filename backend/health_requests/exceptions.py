"""
Request lifecycle exceptions.

These exceptions are raised by the lifecycle services and are translated to
HTTP responses by the routers (see ``health_requests.routers.errors``).
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class Conflict:
    """An existing request that blocks a new one for the same patient and service."""
    service_kind: str  # 'exam' or 'consultation'
    service_id: int
    service_name: str
    request_id: int
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.service_kind,
            "id": self.service_id,
            "name": self.service_name,
            "request_id": self.request_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class RequestLifecycleError(Exception):
    """Base exception for all request lifecycle errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(RequestLifecycleError):
    """A guard rejected the operation (missing data, invalid transition...)."""
    pass


class DuplicateRequestError(ValidationError):
    """
    Raised when the patient already has a live request for a selected service
    inside the duplicate window. Lists every conflicting service by name.
    """

    def __init__(self, conflicts: List[Conflict]):
        self.conflicts = conflicts
        names = ", ".join(c.service_name for c in conflicts)
        super().__init__(f"Paciente já possui solicitação recente para: {names}")

    @property
    def service_names(self) -> List[str]:
        return [c.service_name for c in self.conflicts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "duplicates": [c.to_dict() for c in self.conflicts],
        }


class AuthorizationError(RequestLifecycleError):
    """The acting role may not perform the action."""
    pass


class NotFoundError(RequestLifecycleError):
    pass


class CollaboratorError(RequestLifecycleError):
    """The file store or another external collaborator failed."""
    pass


@dataclass
class ServiceFailure:
    """A selected service whose request could not be created."""
    service_kind: str
    service_id: int
    service_name: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.service_kind,
            "id": self.service_id,
            "name": self.service_name,
            "reason": self.reason,
        }
