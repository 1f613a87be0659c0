"""
Role capabilities for the request lifecycle.

Every transition guard calls ``authorize``; no router compares role strings.
"""
import logging
from enum import Enum
from typing import Dict, Optional, Set, Union

from health_requests.exceptions import AuthorizationError
from health_requests.models.request import RequestStatus, normalize_status
from health_requests.models.user import Role

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CREATE_REQUEST = "create_request"
    ACCEPT = "accept"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    SUSPEND = "suspend"
    REVERT_SUSPENSION = "revert_suspension"
    DELETE_REQUEST = "delete_request"
    UPDATE_NOTES = "update_notes"
    UPLOAD_DOCUMENT = "upload_document"
    FORWARD_REQUEST = "forward_request"
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_NOTIFICATIONS = "manage_notifications"
    MANAGE_USERS = "manage_users"
    VIEW_ACTIVITY = "view_activity"


ROLE_CAPABILITIES: Dict[Role, Set[Action]] = {
    Role.RECEPCAO: {
        Action.CREATE_REQUEST,
        Action.REVERT_SUSPENSION,
        Action.DELETE_REQUEST,
        Action.UPDATE_NOTES,
        Action.UPLOAD_DOCUMENT,
    },
    Role.REGULACAO: {
        Action.ACCEPT,
        Action.CONFIRM,
        Action.COMPLETE,
        Action.SUSPEND,
        Action.REVERT_SUSPENSION,
        Action.DELETE_REQUEST,
        Action.UPDATE_NOTES,
        Action.UPLOAD_DOCUMENT,
        Action.MANAGE_NOTIFICATIONS,
        Action.VIEW_ACTIVITY,
    },
    Role.ADMIN: set(Action) - {Action.SUSPEND, Action.REVERT_SUSPENSION},
}

# States in which reception may still delete its requests
RECEPTION_DELETABLE = {
    RequestStatus.RECEIVED,
    RequestStatus.ACCEPTED,
    RequestStatus.CONFIRMED,
}


def parse_role(role: Union[str, Role]) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise AuthorizationError(f"Perfil desconhecido: {role}")


def can(role: Union[str, Role], action: Action) -> bool:
    try:
        return action in ROLE_CAPABILITIES[parse_role(role)]
    except AuthorizationError:
        return False


def authorize(role: Union[str, Role], action: Action, request_status: Optional[str] = None) -> Role:
    """
    Raise ``AuthorizationError`` unless ``role`` may perform ``action``.

    ``request_status`` is the current status of the target request, needed for
    the reception deletion rule.
    """
    parsed = parse_role(role)
    if action not in ROLE_CAPABILITIES[parsed]:
        logger.warning(f"Access denied: role={parsed.value} action={action.value}")
        raise AuthorizationError("Acesso negado para este perfil")

    if action == Action.DELETE_REQUEST and parsed == Role.RECEPCAO and request_status is not None:
        if normalize_status(request_status) not in RECEPTION_DELETABLE:
            logger.warning(f"Reception cannot delete request in status {request_status}")
            raise AuthorizationError(
                "Apenas usuários de regulação e administradores podem excluir "
                "requisições concluídas ou suspensas"
            )

    return parsed
