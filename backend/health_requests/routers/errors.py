"""
Translation of lifecycle exceptions to HTTP errors.
"""
from fastapi import HTTPException, status

from health_requests.exceptions import (
    AuthorizationError, CollaboratorError, DuplicateRequestError, NotFoundError,
    RequestLifecycleError, ValidationError
)


def to_http(error: RequestLifecycleError) -> HTTPException:
    if isinstance(error, DuplicateRequestError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.to_dict())
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, CollaboratorError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
