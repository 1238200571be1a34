# Translation of service errors into HTTP responses

from fastapi import HTTPException, status

from services.exceptions import (
    AuthorizationError,
    ConflictError,
    DeliverableError,
    ExternalProcessorError,
    NotFoundError,
    ReconciliationAmbiguousError,
    ValidationError,
)

ERROR_STATUS = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ExternalProcessorError, status.HTTP_502_BAD_GATEWAY),
    (ReconciliationAmbiguousError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(exc: DeliverableError) -> HTTPException:
    """
    Map a service error to an HTTPException.

    Usage:
        except DeliverableError as e:
            raise http_error(e)
    """
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
