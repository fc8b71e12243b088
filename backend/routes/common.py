from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from backend.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    SchedulingValidationError,
)
from backend.database import ensure_appointment_schema, ensure_message_schema, ensure_template_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (SchedulingValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
)


def ensure_database_ready() -> None:
    try:
        ensure_template_schema()
        ensure_appointment_schema()
        ensure_message_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def http_error_for(exc: SchedulingError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
