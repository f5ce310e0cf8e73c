"""
Translation of service-layer errors into HTTP responses.

Every error response uses the structured detail payload
``{"detail": <message>, "error_code": <code>}``; import validation failures
add the full ``errors`` list.
"""

from fastapi import HTTPException

from app.services.errors import (
    AlreadySubmitted,
    CampaignError,
    DuplicateKey,
    ImportValidationError,
    InvalidSubmission,
    NotFound,
    TokenExpired,
    TokenInvalid,
    TransportFailure,
)
from app.services.spreadsheet_parser import ParseError

_STATUS_BY_ERROR: list[tuple[type, int]] = [
    (ImportValidationError, 400),
    (NotFound, 404),
    (TokenInvalid, 401),
    (TokenExpired, 401),
    (AlreadySubmitted, 409),
    (DuplicateKey, 409),
    (InvalidSubmission, 422),
    (TransportFailure, 502),
]


def _error(status_code: int, message: str, error_code: str, **extra) -> HTTPException:
    """Build an HTTPException with a structured detail payload."""
    return HTTPException(
        status_code=status_code,
        detail={"detail": message, "error_code": error_code, **extra},
    )


def to_http(exc: CampaignError) -> HTTPException:
    """Map a domain error onto its HTTP status (500 when unmapped)."""
    if isinstance(exc, ImportValidationError):
        return _error(400, exc.message, exc.error_code, errors=exc.errors)
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return _error(status_code, exc.message, exc.error_code)
    return _error(500, "Internal error", exc.error_code)


def parse_error_to_http(exc: ParseError) -> HTTPException:
    status_code = 413 if exc.error_code == "file_too_large" else 400
    return _error(status_code, exc.message, exc.error_code)
