"""
Domain exceptions for the verification campaign.

Every exception carries a machine-readable ``error_code`` alongside the
human-readable message, the same pattern the spreadsheet parser uses for
``ParseError``.  Routers translate these into structured HTTP errors; services
never raise ``HTTPException`` themselves.
"""

from typing import Optional


class CampaignError(Exception):
    """Base class for all domain errors raised by the service layer."""

    error_code = "campaign_error"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class NotFound(CampaignError):
    """An employee or asset id does not exist."""

    error_code = "not_found"


class EmployeeNotFound(NotFound):
    """A verification token resolved to an identifier with no employee."""

    error_code = "employee_not_found"


class DuplicateKey(CampaignError):
    """A write would violate the unique email / serial number constraints."""

    error_code = "duplicate_key"


class StoreError(CampaignError):
    """The database rejected or failed a request."""

    error_code = "store_error"


class TokenInvalid(CampaignError):
    """Bad signature, malformed token, or a token minted for another purpose."""

    error_code = "token_invalid"


class TokenExpired(CampaignError):
    """The token was valid but its ``exp`` claim is in the past."""

    error_code = "token_expired"


class AlreadySubmitted(CampaignError):
    """The verification form for this employee (or asset) was already filled."""

    error_code = "already_submitted"


class InvalidSubmission(CampaignError):
    """The submission payload does not target the employee's assets."""

    error_code = "invalid_submission"


class TransportFailure(CampaignError):
    """A single notification could not be handed to the mail server."""

    error_code = "transport_failure"


class ConfigurationError(CampaignError):
    """A required environment variable is missing."""

    error_code = "configuration_error"


class ImportValidationError(CampaignError):
    """
    Raised when an upload fails header or row validation.

    ``errors`` holds every problem found, one dict per problem:
    ``{"row": <spreadsheet line>, "column": <header or None>, "error": <text>}``.
    Nothing is persisted when this is raised.
    """

    error_code = "validation_failed"

    def __init__(self, errors: list[dict]):
        super().__init__(f"Upload failed validation with {len(errors)} error(s)")
        self.errors = errors
