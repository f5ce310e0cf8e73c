"""
Bulk import router.

Endpoints:
  POST /bulk-upload   — validate and merge an employee/asset spreadsheet
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from app.auth import get_current_admin
from app.db import get_employee_store
from app.models.employee import ImportSummary
from app.routers.errors import _error, parse_error_to_http, to_http
from app.services.asset_import import import_upload
from app.services.employee_store import EmployeeStore
from app.services.errors import CampaignError
from app.services.spreadsheet_parser import MAX_FILE_SIZE_BYTES, ParseError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/bulk-upload",
    response_model=ImportSummary,
    responses={
        400: {"description": "Unreadable file, or header/row validation failed (nothing imported)"},
        401: {"description": "Missing or invalid admin token"},
        413: {"description": "File larger than 10 MB"},
    },
)
async def bulk_upload(
    file: UploadFile = File(...),
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> ImportSummary:
    """
    Import an employee/asset spreadsheet (.csv, .xlsx, .xls).

    Validation is all-or-nothing: any bad header or row rejects the whole
    file with every problem listed.  Past validation, employees are written
    one at a time and per-employee failures are listed in the summary.
    """
    if file.size is not None and file.size > MAX_FILE_SIZE_BYTES:
        raise _error(413, "File exceeds the 10 MB upload limit", "file_too_large")

    file_content = await file.read()
    filename = file.filename or "upload.csv"

    try:
        summary = import_upload(store, file_content, filename)
    except ParseError as exc:
        raise parse_error_to_http(exc)
    except CampaignError as exc:
        raise to_http(exc)

    logger.info(f"Bulk upload of {filename} by {admin} finished")
    return summary
