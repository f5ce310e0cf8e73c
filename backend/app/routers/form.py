"""
Recipient-facing verification form endpoints.  Auth: the form token only.

Endpoints:
  GET  /              — identity + asset count; records that the form was opened
  GET  /asset-count   — asset count only; same side effect
  POST /submit        — submit entered asset details
"""

import logging

from fastapi import APIRouter, Depends, Query

from app.db import get_employee_store
from app.models.employee import AssetCount, FormOpenResult, SubmissionResult, SubmitFormRequest
from app.routers.errors import to_http
from app.services.employee_store import EmployeeStore
from app.services.errors import CampaignError
from app.services.verification import open_form, submit_form

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=FormOpenResult)
async def get_form(
    token: str = Query(...),
    store: EmployeeStore = Depends(get_employee_store),
) -> FormOpenResult:
    try:
        return open_form(store, token)
    except CampaignError as exc:
        raise to_http(exc)


@router.get("/asset-count", response_model=AssetCount)
async def get_asset_count(
    token: str = Query(...),
    store: EmployeeStore = Depends(get_employee_store),
) -> AssetCount:
    try:
        opened = open_form(store, token)
    except CampaignError as exc:
        raise to_http(exc)
    return AssetCount(asset_count=opened.asset_count)


@router.post(
    "/submit",
    response_model=SubmissionResult,
    responses={
        401: {"description": "Token invalid or expired"},
        404: {"description": "Token names no known employee"},
        409: {"description": "Form already submitted"},
        422: {"description": "Submitted items do not match the employee's assets"},
    },
)
async def submit(
    request: SubmitFormRequest,
    store: EmployeeStore = Depends(get_employee_store),
) -> SubmissionResult:
    """Record the entered values and return the per-asset reconciliation."""
    try:
        return submit_form(store, request.token, request.form_details)
    except CampaignError as exc:
        raise to_http(exc)
