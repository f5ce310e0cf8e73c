"""
Employee record management (admin dashboard).

Endpoints:
  GET    /dashboard     — every employee with assets
  GET    /stats         — campaign progress counters
  DELETE /delete-all    — remove every employee and asset
  DELETE /{employee_id} — remove one employee and its assets
  PUT    /{employee_id} — edit campaign fields of one employee
  PUT    /{employee_id}/assets/{asset_id} — correct one asset of one employee
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from app.auth import get_current_admin
from app.db import get_employee_store
from app.models.employee import Asset, AssetUpdate, DashboardStats, Employee, EmployeeUpdate
from app.routers.errors import _error, to_http
from app.services.employee_store import EmployeeStore
from app.services.errors import CampaignError

logger = logging.getLogger(__name__)

router = APIRouter()


def compute_stats(employees: list[dict]) -> DashboardStats:
    """Aggregate dashboard counters from employee rows with nested assets."""
    assets = [a for e in employees for a in e.get("assets") or []]
    return DashboardStats(
        employees=len(employees),
        assets=len(assets),
        emails_sent=sum(1 for e in employees if e.get("email_sent")),
        manager_emails_sent=sum(1 for e in employees if e.get("manager_email_sent")),
        forms_opened=sum(
            1 for e in employees if any(a.get("form_opened") == "Yes" for a in e.get("assets") or [])
        ),
        forms_submitted=sum(1 for e in employees if e.get("form_submitted_at")),
        reconciled_yes=sum(1 for a in assets if a.get("reconciliation_status") == "Yes"),
        reconciled_no=sum(1 for a in assets if a.get("reconciliation_status") == "No"),
    )


@router.get("/dashboard", response_model=List[Employee])
async def get_dashboard(
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> List[Employee]:
    try:
        return [Employee(**row) for row in store.list_employees()]
    except CampaignError as exc:
        raise to_http(exc)


@router.get("/stats", response_model=DashboardStats)
async def get_stats(
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> DashboardStats:
    try:
        return compute_stats(store.list_employees())
    except CampaignError as exc:
        raise to_http(exc)


@router.delete("/delete-all")
async def delete_all_employees(
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
):
    """Delete every record.  Immediate and irreversible."""
    try:
        deleted = store.delete_all()
    except CampaignError as exc:
        raise to_http(exc)
    logger.warning(f"{admin} deleted all {deleted} employee records")
    return {"deleted": deleted}


@router.delete("/{employee_id}")
async def delete_employee(
    employee_id: str,
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
):
    try:
        deleted = store.delete_employee(employee_id)
    except CampaignError as exc:
        raise to_http(exc)
    if not deleted:
        raise _error(404, "Employee not found", "not_found")
    logger.info(f"{admin} deleted employee {employee_id}")
    return {"deleted": 1}


@router.put("/{employee_id}", response_model=Employee)
async def update_employee(
    employee_id: str,
    update: EmployeeUpdate,
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> Employee:
    fields = update.model_dump(exclude_unset=True)
    if not fields:
        raise _error(422, "No fields to update", "invalid_update")
    try:
        row = store.update_employee(employee_id, fields)
    except ValueError as exc:
        raise _error(422, str(exc), "invalid_update")
    except CampaignError as exc:
        raise to_http(exc)
    return Employee(**row)


@router.put("/{employee_id}/assets/{asset_id}", response_model=Asset)
async def update_asset(
    employee_id: str,
    asset_id: str,
    update: AssetUpdate,
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> Asset:
    """Correct ground truth, entered values or reconciliation status of one asset."""
    fields = update.model_dump(mode="json", exclude_unset=True)
    if not fields:
        raise _error(422, "No fields to update", "invalid_update")
    try:
        row = store.update_asset(employee_id, asset_id, fields)
    except ValueError as exc:
        raise _error(422, str(exc), "invalid_update")
    except CampaignError as exc:
        raise to_http(exc)
    logger.info(f"{admin} edited asset {asset_id} of employee {employee_id}")
    return Asset(**row)
