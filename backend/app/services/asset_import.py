"""
Bulk import of employee/asset spreadsheets.

Each spreadsheet row describes one asset assigned to one employee, identified
by the ``internetEmail`` column.  Uploads are expected to arrive in waves
(corrected sheets, one campus at a time), so importing is additive and
idempotent:

  1. The header and every row are validated before anything is written.  Any
     problem aborts the whole upload with the full list of problems.
  2. Rows are grouped by employee email; a serial number repeated within the
     upload is skipped after its first occurrence.
  3. Unknown employees are created with their staged assets.  Known employees
     receive only the assets whose serial numbers they do not already hold;
     existing assets and campaign state are never modified.
  4. Writes happen employee by employee.  A database failure for one employee
     is reported and does not undo or stop the others.

Public API:
  import_table(store, table)                    -> ImportSummary
  import_upload(store, file_content, filename)  -> ImportSummary
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from app.models.employee import ImportFailure, ImportSummary
from app.services.employee_store import EmployeeStore, normalize_email
from app.services.errors import DuplicateKey, ImportValidationError, StoreError
from app.services.spreadsheet_parser import Table, TableRow, read_table

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ---------------------------------------------------------------------------
# Column schema
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Column:
    """How one spreadsheet header maps onto a stored field."""
    header: str
    field: str
    target: str               # "employee" or "asset"
    kind: str = "text"        # text | email | bool | timestamp | yes_no
    required: bool = False


COLUMN_SCHEMA: tuple[Column, ...] = (
    Column("internetEmail", "internet_email", "employee", "email", required=True),
    Column("serialNumber", "serial_number", "asset", required=True),
    Column("itamOrganization", "itam_organization", "asset"),
    Column("assetId", "asset_id", "asset"),
    Column("manufacturerName", "manufacturer_name", "asset"),
    Column("modelVersion", "model_version", "asset"),
    Column("building", "building", "asset"),
    Column("locationId", "location_id", "asset"),
    Column("department", "department", "asset"),
    Column("employeeId", "employee_id_code", "asset"),
    Column("managerEmployeeId", "manager_employee_id", "asset"),
    Column("managerEmailId", "manager_email_id", "asset", "email"),
    Column("assetCondition", "asset_condition", "asset"),
    Column("formOpened", "form_opened", "asset", "yes_no"),
    # Campaign state, honoured only when the employee is first created.
    Column("emailSent", "email_sent", "employee", "bool"),
    Column("lastEmailSentAt", "last_email_sent_at", "employee", "timestamp"),
    Column("managerEmailSent", "manager_email_sent", "employee", "bool"),
    Column("lastManagerEmailSentAt", "last_manager_email_sent_at", "employee", "timestamp"),
)

REQUIRED_HEADERS = [c.header for c in COLUMN_SCHEMA if c.required]

_SCHEMA_BY_HEADER = {c.header.lower(): c for c in COLUMN_SCHEMA}


# ---------------------------------------------------------------------------
# Staging structures
# ---------------------------------------------------------------------------

@dataclass
class StagedEmployee:
    """All assets staged for one employee email in a single upload."""
    email: str
    fields: dict
    assets: list[dict] = field(default_factory=list)
    serials: set[str] = field(default_factory=set)

    @property
    def manager_email(self) -> Optional[str]:
        for asset in self.assets:
            if asset.get("manager_email_id"):
                return asset["manager_email_id"]
        return None


# ---------------------------------------------------------------------------
# Cell conversion
# ---------------------------------------------------------------------------

def _parse_bool(value: str) -> bool:
    """Only the literal "true" counts as true."""
    return value.strip().lower() == "true"


def _parse_timestamp(value: str) -> datetime:
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_yes_no(value: str) -> Optional[str]:
    s = value.strip().lower()
    if s in ("yes", "y", "true"):
        return "Yes"
    if s in ("no", "n", "false"):
        return "No"
    return None


def _convert(column: Column, raw: str, line: int, errors: list[dict]):
    """Convert one cell, appending to ``errors`` instead of raising."""
    value = raw.strip()

    if column.kind == "email":
        if not value:
            if column.required:
                errors.append({"row": line, "column": column.header, "error": f"{column.header} is required"})
            return None
        if not EMAIL_PATTERN.match(value):
            errors.append({
                "row": line,
                "column": column.header,
                "error": f"'{value}' is not a valid email address",
            })
            return None
        return normalize_email(value)

    if column.kind == "bool":
        return _parse_bool(value)

    if column.kind == "timestamp":
        if not value:
            return None
        try:
            return _parse_timestamp(value).isoformat()
        except ValueError:
            errors.append({
                "row": line,
                "column": column.header,
                "error": f"'{value}' is not an ISO timestamp",
            })
            return None

    if column.kind == "yes_no":
        return _parse_yes_no(value) if value else None

    if not value:
        if column.required:
            errors.append({"row": line, "column": column.header, "error": f"{column.header} is required"})
        return None
    return value


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _resolve_header(table: Table) -> dict[str, Column]:
    """
    Map the sheet's actual headers onto the schema (case-insensitive).

    Raises ImportValidationError listing every missing required header.
    """
    resolved: dict[str, Column] = {}
    for name in table.columns:
        column = _SCHEMA_BY_HEADER.get(name.strip().lower())
        if column is None:
            logger.debug(f"Ignoring unknown column '{name}'")
            continue
        resolved.setdefault(name, column)

    present = {c.header for c in resolved.values()}
    missing = [h for h in REQUIRED_HEADERS if h not in present]
    if missing:
        raise ImportValidationError([
            {"row": table.header_line, "column": h, "error": f"Missing required column '{h}'"}
            for h in missing
        ])
    return resolved


def _validate_row(row: TableRow, header: dict[str, Column], errors: list[dict]) -> tuple[dict, dict]:
    employee_fields: dict = {}
    asset: dict = {}
    for name, column in header.items():
        value = _convert(column, row.values.get(name, ""), row.line, errors)
        target = employee_fields if column.target == "employee" else asset
        target[column.field] = value
    return employee_fields, asset


def validate_table(table: Table) -> list[tuple[TableRow, dict, dict]]:
    """
    Validate a whole upload without touching the store.

    Returns (row, employee_fields, asset_fields) triples.

    Raises:
        ImportValidationError: with every header and row problem found.
    """
    header = _resolve_header(table)
    errors: list[dict] = []
    validated = []
    for row in table.rows:
        employee_fields, asset = _validate_row(row, header, errors)
        validated.append((row, employee_fields, asset))

    if errors:
        raise ImportValidationError(errors)
    return validated


def stage_rows(validated: list[tuple[TableRow, dict, dict]]) -> tuple[dict[str, StagedEmployee], int]:
    """
    Group validated rows by employee email, first serial occurrence wins.

    Returns (staged employees keyed by email in upload order, duplicates skipped).
    """
    staged: dict[str, StagedEmployee] = {}
    duplicates = 0
    for row, employee_fields, asset in validated:
        email = employee_fields["internet_email"]
        group = staged.get(email)
        if group is None:
            group = StagedEmployee(email=email, fields=employee_fields)
            staged[email] = group

        serial = asset["serial_number"]
        if serial in group.serials:
            logger.info(f"Row {row.line}: duplicate serial {serial} for {email} skipped")
            duplicates += 1
            continue
        group.serials.add(serial)
        group.assets.append(asset)
    return staged, duplicates


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _new_employee_fields(group: StagedEmployee) -> dict:
    fields = {
        "internet_email": group.email,
        "manager_email": group.manager_email,
    }
    for key in ("email_sent", "last_email_sent_at", "manager_email_sent", "last_manager_email_sent_at"):
        if key in group.fields:
            fields[key] = group.fields[key]
    return fields


def _merge_group(store: EmployeeStore, group: StagedEmployee, summary: ImportSummary) -> None:
    existing = store.find_by_email(group.email)

    if existing is None:
        created = store.create_employee(_new_employee_fields(group), group.assets)
        summary.employees_created += 1
        summary.assets_created += len(created.get("assets") or group.assets)
        return

    if not existing.get("manager_email") and group.manager_email:
        store.update_employee(existing["id"], {"manager_email": group.manager_email})

    existing_assets = existing.get("assets") or []
    held = {a["serial_number"] for a in existing_assets}
    new_assets = [a for a in group.assets if a["serial_number"] not in held]
    if not new_assets:
        summary.employees_unchanged += 1
        return

    store.append_assets(existing["id"], new_assets, start_position=len(existing_assets))
    summary.employees_merged += 1
    summary.assets_created += len(new_assets)


def import_table(store: EmployeeStore, table: Table) -> ImportSummary:
    """
    Validate, stage and merge a parsed upload into the store.

    Raises:
        ImportValidationError: before any write, if the upload is malformed.
    """
    validated = validate_table(table)
    staged, duplicates = stage_rows(validated)

    summary = ImportSummary(duplicates_skipped=duplicates)
    for group in staged.values():
        try:
            _merge_group(store, group, summary)
        except (DuplicateKey, StoreError) as exc:
            logger.warning(f"Import of {group.email} failed: {exc.message}")
            summary.failures.append(
                ImportFailure(email=group.email, error=exc.message, error_code=exc.error_code)
            )
        except Exception as exc:
            logger.error(f"Import of {group.email} failed unexpectedly: {exc}", exc_info=True)
            summary.failures.append(
                ImportFailure(email=group.email, error="Unexpected error", error_code=StoreError.error_code)
            )

    logger.info(
        f"Import finished: {summary.employees_created} created, "
        f"{summary.employees_merged} merged, {summary.employees_unchanged} unchanged, "
        f"{summary.assets_created} assets added, {len(summary.failures)} failed"
    )
    return summary


def import_upload(store: EmployeeStore, file_content: bytes, filename: str) -> ImportSummary:
    """Read an uploaded spreadsheet and import it."""
    return import_table(store, read_table(file_content, filename))
