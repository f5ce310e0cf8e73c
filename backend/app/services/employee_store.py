"""
Employee/asset record store backed by Supabase (PostgreSQL via PostgREST).

Tables (see supabase/migrations/0001_asset_verification.sql):

  employees   one row per internet_email (unique), campaign flags, and the
              form_submitted_at single-use marker.
  assets      one row per physical asset, FK to employees with ON DELETE
              CASCADE, serial_number unique across the table.

Assets are rows, not an array column, so appending new assets is an INSERT
and never a read-modify-write of the whole set: two concurrent imports for the
same employee cannot lose each other's assets, and the unique constraint on
serial_number rejects a racing duplicate instead of storing it twice.

Rows are returned as plain dicts; employee rows carry their assets under the
"assets" key, ordered by position.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from app.models.employee import Track
from app.services.errors import DuplicateKey, NotFound, StoreError

logger = logging.getLogger(__name__)

EMPLOYEES = "employees"
ASSETS = "assets"

_EMPLOYEE_WITH_ASSETS = "*, assets(*)"

# PostgREST requires a filter on DELETE; no row has the nil uuid.
_NIL_UUID = "00000000-0000-0000-0000-000000000000"

_UNIQUE_VIOLATION = "23505"

# PostgREST rejections and transport failures (timeouts, resets) on the way there.
_DB_ERRORS = (APIError, httpx.HTTPError)

# track -> (flag column, timestamp column)
TRACK_COLUMNS: dict[Track, tuple[str, str]] = {
    Track.EMPLOYEE: ("email_sent", "last_email_sent_at"),
    Track.MANAGER: ("manager_email_sent", "last_manager_email_sent_at"),
}

# Employee columns an administrator may edit directly.
EDITABLE_EMPLOYEE_FIELDS = {
    "manager_email",
    "email_sent",
    "last_email_sent_at",
    "manager_email_sent",
    "last_manager_email_sent_at",
    "form_submitted_at",
}

# Asset columns an administrator may edit; serial_number is the identity key.
EDITABLE_ASSET_FIELDS = {
    "itam_organization",
    "asset_id",
    "manufacturer_name",
    "model_version",
    "building",
    "location_id",
    "department",
    "employee_id_code",
    "manager_employee_id",
    "manager_email_id",
    "asset_condition",
    "form_opened",
    "serial_number_entered",
    "manufacturer_name_entered",
    "model_version_entered",
    "asset_condition_entered",
    "reconciliation_status",
}


def normalize_email(email: str) -> str:
    """Canonical form of an email identity key."""
    return (email or "").strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Union[datetime, str, None]) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _with_sorted_assets(row: dict) -> dict:
    row = dict(row)
    row["assets"] = sorted(row.get("assets") or [], key=lambda a: a.get("position") or 0)
    return row


def _translate(exc: Exception, context: str) -> Exception:
    """Map a PostgREST or transport error onto the domain taxonomy."""
    if isinstance(exc, APIError) and exc.code == _UNIQUE_VIOLATION:
        return DuplicateKey(f"{context}: {exc.message}")
    logger.error(f"{context} failed: {getattr(exc, 'message', None) or exc!r}")
    return StoreError(f"{context} failed")


class EmployeeStore:
    """Record store for employees and their assets."""

    def __init__(self, client: Client):
        self.client = client

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _first_employee(self, column: str, value: Any) -> Optional[dict]:
        try:
            result = (
                self.client.table(EMPLOYEES)
                .select(_EMPLOYEE_WITH_ASSETS)
                .eq(column, value)
                .limit(1)
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Employee lookup")
        if not result.data:
            return None
        return _with_sorted_assets(result.data[0])

    def get_employee(self, employee_id: str) -> Optional[dict]:
        return self._first_employee("id", employee_id)

    def find_by_email(self, email: str) -> Optional[dict]:
        return self._first_employee("internet_email", normalize_email(email))

    def find_by_serial(self, serial_number: str) -> Optional[dict]:
        """Return the employee holding the asset with this serial number."""
        try:
            result = (
                self.client.table(ASSETS)
                .select("employee_id")
                .eq("serial_number", serial_number)
                .limit(1)
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Asset lookup")
        if not result.data:
            return None
        return self.get_employee(result.data[0]["employee_id"])

    def list_employees(self) -> list[dict]:
        try:
            result = (
                self.client.table(EMPLOYEES)
                .select(_EMPLOYEE_WITH_ASSETS)
                .order("internet_email")
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Employee listing")
        return [_with_sorted_assets(row) for row in result.data or []]

    # ------------------------------------------------------------------
    # Import writes
    # ------------------------------------------------------------------

    def _insert_assets(self, employee_id: str, assets: list[dict], start: int) -> list[dict]:
        rows = [
            {**asset, "employee_id": employee_id, "position": start + i, "timestamp": _now_iso()}
            for i, asset in enumerate(assets)
        ]
        try:
            result = self.client.table(ASSETS).insert(rows).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Asset insert")
        return result.data or []

    def create_employee(self, fields: dict, assets: list[dict]) -> dict:
        """
        Create an employee together with its initial assets.

        Raises DuplicateKey if the email already exists or a serial number is
        already held by another employee.  In the latter case the employee row
        is removed again so no asset-less employee is left behind.
        """
        payload = {**fields, "internet_email": normalize_email(fields["internet_email"])}
        try:
            result = self.client.table(EMPLOYEES).insert(payload).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, f"Create employee {payload['internet_email']}")
        if not result.data:
            raise StoreError("Create employee returned no row")

        employee = result.data[0]
        try:
            employee["assets"] = self._insert_assets(employee["id"], assets, 0) if assets else []
        except (DuplicateKey, StoreError):
            try:
                self.client.table(EMPLOYEES).delete().eq("id", employee["id"]).execute()
            except _DB_ERRORS as cleanup_exc:
                logger.error(
                    f"Could not remove employee {employee['id']} after failed asset insert: {cleanup_exc!r}"
                )
            raise
        return employee

    def append_assets(self, employee_id: str, assets: list[dict], start_position: int = 0) -> list[dict]:
        """
        Append new assets to an existing employee.

        Existing asset rows are never touched.  A serial number inserted
        concurrently by another writer is rejected by the unique constraint
        and surfaces as DuplicateKey.
        """
        if not assets:
            return []
        return self._insert_assets(employee_id, assets, start_position)

    # ------------------------------------------------------------------
    # Campaign flags
    # ------------------------------------------------------------------

    def _unsent_query(self, query, track: Track):
        flag, _ = TRACK_COLUMNS[track]
        query = query.eq(flag, False)
        if track == Track.MANAGER:
            query = query.not_.is_("manager_email", "null")
        return query

    def select_unsent(self, track: Union[Track, str], limit: int) -> list[dict]:
        track = Track(track)
        query = self.client.table(EMPLOYEES).select(_EMPLOYEE_WITH_ASSETS)
        try:
            result = self._unsent_query(query, track).order("internet_email").limit(limit).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Unsent selection")
        return [_with_sorted_assets(row) for row in result.data or []]

    def count_unsent(self, track: Union[Track, str]) -> int:
        track = Track(track)
        query = self.client.table(EMPLOYEES).select("id", count="exact")
        try:
            result = self._unsent_query(query, track).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Unsent count")
        return result.count or 0

    def mark_sent(self, employee_id: str, track: Union[Track, str], sent_at: datetime) -> None:
        flag, stamp = TRACK_COLUMNS[Track(track)]
        try:
            self.client.table(EMPLOYEES).update(
                {flag: True, stamp: sent_at.isoformat(), "updated_at": _now_iso()}
            ).eq("id", employee_id).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Mark sent")

    def reset_track(self, track: Union[Track, str]) -> int:
        """Set the track's flag back to false on every employee."""
        flag, _ = TRACK_COLUMNS[Track(track)]
        try:
            result = self.client.table(EMPLOYEES).update({flag: False}).eq(flag, True).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Reset flags")
        return len(result.data or [])

    def latest_sent_at(self, track: Union[Track, str]) -> Optional[str]:
        _, stamp = TRACK_COLUMNS[Track(track)]
        try:
            result = (
                self.client.table(EMPLOYEES)
                .select(stamp)
                .not_.is_(stamp, "null")
                .order(stamp, desc=True)
                .limit(1)
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Latest sent lookup")
        if not result.data:
            return None
        return result.data[0][stamp]

    # ------------------------------------------------------------------
    # Admin edits
    # ------------------------------------------------------------------

    def update_employee(self, employee_id: str, fields: dict) -> dict:
        """
        Apply an admin edit.  Unknown or identity fields are rejected.

        Raises:
            ValueError: a field outside EDITABLE_EMPLOYEE_FIELDS was given.
            NotFound: no employee with that id.
        """
        unknown = set(fields) - EDITABLE_EMPLOYEE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        payload = {key: _iso(value) for key, value in fields.items()}
        if "manager_email" in payload and payload["manager_email"]:
            payload["manager_email"] = normalize_email(payload["manager_email"])
        payload["updated_at"] = _now_iso()
        try:
            result = self.client.table(EMPLOYEES).update(payload).eq("id", employee_id).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Update employee")
        if not result.data:
            raise NotFound(f"Employee {employee_id} not found")
        return self.get_employee(employee_id) or result.data[0]

    def update_asset(self, employee_id: str, asset_id: str, fields: dict) -> dict:
        """
        Apply an admin edit to one asset of one employee.

        Raises:
            ValueError: a field outside EDITABLE_ASSET_FIELDS was given.
            NotFound: the employee has no asset with that id.
        """
        unknown = set(fields) - EDITABLE_ASSET_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        try:
            result = (
                self.client.table(ASSETS)
                .update(fields)
                .eq("id", asset_id)
                .eq("employee_id", employee_id)
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Update asset")
        if not result.data:
            raise NotFound(f"Asset {asset_id} not found for employee {employee_id}")
        return result.data[0]

    def delete_employee(self, employee_id: str) -> bool:
        try:
            result = self.client.table(EMPLOYEES).delete().eq("id", employee_id).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Delete employee")
        return bool(result.data)

    def delete_all(self) -> int:
        """Delete every employee; assets go with them via ON DELETE CASCADE."""
        try:
            result = self.client.table(EMPLOYEES).delete().neq("id", _NIL_UUID).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Delete all employees")
        return len(result.data or [])

    # ------------------------------------------------------------------
    # Verification form
    # ------------------------------------------------------------------

    def mark_form_opened(self, employee_id: str) -> None:
        """Set form_opened="Yes" on every asset of the employee."""
        try:
            self.client.table(ASSETS).update({"form_opened": "Yes"}).eq("employee_id", employee_id).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Mark form opened")

    def claim_submission(self, employee_id: str, at: datetime) -> bool:
        """
        Atomically set form_submitted_at if it is still null.

        Returns False when another submission already holds the claim.
        """
        try:
            result = (
                self.client.table(EMPLOYEES)
                .update({"form_submitted_at": at.isoformat(), "updated_at": _now_iso()})
                .eq("id", employee_id)
                .is_("form_submitted_at", "null")
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Claim submission")
        return bool(result.data)

    def release_submission(self, employee_id: str) -> None:
        try:
            self.client.table(EMPLOYEES).update({"form_submitted_at": None}).eq(
                "id", employee_id
            ).execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Release submission")

    def save_assets(self, rows: Iterable[dict]) -> list[dict]:
        """
        Write a set of full asset rows in a single upsert.

        PostgREST runs the upsert as one statement, so either every row is
        written or none is.
        """
        rows = list(rows)
        if not rows:
            return []
        try:
            result = self.client.table(ASSETS).upsert(rows, on_conflict="id").execute()
        except _DB_ERRORS as exc:
            raise _translate(exc, "Save assets")
        return result.data or []

    def submit_single_asset(self, asset_id: str, fields: dict) -> bool:
        """
        Write submission fields to one asset if it has not been reconciled yet.

        The null check and the write are the same UPDATE statement.
        """
        try:
            result = (
                self.client.table(ASSETS)
                .update(fields)
                .eq("id", asset_id)
                .is_("reconciliation_status", "null")
                .execute()
            )
        except _DB_ERRORS as exc:
            raise _translate(exc, "Submit asset")
        return bool(result.data)
