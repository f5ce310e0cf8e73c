"""
Verification form handling: opening the form and submitting it.

A form token names either an employee email (the normal link) or a single
asset serial number (the older per-asset link).  Submission:

  1. verifies the token (TokenInvalid / TokenExpired, no state change)
  2. resolves it to an employee (EmployeeNotFound)
  3. pairs each submitted item with one of the employee's assets
  4. refuses if the form was already filled (AlreadySubmitted)
  5. overwrites the *_entered fields, stamps the asset, and reconciles all four
     ground-truth fields against what was entered
  6. writes every touched asset in one request

Single submission is a store invariant, not a token property.  For email
tokens the employee's form_submitted_at is claimed with a conditional update
before the assets are written; if the asset write fails the claim is released
so the employee can try again.  For serial tokens the asset's own
reconciliation_status is the marker and the conditional update that checks it
is the same statement that writes the submission.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from app.models.employee import (
    AssetReconciliation,
    FormOpenResult,
    ReconciliationStatus,
    SubmissionResult,
    SubmittedAsset,
)
from app.services.employee_store import EmployeeStore
from app.services.errors import (
    AlreadySubmitted,
    EmployeeNotFound,
    InvalidSubmission,
    StoreError,
)
from app.services.mail_template import display_name
from app.services.tokens import KIND_SERIAL, FormTokenClaims, verify_form_token

logger = logging.getLogger(__name__)

# (ground-truth column, entered column) pairs compared during reconciliation.
RECONCILED_FIELDS: tuple[tuple[str, str], ...] = (
    ("serial_number", "serial_number_entered"),
    ("manufacturer_name", "manufacturer_name_entered"),
    ("model_version", "model_version_entered"),
    ("asset_condition", "asset_condition_entered"),
)

_ENTERED_FIELDS = [entered for _, entered in RECONCILED_FIELDS]


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


def reconcile(asset: dict) -> tuple[ReconciliationStatus, list[str]]:
    """
    Compare an asset's ground truth against its entered values.

    Returns ("Yes", []) when every compared field matches (trimmed,
    case-insensitive), otherwise ("No", [mismatched ground-truth columns]).
    """
    mismatched = [
        truth
        for truth, entered in RECONCILED_FIELDS
        if _normalize(asset.get(truth)) != _normalize(asset.get(entered))
    ]
    status = ReconciliationStatus.NO if mismatched else ReconciliationStatus.YES
    return status, mismatched


def _resolve(store: EmployeeStore, claims: FormTokenClaims) -> tuple[dict, list[dict]]:
    """Return the employee and the assets the token grants access to."""
    if claims.kind == KIND_SERIAL:
        employee = store.find_by_serial(claims.identifier)
        if employee is None:
            raise EmployeeNotFound("Employee not found")
        assets = [a for a in employee["assets"] if a["serial_number"] == claims.identifier]
        return employee, assets

    employee = store.find_by_email(claims.identifier)
    if employee is None:
        raise EmployeeNotFound("Employee not found")
    return employee, employee["assets"]


def _already_submitted(employee: dict, assets: list[dict], claims: FormTokenClaims) -> bool:
    if claims.kind == KIND_SERIAL:
        return any(a.get("reconciliation_status") for a in assets)
    return bool(employee.get("form_submitted_at"))


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------

def open_form(store: EmployeeStore, token: str) -> FormOpenResult:
    """
    Resolve a form link and record that the recipient opened it.

    Every asset of the employee is marked opened, for serial links too.
    Marking form_opened is best effort: a store failure is logged and the form
    is still served.
    """
    claims = verify_form_token(token)
    employee, assets = _resolve(store, claims)
    if _already_submitted(employee, assets, claims):
        raise AlreadySubmitted("Form already submitted")

    try:
        store.mark_form_opened(employee["id"])
    except StoreError as exc:
        logger.warning(f"Could not mark form opened for employee {employee['id']}: {exc.message}")

    email = employee["internet_email"]
    return FormOpenResult(name=display_name(email), email=email, asset_count=len(assets))


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------

def _pair_items(assets: list[dict], items: list[SubmittedAsset]) -> list[tuple[dict, SubmittedAsset]]:
    """
    Match submitted items to assets by serial, explicit index, or position.

    Raises InvalidSubmission for unknown targets or two items on one asset.
    """
    by_serial = {a["serial_number"]: a for a in assets}
    pairs: list[tuple[dict, SubmittedAsset]] = []
    seen: set[str] = set()

    for position, item in enumerate(items):
        if item.asset_serial is not None:
            asset = by_serial.get(item.asset_serial)
            if asset is None:
                raise InvalidSubmission(f"Unknown asset '{item.asset_serial}'")
        else:
            idx = item.index if item.index is not None else position
            if idx >= len(assets):
                raise InvalidSubmission(f"No asset at position {idx}")
            asset = assets[idx]

        if asset["id"] in seen:
            raise InvalidSubmission(f"Asset '{asset['serial_number']}' submitted twice")
        seen.add(asset["id"])
        pairs.append((asset, item))
    return pairs


def _apply(asset: dict, item: SubmittedAsset, now: datetime) -> tuple[dict, AssetReconciliation]:
    updated = dict(asset)
    for entered in _ENTERED_FIELDS:
        updated[entered] = getattr(item, entered)
    updated["timestamp"] = now.isoformat()

    status, mismatched = reconcile(updated)
    updated["reconciliation_status"] = status.value
    return updated, AssetReconciliation(
        serial_number=asset["serial_number"],
        reconciliation_status=status,
        mismatched_fields=mismatched,
    )


def submit_form(
    store: EmployeeStore,
    token: str,
    items: list[SubmittedAsset],
    now: Optional[datetime] = None,
) -> SubmissionResult:
    """
    Record a verification form submission.

    Raises:
        TokenInvalid, TokenExpired: token rejected, nothing changed.
        EmployeeNotFound: token names no known employee/asset.
        InvalidSubmission: empty payload or items that do not match assets.
        AlreadySubmitted: the form was filled before; nothing changed.
        StoreError: the write failed; nothing was kept.
    """
    claims = verify_form_token(token)
    if not items:
        raise InvalidSubmission("No asset details submitted")

    employee, assets = _resolve(store, claims)
    if _already_submitted(employee, assets, claims):
        raise AlreadySubmitted("Form already submitted")

    now = now or datetime.now(timezone.utc)
    pairs = _pair_items(assets, items)
    applied = [_apply(asset, item, now) for asset, item in pairs]
    rows = [row for row, _ in applied]
    results = [result for _, result in applied]

    if claims.kind == KIND_SERIAL:
        row = rows[0]
        fields = {key: row[key] for key in (*_ENTERED_FIELDS, "reconciliation_status", "timestamp")}
        if not store.submit_single_asset(row["id"], fields):
            logger.info(f"Duplicate submission for asset {row['serial_number']} rejected")
            raise AlreadySubmitted("Form already submitted")
        return SubmissionResult(accepted=True, results=results)

    if not store.claim_submission(employee["id"], now):
        logger.info(f"Duplicate submission for {employee['internet_email']} rejected")
        raise AlreadySubmitted("Form already submitted")

    try:
        store.save_assets(rows)
    except Exception:
        store.release_submission(employee["id"])
        raise

    logger.info(
        f"Form submitted for {employee['internet_email']}: "
        f"{sum(r.reconciliation_status == ReconciliationStatus.YES for r in results)}/{len(results)} reconciled"
    )
    return SubmissionResult(accepted=True, results=results)
