"""
Pydantic models for employees and the assets they hold.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field


class Track(str, Enum):
    """The two independent notification campaigns."""
    EMPLOYEE = "employee"
    MANAGER = "manager"


class ReconciliationStatus(str, Enum):
    YES = "Yes"
    NO = "No"


class AssetBase(BaseModel):
    """Ground-truth asset fields as imported from the source system."""
    serial_number: str
    itam_organization: Optional[str] = None
    asset_id: Optional[str] = None
    manufacturer_name: Optional[str] = None
    model_version: Optional[str] = None
    building: Optional[str] = None
    location_id: Optional[str] = None
    department: Optional[str] = None
    employee_id_code: Optional[str] = None  # "employeeId" column; id is the row pk
    manager_employee_id: Optional[str] = None
    manager_email_id: Optional[str] = None
    asset_condition: Optional[str] = None
    form_opened: Optional[str] = None


class Asset(AssetBase):
    """Full asset row from the database."""
    id: str
    employee_id: str
    position: int = 0
    serial_number_entered: Optional[str] = None
    manufacturer_name_entered: Optional[str] = None
    model_version_entered: Optional[str] = None
    asset_condition_entered: Optional[str] = None
    reconciliation_status: Optional[ReconciliationStatus] = None
    timestamp: Optional[datetime] = None

    class Config:
        from_attributes = True


class Employee(BaseModel):
    """Employee aggregate with its nested assets."""
    id: str
    internet_email: str
    manager_email: Optional[str] = None
    email_sent: bool = False
    last_email_sent_at: Optional[datetime] = None
    manager_email_sent: bool = False
    last_manager_email_sent_at: Optional[datetime] = None
    form_submitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assets: List[Asset] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @computed_field  # type: ignore[misc]
    @property
    def form_filled(self) -> bool:
        """True once the employee has submitted the verification form."""
        return self.form_submitted_at is not None


class EmployeeUpdate(BaseModel):
    """
    Admin edit of a single employee.

    ``internet_email`` is the identity key and cannot be changed here.  Unset
    fields are left alone.
    """
    manager_email: Optional[str] = None
    email_sent: Optional[bool] = None
    last_email_sent_at: Optional[datetime] = None
    manager_email_sent: Optional[bool] = None
    last_manager_email_sent_at: Optional[datetime] = None
    form_submitted_at: Optional[datetime] = None


class AssetUpdate(BaseModel):
    """
    Admin correction of a single asset.

    ``serial_number`` is the asset's identity key and cannot be changed here.
    Unset fields are left alone; setting ``reconciliation_status`` to null
    reopens the asset for a serial-link submission.
    """
    itam_organization: Optional[str] = None
    asset_id: Optional[str] = None
    manufacturer_name: Optional[str] = None
    model_version: Optional[str] = None
    building: Optional[str] = None
    location_id: Optional[str] = None
    department: Optional[str] = None
    employee_id_code: Optional[str] = None
    manager_employee_id: Optional[str] = None
    manager_email_id: Optional[str] = None
    asset_condition: Optional[str] = None
    form_opened: Optional[Literal["Yes", "No"]] = None
    serial_number_entered: Optional[str] = None
    manufacturer_name_entered: Optional[str] = None
    model_version_entered: Optional[str] = None
    asset_condition_entered: Optional[str] = None
    reconciliation_status: Optional[ReconciliationStatus] = None


class DashboardStats(BaseModel):
    """Campaign progress counters for the admin dashboard."""
    employees: int
    assets: int
    emails_sent: int
    manager_emails_sent: int
    forms_opened: int
    forms_submitted: int
    reconciled_yes: int
    reconciled_no: int


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class ImportFailure(BaseModel):
    """A staged employee that could not be written."""
    email: str
    error: str
    error_code: str


class ImportSummary(BaseModel):
    """Outcome of a bulk upload that passed validation."""
    employees_created: int = 0
    employees_merged: int = 0
    employees_unchanged: int = 0
    assets_created: int = 0
    duplicates_skipped: int = 0
    failures: List[ImportFailure] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Campaign
# ---------------------------------------------------------------------------

class SendFailure(BaseModel):
    """One recipient the batch could not reach; its flag stays unset."""
    email: str
    error: str


class BatchResult(BaseModel):
    """Outcome of one campaign batch."""
    track: Track
    sent: int
    failed: int
    remaining: int
    failures: List[SendFailure] = Field(default_factory=list)


class RemainingCount(BaseModel):
    track: Track
    remaining: int


class LastSentTimes(BaseModel):
    last_email_sent_at: Optional[datetime] = None
    last_manager_email_sent_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Verification form
# ---------------------------------------------------------------------------

class SubmittedAsset(BaseModel):
    """
    Values entered for one asset.

    The asset is targeted by ``asset_serial`` (its ground-truth serial) or by
    ``index`` into the employee's asset list.  When neither is given the item
    applies to the asset at the same position as the item itself.
    """
    asset_serial: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)
    serial_number_entered: Optional[str] = None
    manufacturer_name_entered: Optional[str] = None
    model_version_entered: Optional[str] = None
    asset_condition_entered: Optional[str] = None


class SubmitFormRequest(BaseModel):
    token: str
    form_details: List[SubmittedAsset]


class AssetReconciliation(BaseModel):
    serial_number: str
    reconciliation_status: ReconciliationStatus
    mismatched_fields: List[str] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    accepted: bool
    results: List[AssetReconciliation] = Field(default_factory=list)


class FormOpenResult(BaseModel):
    name: str
    email: str
    asset_count: int


class AssetCount(BaseModel):
    asset_count: int

