# hostelmate/schemas/leave.py

from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from uuid import UUID
from datetime import date, datetime

from hostelmate.models.enums import CredentialPurpose, LeaveStatus, LeaveType


# ============================================================
# STUDENT -> submit a leave application
# ============================================================
class EmergencyContact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    relation: Optional[str] = None


class LeaveCreate(BaseModel):
    leave_type: LeaveType
    from_date: date
    to_date: date
    reason: str
    emergency_contact: Optional[EmergencyContact] = None


# ============================================================
# LEAVE READ (student / admin)
# ============================================================
class LeaveRead(BaseModel):
    id: UUID
    student_id: UUID
    leave_type: LeaveType
    from_date: date
    to_date: date
    total_days: int
    reason: str
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relation: Optional[str] = None
    status: LeaveStatus
    admin_comments: Optional[str] = None
    decided_by: Optional[UUID] = None
    decided_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MyLeavesResponse(BaseModel):
    leave_applications: List[LeaveRead]
    total_count: int
    statistics: Dict[str, int]
    leave_balance: int


class LeaveListResponse(BaseModel):
    leave_applications: List[LeaveRead]
    total_count: int
    page: int
    limit: int
    total_pages: int
    has_more: bool


class LeaveStatistics(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    this_month: int
    this_year: int
    by_type: Dict[str, int]


class LeaveCalendarResponse(BaseModel):
    year: int
    month: Optional[int] = None
    leave_applications: List[LeaveRead]


# ============================================================
# QR CREDENTIALS
# ============================================================
class LeaveCredentialRead(BaseModel):
    purpose: CredentialPurpose
    code: str
    qr_image: Optional[str] = None  # data:image/png;base64,...
    valid_from: datetime
    valid_until: datetime
    used: bool
    used_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LeaveQRCodesResponse(BaseModel):
    leave_application_id: UUID
    leave_type: LeaveType
    from_date: date
    to_date: date
    exit_qr_code: LeaveCredentialRead
    entry_qr_code: LeaveCredentialRead


# ============================================================
# ADMIN DECISIONS
# ============================================================
class LeaveDecisionRequest(BaseModel):
    admin_comments: Optional[str] = None


class LeaveApprovalResponse(BaseModel):
    leave_application: LeaveRead
    exit_qr_code: LeaveCredentialRead
    entry_qr_code: LeaveCredentialRead


# ============================================================
# GATE VERIFICATION
# ============================================================
class LeaveQRVerifyRequest(BaseModel):
    token: str
    # Direction of the desk scanning the code; a mismatch is refused
    expected_purpose: Optional[CredentialPurpose] = None


class LeaveQRVerification(BaseModel):
    leave_application_id: UUID
    student_id: UUID
    leave_type: LeaveType
    purpose: CredentialPurpose
    used_at: datetime
    payload: Dict[str, Any]
