from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, BackgroundTasks, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostelmate.api.deps import get_db_session, require_student_id
from hostelmate.core.exceptions import HostelMateError
from hostelmate.core.rbac import require_student
from hostelmate.models.enums import CredentialPurpose, LeaveStatus
from hostelmate.models.user import User
from hostelmate.schemas.leave import (
    LeaveCalendarResponse,
    LeaveCreate,
    LeaveQRCodesResponse,
    LeaveRead,
    MyLeavesResponse,
)
from hostelmate.services import leave_service
from hostelmate.services.audit_service import log_activity
from hostelmate.services.qr_service import credential_view, credentials_by_purpose

router = APIRouter(
    prefix="/api/leaves",
    tags=["Leaves"]
)


# ------------------------------------------------------------
# SUBMIT LEAVE
# ------------------------------------------------------------
@router.post("", response_model=LeaveRead, status_code=status.HTTP_201_CREATED)
async def submit_leave(
    payload: LeaveCreate,
    current_user: User = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    student_id = require_student_id(current_user)

    try:
        application = await leave_service.submit_leave(
            session=session,
            student_id=student_id,
            leave_type=payload.leave_type,
            from_date=payload.from_date,
            to_date=payload.to_date,
            reason=payload.reason,
            emergency_contact=payload.emergency_contact.model_dump() if payload.emergency_contact else None,
        )
    except HostelMateError as e:
        raise e.to_http()

    return LeaveRead.model_validate(application)


# ------------------------------------------------------------
# MY LEAVES + STATUS COUNTS
# ------------------------------------------------------------
@router.get("/my", response_model=MyLeavesResponse)
async def get_my_leaves(
    status_filter: Optional[LeaveStatus] = Query(default=None, alias="status"),
    current_user: User = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    student_id = require_student_id(current_user)

    try:
        leaves = await leave_service.list_student_leaves(session, student_id, status_filter)
        counts = await leave_service.status_counts(session, student_id)
        balance = await leave_service.get_leave_balance(session, student_id)
    except HostelMateError as e:
        raise e.to_http()

    return MyLeavesResponse(
        leave_applications=[LeaveRead.model_validate(leave) for leave in leaves],
        total_count=sum(counts.values()),
        statistics=counts,
        leave_balance=balance,
    )


# ------------------------------------------------------------
# LEAVE CALENDAR (approved only)
# ------------------------------------------------------------
@router.get("/my/calendar", response_model=LeaveCalendarResponse)
async def get_my_leave_calendar(
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    current_user: User = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    student_id = require_student_id(current_user)
    year = year or datetime.now(timezone.utc).year

    leaves = await leave_service.leave_calendar(session, student_id, year, month)
    return LeaveCalendarResponse(
        year=year,
        month=month,
        leave_applications=[LeaveRead.model_validate(leave) for leave in leaves],
    )


# ------------------------------------------------------------
# ONE OF MY LEAVES
# ------------------------------------------------------------
@router.get("/{leave_id}", response_model=LeaveRead)
async def get_my_leave(
    leave_id: str,
    current_user: User = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    student_id = require_student_id(current_user)
    try:
        application = await leave_service.get_leave_for_student(session, leave_id, student_id)
    except HostelMateError as e:
        raise e.to_http()
    return LeaveRead.model_validate(application)


# ------------------------------------------------------------
# CANCEL (PENDING only)
# ------------------------------------------------------------
@router.delete("/{leave_id}")
async def cancel_my_leave(
    leave_id: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    student_id = require_student_id(current_user)
    try:
        await leave_service.cancel_leave(session, leave_id, student_id)
    except HostelMateError as e:
        raise e.to_http()

    background_tasks.add_task(
        log_activity,
        action="LEAVE_CANCELLED",
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        actor_name=current_user.name,
        remarks=f"Leave {leave_id} withdrawn by owner",
        details={"leave_application_id": leave_id},
    )
    return {"detail": "Leave application cancelled successfully"}


# ------------------------------------------------------------
# MY GATE PASSES (APPROVED only)
# ------------------------------------------------------------
@router.get("/{leave_id}/qr-codes", response_model=LeaveQRCodesResponse)
async def get_my_leave_qr_codes(
    leave_id: str,
    current_user: User = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    student_id = require_student_id(current_user)
    try:
        application, credentials = await leave_service.get_credentials_for_student(
            session, leave_id, student_id
        )
    except HostelMateError as e:
        raise e.to_http()

    by_purpose = credentials_by_purpose(credentials)
    return LeaveQRCodesResponse(
        leave_application_id=application.id,
        leave_type=application.leave_type,
        from_date=application.from_date,
        to_date=application.to_date,
        exit_qr_code=credential_view(by_purpose[CredentialPurpose.EXIT]),
        entry_qr_code=credential_view(by_purpose[CredentialPurpose.ENTRY]),
    )
