import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, BackgroundTasks, Query
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hostelmate.api.deps import get_db_session, get_signer
from hostelmate.core.exceptions import HostelMateError
from hostelmate.core.rbac import require_leave_decider
from hostelmate.models.enums import CredentialPurpose, LeaveStatus, LeaveType
from hostelmate.models.leave_application import LeaveApplication
from hostelmate.models.student import Student
from hostelmate.models.user import User
from hostelmate.schemas.leave import (
    LeaveApprovalResponse,
    LeaveDecisionRequest,
    LeaveListResponse,
    LeaveRead,
    LeaveStatistics,
)
from hostelmate.services import leave_service
from hostelmate.services.audit_service import log_activity
from hostelmate.services.email_service import send_leave_approved_email, send_leave_rejected_email
from hostelmate.services.qr_service import LeaveQRSigner, credential_view

router = APIRouter(
    prefix="/api/approvals/leaves",
    tags=["Leave Approvals"]
)


# ===================================================================
#  HELPER: Email context for the owning student
# ===================================================================
async def get_email_context(session: AsyncSession, application: LeaveApplication) -> Optional[dict]:
    student = await session.get(Student, application.student_id)
    if not student:
        logger.warning(f"No student profile for leave {application.id}; skipping email")
        return None

    return {
        "name": student.full_name,
        "email": student.email,
        "student_code": student.student_code,
        "room_number": student.room_number,
        "leave_type": application.leave_type.value,
        "from_date": application.from_date.strftime("%d-%m-%Y"),
        "to_date": application.to_date.strftime("%d-%m-%Y"),
        "total_days": application.total_days,
        "admin_comments": application.admin_comments,
    }


# ===================================================================
# LIST ALL LEAVE APPLICATIONS
# ===================================================================
@router.get("", response_model=LeaveListResponse)
async def list_leave_applications(
    status: Optional[LeaveStatus] = Query(default=None),
    leave_type: Optional[LeaveType] = Query(default=None),
    student_id: Optional[UUID] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: User = Depends(require_leave_decider),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        leaves, total = await leave_service.list_leaves(
            session, status=status, leave_type=leave_type, student_id=student_id, page=page, limit=limit
        )
    except HostelMateError as e:
        raise e.to_http()

    return LeaveListResponse(
        leave_applications=[LeaveRead.model_validate(leave) for leave in leaves],
        total_count=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
        has_more=page * limit < total,
    )


# ===================================================================
# DASHBOARD STATISTICS
# ===================================================================
@router.get("/statistics", response_model=LeaveStatistics)
async def get_leave_statistics(
    _: User = Depends(require_leave_decider),
    session: AsyncSession = Depends(get_db_session),
):
    return LeaveStatistics(**await leave_service.leave_statistics(session))


# ===================================================================
# GET ANY LEAVE APPLICATION
# ===================================================================
@router.get("/{leave_id}", response_model=LeaveRead)
async def get_leave_application(
    leave_id: str,
    _: User = Depends(require_leave_decider),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        application = await leave_service.get_leave(session, leave_id)
    except HostelMateError as e:
        raise e.to_http()
    return LeaveRead.model_validate(application)


# ===================================================================
# APPROVE (issues both gate passes)
# ===================================================================
@router.post("/{leave_id}/approve", response_model=LeaveApprovalResponse)
async def approve_leave_endpoint(
    leave_id: str,
    background_tasks: BackgroundTasks,
    data: Optional[LeaveDecisionRequest] = None,
    current_user: User = Depends(require_leave_decider),
    signer: LeaveQRSigner = Depends(get_signer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        application, issued = await leave_service.approve_leave(
            session,
            leave_id,
            admin=current_user,
            signer=signer,
            admin_comments=data.admin_comments if data else None,
        )
    except HostelMateError as e:
        raise e.to_http()

    views = {
        CredentialPurpose(item.credential.purpose): credential_view(item.credential, item.qr_image)
        for item in issued
    }

    email_data = await get_email_context(session, application)
    if email_data:
        email_data["qr_codes"] = [
            {
                "purpose": view.purpose.value,
                "qr_image": view.qr_image,
                "valid_from": view.valid_from.strftime("%d-%m-%Y %H:%M"),
                "valid_until": view.valid_until.strftime("%d-%m-%Y %H:%M"),
            }
            for view in views.values()
        ]
        background_tasks.add_task(send_leave_approved_email, email_data)

    background_tasks.add_task(
        log_activity,
        action="LEAVE_APPROVED",
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        actor_name=current_user.name,
        leave_application_id=application.id,
        remarks=application.admin_comments,
        details={"leave_type": application.leave_type.value},
    )

    return LeaveApprovalResponse(
        leave_application=LeaveRead.model_validate(application),
        exit_qr_code=views[CredentialPurpose.EXIT],
        entry_qr_code=views[CredentialPurpose.ENTRY],
    )


# ===================================================================
# REJECT (comments required)
# ===================================================================
@router.post("/{leave_id}/reject", response_model=LeaveRead)
async def reject_leave_endpoint(
    leave_id: str,
    data: LeaveDecisionRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_leave_decider),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        application = await leave_service.reject_leave(
            session, leave_id, admin=current_user, admin_comments=data.admin_comments
        )
    except HostelMateError as e:
        raise e.to_http()

    email_data = await get_email_context(session, application)
    if email_data:
        background_tasks.add_task(send_leave_rejected_email, email_data)

    background_tasks.add_task(
        log_activity,
        action="LEAVE_REJECTED",
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        actor_name=current_user.name,
        leave_application_id=application.id,
        remarks=application.admin_comments,
    )

    return LeaveRead.model_validate(application)
