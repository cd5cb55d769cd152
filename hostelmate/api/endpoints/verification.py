from fastapi import APIRouter, Depends, BackgroundTasks
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hostelmate.api.deps import get_db_session, get_signer
from hostelmate.core.exceptions import HostelMateError, VerificationError
from hostelmate.core.rbac import require_gate_staff, require_leave_decider
from hostelmate.models.enums import CredentialPurpose
from hostelmate.models.user import User
from hostelmate.schemas.leave import LeaveCredentialRead, LeaveQRVerification, LeaveQRVerifyRequest
from hostelmate.services import leave_service
from hostelmate.services.audit_service import log_activity
from hostelmate.services.qr_service import LeaveQRSigner, credential_view
from hostelmate.services.verification_service import verify_leave_qr

router = APIRouter(
    prefix="/api/verification",
    tags=["Gate Verification"]
)


# ------------------------------------------------------------
# SCAN AT THE GATE
# ------------------------------------------------------------
@router.post("/leave-qr/verify", response_model=LeaveQRVerification)
async def verify_leave_qr_endpoint(
    data: LeaveQRVerifyRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_gate_staff),
    signer: LeaveQRSigner = Depends(get_signer),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        result = await verify_leave_qr(
            session, data.token, signer, expected_purpose=data.expected_purpose
        )
    except VerificationError as e:
        logger.warning(f"Gate scan by {current_user.id} refused: {e.details.get('reason')}")
        raise e.to_http()

    background_tasks.add_task(
        log_activity,
        action="LEAVE_QR_REDEEMED",
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        actor_name=current_user.name,
        leave_application_id=result.leave_application_id,
        details={"purpose": result.purpose.value, "used_at": result.used_at.isoformat()},
    )
    return result


# ------------------------------------------------------------
# MANUAL OVERRIDE
# ------------------------------------------------------------
@router.post("/leave-qr/{leave_id}/{purpose}/mark-used", response_model=LeaveCredentialRead)
async def mark_leave_qr_used(
    leave_id: str,
    purpose: CredentialPurpose,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_leave_decider),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        credential = await leave_service.mark_credential_used(session, leave_id, purpose)
    except HostelMateError as e:
        raise e.to_http()

    background_tasks.add_task(
        log_activity,
        action="LEAVE_QR_MARKED_USED",
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        actor_name=current_user.name,
        leave_application_id=credential.leave_application_id,
        remarks="Marked used without a scan",
        details={"purpose": purpose.value},
    )
    return credential_view(credential)
