# hostelmate/services/verification_service.py

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from hostelmate.core.exceptions import AlreadyUsedError, VerificationError
from hostelmate.models.enums import CredentialPurpose, LeaveStatus, VerificationFailure
from hostelmate.models.leave_application import LeaveApplication
from hostelmate.schemas.leave import LeaveQRVerification
from hostelmate.services.leave_service import consume_credential, get_credential
from hostelmate.services.qr_service import LeaveQRSigner, as_utc, utc_now


def _check_window(payload: dict, now: datetime) -> None:
    valid_from = datetime.fromtimestamp(payload["valid_from"], tz=timezone.utc)
    valid_until = datetime.fromtimestamp(payload["valid_until"], tz=timezone.utc)
    ceiling = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)

    if now < valid_from:
        raise VerificationError(
            VerificationFailure.NOT_YET_VALID, {"valid_from": valid_from.isoformat()}
        )
    if now > valid_until or now > ceiling:
        raise VerificationError(
            VerificationFailure.EXPIRED, {"valid_until": valid_until.isoformat()}
        )


async def verify_leave_qr(
    session: AsyncSession,
    token: str,
    signer: LeaveQRSigner,
    expected_purpose: Optional[CredentialPurpose] = None,
    now: Optional[datetime] = None,
) -> LeaveQRVerification:
    """
    Validate a scanned leave QR token and redeem it.

    Checks, in order: signature, purpose, validity window, application
    exists, application approved, credential unused. The token must also
    be the exact credential stored for the application. On success the
    credential is consumed with a conditional update, so two concurrent
    scans of the same code yield one success and one 'already used'.
    """
    now = as_utc(now) if now else utc_now()

    # 1. signature
    payload = signer.decode(token)

    # 2. purpose
    try:
        purpose = CredentialPurpose(payload["purpose"])
    except ValueError:
        raise VerificationError(VerificationFailure.WRONG_TYPE)
    if expected_purpose is not None and purpose != expected_purpose:
        raise VerificationError(
            VerificationFailure.WRONG_TYPE,
            {"expected": expected_purpose.value, "received": purpose.value},
        )

    # 3. validity window from the signed payload
    _check_window(payload, now)

    # 4. live application
    try:
        application_id = UUID(str(payload["leave_application_id"]))
    except ValueError:
        raise VerificationError(VerificationFailure.INVALID_TOKEN)

    result = await session.execute(select(LeaveApplication).where(LeaveApplication.id == application_id))
    application = result.scalar_one_or_none()
    if not application:
        raise VerificationError(VerificationFailure.APPLICATION_NOT_FOUND)

    # 5. still approved
    if application.status != LeaveStatus.APPROVED:
        raise VerificationError(VerificationFailure.NOT_APPROVED)

    # 6. stored credential must match the token and be unused
    credential = await get_credential(session, application_id, purpose)
    if (
        credential is None
        or credential.code != token
        or int(as_utc(credential.valid_from).timestamp()) != payload["valid_from"]
        or int(as_utc(credential.valid_until).timestamp()) != payload["valid_until"]
    ):
        raise VerificationError(VerificationFailure.INVALID_TOKEN)

    if credential.used:
        raise AlreadyUsedError(as_utc(credential.used_at) if credential.used_at else None)

    # 7. redeem
    redeemed = await consume_credential(session, application_id, purpose, now)
    if redeemed is None:
        current = await get_credential(session, application_id, purpose)
        raise AlreadyUsedError(as_utc(current.used_at) if current and current.used_at else None)

    logger.info(f"Leave {application_id} {purpose.value} QR redeemed at {now.isoformat()}")

    return LeaveQRVerification(
        leave_application_id=application.id,
        student_id=application.student_id,
        leave_type=application.leave_type,
        purpose=purpose,
        used_at=as_utc(redeemed.used_at),
        payload=payload,
    )
