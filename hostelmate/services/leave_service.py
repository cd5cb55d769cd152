# hostelmate/services/leave_service.py
"""
Leave application state machine.

PENDING -> APPROVED | REJECTED, or withdrawn (deleted) by its owner while
PENDING. This module is the only writer of ``status`` and of the
``used`` / ``used_at`` flags on leave credentials.
"""

from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import case, delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from hostelmate.core.config import settings
from hostelmate.core.exceptions import (
    AlreadyUsedError,
    AuthorizationError,
    IssuanceError,
    LeaveValidationError,
    NotFoundError,
    StateConflictError,
)
from hostelmate.models.enums import CredentialPurpose, LeaveStatus, LeaveType
from hostelmate.models.leave_application import LeaveApplication
from hostelmate.models.leave_credential import LeaveCredential
from hostelmate.models.student import Student
from hostelmate.models.user import User
from hostelmate.services.qr_service import IssuedCredential, LeaveQRSigner, as_utc, issue_leave_credentials, utc_now

ACTIVE_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)


def _to_uuid(value, not_found: str = "Leave application not found") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise NotFoundError(not_found)


async def _get_application(session: AsyncSession, application_id) -> LeaveApplication:
    result = await session.execute(
        select(LeaveApplication).where(LeaveApplication.id == _to_uuid(application_id))
    )
    application = result.scalar_one_or_none()
    if not application:
        raise NotFoundError("Leave application not found")
    return application


# ------------------------------------------------------------
# SUBMIT
# ------------------------------------------------------------
def validate_leave_request(
    leave_type,
    from_date: date,
    to_date: date,
    reason: Optional[str],
    today: date,
) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    try:
        LeaveType(leave_type)
    except ValueError:
        errors["leave_type"] = f"Invalid leave type. Allowed: {[t.value for t in LeaveType]}"

    if from_date < today:
        errors["from_date"] = "From date cannot be in the past"
    if to_date < from_date:
        errors["to_date"] = "To date cannot be earlier than from date"

    cleaned = (reason or "").strip()
    if not cleaned:
        errors["reason"] = "Reason is required"
    elif len(cleaned) > settings.LEAVE_REASON_MAX_LENGTH:
        errors["reason"] = f"Reason cannot exceed {settings.LEAVE_REASON_MAX_LENGTH} characters"

    return errors


async def submit_leave(
    session: AsyncSession,
    student_id,
    leave_type,
    from_date: date,
    to_date: date,
    reason: str,
    emergency_contact: Optional[dict] = None,
    today: Optional[date] = None,
) -> LeaveApplication:
    today = today or datetime.now(timezone.utc).date()

    errors = validate_leave_request(leave_type, from_date, to_date, reason, today)
    if errors:
        raise LeaveValidationError(errors)

    student_uuid = _to_uuid(student_id, "Student not found")
    total_days = (to_date - from_date).days + 1

    student = await session.get(Student, student_uuid, populate_existing=True)
    if not student:
        raise NotFoundError("Student not found")
    if total_days > student.leave_balance:
        raise LeaveValidationError({
            "total_days": (
                f"Insufficient leave balance. Available: {student.leave_balance} days, "
                f"Requested: {total_days} days"
            )
        })

    # No two active leaves may overlap for the same student
    overlap = await session.execute(
        select(LeaveApplication).where(
            (LeaveApplication.student_id == student_uuid)
            & (LeaveApplication.status.in_(ACTIVE_STATUSES))
            & (LeaveApplication.from_date <= to_date)
            & (LeaveApplication.to_date >= from_date)
        )
    )
    conflicting = overlap.scalars().first()
    if conflicting:
        raise StateConflictError(
            "You already have a leave application for overlapping dates",
            {
                "conflicting_leave": {
                    "id": str(conflicting.id),
                    "from_date": conflicting.from_date.isoformat(),
                    "to_date": conflicting.to_date.isoformat(),
                    "status": LeaveStatus(conflicting.status).value,
                }
            },
        )

    contact = emergency_contact or {}
    application = LeaveApplication(
        student_id=student_uuid,
        leave_type=LeaveType(leave_type),
        from_date=from_date,
        to_date=to_date,
        total_days=total_days,
        reason=reason.strip(),
        emergency_contact_name=contact.get("name"),
        emergency_contact_phone=contact.get("phone"),
        emergency_contact_relation=contact.get("relation"),
        status=LeaveStatus.PENDING,
    )
    session.add(application)

    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to save leave application")
        raise
    await session.refresh(application)

    logger.info(
        f"Leave {application.id} submitted by student {student_uuid} "
        f"({application.leave_type.value}, {from_date} -> {to_date})"
    )
    return application


# ------------------------------------------------------------
# CANCEL (owner, PENDING only)
# ------------------------------------------------------------
async def cancel_leave(session: AsyncSession, application_id, requester_student_id) -> None:
    application = await _get_application(session, application_id)
    leave_id = application.id

    if str(application.student_id) != str(requester_student_id):
        raise AuthorizationError("You can only cancel your own leave applications")
    if application.status != LeaveStatus.PENDING:
        raise StateConflictError("Can only cancel pending leave applications")

    # Conditional delete; a decision racing with the cancel wins
    result = await session.execute(
        delete(LeaveApplication).where(
            (LeaveApplication.id == leave_id)
            & (LeaveApplication.status == LeaveStatus.PENDING)
        )
    )
    if result.rowcount != 1:
        await session.rollback()
        raise StateConflictError("Can only cancel pending leave applications")

    await session.commit()
    logger.info(f"Leave {leave_id} cancelled by its owner")


# ------------------------------------------------------------
# DECIDE
# Rollback expires every loaded row, so ids are read up front and
# nothing touches an ORM attribute after a rollback.
# ------------------------------------------------------------
async def _transition_from_pending(
    session: AsyncSession,
    leave_id: UUID,
    new_status: LeaveStatus,
    admin_id: UUID,
    admin_comments: Optional[str],
    now: datetime,
) -> None:
    """PENDING -> new_status as a compare-and-set; no commit."""
    result = await session.execute(
        update(LeaveApplication)
        .where(
            (LeaveApplication.id == leave_id)
            & (LeaveApplication.status == LeaveStatus.PENDING)
        )
        .values(
            status=new_status,
            admin_comments=admin_comments,
            decided_by=admin_id,
            decided_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise StateConflictError("Leave application is not in pending status")


async def _debit_leave_balance(session: AsyncSession, student_id: UUID, days: int) -> None:
    """Subtract approved days in SQL, floored at zero; no commit."""
    await session.execute(
        update(Student)
        .where(Student.id == student_id)
        .values(
            leave_balance=case(
                (Student.leave_balance > days, Student.leave_balance - days),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )


def _check_comments(admin_comments: Optional[str], required: bool) -> Optional[str]:
    cleaned = (admin_comments or "").strip()
    if required and not cleaned:
        raise LeaveValidationError({"admin_comments": "Admin comments are required when rejecting"})
    if len(cleaned) > settings.ADMIN_COMMENTS_MAX_LENGTH:
        raise LeaveValidationError(
            {"admin_comments": f"Admin comments cannot exceed {settings.ADMIN_COMMENTS_MAX_LENGTH} characters"}
        )
    return cleaned or None


async def approve_leave(
    session: AsyncSession,
    application_id,
    admin: User,
    signer: LeaveQRSigner,
    admin_comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[LeaveApplication, List[IssuedCredential]]:
    """
    Approve a PENDING application and issue its two credentials.

    Status change, the student's balance debit and both credential rows
    commit together; if signing, rendering or the write fails nothing is
    left behind.
    """
    now = now or utc_now()
    comments = _check_comments(admin_comments, required=False)

    application = await _get_application(session, application_id)
    if application.status != LeaveStatus.PENDING:
        raise StateConflictError("Leave application is not in pending status")

    leave_id, student_id, total_days = application.id, application.student_id, application.total_days
    admin_id = admin.id

    student = await session.get(Student, student_id)

    try:
        issued = issue_leave_credentials(application, signer, issued_at=now, student=student)
    except Exception as e:
        logger.exception(f"Credential issuance failed for leave {leave_id}")
        raise IssuanceError("Could not issue leave QR credentials") from e

    await _transition_from_pending(session, leave_id, LeaveStatus.APPROVED, admin_id, comments, now)
    await _debit_leave_balance(session, student_id, total_days)

    for item in issued:
        session.add(item.credential)

    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception(f"Persisting approval of leave {leave_id} failed")
        raise IssuanceError("Could not persist leave QR credentials") from e

    await session.refresh(application)
    if student is not None:
        await session.refresh(student)
    logger.info(f"Leave {leave_id} approved by {admin_id}")
    return application, issued


async def reject_leave(
    session: AsyncSession,
    application_id,
    admin: User,
    admin_comments: str,
    now: Optional[datetime] = None,
) -> LeaveApplication:
    now = now or utc_now()
    comments = _check_comments(admin_comments, required=True)

    application = await _get_application(session, application_id)
    if application.status != LeaveStatus.PENDING:
        raise StateConflictError("Leave application is not in pending status")

    leave_id, admin_id = application.id, admin.id

    await _transition_from_pending(session, leave_id, LeaveStatus.REJECTED, admin_id, comments, now)
    await session.commit()
    await session.refresh(application)

    logger.info(f"Leave {leave_id} rejected by {admin_id}")
    return application



# ------------------------------------------------------------
# CREDENTIAL CONSUMPTION
# ------------------------------------------------------------
async def get_credential(
    session: AsyncSession, application_id, purpose: CredentialPurpose
) -> Optional[LeaveCredential]:
    result = await session.execute(
        select(LeaveCredential)
        .where(
            (LeaveCredential.leave_application_id == _to_uuid(application_id))
            & (LeaveCredential.purpose == purpose)
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def consume_credential(
    session: AsyncSession,
    application_id,
    purpose: CredentialPurpose,
    now: Optional[datetime] = None,
) -> Optional[LeaveCredential]:
    """
    Flip used=false -> true in one conditional UPDATE.

    Returns the updated credential, or None when it was already used
    (including losing a race against a concurrent scan).
    """
    now = now or utc_now()
    result = await session.execute(
        update(LeaveCredential)
        .where(
            (LeaveCredential.leave_application_id == _to_uuid(application_id))
            & (LeaveCredential.purpose == purpose)
            & (LeaveCredential.used == False)  # noqa: E712
        )
        .values(used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        return None

    await session.commit()
    return await get_credential(session, application_id, purpose)


async def mark_credential_used(
    session: AsyncSession,
    application_id,
    purpose: CredentialPurpose,
    now: Optional[datetime] = None,
) -> LeaveCredential:
    """Administrative override: consume a credential without a scanned token."""
    credential = await get_credential(session, application_id, purpose)
    if not credential:
        raise NotFoundError("No QR credential of that purpose for this leave application")

    consumed = await consume_credential(session, application_id, purpose, now)
    if consumed is None:
        current = await get_credential(session, application_id, purpose)
        raise AlreadyUsedError(as_utc(current.used_at) if current and current.used_at else None)

    logger.info(f"Leave {application_id} {purpose.value} credential marked used by override")
    return consumed


# ------------------------------------------------------------
# READS
# ------------------------------------------------------------
async def get_leave_for_student(session: AsyncSession, application_id, student_id) -> LeaveApplication:
    application = await _get_application(session, application_id)
    if str(application.student_id) != str(student_id):
        raise AuthorizationError("Not authorized to access this leave application")
    return application


async def get_leave(session: AsyncSession, application_id) -> LeaveApplication:
    return await _get_application(session, application_id)


async def list_credentials(session: AsyncSession, application_id) -> List[LeaveCredential]:
    result = await session.execute(
        select(LeaveCredential).where(LeaveCredential.leave_application_id == _to_uuid(application_id))
    )
    # exit first, then entry
    order = {CredentialPurpose.EXIT: 0, CredentialPurpose.ENTRY: 1}
    return sorted(result.scalars().all(), key=lambda c: order[CredentialPurpose(c.purpose)])


async def get_credentials_for_student(
    session: AsyncSession, application_id, student_id
) -> Tuple[LeaveApplication, List[LeaveCredential]]:
    application = await get_leave_for_student(session, application_id, student_id)
    if application.status != LeaveStatus.APPROVED:
        raise StateConflictError("QR codes are only available for approved leave applications")

    credentials = await list_credentials(session, application.id)
    if len(credentials) != 2:
        raise NotFoundError("QR codes not generated for this leave application")
    return application, credentials


async def get_leave_balance(session: AsyncSession, student_id) -> int:
    student = await session.get(Student, _to_uuid(student_id, "Student not found"), populate_existing=True)
    if not student:
        raise NotFoundError("Student not found")
    return student.leave_balance


async def status_counts(session: AsyncSession, student_id=None) -> Dict[str, int]:
    query = select(LeaveApplication.status, func.count()).group_by(LeaveApplication.status)
    if student_id is not None:
        query = query.where(LeaveApplication.student_id == _to_uuid(student_id, "Student not found"))

    counts = {s.value: 0 for s in LeaveStatus}
    for status, count in (await session.execute(query)).all():
        counts[LeaveStatus(status).value] = count
    return counts


async def list_student_leaves(
    session: AsyncSession, student_id, status: Optional[LeaveStatus] = None
) -> List[LeaveApplication]:
    query = (
        select(LeaveApplication)
        .where(LeaveApplication.student_id == _to_uuid(student_id, "Student not found"))
        .order_by(LeaveApplication.created_at.desc())
    )
    if status is not None:
        query = query.where(LeaveApplication.status == status)
    return list((await session.execute(query)).scalars().all())


async def list_leaves(
    session: AsyncSession,
    status: Optional[LeaveStatus] = None,
    leave_type: Optional[LeaveType] = None,
    student_id=None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[LeaveApplication], int]:
    filters = []
    if status is not None:
        filters.append(LeaveApplication.status == status)
    if leave_type is not None:
        filters.append(LeaveApplication.leave_type == leave_type)
    if student_id is not None:
        filters.append(LeaveApplication.student_id == _to_uuid(student_id, "Student not found"))

    count_query = select(func.count()).select_from(LeaveApplication)
    query = select(LeaveApplication).order_by(LeaveApplication.created_at.desc())
    for f in filters:
        count_query = count_query.where(f)
        query = query.where(f)

    total = (await session.execute(count_query)).scalar_one()
    rows = await session.execute(query.offset((page - 1) * limit).limit(limit))
    return list(rows.scalars().all()), total


async def leave_statistics(session: AsyncSession, now: Optional[datetime] = None) -> dict:
    now = now or utc_now()
    start_of_month = datetime(now.year, now.month, 1)
    start_of_year = datetime(now.year, 1, 1)

    async def _count(*where) -> int:
        query = select(func.count()).select_from(LeaveApplication)
        for w in where:
            query = query.where(w)
        return (await session.execute(query)).scalar_one()

    counts = await status_counts(session)

    by_type_rows = await session.execute(
        select(LeaveApplication.leave_type, func.count()).group_by(LeaveApplication.leave_type)
    )

    return {
        "total": sum(counts.values()),
        "pending": counts[LeaveStatus.PENDING.value],
        "approved": counts[LeaveStatus.APPROVED.value],
        "rejected": counts[LeaveStatus.REJECTED.value],
        "this_month": await _count(LeaveApplication.created_at >= start_of_month),
        "this_year": await _count(LeaveApplication.created_at >= start_of_year),
        "by_type": {LeaveType(t).value: c for t, c in by_type_rows.all()},
    }


async def leave_calendar(
    session: AsyncSession, student_id, year: int, month: Optional[int] = None
) -> List[LeaveApplication]:
    """APPROVED leaves of a student that overlap the given year or month."""
    if month:
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    else:
        start = date(year, 1, 1)
        end = date(year + 1, 1, 1)

    result = await session.execute(
        select(LeaveApplication)
        .where(
            (LeaveApplication.student_id == _to_uuid(student_id, "Student not found"))
            & (LeaveApplication.status == LeaveStatus.APPROVED)
            & (LeaveApplication.from_date < end)
            & (LeaveApplication.to_date >= start)
        )
        .order_by(LeaveApplication.from_date.asc())
    )
    return list(result.scalars().all())
