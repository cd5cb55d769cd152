import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from hostelmate.core.database import AsyncSessionLocal
from hostelmate.core.exceptions import AlreadyUsedError, NotFoundError, VerificationError
from hostelmate.models.enums import CredentialPurpose, LeaveStatus, LeaveType, VerificationFailure
from hostelmate.models.leave_application import LeaveApplication
from hostelmate.services import leave_service
from hostelmate.services.verification_service import verify_leave_qr

TODAY = date(2025, 6, 1)
DECIDED_AT = datetime(2025, 6, 2, 9, 30, tzinfo=timezone.utc)
EXIT_OPENS = datetime(2025, 6, 10, tzinfo=timezone.utc)
ENTRY_OPENS = datetime(2025, 6, 15, tzinfo=timezone.utc)


async def approved_leave(session, student_user, warden_user, signer):
    application = await leave_service.submit_leave(
        session,
        student_id=student_user.student_id,
        leave_type=LeaveType.HOME_VISIT,
        from_date=date(2025, 6, 10),
        to_date=date(2025, 6, 15),
        reason="Going home",
        today=TODAY,
    )
    application, issued = await leave_service.approve_leave(
        session, application.id, warden_user, signer, now=DECIDED_AT
    )
    codes = {CredentialPurpose(i.credential.purpose): i.credential.code for i in issued}
    return application, codes


async def assert_refused(session, token, signer, reason, **kwargs):
    with pytest.raises(VerificationError) as exc:
        await verify_leave_qr(session, token, signer, **kwargs)
    assert exc.value.reason == reason
    return exc.value


# ------------------------------------------------------------
# FULL LIFECYCLE
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_exit_then_entry_round_trip(db_session, student_user, warden_user, signer):
    application, codes = await approved_leave(db_session, student_user, warden_user, signer)

    left = await verify_leave_qr(
        db_session, codes[CredentialPurpose.EXIT], signer, now=EXIT_OPENS + timedelta(hours=8)
    )
    assert left.purpose == CredentialPurpose.EXIT
    assert left.leave_application_id == application.id
    assert left.used_at == EXIT_OPENS + timedelta(hours=8)

    await assert_refused(
        db_session, codes[CredentialPurpose.ENTRY], signer, VerificationFailure.NOT_YET_VALID,
        now=ENTRY_OPENS - timedelta(hours=2),
    )

    came_back = await verify_leave_qr(
        db_session, codes[CredentialPurpose.ENTRY], signer, now=ENTRY_OPENS + timedelta(hours=18)
    )
    assert came_back.purpose == CredentialPurpose.ENTRY

    stored = await leave_service.list_credentials(db_session, application.id)
    assert all(c.used for c in stored)

    # second scan of either code
    error = await assert_refused(
        db_session,
        codes[CredentialPurpose.EXIT],
        signer,
        VerificationFailure.ALREADY_USED,
        now=EXIT_OPENS + timedelta(hours=9),
    )
    assert isinstance(error, AlreadyUsedError)
    assert error.used_at == EXIT_OPENS + timedelta(hours=8)
    assert error.to_detail()["used_at"] == (EXIT_OPENS + timedelta(hours=8)).isoformat()


# ------------------------------------------------------------
# WINDOW
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_window_edges(db_session, student_user, warden_user, signer):
    _, codes = await approved_leave(db_session, student_user, warden_user, signer)
    exit_code = codes[CredentialPurpose.EXIT]

    early = await assert_refused(
        db_session, exit_code, signer, VerificationFailure.NOT_YET_VALID,
        now=EXIT_OPENS - timedelta(seconds=1),
    )
    assert early.details["valid_from"] == EXIT_OPENS.isoformat()

    await assert_refused(
        db_session, exit_code, signer, VerificationFailure.EXPIRED,
        now=EXIT_OPENS + timedelta(hours=24, seconds=1),
    )

    # the closing instant is still inside the window
    result = await verify_leave_qr(db_session, exit_code, signer, now=EXIT_OPENS + timedelta(hours=24))
    assert result.purpose == CredentialPurpose.EXIT


@pytest.mark.asyncio
async def test_refused_scans_leave_credential_unused(db_session, student_user, warden_user, signer):
    application, codes = await approved_leave(db_session, student_user, warden_user, signer)

    await assert_refused(
        db_session, codes[CredentialPurpose.ENTRY], signer, VerificationFailure.NOT_YET_VALID,
        now=EXIT_OPENS + timedelta(hours=1),
    )

    entry = await leave_service.get_credential(db_session, application.id, CredentialPurpose.ENTRY)
    assert entry.used is False
    assert entry.used_at is None


# ------------------------------------------------------------
# PURPOSE
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_exit_code_refused_at_entry_desk(db_session, student_user, warden_user, signer):
    _, codes = await approved_leave(db_session, student_user, warden_user, signer)

    error = await assert_refused(
        db_session,
        codes[CredentialPurpose.EXIT],
        signer,
        VerificationFailure.WRONG_TYPE,
        expected_purpose=CredentialPurpose.ENTRY,
        now=EXIT_OPENS + timedelta(hours=1),
    )
    assert error.details["expected"] == "entry"
    assert error.details["received"] == "exit"


@pytest.mark.asyncio
async def test_unknown_purpose_is_wrong_type(db_session, student_user, warden_user, signer):
    application, _ = await approved_leave(db_session, student_user, warden_user, signer)
    payload = signer.build_payload(application, CredentialPurpose.EXIT, DECIDED_AT)
    payload["purpose"] = "visitor"

    await assert_refused(
        db_session, signer.sign(payload), signer, VerificationFailure.WRONG_TYPE,
        now=EXIT_OPENS + timedelta(hours=1),
    )


# ------------------------------------------------------------
# APPLICATION STATE
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_pending_application_is_not_approved(db_session, student_user, signer):
    application = await leave_service.submit_leave(
        db_session,
        student_id=student_user.student_id,
        leave_type=LeaveType.MEDICAL,
        from_date=date(2025, 6, 10),
        to_date=date(2025, 6, 11),
        reason="Dental surgery",
        today=TODAY,
    )
    token = signer.sign(signer.build_payload(application, CredentialPurpose.EXIT, DECIDED_AT))

    await assert_refused(
        db_session, token, signer, VerificationFailure.NOT_APPROVED,
        now=EXIT_OPENS + timedelta(hours=1),
    )


@pytest.mark.asyncio
async def test_unknown_application_is_not_found(db_session, signer):
    ghost = LeaveApplication(
        id=uuid.uuid4(),
        student_id=uuid.uuid4(),
        leave_type=LeaveType.OTHER,
        from_date=date(2025, 6, 10),
        to_date=date(2025, 6, 10),
        total_days=1,
        reason="n/a",
        status=LeaveStatus.APPROVED,
    )
    token = signer.sign(signer.build_payload(ghost, CredentialPurpose.EXIT, DECIDED_AT))

    error = await assert_refused(
        db_session, token, signer, VerificationFailure.APPLICATION_NOT_FOUND,
        now=EXIT_OPENS + timedelta(hours=1),
    )
    assert error.status_code == 404


@pytest.mark.asyncio
async def test_reminted_token_is_not_the_issued_credential(db_session, student_user, warden_user, signer):
    application, _ = await approved_leave(db_session, student_user, warden_user, signer)
    # validly signed, but not the code stored at approval
    reminted = signer.sign(signer.build_payload(application, CredentialPurpose.EXIT, DECIDED_AT))

    await assert_refused(
        db_session, reminted, signer, VerificationFailure.INVALID_TOKEN,
        now=EXIT_OPENS + timedelta(hours=1),
    )


# ------------------------------------------------------------
# SINGLE USE UNDER CONCURRENCY
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_concurrent_scans_redeem_once(db_session, student_user, warden_user, signer):
    application, codes = await approved_leave(db_session, student_user, warden_user, signer)
    scanned_at = EXIT_OPENS + timedelta(hours=2)

    async def scan():
        async with AsyncSessionLocal() as session:
            return await verify_leave_qr(session, codes[CredentialPurpose.EXIT], signer, now=scanned_at)

    results = await asyncio.gather(*(scan() for _ in range(5)), return_exceptions=True)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 4
    assert all(isinstance(f, AlreadyUsedError) for f in failures)

    credential = await leave_service.get_credential(db_session, application.id, CredentialPurpose.EXIT)
    assert credential.used is True


# ------------------------------------------------------------
# MANUAL OVERRIDE
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_mark_used_then_scan_is_already_used(db_session, student_user, warden_user, signer):
    application, codes = await approved_leave(db_session, student_user, warden_user, signer)
    marked_at = EXIT_OPENS + timedelta(hours=3)

    credential = await leave_service.mark_credential_used(
        db_session, application.id, CredentialPurpose.EXIT, now=marked_at
    )
    assert credential.used is True

    with pytest.raises(AlreadyUsedError):
        await leave_service.mark_credential_used(db_session, application.id, CredentialPurpose.EXIT)

    await assert_refused(
        db_session, codes[CredentialPurpose.EXIT], signer, VerificationFailure.ALREADY_USED,
        now=marked_at + timedelta(minutes=5),
    )


@pytest.mark.asyncio
async def test_mark_used_without_credentials_not_found(db_session, student_user):
    application = await leave_service.submit_leave(
        db_session,
        student_id=student_user.student_id,
        leave_type=LeaveType.PERSONAL,
        from_date=date(2025, 6, 10),
        to_date=date(2025, 6, 11),
        reason="Interview",
        today=TODAY,
    )

    with pytest.raises(NotFoundError):
        await leave_service.mark_credential_used(db_session, application.id, CredentialPurpose.ENTRY)
