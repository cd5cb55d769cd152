# hostelmate/services/qr_service.py
"""
Leave gate-pass credentials: signing, decoding and QR rendering.

Each approved leave application gets two signed tokens, one for leaving
the hostel (exit) and one for coming back (entry). The token is what the
QR image encodes; the image itself carries no security.
"""

import base64
import io
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, NamedTuple, Optional, Tuple

import jwt
import qrcode
from loguru import logger

from hostelmate.core.config import settings
from hostelmate.core.exceptions import VerificationError
from hostelmate.models.enums import CredentialPurpose, VerificationFailure
from hostelmate.models.leave_application import LeaveApplication
from hostelmate.models.leave_credential import LeaveCredential
from hostelmate.models.student import Student
from hostelmate.schemas.leave import LeaveCredentialRead

REQUIRED_CLAIMS = ["exp", "leave_application_id", "purpose", "valid_from", "valid_until"]


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class IssuedCredential(NamedTuple):
    credential: LeaveCredential
    qr_image: str
    payload: dict


class LeaveQRSigner:
    """
    Signs and decodes leave credential tokens with an injected secret.

    The payload's valid_from / valid_until are the authoritative window.
    The JWT 'exp' is only an outer ceiling placed ``expiry_grace`` after
    valid_until.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        window: timedelta = timedelta(hours=24),
        expiry_grace: timedelta = timedelta(hours=24),
    ):
        if not secret:
            raise ValueError("A signing secret is required for leave QR credentials")
        self.secret = secret
        self.algorithm = algorithm
        self.window = window
        self.expiry_grace = expiry_grace

    def window_for(self, application: LeaveApplication, purpose: CredentialPurpose) -> Tuple[datetime, datetime]:
        # exit opens at the start of from_date, entry at the start of to_date
        anchor: date = application.from_date if purpose == CredentialPurpose.EXIT else application.to_date
        valid_from = datetime.combine(anchor, time.min, tzinfo=timezone.utc)
        return valid_from, valid_from + self.window

    def build_payload(
        self,
        application: LeaveApplication,
        purpose: CredentialPurpose,
        issued_at: datetime,
        student: Optional[Student] = None,
    ) -> dict:
        valid_from, valid_until = self.window_for(application, purpose)
        payload = {
            "leave_application_id": str(application.id),
            "student_id": str(application.student_id),
            "purpose": purpose.value,
            "leave_type": application.leave_type.value,
            "from_date": application.from_date.isoformat(),
            "to_date": application.to_date.isoformat(),
            "valid_from": int(valid_from.timestamp()),
            "valid_until": int(valid_until.timestamp()),
            "iat": int(issued_at.timestamp()),
            "exp": int((valid_until + self.expiry_grace).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        if student is not None:
            payload["student_code"] = student.student_code
            payload["room_number"] = student.room_number
        return payload

    def sign(self, payload: dict) -> str:
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str) -> dict:
        """
        Check the signature and claim shape only. Time checks are done by
        the verifier against its own clock so they can be reported with a
        specific reason.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected leave QR token: {e}")
            raise VerificationError(VerificationFailure.INVALID_TOKEN)

        for claim in ("valid_from", "valid_until", "exp"):
            if not isinstance(payload.get(claim), int):
                raise VerificationError(VerificationFailure.INVALID_TOKEN)
        return payload


def get_leave_qr_signer() -> LeaveQRSigner:
    """Signer built from settings; FastAPI dependency."""
    return LeaveQRSigner(
        secret=settings.leave_qr_secret,
        algorithm=settings.LEAVE_QR_ALGORITHM,
        window=timedelta(hours=settings.LEAVE_QR_WINDOW_HOURS),
        expiry_grace=timedelta(hours=settings.LEAVE_QR_EXPIRY_GRACE_HOURS),
    )


def render_qr_data_url(token: str) -> str:
    """PNG QR code of ``token`` as a data: URL the frontend can drop into <img>."""
    qr = qrcode.QRCode(
        version=None,  # auto-size; signed tokens are a few hundred chars
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = io.BytesIO()
    img.save(buffered, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffered.getvalue()).decode()


def issue_leave_credentials(
    application: LeaveApplication,
    signer: LeaveQRSigner,
    issued_at: datetime,
    student: Optional[Student] = None,
) -> List[IssuedCredential]:
    """
    Mint the exit and entry credentials for an application being approved.

    Nothing is persisted here; the caller adds the returned rows in the same
    transaction that flips the application to APPROVED.
    """
    issued: List[IssuedCredential] = []
    for purpose in (CredentialPurpose.EXIT, CredentialPurpose.ENTRY):
        payload = signer.build_payload(application, purpose, issued_at, student)
        token = signer.sign(payload)
        credential = LeaveCredential(
            leave_application_id=application.id,
            purpose=purpose,
            code=token,
            valid_from=datetime.fromtimestamp(payload["valid_from"], tz=timezone.utc),
            valid_until=datetime.fromtimestamp(payload["valid_until"], tz=timezone.utc),
            used=False,
            created_at=issued_at,
        )
        issued.append(IssuedCredential(credential, render_qr_data_url(token), payload))

    logger.info(f"Issued exit/entry QR credentials for leave {application.id}")
    return issued


def credential_view(credential: LeaveCredential, qr_image: Optional[str] = None) -> LeaveCredentialRead:
    """Response shape of a stored credential; renders the QR unless one is given."""
    view = LeaveCredentialRead.model_validate(credential)
    view.qr_image = qr_image or render_qr_data_url(credential.code)
    view.valid_from = as_utc(view.valid_from)
    view.valid_until = as_utc(view.valid_until)
    if view.used_at is not None:
        view.used_at = as_utc(view.used_at)
    return view


def credentials_by_purpose(credentials: List[LeaveCredential]) -> Dict[CredentialPurpose, LeaveCredential]:
    return {CredentialPurpose(c.purpose): c for c in credentials}
