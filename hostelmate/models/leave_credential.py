from sqlmodel import SQLModel, Field, Column
from sqlalchemy import Boolean, DateTime, ForeignKey, Text, Uuid, UniqueConstraint
from sqlalchemy import Enum as SAEnum
import uuid
from datetime import datetime
from typing import Optional

from hostelmate.models.enums import CredentialPurpose


class LeaveCredential(SQLModel, table=True):
    """
    One signed gate pass per (leave application, purpose).

    Kept in its own table so redemption is a single-row conditional
    UPDATE ... WHERE used = false.
    """
    __tablename__ = "leave_credentials"
    __table_args__ = (
        UniqueConstraint("leave_application_id", "purpose", name="uq_leave_credential_purpose"),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True)
    )

    leave_application_id: uuid.UUID = Field(
        sa_column=Column(
            Uuid(as_uuid=True),
            ForeignKey("leave_applications.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )

    purpose: CredentialPurpose = Field(
        sa_column=Column(SAEnum(CredentialPurpose, name="credential_purpose"), nullable=False)
    )

    # The signed token; this string is what the QR image encodes
    code: str = Field(sa_column=Column(Text, nullable=False))

    valid_from: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    valid_until: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    used: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False)
    )
    used_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
