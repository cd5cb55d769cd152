# hostelmate/models/leave_application.py

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import Integer, Text, String, Date, DateTime, ForeignKey, Uuid
from sqlalchemy import Enum as SAEnum
from datetime import date, datetime
import uuid
from typing import Optional

from hostelmate.models.enums import LeaveStatus, LeaveType


class LeaveApplication(SQLModel, table=True):
    __tablename__ = "leave_applications"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True)
    )

    # Owning student; the only author of the record
    student_id: uuid.UUID = Field(
        sa_column=Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    )

    leave_type: LeaveType = Field(
        sa_column=Column(SAEnum(LeaveType, name="leave_type"), nullable=False)
    )

    # Inclusive range, to_date >= from_date
    from_date: date = Field(sa_column=Column(Date, nullable=False))
    to_date: date = Field(sa_column=Column(Date, nullable=False))
    total_days: int = Field(sa_column=Column(Integer, nullable=False))

    reason: str = Field(sa_column=Column(Text, nullable=False))

    emergency_contact_name: Optional[str] = Field(
        default=None, sa_column=Column(String, nullable=True)
    )
    emergency_contact_phone: Optional[str] = Field(
        default=None, sa_column=Column(String, nullable=True)
    )
    emergency_contact_relation: Optional[str] = Field(
        default=None, sa_column=Column(String, nullable=True)
    )

    status: LeaveStatus = Field(
        default=LeaveStatus.PENDING,
        sa_column=Column(SAEnum(LeaveStatus, name="leave_status"), nullable=False, index=True)
    )

    admin_comments: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )

    decided_by: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    )

    decided_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
