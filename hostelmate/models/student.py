from sqlmodel import SQLModel, Field, Column
from sqlalchemy import String, Uuid, DateTime, Integer
from uuid import uuid4
from datetime import datetime
from typing import Optional
import uuid

from hostelmate.core.config import settings


class Student(SQLModel, table=True):
    __tablename__ = "students"

    id: uuid.UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True)
    )

    # Hostel-issued code printed on the ID card, e.g. HM-2025-0042
    student_code: str = Field(
        sa_column=Column(String, nullable=False, unique=True)
    )

    full_name: str = Field(
        sa_column=Column(String, nullable=False)
    )

    email: str = Field(
        sa_column=Column(String, nullable=False, unique=True)
    )

    mobile_number: Optional[str] = Field(
        default=None, sa_column=Column(String, nullable=True)
    )

    # Room context only enriches leave QR payloads
    hostel_block: Optional[str] = Field(
        default=None, sa_column=Column(String, nullable=True)
    )
    room_number: Optional[str] = Field(
        default=None, sa_column=Column(String, nullable=True)
    )

    # Days of leave left; approvals debit it, never below zero
    leave_balance: int = Field(
        default=settings.LEAVE_DEFAULT_BALANCE,
        sa_column=Column(Integer, nullable=False, default=settings.LEAVE_DEFAULT_BALANCE)
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
