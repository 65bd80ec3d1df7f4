import re
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, field_validator
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from app.models.enums import ContactMethodType, RefundMethod, RefundStatus

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[0-9]{10,11}$")


class ContactMethod(BaseModel):
    """How the student wants to be reached about the refund."""
    type: ContactMethodType
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if v and not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v or None

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if v and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone format")
        return v or None

    def missing_fields(self) -> List[str]:
        """Contact details the chosen type requires but were not given."""
        missing = []
        if self.type in (ContactMethodType.EMAIL, ContactMethodType.BOTH) and not self.email:
            missing.append("email")
        if self.type in (ContactMethodType.PHONE, ContactMethodType.BOTH) and not self.phone:
            missing.append("phone")
        return missing


class RefundCreate(BaseModel):
    enrollment_id: UUID
    reason: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    contact_method: ContactMethod
    # Optional; when given it must match the paid bill amount
    amount: Optional[Decimal] = Field(None, gt=0)


class CreateRefundCommand(RefundCreate):
    student_id: UUID


class RefundApprove(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)
    refund_method: Optional[RefundMethod] = None


class ApproveRefundCommand(RefundApprove):
    refund_id: UUID
    teacher_id: UUID


class RefundReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class RejectRefundCommand(RefundReject):
    refund_id: UUID
    teacher_id: UUID


class CancelRefundCommand(BaseModel):
    refund_id: UUID
    student_id: UUID


class AdminNoteUpdate(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000)


class RefundFilter(BaseModel):
    """Typed listing filter shared by the student, teacher and admin views."""
    status: Optional[RefundStatus] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class RefundResponse(BaseModel):
    id: UUID
    student_id: UUID
    teacher_id: UUID
    course_id: UUID
    enrollment_id: UUID
    bill_id: UUID
    amount: Decimal
    reason: str
    description: Optional[str] = None
    contact_type: ContactMethodType
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    status: RefundStatus
    refund_method: Optional[RefundMethod] = None
    requested_at: datetime
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    teacher_notes: Optional[str] = None
    admin_notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EligibleCourse(BaseModel):
    """An active paid enrollment the student may ask to be refunded for."""
    enrollment_id: UUID
    course_id: UUID
    course_title: str
    teacher_id: UUID
    amount: Decimal
    enrolled_at: datetime
    progress: int


class RefundStats(BaseModel):
    total_refunds: int = 0
    pending_refunds: int = 0
    approved_refunds: int = 0
    rejected_refunds: int = 0
    cancelled_refunds: int = 0
    completed_refunds: int = 0
    total_refunded_amount: Decimal = Decimal("0")
    average_refund_amount: Decimal = Decimal("0")
