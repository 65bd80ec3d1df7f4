"""Billing Model"""

from sqlalchemy import Column, DateTime, Numeric, ForeignKey, Uuid

from app.models.base import BaseModel, enum_column_type
from app.models.enums import BillStatus


class Bill(BaseModel):
    """
    Payment record for one course purchase.
    Produced by the payment flow; moved to REFUNDED only by refund approval,
    and only once.
    """
    __tablename__ = "bills"

    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(
        enum_column_type(BillStatus, "bill_status"),
        default=BillStatus.PENDING,
        nullable=False,
        index=True,
    )
    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Bill {self.amount} - {self.status}>"
