"""Models Package - Export all models for easy imports"""

from app.models.base import BaseModel, StatusMixin
from app.models.enums import *
from app.models.user import User
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.billing import Bill
from app.models.refund import RefundRequest


__all__ = [
    # Base classes
    "BaseModel",
    "StatusMixin",

    # Users
    "User",

    # Course lifecycle
    "Course",
    "Enrollment",

    # Billing & refunds
    "Bill",
    "RefundRequest",
]
