"""Centralized Enum Definitions"""

import enum


# Users
class UserRole(str, enum.Enum):
    """User roles for RBAC"""
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


# Course lifecycle
class CourseStatus(str, enum.Enum):
    """
    Course lifecycle stage.

    Instructors only move a course into SUBMITTED; every other target state
    is set by the administrative review workflow.
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_REVISION = "needs_revision"
    PUBLISHED = "published"


class CourseStatusAction(str, enum.Enum):
    """Actions accepted by the instructor status endpoint"""
    SUBMIT = "submit"
    SUBMITTED = "submitted"
    WITHDRAW = "withdraw"
    DRAFT = "draft"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"


# Enrollment
class EnrollmentStatus(str, enum.Enum):
    """Common enrollment status values (column is free-form)"""
    ACTIVE = "active"
    COMPLETED = "completed"
    REFUNDED = "refunded"


# Billing
class BillStatus(str, enum.Enum):
    """Bill payment status"""
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


# Refunds
class RefundStatus(str, enum.Enum):
    """Refund request status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self is not RefundStatus.PENDING


# Refunds that went through teacher approval
SETTLED_REFUND_STATUSES = (RefundStatus.APPROVED, RefundStatus.COMPLETED)


class RefundMethod(str, enum.Enum):
    """How the refunded money is returned"""
    ORIGINAL_PAYMENT = "original_payment"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"


class ContactMethodType(str, enum.Enum):
    """Channel a student wants to be contacted on about a refund"""
    EMAIL = "email"
    PHONE = "phone"
    BOTH = "both"


# Reconciliation
class AnomalyType(str, enum.Enum):
    """Cross-record inconsistencies reported by the reconciliation job"""
    INCOMPLETE_REFUND_CASCADE = "incomplete_refund_cascade"
    BILL_REFUNDED_WITHOUT_APPROVAL = "bill_refunded_without_approval"
    ENROLLMENT_REFUNDED_WITHOUT_APPROVAL = "enrollment_refunded_without_approval"
    DUPLICATE_PENDING_REFUND = "duplicate_pending_refund"
