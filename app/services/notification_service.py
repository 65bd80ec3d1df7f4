"""Notification signals for refund, submission and reconciliation events (Resend).

Delivery is best-effort: a notification never fails the operation that
emitted it. Without RESEND_API_KEY, or in the test environment, signals are
only logged.
"""

import logging
from typing import Optional

from app.config import Settings
from app.models.course import Course
from app.models.refund import RefundRequest

logger = logging.getLogger(__name__)


def _should_skip_email(settings: Settings, to_email: Optional[str]) -> bool:
    """Skip sending without a key, without a recipient, or in the test env."""
    if not settings.RESEND_API_KEY or not to_email:
        return True
    return settings.ENVIRONMENT == "test"


def _send(settings: Settings, to_email: Optional[str], subject: str, html: str, event: str) -> bool:
    if _should_skip_email(settings, to_email):
        logger.info("Notification logged only: %s to %s", event, to_email, extra={"event": event})
        return False

    try:
        import resend

        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send(
            {
                "from": settings.EMAIL_FROM,
                "to": [to_email],
                "subject": subject,
                "html": html,
            }
        )
        logger.info("Notification sent: %s to %s", event, to_email, extra={"event": event})
        return True
    except Exception as e:
        logger.exception("Failed to send %s notification to %s: %s", event, to_email, e)
        return False


def notify_refund_requested(settings: Settings, teacher_email: Optional[str], refund: RefundRequest) -> bool:
    """Tell the course owner a student asked for a refund."""
    html = f"""
<p>A student has requested a refund of <strong>{refund.amount}</strong>.</p>
<p>Reason: {refund.reason}</p>
<p>Please approve or reject the request from your teacher dashboard.</p>
"""
    return _send(settings, teacher_email, "New refund request", html, "refund_requested")


def notify_refund_processed(settings: Settings, student_email: Optional[str], refund: RefundRequest) -> bool:
    """Tell the student their refund was approved or rejected."""
    status = refund.status.value
    html = f"<p>Your refund request of <strong>{refund.amount}</strong> was {status}.</p>"
    if refund.rejection_reason:
        html += f"<p>Reason: {refund.rejection_reason}</p>"
    return _send(settings, student_email, f"Refund request {status}", html, "refund_processed")


def notify_course_submitted(settings: Settings, course: Course) -> bool:
    """Signal the review queue; the admin review workflow consumes the log event."""
    logger.info(
        "Course submitted for review",
        extra={"event": "course_submitted", "course_id": str(course.id)},
    )
    return True


def notify_reconciliation_alert(settings: Settings, total_drift: int, anomaly_count: int) -> bool:
    """Page operations when a reconciliation run found too much drift."""
    html = (
        f"<p>Reconciliation corrected a total drift of <strong>{total_drift}</strong> "
        f"students and flagged {anomaly_count} anomalies.</p>"
    )
    return _send(settings, settings.OPS_ALERT_EMAIL, "Reconciliation drift alert", html, "reconciliation_alert")
