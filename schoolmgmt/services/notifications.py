import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession

from schoolmgmt.models.academics import Exam
from schoolmgmt.models.notifications import Notification
from schoolmgmt.models.users import Student

logger = logging.getLogger(__name__)


def exam_result_notifications(exam: Exam, students: Iterable[Student]) -> List[Dict[str, Any]]:
    """One notification per student that has a parent account."""
    subject_name = exam.subject.name if exam.subject else exam.title
    notifications = []
    for student in students:
        if not student.parent_id:
            continue
        notifications.append({
            "user_id": student.parent_id,
            "type": "exam_result_published",
            "title": "New Exam Result Published",
            "message": f"Exam result for '{student.student_name}' in '{subject_name}' has been published.",
            "data": {"exam_id": exam.id, "student_id": student.id},
        })
    return notifications


def payment_received_notification(student: Student, amount: Decimal, **data) -> Dict[str, Any]:
    return {
        "user_id": student.parent_id,
        "type": "payment_received",
        "title": "Payment Received",
        "message": f"A payment of {amount} has been received for {student.student_name}.",
        "data": {"student_id": student.id, "amount": str(amount), **data},
    }


async def send_notifications(db: AsyncSession, notifications: List[Dict[str, Any]]) -> int:
    """
    Store notifications in their own commit, after the main work is committed.

    Delivery is best-effort: a failure is logged and rolled back without
    raising, so the operation that triggered it still succeeds.
    """
    if not notifications:
        return 0

    try:
        db.add_all([Notification(**notification) for notification in notifications])
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.warning(f"Could not queue {len(notifications)} notification(s): {str(e)}", exc_info=True)
        return 0

    return len(notifications)
