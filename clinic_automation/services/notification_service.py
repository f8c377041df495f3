"""
System Notification Service
Writes in-app notifications for clinic admins when an automation run finishes
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Notification, Profile
from ..models_automation import Automation, AutomationExecution

logger = logging.getLogger(__name__)


def create_system_notification(
    db: Session,
    clinic_id: int,
    title: str,
    message: str,
    notification_type: str = "system",
    metadata: Optional[dict] = None,
) -> int:
    """
    Create one notification per admin profile of the clinic

    Returns:
        Number of notifications written (0 on failure - never raises)
    """
    try:
        admins = (
            db.query(Profile)
            .filter(Profile.clinic_id == clinic_id, Profile.role == "admin")
            .all()
        )
        if not admins:
            logger.debug(f"ℹ️ No admin profiles for clinic {clinic_id}, notification skipped")
            return 0

        for admin in admins:
            db.add(
                Notification(
                    clinic_id=clinic_id,
                    user_id=admin.id,
                    type=notification_type,
                    title=title,
                    message=message,
                    extra=metadata or {},
                    read=False,
                )
            )
        db.commit()
        logger.info(f"🔔 Notification '{title}' sent to {len(admins)} admin(s) of clinic {clinic_id}")
        return len(admins)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Failed to create system notification for clinic {clinic_id}: {e}")
        return 0


def notify_execution_outcome(
    db: Session, automation: Automation, execution: AutomationExecution
) -> int:
    """Notify clinic admins about a finished (completed or failed) execution"""
    if execution.status == "failed":
        title = "Automação falhou"
        message = f"A automação \"{automation.name}\" falhou: {execution.error_message}"
        notification_type = "error"
    else:
        title = "Automação executada"
        message = (
            f"A automação \"{automation.name}\" foi executada: "
            f"{execution.success_count} enviada(s), {execution.failure_count} falha(s)"
        )
        notification_type = "system"

    return create_system_notification(
        db,
        clinic_id=automation.clinic_id,
        title=title,
        message=message,
        notification_type=notification_type,
        metadata={
            "automation_id": automation.id,
            "execution_id": execution.id,
            "status": execution.status,
        },
    )
