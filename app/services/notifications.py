from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import StaffNotification, UserProfile, UserRole

logger = logging.getLogger("app.notifications")


def create_staff_notification(
    db: Session,
    *,
    recipient_id: int,
    title: str,
    message: str,
    notification_type: str,
    sender_id: int | None = None,
    data: dict[str, Any] | None = None,
) -> StaffNotification:
    notification = StaffNotification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        title=title,
        message=message,
        notification_type=notification_type,
        data=data or {},
        is_read=False,
    )
    db.add(notification)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "staff_notification_created",
        extra={
            "recipient_id": recipient_id,
            "sender_id": sender_id,
            "notification_type": notification_type,
        },
    )
    return notification


def find_department_heads(db: Session, department_id: int | None) -> list[UserProfile]:
    if department_id is None:
        return []
    return list(
        db.scalars(
            select(UserProfile).where(
                UserProfile.department_id == department_id,
                UserProfile.role == UserRole.DEPARTMENT_HEAD,
                UserProfile.is_active.is_(True),
            )
        ).all()
    )
