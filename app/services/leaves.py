from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import LeaveDay

ON_LEAVE_STATUS = "on_leave"


def is_user_on_leave(db: Session, *, user_id: int, day: date) -> bool:
    leave_id = db.scalar(
        select(LeaveDay.id).where(
            LeaveDay.user_id == user_id,
            LeaveDay.leave_date == day,
            LeaveDay.status == ON_LEAVE_STATUS,
        )
    )
    return leave_id is not None
