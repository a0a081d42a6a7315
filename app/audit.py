from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import AttendanceRecord, AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


@dataclass(frozen=True, slots=True)
class AuditContext:
    ip: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


def attendance_snapshot(record: AttendanceRecord | None) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "id": record.id,
        "attendance_date": record.attendance_date.isoformat() if record.attendance_date else None,
        "check_in_time": record.check_in_time.isoformat() if record.check_in_time else None,
        "check_in_method": record.check_in_method.value if record.check_in_method else None,
        "check_in_location_id": record.check_in_location_id,
        "check_out_time": record.check_out_time.isoformat() if record.check_out_time else None,
        "check_out_method": record.check_out_method.value if record.check_out_method else None,
        "check_out_location_id": record.check_out_location_id,
        "work_hours": record.work_hours,
        "is_emergency_checkout": bool(record.is_emergency_checkout),
        "auto_checkout": bool(record.auto_checkout),
        "on_official_duty_outside_premises": bool(record.on_official_duty_outside_premises),
    }


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    payload = dict(details or {})
    if before is not None:
        payload["before"] = before
    if after is not None:
        payload["after"] = after

    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=payload,
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip": ip,
            "user_agent": user_agent,
            "success": success,
            "details": payload,
        },
    )

