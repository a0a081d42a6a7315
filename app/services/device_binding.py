from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import DeviceSecurityViolation, DeviceUserBinding, UserProfile, ViolationType
from app.services.hooks import PostCommitHooks
from app.services.notifications import create_staff_notification, find_department_heads
from app.services.timeutils import normalize_ts
from app.settings import get_settings

logger = logging.getLogger("app.device_binding")


class CheckOutcome(str, enum.Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    INDETERMINATE_FAIL_OPEN = "indeterminate_fail_open"
    INDETERMINATE_FAIL_CLOSED = "indeterminate_fail_closed"


@dataclass(frozen=True, slots=True)
class DeviceBindingResult:
    outcome: CheckOutcome
    violation: bool = False
    bound_to_email: str | None = None
    concurrent_devices: tuple[str, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.outcome in (CheckOutcome.ALLOWED, CheckOutcome.INDETERMINATE_FAIL_OPEN)

    @property
    def concurrent(self) -> bool:
        return bool(self.concurrent_devices)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "outcome": self.outcome.value,
            "violation": self.violation,
            "bound_to_email": self.bound_to_email,
            "concurrent_session": self.concurrent,
            "concurrent_devices": list(self.concurrent_devices),
        }


def _find_active_binding(db: Session, device_id: str) -> DeviceUserBinding | None:
    return db.scalar(
        select(DeviceUserBinding).where(
            DeviceUserBinding.device_id == device_id,
            DeviceUserBinding.is_active.is_(True),
        )
    )


def _recent_other_device_ids(
    db: Session,
    *,
    user_id: int,
    device_id: str,
    since_utc: datetime,
) -> list[str]:
    return list(
        db.scalars(
            select(DeviceUserBinding.device_id).where(
                DeviceUserBinding.user_id == user_id,
                DeviceUserBinding.device_id != device_id,
                DeviceUserBinding.is_active.is_(True),
                DeviceUserBinding.last_seen_at >= since_utc,
            )
        ).all()
    )


class DeviceBindingGuard:
    """One active user per physical device.

    Storage faults resolve to an indeterminate outcome; ``fail_open`` picks
    whether that outcome lets the caller through.
    """

    def __init__(self, db: Session, hooks: PostCommitHooks | None = None, *, fail_open: bool = True) -> None:
        self.db = db
        self.hooks = hooks if hooks is not None else PostCommitHooks()
        self.fail_open = fail_open

    def check_and_bind(
        self,
        *,
        device_id: str,
        user: UserProfile,
        device_info: dict[str, Any] | None = None,
        ip: str | None = None,
        now_utc: datetime | None = None,
    ) -> DeviceBindingResult:
        now = normalize_ts(now_utc)
        try:
            return self._check_and_bind(
                device_id=device_id,
                user=user,
                device_info=device_info or {},
                ip=ip,
                now_utc=now,
            )
        except SQLAlchemyError:
            self.db.rollback()
            outcome = (
                CheckOutcome.INDETERMINATE_FAIL_OPEN if self.fail_open else CheckOutcome.INDETERMINATE_FAIL_CLOSED
            )
            logger.exception(
                "device_binding_check_failed",
                extra={"device_id": device_id, "user_id": user.id, "outcome": outcome.value},
            )
            return DeviceBindingResult(outcome=outcome)

    def _check_and_bind(
        self,
        *,
        device_id: str,
        user: UserProfile,
        device_info: dict[str, Any],
        ip: str | None,
        now_utc: datetime,
    ) -> DeviceBindingResult:
        binding = _find_active_binding(self.db, device_id)
        if binding is None:
            binding = self._create_binding(
                device_id=device_id,
                user=user,
                device_info=device_info,
                ip=ip,
                now_utc=now_utc,
            )

        if binding.user_id != user.id:
            return self._deny(binding, device_id=device_id, user=user, device_info=device_info, ip=ip)

        binding.last_seen_at = now_utc
        binding.ip_address = ip
        if device_info:
            binding.device_info = device_info

        window = timedelta(hours=get_settings().concurrent_device_window_hours)
        concurrent = _recent_other_device_ids(
            self.db,
            user_id=user.id,
            device_id=device_id,
            since_utc=now_utc - window,
        )
        self.db.commit()

        if concurrent:
            logger.info(
                "device_concurrent_session",
                extra={"device_id": device_id, "user_id": user.id, "other_devices": concurrent},
            )
        return DeviceBindingResult(outcome=CheckOutcome.ALLOWED, concurrent_devices=tuple(concurrent))

    def _create_binding(
        self,
        *,
        device_id: str,
        user: UserProfile,
        device_info: dict[str, Any],
        ip: str | None,
        now_utc: datetime,
    ) -> DeviceUserBinding:
        binding = DeviceUserBinding(
            device_id=device_id,
            user_id=user.id,
            device_info=device_info,
            ip_address=ip,
            is_active=True,
            last_seen_at=now_utc,
        )
        self.db.add(binding)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the insert race; whoever won owns the device.
            self.db.rollback()
            winner = _find_active_binding(self.db, device_id)
            if winner is None:
                raise
            return winner

        logger.info("device_bound", extra={"device_id": device_id, "user_id": user.id})
        return binding

    def _deny(
        self,
        binding: DeviceUserBinding,
        *,
        device_id: str,
        user: UserProfile,
        device_info: dict[str, Any],
        ip: str | None,
    ) -> DeviceBindingResult:
        bound_user = binding.user
        bound_email = bound_user.email if bound_user is not None else None
        bound_user_id = binding.user_id

        self.record_violation(
            device_id=device_id,
            user=user,
            violation_type=ViolationType.DEVICE_SHARING,
            bound_user_id=bound_user_id,
            device_info=device_info,
            ip=ip,
        )
        self.hooks.add(
            "notify_department_head_device_violation",
            lambda: self._notify_department_heads(
                user=user,
                device_id=device_id,
                bound_email=bound_email,
            ),
        )
        logger.warning(
            "device_binding_conflict",
            extra={"device_id": device_id, "user_id": user.id, "bound_user_id": bound_user_id},
        )
        return DeviceBindingResult(
            outcome=CheckOutcome.DENIED,
            violation=True,
            bound_to_email=bound_email,
        )

    def record_violation(
        self,
        *,
        device_id: str,
        user: UserProfile,
        violation_type: ViolationType,
        bound_user_id: int | None = None,
        device_info: dict[str, Any] | None = None,
        ip: str | None = None,
    ) -> bool:
        violation = DeviceSecurityViolation(
            device_id=device_id,
            ip_address=ip,
            attempted_user_id=user.id,
            bound_user_id=bound_user_id,
            violation_type=violation_type,
            device_info=device_info or {},
        )
        self.db.add(violation)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "device_violation_write_failed",
                extra={"device_id": device_id, "user_id": user.id, "violation_type": violation_type.value},
            )
            return False
        return True

    def _notify_department_heads(self, *, user: UserProfile, device_id: str, bound_email: str | None) -> None:
        for head in find_department_heads(self.db, user.department_id):
            create_staff_notification(
                self.db,
                recipient_id=head.id,
                sender_id=user.id,
                title="Device security alert",
                message=(
                    f"{user.full_name} tried to check in from a device registered to "
                    f"{bound_email or 'another user'}."
                ),
                notification_type="device_security_violation",
                data={"device_id": device_id, "attempted_user_id": user.id, "bound_to_email": bound_email},
            )
