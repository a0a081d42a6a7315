from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import AuditContext, attendance_snapshot, log_audit
from app.errors import ApiError
from app.models import (
    AttendanceRecord,
    AuditActorType,
    CheckInMethod,
    CheckOutMethod,
    GeofenceLocation,
    PendingOffPremisesCheckin,
    UserProfile,
)
from app.services.hooks import PostCommitHooks
from app.services.leaves import is_user_on_leave
from app.services.location import (
    GeofencePurpose,
    GeofenceValidation,
    load_active_locations,
    load_device_radius_setting,
    load_location,
    normalize_device_class,
    validate_position,
    validate_qr_position,
)
from app.services.time_policy import (
    can_check_in,
    can_check_out,
    is_late_arrival,
    requires_early_checkout_reason,
    requires_lateness_reason,
)
from app.services.timeutils import end_of_local_day_utc, local_day, normalize_ts, to_local
from app.settings import get_settings

logger = logging.getLogger("app.attendance")

MISSED_CHECKOUT_NOTE = "Auto Check-out (Missed)"
OFFPREMISES_NOTE = "Off-premises check-in approved"

# A closed stale record and its snapshot from before the closure.
StaleClosure = tuple[AttendanceRecord, dict[str, Any] | None]


class AttendanceState(str, enum.Enum):
    NO_SESSION = "no_session"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


@dataclass(frozen=True, slots=True)
class AttendanceOutcome:
    record: AttendanceRecord
    validation: GeofenceValidation | None = None
    lateness_reason_required: bool = False
    early_checkout_reason_required: bool = False
    auto_closed: tuple[AttendanceRecord, ...] = field(default_factory=tuple)

    @property
    def missed_checkout(self) -> bool:
        return bool(self.auto_closed)


def compute_work_hours(check_in_time: datetime, check_out_time: datetime) -> float:
    elapsed = normalize_ts(check_out_time) - normalize_ts(check_in_time)
    return round(elapsed.total_seconds() / 3600, 2)


def _find_day_record(
    db: Session,
    *,
    user_id: int,
    day: date,
    lock: bool = False,
) -> AttendanceRecord | None:
    stmt = (
        select(AttendanceRecord)
        .where(
            AttendanceRecord.user_id == user_id,
            AttendanceRecord.attendance_date == day,
        )
        .order_by(AttendanceRecord.check_in_time.desc(), AttendanceRecord.id.desc())
        .limit(1)
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def _find_stale_open_records(db: Session, *, user_id: int, before_day: date) -> list[AttendanceRecord]:
    return list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.attendance_date < before_day,
                AttendanceRecord.check_out_time.is_(None),
            )
            .order_by(AttendanceRecord.attendance_date.asc())
            .with_for_update()
        ).all()
    )


def _cutoff_label(hour: int) -> str:
    return f"{hour:02d}:00"


class AttendanceService:
    """Per-user, per-day session transitions: no session, checked in, checked out."""

    def __init__(
        self,
        db: Session,
        hooks: PostCommitHooks | None = None,
        *,
        context: AuditContext | None = None,
    ) -> None:
        self.db = db
        self.hooks = hooks if hooks is not None else PostCommitHooks()
        self.context = context or AuditContext()

    def day_status(
        self,
        user: UserProfile,
        *,
        now_utc: datetime | None = None,
    ) -> tuple[AttendanceState, AttendanceRecord | None]:
        today = local_day(normalize_ts(now_utc))
        record = _find_day_record(self.db, user_id=user.id, day=today)
        if record is None:
            return AttendanceState.NO_SESSION, None
        if record.check_out_time is None:
            return AttendanceState.CHECKED_IN, record
        return AttendanceState.CHECKED_OUT, record

    def check_in(
        self,
        user: UserProfile,
        *,
        latitude: float | None,
        longitude: float | None,
        device_class: str | None = None,
        qr_location_id: int | None = None,
        lateness_reason: str | None = None,
        now_utc: datetime | None = None,
    ) -> AttendanceOutcome:
        now = normalize_ts(now_utc)
        today = local_day(now)

        if is_user_on_leave(self.db, user_id=user.id, day=today):
            raise ApiError(status_code=403, code="ON_LEAVE", message="You are on approved leave today.")

        if not can_check_in(user, now):
            cutoff_hour = get_settings().checkin_cutoff_hour
            raise ApiError(
                status_code=403,
                code="CHECKIN_TIME_WINDOW_CLOSED",
                message=f"Check-in is only allowed before {_cutoff_label(cutoff_hour)}.",
                details={"cutoff": _cutoff_label(cutoff_hour), "local_time": to_local(now).strftime("%H:%M")},
            )

        auto_closed = self.close_stale_sessions(user.id, before_day=today)
        self.ensure_no_record_for_day(user.id, today)

        validation = self._validate(
            latitude=latitude,
            longitude=longitude,
            device_class=device_class,
            qr_location_id=qr_location_id,
            location_id=None,
            purpose=GeofencePurpose.CHECK_IN,
        )
        location = validation.nearest_location

        late = is_late_arrival(now)
        reason = (lateness_reason or "").strip() or None
        reason_required = late and requires_lateness_reason(user, now) and reason is None

        record = AttendanceRecord(
            user_id=user.id,
            attendance_date=today,
            check_in_time=now,
            check_in_location_id=location.id if location is not None else None,
            check_in_location_name=location.name if location is not None else None,
            check_in_method=CheckInMethod.QR if qr_location_id is not None else CheckInMethod.PROXIMITY,
            check_in_latitude=latitude,
            check_in_longitude=longitude,
            check_in_distance_m=validation.distance_m,
            gps_available=validation.gps_available,
            proximity_verified=validation.proximity_verified,
            device_class=device_class,
            is_late_arrival=late,
            lateness_reason=reason,
            on_official_duty_outside_premises=False,
            is_remote_checkout=False,
            is_emergency_checkout=False,
            auto_checkout=False,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ApiError(
                status_code=400,
                code="ALREADY_CHECKED_IN",
                message="You have already checked in today.",
            ) from None
        self.db.refresh(record)

        self._queue_audit("ATTENDANCE_CHECK_IN", record, before=None, actor_id=str(user.id))
        logger.info(
            "attendance_check_in",
            extra={
                "user_id": user.id,
                "record_id": record.id,
                "method": record.check_in_method.value,
                "late": late,
                **validation.to_flags(),
            },
        )
        return AttendanceOutcome(
            record=record,
            validation=validation,
            lateness_reason_required=reason_required,
            auto_closed=tuple(auto_closed),
        )

    def check_out(
        self,
        user: UserProfile,
        *,
        latitude: float | None,
        longitude: float | None,
        location_id: int | None = None,
        device_class: str | None = None,
        qr: bool = False,
        early_checkout_reason: str | None = None,
        now_utc: datetime | None = None,
    ) -> AttendanceOutcome:
        now = normalize_ts(now_utc)
        today = local_day(now)

        if not can_check_out(user, now):
            cutoff_hour = get_settings().checkout_cutoff_hour
            raise ApiError(
                status_code=403,
                code="CHECKOUT_TIME_WINDOW_CLOSED",
                message=f"Check-out is only allowed before {_cutoff_label(cutoff_hour)}.",
                details={"cutoff": _cutoff_label(cutoff_hour), "local_time": to_local(now).strftime("%H:%M")},
            )

        auto_closed = self.close_stale_sessions(user.id, before_day=today)
        record = self._open_record_for_day(user.id, today)
        before = attendance_snapshot(record)

        validation: GeofenceValidation | None
        remote = False
        if record.on_official_duty_outside_premises:
            validation = self._try_validate(
                latitude=latitude,
                longitude=longitude,
                device_class=device_class,
                location_id=location_id,
            )
            remote = validation is None or not validation.within_tolerance
        else:
            validation = self._validate(
                latitude=latitude,
                longitude=longitude,
                device_class=device_class,
                qr_location_id=location_id if qr else None,
                location_id=location_id,
                purpose=GeofencePurpose.CHECK_OUT,
                qr_required=qr,
            )

        location = validation.nearest_location if validation is not None and not remote else None
        reason = (early_checkout_reason or "").strip() or None
        reason_required = requires_early_checkout_reason(user, location, now) and reason is None

        record.check_out_time = now
        record.check_out_method = CheckOutMethod.QR if qr and not remote else CheckOutMethod.PROXIMITY
        record.check_out_location_id = location.id if location is not None else None
        record.check_out_location_name = location.name if location is not None else None
        record.check_out_latitude = latitude
        record.check_out_longitude = longitude
        record.is_remote_checkout = remote
        record.early_checkout_reason = reason
        record.work_hours = compute_work_hours(record.check_in_time, now)
        self.db.commit()
        self.db.refresh(record)

        self._queue_audit("ATTENDANCE_CHECK_OUT", record, before=before, actor_id=str(user.id))
        logger.info(
            "attendance_check_out",
            extra={
                "user_id": user.id,
                "record_id": record.id,
                "method": record.check_out_method.value,
                "remote": remote,
                "work_hours": record.work_hours,
            },
        )
        return AttendanceOutcome(
            record=record,
            validation=validation,
            early_checkout_reason_required=reason_required,
            auto_closed=tuple(auto_closed),
        )

    def emergency_checkout(
        self,
        user: UserProfile,
        *,
        latitude: float | None,
        longitude: float | None,
        reason: str,
        device_class: str | None = None,
        now_utc: datetime | None = None,
    ) -> AttendanceOutcome:
        settings = get_settings()
        now = normalize_ts(now_utc)
        today = local_day(now)

        cleaned_reason = (reason or "").strip()
        if len(cleaned_reason) < settings.emergency_reason_min_length:
            raise ApiError(
                status_code=400,
                code="EMERGENCY_REASON_TOO_SHORT",
                message=(
                    f"Emergency reason must be at least {settings.emergency_reason_min_length} characters."
                ),
                details={"min_length": settings.emergency_reason_min_length},
            )

        if is_user_on_leave(self.db, user_id=user.id, day=today):
            raise ApiError(
                status_code=403,
                code="ON_LEAVE",
                message="Emergency check-out is not available while on leave.",
            )

        record = self._open_record_for_day(user.id, today)
        window = timedelta(minutes=settings.emergency_checkout_window_minutes)
        elapsed = now - normalize_ts(record.check_in_time)
        if elapsed > window:
            raise ApiError(
                status_code=400,
                code="EMERGENCY_WINDOW_EXPIRED",
                message=(
                    f"Emergency check-out is only allowed within {settings.emergency_checkout_window_minutes} "
                    "minutes of check-in."
                ),
                details={
                    "window_minutes": settings.emergency_checkout_window_minutes,
                    "elapsed_minutes": int(elapsed.total_seconds() // 60),
                },
            )

        validation = self._validate(
            latitude=latitude,
            longitude=longitude,
            device_class=device_class,
            qr_location_id=None,
            location_id=None,
            purpose=GeofencePurpose.CHECK_OUT,
        )
        location = validation.nearest_location
        before = attendance_snapshot(record)

        record.check_out_time = now
        record.check_out_method = CheckOutMethod.EMERGENCY
        record.check_out_location_id = location.id if location is not None else None
        record.check_out_location_name = location.name if location is not None else None
        record.check_out_latitude = latitude
        record.check_out_longitude = longitude
        record.is_emergency_checkout = True
        record.emergency_reason = cleaned_reason
        record.work_hours = compute_work_hours(record.check_in_time, now)
        self.db.commit()
        self.db.refresh(record)

        self._queue_audit(
            "ATTENDANCE_EMERGENCY_CHECK_OUT",
            record,
            before=before,
            actor_id=str(user.id),
            details={"reason": cleaned_reason},
        )
        logger.warning(
            "attendance_emergency_check_out",
            extra={"user_id": user.id, "record_id": record.id, "elapsed_minutes": int(elapsed.total_seconds() // 60)},
        )
        return AttendanceOutcome(record=record, validation=validation)

    def build_offpremises_record(
        self,
        request: PendingOffPremisesCheckin,
        *,
        approver: UserProfile,
    ) -> tuple[AttendanceRecord, list[StaleClosure]]:
        """Stage the record for an approved off-premises request; the caller commits.

        The session starts when the request was made, not when it was approved.
        Stale sessions closed along the way are returned so the caller can queue
        their audit entries once its own commit succeeds.
        """
        check_in_time = normalize_ts(request.created_at)
        day = local_day(check_in_time)
        swept = self._sweep_stale_sessions(request.user_id, before_day=day)
        if swept:
            self.db.flush()
        self.ensure_no_record_for_day(request.user_id, day)

        record = AttendanceRecord(
            user_id=request.user_id,
            attendance_date=day,
            check_in_time=check_in_time,
            check_in_location_id=None,
            check_in_location_name=request.google_maps_name or request.current_location_name,
            check_in_method=CheckInMethod.OFFPREMISES_CONFIRMED,
            check_in_latitude=request.latitude,
            check_in_longitude=request.longitude,
            gps_available=True,
            proximity_verified=False,
            is_late_arrival=is_late_arrival(check_in_time),
            on_official_duty_outside_premises=True,
            off_premises_request_id=request.id,
            is_remote_checkout=False,
            is_emergency_checkout=False,
            auto_checkout=False,
            notes=f"{OFFPREMISES_NOTE} by {approver.full_name}",
        )
        self.db.add(record)
        return record, swept

    def close_stale_sessions(self, user_id: int, *, before_day: date) -> list[AttendanceRecord]:
        swept = self._sweep_stale_sessions(user_id, before_day=before_day)
        if not swept:
            return []
        self.db.commit()
        self.queue_auto_checkout_audits(user_id, swept)
        return [record for record, _ in swept]

    def queue_auto_checkout_audits(self, user_id: int, swept: list[StaleClosure]) -> None:
        """Queue audit entries for closures that are already committed."""
        for record, before in swept:
            self._queue_audit(
                "ATTENDANCE_AUTO_CHECK_OUT",
                record,
                before=before,
                actor_type=AuditActorType.SYSTEM,
                actor_id="system",
            )
        logger.info(
            "attendance_stale_sessions_closed",
            extra={"user_id": user_id, "record_ids": [record.id for record, _ in swept]},
        )

    def _sweep_stale_sessions(self, user_id: int, *, before_day: date) -> list[StaleClosure]:
        swept: list[StaleClosure] = []
        for record in _find_stale_open_records(self.db, user_id=user_id, before_day=before_day):
            before = attendance_snapshot(record)
            checkout_at = end_of_local_day_utc(record.attendance_date)
            record.check_out_time = checkout_at
            record.check_out_method = CheckOutMethod.AUTO_SYSTEM
            record.auto_checkout = True
            record.work_hours = compute_work_hours(record.check_in_time, checkout_at)
            record.notes = f"{record.notes}\n{MISSED_CHECKOUT_NOTE}" if record.notes else MISSED_CHECKOUT_NOTE
            swept.append((record, before))
        return swept

    def ensure_no_record_for_day(self, user_id: int, day: date) -> None:
        existing = _find_day_record(self.db, user_id=user_id, day=day)
        if existing is None:
            return
        if existing.check_out_time is None:
            raise ApiError(
                status_code=400,
                code="ALREADY_CHECKED_IN",
                message="You have already checked in today.",
                details={"record_id": existing.id},
            )
        raise ApiError(
            status_code=400,
            code="ATTENDANCE_ALREADY_COMPLETED",
            message="You have already completed attendance for today.",
            details={"record_id": existing.id},
        )

    def _open_record_for_day(self, user_id: int, day: date) -> AttendanceRecord:
        record = _find_day_record(self.db, user_id=user_id, day=day, lock=True)
        if record is None:
            raise ApiError(
                status_code=400,
                code="NOT_CHECKED_IN",
                message="No check-in found for today.",
            )
        if record.check_out_time is not None:
            raise ApiError(
                status_code=400,
                code="ALREADY_CHECKED_OUT",
                message="You have already checked out today.",
                details={"record_id": record.id},
            )
        return record

    def _validate(
        self,
        *,
        latitude: float | None,
        longitude: float | None,
        device_class: str | None,
        qr_location_id: int | None,
        location_id: int | None,
        purpose: GeofencePurpose,
        qr_required: bool = False,
    ) -> GeofenceValidation:
        device_setting = load_device_radius_setting(self.db, normalize_device_class(device_class))

        if qr_required and qr_location_id is None:
            raise ApiError(
                status_code=400,
                code="LOCATION_REQUIRED",
                message="QR check-out requires the scanned location.",
            )

        if qr_location_id is not None:
            qr_location = self._require_location(qr_location_id)
            validation = validate_qr_position(
                latitude,
                longitude,
                qr_location,
                device_setting=device_setting,
                purpose=purpose,
            )
        else:
            if latitude is None or longitude is None:
                raise ApiError(
                    status_code=400,
                    code="LOCATION_REQUIRED",
                    message="Location coordinates are required.",
                )
            if location_id is not None:
                locations = [self._require_location(location_id)]
            else:
                locations = load_active_locations(self.db)
            if not locations:
                raise ApiError(
                    status_code=400,
                    code="NO_ACTIVE_LOCATIONS",
                    message="No active attendance locations are configured.",
                )
            validation = validate_position(
                latitude,
                longitude,
                locations,
                device_setting=device_setting,
                purpose=purpose,
            )

        if not validation.within_tolerance:
            location = validation.nearest_location
            location_name = location.name if location is not None else "the nearest location"
            raise ApiError(
                status_code=400,
                code="OUTSIDE_GEOFENCE",
                message=(
                    f"You are {validation.rounded_distance_m}m from {location_name}; "
                    f"allowed distance is {int(validation.tolerance_m or 0)}m."
                ),
                details=validation.to_flags(),
            )
        return validation

    def _try_validate(
        self,
        *,
        latitude: float | None,
        longitude: float | None,
        device_class: str | None,
        location_id: int | None,
    ) -> GeofenceValidation | None:
        if latitude is None or longitude is None:
            return None
        locations: list[GeofenceLocation]
        if location_id is not None:
            location = load_location(self.db, location_id)
            locations = [location] if location is not None else []
        else:
            locations = load_active_locations(self.db)
        if not locations:
            return None
        device_setting = load_device_radius_setting(self.db, normalize_device_class(device_class))
        return validate_position(
            latitude,
            longitude,
            locations,
            device_setting=device_setting,
            purpose=GeofencePurpose.CHECK_OUT,
        )

    def _require_location(self, location_id: int) -> GeofenceLocation:
        location = load_location(self.db, location_id)
        if location is None:
            raise ApiError(
                status_code=400,
                code="LOCATION_NOT_FOUND",
                message="The attendance location is unknown or inactive.",
            )
        return location

    def _queue_audit(
        self,
        action: str,
        record: AttendanceRecord,
        *,
        before: dict[str, Any] | None,
        actor_id: str,
        actor_type: AuditActorType = AuditActorType.USER,
        details: dict[str, Any] | None = None,
    ) -> None:
        after = attendance_snapshot(record)
        entity_id = str(record.id) if record.id is not None else None
        context = self.context
        self.hooks.add(
            f"audit:{action}",
            lambda: log_audit(
                self.db,
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                success=True,
                entity_type="attendance_record",
                entity_id=entity_id,
                ip=context.ip,
                user_agent=context.user_agent,
                details=details,
                before=before,
                after=after,
                request_id=context.request_id,
            ),
        )
