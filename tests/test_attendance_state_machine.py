from __future__ import annotations

import unittest
from datetime import date, datetime
from math import degrees
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError

from app.errors import ApiError
from app.models import (
    AttendanceRecord,
    CheckInMethod,
    CheckOutMethod,
    DeviceClass,
    DeviceRadiusSetting,
    GeofenceLocation,
    UserProfile,
    UserRole,
)
from app.services.attendance import AttendanceService, AttendanceState, compute_work_hours
from app.services.location import EARTH_RADIUS_M

LOCAL_TZ = ZoneInfo("Africa/Accra")
SITE_LAT = 41.0
SITE_LON = 29.0


class _DummyDB:
    def __init__(self, *, commit_error: Exception | None = None) -> None:
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0
        self._commit_error = commit_error

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def flush(self) -> None:
        return

    def commit(self) -> None:
        if self._commit_error is not None:
            error, self._commit_error = self._commit_error, None
            raise error
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def refresh(self, _obj: object) -> None:
        return


def _local(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=LOCAL_TZ)


def _north(meters: float) -> float:
    return SITE_LAT + degrees(meters / EARTH_RADIUS_M)


def _user() -> UserProfile:
    return UserProfile(id=1, email="staff@example.com", role=UserRole.STAFF, department_id=2, is_active=True)


def _site(radius_m: int = 100) -> GeofenceLocation:
    return GeofenceLocation(
        id=5,
        name="Head Office",
        latitude=SITE_LAT,
        longitude=SITE_LON,
        radius_m=radius_m,
        is_active=True,
        requires_early_checkout_reason=False,
    )


def _record(check_in_time: datetime, **overrides) -> AttendanceRecord:  # type: ignore[no-untyped-def]
    values = {
        "id": 11,
        "user_id": 1,
        "attendance_date": check_in_time.date(),
        "check_in_time": check_in_time,
        "check_in_method": CheckInMethod.PROXIMITY,
        "on_official_duty_outside_premises": False,
        "is_emergency_checkout": False,
        "auto_checkout": False,
        "notes": None,
    }
    values.update(overrides)
    return AttendanceRecord(**values)


def _patch_queries(
    *,
    day_record: AttendanceRecord | None = None,
    stale: list[AttendanceRecord] | None = None,
    on_leave: bool = False,
    device_setting: DeviceRadiusSetting | None = None,
    locations: list[GeofenceLocation] | None = None,
):  # type: ignore[no-untyped-def]
    return (
        patch("app.services.attendance.is_user_on_leave", return_value=on_leave),
        patch("app.services.attendance._find_day_record", return_value=day_record),
        patch("app.services.attendance._find_stale_open_records", return_value=stale or []),
        patch("app.services.attendance.load_device_radius_setting", return_value=device_setting),
        patch("app.services.attendance.load_active_locations", return_value=[_site()] if locations is None else locations),
        patch("app.services.attendance.load_location", return_value=_site()),
    )


class CheckInTests(unittest.TestCase):
    def _check_in(self, db: _DummyDB, now: datetime, **kwargs):  # type: ignore[no-untyped-def]
        patch_kwargs = {
            key: kwargs.pop(key)
            for key in ("day_record", "stale", "on_leave", "device_setting", "locations")
            if key in kwargs
        }
        kwargs.setdefault("latitude", _north(20.0))
        kwargs.setdefault("longitude", SITE_LON)
        p1, p2, p3, p4, p5, p6 = _patch_queries(**patch_kwargs)
        with p1, p2, p3, p4, p5, p6:
            service = AttendanceService(db)
            outcome = service.check_in(_user(), now_utc=now, **kwargs)
        return service, outcome

    def test_direct_check_in_creates_open_record(self) -> None:
        db = _DummyDB()
        service, outcome = self._check_in(db, _local(2026, 3, 3, 8, 30))

        record = outcome.record
        self.assertIn(record, db.added)
        self.assertEqual(record.attendance_date, date(2026, 3, 3))
        self.assertEqual(record.check_in_method, CheckInMethod.PROXIMITY)
        self.assertEqual(record.check_in_location_id, 5)
        self.assertIsNone(record.check_out_time)
        self.assertTrue(record.proximity_verified)
        self.assertFalse(record.is_late_arrival)
        self.assertEqual(service.hooks.names, ["audit:ATTENDANCE_CHECK_IN"])

    def test_second_check_in_same_day_is_rejected(self) -> None:
        db = _DummyDB()
        open_record = _record(_local(2026, 3, 3, 8, 0))
        with self.assertRaises(ApiError) as exc:
            self._check_in(db, _local(2026, 3, 3, 9, 0), day_record=open_record)
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(exc.exception.status_code, 400)
        self.assertEqual(db.added, [])

    def test_completed_day_is_rejected(self) -> None:
        db = _DummyDB()
        closed = _record(_local(2026, 3, 3, 8, 0), check_out_time=_local(2026, 3, 3, 12, 0))
        with self.assertRaises(ApiError) as exc:
            self._check_in(db, _local(2026, 3, 3, 13, 0), day_record=closed)
        self.assertEqual(exc.exception.code, "ATTENDANCE_ALREADY_COMPLETED")

    def test_losing_insert_race_maps_to_already_checked_in(self) -> None:
        db = _DummyDB(commit_error=IntegrityError("INSERT", {}, Exception("uq_attendance_records_open_per_day")))
        with self.assertRaises(ApiError) as exc:
            self._check_in(db, _local(2026, 3, 3, 8, 30))
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        self.assertEqual(db.rollbacks, 1)

    def test_outside_geofence_reports_distance(self) -> None:
        db = _DummyDB()
        with self.assertRaises(ApiError) as exc:
            self._check_in(db, _local(2026, 3, 3, 8, 30), latitude=_north(250.0))
        self.assertEqual(exc.exception.code, "OUTSIDE_GEOFENCE")
        self.assertEqual(exc.exception.details["distance_m"], 250)
        self.assertEqual(exc.exception.details["tolerance_m"], 100.0)

    def test_mobile_override_extends_tolerance(self) -> None:
        override = DeviceRadiusSetting(
            device_type=DeviceClass.MOBILE,
            check_in_radius_m=150,
            check_out_radius_m=150,
            is_active=True,
        )
        _, outcome = self._check_in(
            _DummyDB(),
            _local(2026, 3, 3, 8, 30),
            latitude=_north(140.0),
            device_class="mobile",
            device_setting=override,
        )
        self.assertTrue(outcome.validation.within_tolerance)

        with self.assertRaises(ApiError) as exc:
            self._check_in(_DummyDB(), _local(2026, 3, 3, 8, 30), latitude=_north(140.0), device_class="desktop")
        self.assertEqual(exc.exception.code, "OUTSIDE_GEOFENCE")

    def test_direct_check_in_without_coordinates_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._check_in(_DummyDB(), _local(2026, 3, 3, 8, 30), latitude=None, longitude=None)
        self.assertEqual(exc.exception.code, "LOCATION_REQUIRED")

    def test_qr_check_in_without_gps_is_recorded_unverified(self) -> None:
        _, outcome = self._check_in(
            _DummyDB(),
            _local(2026, 3, 3, 8, 30),
            latitude=None,
            longitude=None,
            qr_location_id=5,
        )
        record = outcome.record
        self.assertEqual(record.check_in_method, CheckInMethod.QR)
        self.assertFalse(record.gps_available)
        self.assertFalse(record.proximity_verified)

    def test_weekday_after_cutoff_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._check_in(_DummyDB(), _local(2026, 3, 3, 23, 0))
        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "CHECKIN_TIME_WINDOW_CLOSED")
        self.assertEqual(exc.exception.details["cutoff"], "15:00")

    def test_weekend_late_night_check_in_succeeds(self) -> None:
        _, outcome = self._check_in(_DummyDB(), _local(2026, 3, 7, 23, 0))
        self.assertEqual(outcome.record.attendance_date, date(2026, 3, 7))

    def test_on_leave_blocks_check_in(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._check_in(_DummyDB(), _local(2026, 3, 3, 8, 30), on_leave=True)
        self.assertEqual(exc.exception.code, "ON_LEAVE")

    def test_late_arrival_flags_missing_reason_without_blocking(self) -> None:
        _, outcome = self._check_in(_DummyDB(), _local(2026, 3, 3, 10, 15))
        self.assertTrue(outcome.record.is_late_arrival)
        self.assertTrue(outcome.lateness_reason_required)

        _, with_reason = self._check_in(_DummyDB(), _local(2026, 3, 3, 10, 15), lateness_reason="Traffic jam")
        self.assertFalse(with_reason.lateness_reason_required)
        self.assertEqual(with_reason.record.lateness_reason, "Traffic jam")

    def test_stale_open_record_is_closed_before_new_check_in(self) -> None:
        db = _DummyDB()
        stale = _record(_local(2026, 3, 2, 8, 0), id=7)

        service, outcome = self._check_in(db, _local(2026, 3, 3, 8, 30), stale=[stale])

        self.assertEqual(stale.check_out_time, datetime(2026, 3, 2, 23, 59, 59, tzinfo=LOCAL_TZ))
        self.assertEqual(stale.check_out_method, CheckOutMethod.AUTO_SYSTEM)
        self.assertTrue(stale.auto_checkout)
        self.assertEqual(stale.work_hours, 16.0)
        self.assertIn("Auto Check-out (Missed)", stale.notes)
        self.assertTrue(outcome.missed_checkout)
        self.assertEqual(
            service.hooks.names,
            ["audit:ATTENDANCE_AUTO_CHECK_OUT", "audit:ATTENDANCE_CHECK_IN"],
        )


class CheckOutTests(unittest.TestCase):
    def _check_out(self, now: datetime, *, day_record: AttendanceRecord | None, **kwargs):  # type: ignore[no-untyped-def]
        kwargs.setdefault("latitude", _north(30.0))
        kwargs.setdefault("longitude", SITE_LON)
        locations = kwargs.pop("locations", None)
        p1, p2, p3, p4, p5, p6 = _patch_queries(day_record=day_record, locations=locations)
        with p1, p2, p3, p4, p5, p6:
            service = AttendanceService(_DummyDB())
            return service.check_out(_user(), now_utc=now, **kwargs)

    def test_check_out_without_check_in(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._check_out(_local(2026, 3, 3, 17, 0), day_record=None)
        self.assertEqual(exc.exception.code, "NOT_CHECKED_IN")

    def test_second_check_out_is_rejected(self) -> None:
        closed = _record(_local(2026, 3, 3, 8, 0), check_out_time=_local(2026, 3, 3, 16, 0))
        with self.assertRaises(ApiError) as exc:
            self._check_out(_local(2026, 3, 3, 17, 0), day_record=closed)
        self.assertEqual(exc.exception.code, "ALREADY_CHECKED_OUT")

    def test_check_out_computes_work_hours(self) -> None:
        record = _record(_local(2026, 3, 3, 8, 30))
        outcome = self._check_out(_local(2026, 3, 3, 17, 0), day_record=record)
        self.assertEqual(outcome.record.check_out_time, _local(2026, 3, 3, 17, 0))
        self.assertEqual(outcome.record.work_hours, 8.5)
        self.assertEqual(outcome.record.check_out_method, CheckOutMethod.PROXIMITY)
        self.assertFalse(outcome.record.is_remote_checkout)

    def test_check_out_after_cutoff_is_rejected(self) -> None:
        record = _record(_local(2026, 3, 3, 8, 30))
        with self.assertRaises(ApiError) as exc:
            self._check_out(_local(2026, 3, 3, 18, 30), day_record=record)
        self.assertEqual(exc.exception.code, "CHECKOUT_TIME_WINDOW_CLOSED")
        self.assertEqual(exc.exception.details["cutoff"], "18:00")

    def test_check_out_outside_geofence_is_rejected(self) -> None:
        record = _record(_local(2026, 3, 3, 8, 30))
        with self.assertRaises(ApiError) as exc:
            self._check_out(_local(2026, 3, 3, 17, 0), day_record=record, latitude=_north(900.0))
        self.assertEqual(exc.exception.code, "OUTSIDE_GEOFENCE")
        self.assertIsNone(record.check_out_time)

    def test_qr_check_out_requires_location(self) -> None:
        record = _record(_local(2026, 3, 3, 8, 30))
        with self.assertRaises(ApiError) as exc:
            self._check_out(_local(2026, 3, 3, 17, 0), day_record=record, qr=True)
        self.assertEqual(exc.exception.code, "LOCATION_REQUIRED")

    def test_off_premises_session_can_check_out_remotely(self) -> None:
        record = _record(
            _local(2026, 3, 3, 8, 30),
            check_in_method=CheckInMethod.OFFPREMISES_CONFIRMED,
            on_official_duty_outside_premises=True,
        )
        outcome = self._check_out(_local(2026, 3, 3, 17, 0), day_record=record, latitude=_north(5000.0))
        self.assertTrue(outcome.record.is_remote_checkout)
        self.assertIsNone(outcome.record.check_out_location_id)
        self.assertEqual(outcome.record.work_hours, 8.5)

    def test_early_checkout_reason_is_advisory(self) -> None:
        site = _site()
        site.requires_early_checkout_reason = True
        record = _record(_local(2026, 3, 3, 8, 30))
        outcome = self._check_out(_local(2026, 3, 3, 15, 0), day_record=record, locations=[site])
        self.assertTrue(outcome.early_checkout_reason_required)
        self.assertIsNotNone(outcome.record.check_out_time)


class EmergencyCheckoutTests(unittest.TestCase):
    CHECK_IN = _local(2026, 3, 3, 10, 0)
    REASON = "Family emergency at home"

    def _emergency(self, now: datetime, *, reason: str = REASON, on_leave: bool = False, **kwargs):  # type: ignore[no-untyped-def]
        record = kwargs.pop("day_record", _record(self.CHECK_IN))
        kwargs.setdefault("latitude", _north(10.0))
        kwargs.setdefault("longitude", SITE_LON)
        p1, p2, p3, p4, p5, p6 = _patch_queries(day_record=record, on_leave=on_leave)
        with p1, p2, p3, p4, p5, p6:
            return AttendanceService(_DummyDB()).emergency_checkout(_user(), reason=reason, now_utc=now, **kwargs)

    def test_allowed_within_window(self) -> None:
        outcome = self._emergency(_local(2026, 3, 3, 10, 29))
        self.assertTrue(outcome.record.is_emergency_checkout)
        self.assertEqual(outcome.record.check_out_method, CheckOutMethod.EMERGENCY)
        self.assertEqual(outcome.record.emergency_reason, self.REASON)
        self.assertEqual(outcome.record.work_hours, 0.48)

    def test_exactly_thirty_minutes_is_allowed(self) -> None:
        outcome = self._emergency(_local(2026, 3, 3, 10, 30))
        self.assertTrue(outcome.record.is_emergency_checkout)

    def test_rejected_after_window(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._emergency(_local(2026, 3, 3, 10, 31))
        self.assertEqual(exc.exception.code, "EMERGENCY_WINDOW_EXPIRED")
        self.assertEqual(exc.exception.details["elapsed_minutes"], 31)

    def test_short_reason_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._emergency(_local(2026, 3, 3, 10, 5), reason="  sick  ")
        self.assertEqual(exc.exception.code, "EMERGENCY_REASON_TOO_SHORT")

    def test_on_leave_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._emergency(_local(2026, 3, 3, 10, 5), on_leave=True)
        self.assertEqual(exc.exception.code, "ON_LEAVE")
        self.assertEqual(exc.exception.status_code, 403)

    def test_geofence_is_still_required(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._emergency(_local(2026, 3, 3, 10, 5), latitude=_north(400.0))
        self.assertEqual(exc.exception.code, "OUTSIDE_GEOFENCE")

    def test_requires_open_session(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._emergency(_local(2026, 3, 3, 10, 5), day_record=None)
        self.assertEqual(exc.exception.code, "NOT_CHECKED_IN")


class DayStatusTests(unittest.TestCase):
    def test_states(self) -> None:
        now = _local(2026, 3, 3, 12, 0)
        open_record = _record(_local(2026, 3, 3, 8, 0))
        closed_record = _record(_local(2026, 3, 3, 8, 0), check_out_time=_local(2026, 3, 3, 11, 0))

        cases = [
            (None, AttendanceState.NO_SESSION),
            (open_record, AttendanceState.CHECKED_IN),
            (closed_record, AttendanceState.CHECKED_OUT),
        ]
        for record, expected in cases:
            with patch("app.services.attendance._find_day_record", return_value=record):
                state, _ = AttendanceService(_DummyDB()).day_status(_user(), now_utc=now)
            self.assertEqual(state, expected)

    def test_work_hours_rounding(self) -> None:
        self.assertEqual(compute_work_hours(_local(2026, 3, 3, 8, 0), _local(2026, 3, 3, 8, 20)), 0.33)


if __name__ == "__main__":
    unittest.main()
