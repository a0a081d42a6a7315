from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from app.models import Department, GeofenceLocation, UserProfile, UserRole
from app.services.time_policy import (
    can_check_in,
    can_check_out,
    is_exempt_from_time_restrictions,
    is_late_arrival,
    requires_early_checkout_reason,
    requires_lateness_reason,
)
from app.services.timeutils import attendance_timezone, local_day, to_local
from app.settings import Settings

LOCAL_TZ = ZoneInfo("Africa/Accra")
TUESDAY = (2026, 3, 3)
SATURDAY = (2026, 3, 7)


def _local(day: tuple[int, int, int], hour: int, minute: int = 0) -> datetime:
    return datetime(*day, hour, minute, tzinfo=LOCAL_TZ)


def _user(role: UserRole = UserRole.STAFF, department: Department | None = None) -> UserProfile:
    user = UserProfile(id=1, email="staff@example.com", role=role, is_active=True)
    user.department = department
    return user


def _location(requires_reason: bool) -> GeofenceLocation:
    return GeofenceLocation(
        id=1,
        name="HQ",
        latitude=41.0,
        longitude=29.0,
        radius_m=100,
        is_active=True,
        requires_early_checkout_reason=requires_reason,
    )


class CheckInWindowTests(unittest.TestCase):
    def test_weekend_late_night_check_in_is_allowed(self) -> None:
        self.assertTrue(can_check_in(_user(), _local(SATURDAY, 23)))

    def test_weekday_late_night_check_in_is_denied(self) -> None:
        self.assertFalse(can_check_in(_user(), _local(TUESDAY, 23)))

    def test_cutoff_is_exclusive(self) -> None:
        self.assertTrue(can_check_in(_user(), _local(TUESDAY, 14, 59)))
        self.assertFalse(can_check_in(_user(), _local(TUESDAY, 15, 0)))

    def test_exempt_roles_bypass_window(self) -> None:
        for role in (UserRole.ADMIN, UserRole.DEPARTMENT_HEAD, UserRole.REGIONAL_MANAGER):
            self.assertTrue(can_check_in(_user(role), _local(TUESDAY, 22)))

    def test_exempt_departments_match_code_or_name(self) -> None:
        departments = [
            Department(id=1, code="SECURITY", name="Guards"),
            Department(id=2, code=None, name="Transport Services"),
            Department(id=3, code="ops", name="Operational Support"),
            Department(id=4, code="operations", name="Field"),
        ]
        for department in departments:
            self.assertTrue(is_exempt_from_time_restrictions(_user(department=department)))

    def test_regular_department_is_not_exempt(self) -> None:
        self.assertFalse(is_exempt_from_time_restrictions(_user(department=Department(id=5, code="fin", name="Finance"))))


class CheckOutWindowTests(unittest.TestCase):
    def test_check_out_cutoff(self) -> None:
        self.assertTrue(can_check_out(_user(), _local(TUESDAY, 17, 59)))
        self.assertFalse(can_check_out(_user(), _local(TUESDAY, 18, 0)))

    def test_weekend_check_out_is_unrestricted(self) -> None:
        self.assertTrue(can_check_out(_user(), _local(SATURDAY, 21)))


class ReasonPredicateTests(unittest.TestCase):
    def test_late_arrival_threshold(self) -> None:
        self.assertFalse(is_late_arrival(_local(TUESDAY, 9, 0)))
        self.assertTrue(is_late_arrival(_local(TUESDAY, 9, 1)))

    def test_lateness_reason_for_regular_staff_on_weekday(self) -> None:
        self.assertTrue(requires_lateness_reason(_user(), _local(TUESDAY, 10)))

    def test_lateness_reason_not_required_on_weekend(self) -> None:
        self.assertFalse(requires_lateness_reason(_user(), _local(SATURDAY, 10)))

    def test_lateness_reason_exemptions(self) -> None:
        research = Department(id=7, code="rnd", name="Research Lab")
        security = Department(id=8, code="security", name="Security")
        self.assertFalse(requires_lateness_reason(_user(department=research), _local(TUESDAY, 10)))
        self.assertFalse(requires_lateness_reason(_user(department=security), _local(TUESDAY, 10)))
        self.assertFalse(requires_lateness_reason(_user(UserRole.DEPARTMENT_HEAD), _local(TUESDAY, 10)))
        self.assertFalse(requires_lateness_reason(_user(UserRole.REGIONAL_MANAGER), _local(TUESDAY, 10)))

    def test_early_checkout_reason_follows_location_flag(self) -> None:
        self.assertTrue(requires_early_checkout_reason(_user(), _location(True), _local(TUESDAY, 16)))
        self.assertFalse(requires_early_checkout_reason(_user(), _location(False), _local(TUESDAY, 16)))
        self.assertFalse(requires_early_checkout_reason(_user(), None, _local(TUESDAY, 16)))

    def test_early_checkout_reason_exemptions(self) -> None:
        self.assertFalse(requires_early_checkout_reason(_user(), _location(True), _local(SATURDAY, 16)))
        self.assertFalse(
            requires_early_checkout_reason(_user(UserRole.REGIONAL_MANAGER), _location(True), _local(TUESDAY, 16))
        )


class AttendanceClockTests(unittest.TestCase):
    def test_default_zone_is_accra(self) -> None:
        self.assertEqual(Settings.model_fields["attendance_timezone"].default, "Africa/Accra")
        self.assertEqual(attendance_timezone().key, "Africa/Accra")

    def test_rules_use_accra_wall_clock(self) -> None:
        tuesday_afternoon = datetime(2026, 3, 3, 14, 0, tzinfo=timezone.utc)
        self.assertTrue(can_check_in(_user(), tuesday_afternoon))
        self.assertEqual(to_local(tuesday_afternoon).hour, 14)
        self.assertFalse(can_check_in(_user(), datetime(2026, 3, 3, 15, 0, tzinfo=timezone.utc)))
        self.assertEqual(local_day(datetime(2026, 3, 3, 23, 30, tzinfo=timezone.utc)), date(2026, 3, 3))


if __name__ == "__main__":
    unittest.main()
