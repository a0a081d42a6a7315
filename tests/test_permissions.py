from __future__ import annotations

import unittest

from app.errors import ApiError
from app.models import GeofenceLocation, UserProfile, UserRole
from app.services.permissions import (
    can_approve_offpremises,
    can_manage_device_radius,
    ensure_can_approve_offpremises,
    location_ids_for,
)


def _site(location_id: int) -> GeofenceLocation:
    return GeofenceLocation(id=location_id, name=f"Site {location_id}", latitude=0.0, longitude=0.0, is_active=True)


def _profile(
    user_id: int,
    role: UserRole,
    *,
    department_id: int | None = None,
    assigned_location_id: int | None = None,
    extra_location_ids: tuple[int, ...] = (),
) -> UserProfile:
    return UserProfile(
        id=user_id,
        email=f"user{user_id}@example.com",
        role=role,
        department_id=department_id,
        assigned_location_id=assigned_location_id,
        extra_locations=[_site(location_id) for location_id in extra_location_ids],
        is_active=True,
    )


class OffPremisesPermissionTests(unittest.TestCase):
    def test_admin_can_approve_anyone(self) -> None:
        admin = _profile(1, UserRole.ADMIN)
        staff = _profile(2, UserRole.STAFF, department_id=9, assigned_location_id=4)
        self.assertTrue(can_approve_offpremises(admin, staff))

    def test_department_head_requires_same_department(self) -> None:
        head = _profile(1, UserRole.DEPARTMENT_HEAD, department_id=3)
        self.assertTrue(can_approve_offpremises(head, _profile(2, UserRole.STAFF, department_id=3)))
        self.assertFalse(can_approve_offpremises(head, _profile(3, UserRole.STAFF, department_id=4)))
        self.assertFalse(can_approve_offpremises(head, _profile(4, UserRole.STAFF, department_id=None)))

    def test_regional_manager_requires_location_overlap(self) -> None:
        manager = _profile(1, UserRole.REGIONAL_MANAGER, assigned_location_id=10, extra_location_ids=(11, 12))
        self.assertTrue(can_approve_offpremises(manager, _profile(2, UserRole.STAFF, assigned_location_id=12)))
        self.assertFalse(can_approve_offpremises(manager, _profile(3, UserRole.STAFF, assigned_location_id=13)))

    def test_location_ids_merge_assigned_and_extra(self) -> None:
        manager = _profile(1, UserRole.REGIONAL_MANAGER, assigned_location_id=10, extra_location_ids=(11,))
        self.assertEqual(location_ids_for(manager), {10, 11})

    def test_staff_cannot_approve(self) -> None:
        staff = _profile(1, UserRole.STAFF, department_id=3)
        with self.assertRaises(ApiError) as exc:
            ensure_can_approve_offpremises(staff, _profile(2, UserRole.STAFF, department_id=3))
        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "FORBIDDEN")

    def test_scope_mismatch_is_a_hard_error(self) -> None:
        head = _profile(1, UserRole.DEPARTMENT_HEAD, department_id=3)
        with self.assertRaises(ApiError) as exc:
            ensure_can_approve_offpremises(head, _profile(2, UserRole.STAFF, department_id=5))
        self.assertEqual(exc.exception.code, "OFFPREMISES_SCOPE_MISMATCH")

    def test_only_admin_manages_device_radius(self) -> None:
        self.assertTrue(can_manage_device_radius(_profile(1, UserRole.ADMIN)))
        self.assertFalse(can_manage_device_radius(_profile(2, UserRole.REGIONAL_MANAGER)))


if __name__ == "__main__":
    unittest.main()
