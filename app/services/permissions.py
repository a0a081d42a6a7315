from __future__ import annotations

from app.errors import ApiError
from app.models import UserProfile, UserRole

MANAGER_ROLES = frozenset({UserRole.ADMIN, UserRole.REGIONAL_MANAGER, UserRole.DEPARTMENT_HEAD})


def is_manager(user: UserProfile) -> bool:
    return user.role in MANAGER_ROLES


def location_ids_for(user: UserProfile) -> set[int]:
    ids = {location.id for location in (user.extra_locations or [])}
    if user.assigned_location_id is not None:
        ids.add(user.assigned_location_id)
    return ids


def can_review_offpremises(actor: UserProfile) -> bool:
    return is_manager(actor)


def can_approve_offpremises(actor: UserProfile, target: UserProfile) -> bool:
    if actor.role == UserRole.ADMIN:
        return True
    if actor.role == UserRole.REGIONAL_MANAGER:
        return bool(location_ids_for(actor) & location_ids_for(target))
    if actor.role == UserRole.DEPARTMENT_HEAD:
        return actor.department_id is not None and actor.department_id == target.department_id
    return False


def ensure_can_approve_offpremises(actor: UserProfile, target: UserProfile) -> None:
    if not can_review_offpremises(actor):
        raise ApiError(
            status_code=403,
            code="FORBIDDEN",
            message="Only managers can decide off-premises requests.",
        )
    if not can_approve_offpremises(actor, target):
        raise ApiError(
            status_code=403,
            code="OFFPREMISES_SCOPE_MISMATCH",
            message="This request is outside your approval scope.",
        )


def can_manage_device_radius(actor: UserProfile) -> bool:
    return actor.role == UserRole.ADMIN
