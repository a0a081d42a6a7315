from __future__ import annotations

from datetime import datetime

from app.models import Department, GeofenceLocation, UserProfile, UserRole
from app.services.timeutils import to_local
from app.settings import get_settings

EXEMPT_ROLES = frozenset({UserRole.ADMIN, UserRole.DEPARTMENT_HEAD, UserRole.REGIONAL_MANAGER})
REASON_EXEMPT_ROLES = frozenset({UserRole.DEPARTMENT_HEAD, UserRole.REGIONAL_MANAGER})

_SECURITY_TOKENS = ("security",)
_TRANSPORT_TOKENS = ("transport",)
_OPERATIONS_TOKENS = ("operations", "operational")
_RESEARCH_TOKENS = ("research",)


def _department_matches(department: Department | None, tokens: tuple[str, ...]) -> bool:
    if department is None:
        return False
    code = (department.code or "").strip().lower()
    name = (department.name or "").strip().lower()
    for token in tokens:
        if code == token or token in name:
            return True
    return False


def is_security_department(department: Department | None) -> bool:
    return _department_matches(department, _SECURITY_TOKENS)


def is_transport_department(department: Department | None) -> bool:
    return _department_matches(department, _TRANSPORT_TOKENS)


def is_operations_department(department: Department | None) -> bool:
    return _department_matches(department, _OPERATIONS_TOKENS)


def is_research_department(department: Department | None) -> bool:
    return _department_matches(department, _RESEARCH_TOKENS)


def is_weekend(local_dt: datetime) -> bool:
    return local_dt.weekday() >= 5


def is_exempt_from_time_restrictions(user: UserProfile) -> bool:
    if user.role in EXEMPT_ROLES:
        return True
    department = user.department
    return (
        is_security_department(department)
        or is_transport_department(department)
        or is_operations_department(department)
    )


def can_check_in(user: UserProfile, now_utc: datetime) -> bool:
    local_now = to_local(now_utc)
    if is_weekend(local_now) or is_exempt_from_time_restrictions(user):
        return True
    return local_now.hour < get_settings().checkin_cutoff_hour


def can_check_out(user: UserProfile, now_utc: datetime) -> bool:
    local_now = to_local(now_utc)
    if is_weekend(local_now) or is_exempt_from_time_restrictions(user):
        return True
    return local_now.hour < get_settings().checkout_cutoff_hour


def is_late_arrival(now_utc: datetime) -> bool:
    settings = get_settings()
    local_now = to_local(now_utc)
    threshold = (settings.late_arrival_hour, settings.late_arrival_minute)
    return (local_now.hour, local_now.minute) > threshold


def requires_lateness_reason(user: UserProfile, now_utc: datetime) -> bool:
    if is_weekend(to_local(now_utc)):
        return False
    if user.role in REASON_EXEMPT_ROLES:
        return False
    if is_security_department(user.department) or is_research_department(user.department):
        return False
    return True


def requires_early_checkout_reason(
    user: UserProfile,
    location: GeofenceLocation | None,
    now_utc: datetime,
) -> bool:
    if location is None or not location.requires_early_checkout_reason:
        return False
    if is_weekend(to_local(now_utc)):
        return False
    return user.role not in REASON_EXEMPT_ROLES
