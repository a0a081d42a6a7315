from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError
from app.models import UserProfile, ViolationType
from app.routers.common import audit_context, client_ip
from app.schemas import (
    AttendanceActionResponse,
    AttendanceRecordRead,
    AttendanceStatusResponse,
    CheckInRequest,
    CheckOutRequest,
    EmergencyCheckoutRequest,
)
from app.security import require_user
from app.services.attendance import AttendanceOutcome, AttendanceService
from app.services.device_binding import CheckOutcome, DeviceBindingGuard, DeviceBindingResult
from app.services.hooks import PostCommitHooks

router = APIRouter(prefix="/attendance", tags=["attendance"])


def _action_response(
    outcome: AttendanceOutcome,
    *,
    message: str,
    binding: DeviceBindingResult | None = None,
) -> AttendanceActionResponse:
    validation = outcome.validation
    location = validation.nearest_location if validation is not None else None
    return AttendanceActionResponse(
        ok=True,
        message=message,
        record=AttendanceRecordRead.model_validate(outcome.record),
        distance_m=validation.rounded_distance_m if validation is not None else None,
        tolerance_m=validation.tolerance_m if validation is not None else None,
        location_name=location.name if location is not None else None,
        lateness_reason_required=outcome.lateness_reason_required,
        early_checkout_reason_required=outcome.early_checkout_reason_required,
        missed_checkout=outcome.missed_checkout,
        concurrent_session=binding.concurrent if binding is not None else False,
    )


def _ensure_device_allowed(binding: DeviceBindingResult) -> None:
    if binding.allowed:
        return
    if binding.outcome == CheckOutcome.INDETERMINATE_FAIL_CLOSED:
        raise ApiError(
            status_code=503,
            code="DEVICE_CHECK_UNAVAILABLE",
            message="Device verification is temporarily unavailable.",
        )
    raise ApiError(
        status_code=403,
        code="DEVICE_BOUND_TO_OTHER_USER",
        message=f"This device is registered to {binding.bound_to_email or 'another user'}.",
        details={"bound_to_email": binding.bound_to_email},
    )


def _gate_device(
    db: Session,
    hooks: PostCommitHooks,
    request: Request,
    user: UserProfile,
    *,
    device_id: str | None,
    device_info: dict,
) -> tuple[DeviceBindingGuard | None, DeviceBindingResult | None]:
    if not device_id:
        return None, None
    guard = DeviceBindingGuard(db, hooks)
    binding = guard.check_and_bind(
        device_id=device_id,
        user=user,
        device_info=device_info,
        ip=client_ip(request),
    )
    request.state.flags = binding.to_dict()
    _ensure_device_allowed(binding)
    return guard, binding


@router.post("/check-in", response_model=AttendanceActionResponse)
def check_in(
    payload: CheckInRequest,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> AttendanceActionResponse:
    hooks = PostCommitHooks()
    try:
        guard, binding = _gate_device(
            db,
            hooks,
            request,
            user,
            device_id=payload.device_id,
            device_info=payload.device_info,
        )

        service = AttendanceService(db, hooks, context=audit_context(request))
        try:
            outcome = service.check_in(
                user,
                latitude=payload.latitude,
                longitude=payload.longitude,
                device_class=payload.device_type,
                qr_location_id=payload.qr.location_id if payload.qr is not None else None,
                lateness_reason=payload.lateness_reason,
            )
        except ApiError as exc:
            if exc.code == "ALREADY_CHECKED_IN" and guard is not None and payload.device_id:
                guard.record_violation(
                    device_id=payload.device_id,
                    user=user,
                    violation_type=ViolationType.DOUBLE_CHECKIN_ATTEMPT,
                    device_info=payload.device_info,
                    ip=client_ip(request),
                )
            raise

        request.state.record_id = outcome.record.id
        return _action_response(outcome, message="Checked in.", binding=binding)
    finally:
        hooks.run()


@router.post("/check-out", response_model=AttendanceActionResponse)
def check_out(
    payload: CheckOutRequest,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> AttendanceActionResponse:
    hooks = PostCommitHooks()
    try:
        _, binding = _gate_device(
            db,
            hooks,
            request,
            user,
            device_id=payload.device_id,
            device_info=payload.device_info,
        )
        service = AttendanceService(db, hooks, context=audit_context(request))
        outcome = service.check_out(
            user,
            latitude=payload.latitude,
            longitude=payload.longitude,
            location_id=payload.location_id,
            device_class=payload.device_type,
            qr=payload.qr_code_used,
            early_checkout_reason=payload.early_checkout_reason,
        )
        request.state.record_id = outcome.record.id
        return _action_response(outcome, message="Checked out.", binding=binding)
    finally:
        hooks.run()


@router.post("/emergency-checkout", response_model=AttendanceActionResponse)
def emergency_checkout(
    payload: EmergencyCheckoutRequest,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> AttendanceActionResponse:
    hooks = PostCommitHooks()
    try:
        _, binding = _gate_device(
            db,
            hooks,
            request,
            user,
            device_id=payload.device_id,
            device_info=payload.device_info,
        )
        service = AttendanceService(db, hooks, context=audit_context(request))
        outcome = service.emergency_checkout(
            user,
            latitude=payload.latitude,
            longitude=payload.longitude,
            reason=payload.reason,
            device_class=payload.device_type,
        )
        request.state.record_id = outcome.record.id
        return _action_response(outcome, message="Emergency check-out recorded.", binding=binding)
    finally:
        hooks.run()


@router.get("/status", response_model=AttendanceStatusResponse)
def attendance_status(
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> AttendanceStatusResponse:
    state, record = AttendanceService(db).day_status(user)
    return AttendanceStatusResponse(
        state=state.value,
        record=AttendanceRecordRead.model_validate(record) if record is not None else None,
    )
