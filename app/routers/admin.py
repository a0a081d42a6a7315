from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType, DeviceRadiusSetting, UserProfile
from app.routers.common import client_ip, user_agent
from app.schemas import DeviceRadiusSettingRead, DeviceRadiusSettingUpdate
from app.security import require_user
from app.services.permissions import can_manage_device_radius
from app.settings import get_settings

router = APIRouter(prefix="/admin", tags=["admin"])


def _ensure_radius_admin(user: UserProfile) -> None:
    if not can_manage_device_radius(user):
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")


def _validate_radius(value: int, *, field_name: str) -> None:
    settings = get_settings()
    if value < settings.device_radius_min_m or value > settings.device_radius_max_m:
        raise ApiError(
            status_code=400,
            code="INVALID_RADIUS",
            message=(
                f"{field_name} must be between {settings.device_radius_min_m} "
                f"and {settings.device_radius_max_m} meters."
            ),
            details={
                "field": field_name,
                "min": settings.device_radius_min_m,
                "max": settings.device_radius_max_m,
            },
        )


@router.get("/device-radius-settings", response_model=list[DeviceRadiusSettingRead])
def list_device_radius_settings(
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[DeviceRadiusSettingRead]:
    _ensure_radius_admin(user)
    rows = db.scalars(select(DeviceRadiusSetting).order_by(DeviceRadiusSetting.device_type.asc())).all()
    return [DeviceRadiusSettingRead.model_validate(row) for row in rows]


@router.put("/device-radius-settings", response_model=DeviceRadiusSettingRead)
def update_device_radius_setting(
    payload: DeviceRadiusSettingUpdate,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> DeviceRadiusSettingRead:
    _ensure_radius_admin(user)
    _validate_radius(payload.check_in_radius_m, field_name="check_in_radius_m")
    _validate_radius(payload.check_out_radius_m, field_name="check_out_radius_m")

    setting = db.scalar(select(DeviceRadiusSetting).where(DeviceRadiusSetting.device_type == payload.device_type))
    before = None
    if setting is None:
        setting = DeviceRadiusSetting(device_type=payload.device_type)
        db.add(setting)
    else:
        before = {
            "check_in_radius_m": setting.check_in_radius_m,
            "check_out_radius_m": setting.check_out_radius_m,
            "is_active": setting.is_active,
        }
    setting.check_in_radius_m = payload.check_in_radius_m
    setting.check_out_radius_m = payload.check_out_radius_m
    setting.is_active = payload.is_active
    setting.updated_by_id = user.id
    db.commit()
    db.refresh(setting)

    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action="DEVICE_RADIUS_SETTING_UPDATED",
        success=True,
        entity_type="device_radius_setting",
        entity_id=payload.device_type.value,
        ip=client_ip(request),
        user_agent=user_agent(request),
        before=before,
        after={
            "check_in_radius_m": setting.check_in_radius_m,
            "check_out_radius_m": setting.check_out_radius_m,
            "is_active": setting.is_active,
        },
        request_id=getattr(request.state, "request_id", None),
    )
    return DeviceRadiusSettingRead.model_validate(setting)
