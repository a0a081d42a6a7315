from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models import CheckInMethod, CheckOutMethod, DeviceClass, OffPremisesStatus


class QRAssertion(BaseModel):
    location_id: int = Field(ge=1)


class CheckInRequest(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    qr: QRAssertion | None = None
    device_id: str | None = Field(default=None, min_length=1, max_length=255)
    device_type: str | None = Field(default=None, max_length=32)
    device_info: dict[str, Any] = Field(default_factory=dict)
    lateness_reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_coordinates_pair(self) -> "CheckInRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class CheckOutRequest(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    location_id: int | None = Field(default=None, ge=1)
    qr_code_used: bool = False
    device_type: str | None = Field(default=None, max_length=32)
    device_id: str | None = Field(default=None, min_length=1, max_length=255)
    device_info: dict[str, Any] = Field(default_factory=dict)
    early_checkout_reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_coordinates_pair(self) -> "CheckOutRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class EmergencyCheckoutRequest(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    reason: str = Field(max_length=2000)
    device_type: str | None = Field(default=None, max_length=32)
    device_id: str | None = Field(default=None, min_length=1, max_length=255)
    device_info: dict[str, Any] = Field(default_factory=dict)


class AttendanceRecordRead(BaseModel):
    id: int | None = None
    user_id: int
    attendance_date: date
    check_in_time: datetime
    check_in_method: CheckInMethod
    check_in_location_id: int | None = None
    check_in_location_name: str | None = None
    check_in_distance_m: float | None = None
    gps_available: bool = True
    proximity_verified: bool = True
    is_late_arrival: bool = False
    lateness_reason: str | None = None
    check_out_time: datetime | None = None
    check_out_method: CheckOutMethod | None = None
    check_out_location_id: int | None = None
    check_out_location_name: str | None = None
    is_remote_checkout: bool = False
    early_checkout_reason: str | None = None
    work_hours: float | None = None
    on_official_duty_outside_premises: bool = False
    off_premises_request_id: int | None = None
    is_emergency_checkout: bool = False
    emergency_reason: str | None = None
    auto_checkout: bool = False
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceActionResponse(BaseModel):
    ok: bool = True
    message: str
    record: AttendanceRecordRead
    distance_m: int | None = None
    tolerance_m: float | None = None
    location_name: str | None = None
    lateness_reason_required: bool = False
    early_checkout_reason_required: bool = False
    missed_checkout: bool = False
    concurrent_session: bool = False


class AttendanceStatusResponse(BaseModel):
    state: str
    record: AttendanceRecordRead | None = None


class OffPremisesSubmitRequest(BaseModel):
    current_location_name: str = Field(min_length=1, max_length=512)
    google_maps_name: str | None = Field(default=None, max_length=512)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    device_info: str | None = Field(default=None, max_length=1024)
    reason: str | None = Field(default=None, max_length=2000)


class OffPremisesRequestRead(BaseModel):
    id: int | None = None
    user_id: int
    current_location_name: str
    google_maps_name: str | None = None
    latitude: float
    longitude: float
    accuracy: float | None = None
    reason: str | None = None
    status: OffPremisesStatus
    approved_by_id: int | None = None
    approved_at: datetime | None = None
    comments: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OffPremisesSubmitResponse(BaseModel):
    ok: bool = True
    request: OffPremisesRequestRead
    approver_count: int


class OffPremisesDecisionRequest(BaseModel):
    request_id: int = Field(ge=1)
    approved: bool
    comments: str | None = Field(default=None, max_length=2000)


class OffPremisesDecisionResponse(BaseModel):
    ok: bool = True
    request: OffPremisesRequestRead
    record: AttendanceRecordRead | None = None


class DeviceBindingCheckRequest(BaseModel):
    device_id: str = Field(min_length=1, max_length=255)
    device_info: dict[str, Any] = Field(default_factory=dict)


class DeviceBindingCheckResponse(BaseModel):
    allowed: bool
    outcome: str
    violation: bool = False
    bound_to_email: str | None = None
    concurrent_session: bool = False
    concurrent_devices: list[str] = Field(default_factory=list)


class DeviceRadiusSettingRead(BaseModel):
    id: int | None = None
    device_type: DeviceClass
    check_in_radius_m: int
    check_out_radius_m: int
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class DeviceRadiusSettingUpdate(BaseModel):
    device_type: DeviceClass
    check_in_radius_m: int
    check_out_radius_m: int
    is_active: bool = True
