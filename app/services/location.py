from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import DeviceClass, DeviceRadiusSetting, GeofenceLocation
from app.settings import get_settings

logger = logging.getLogger("app.geofence")

EARTH_RADIUS_M = 6371000.0


class GeofencePurpose(str, enum.Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"


@dataclass(frozen=True, slots=True)
class GeofenceValidation:
    nearest_location: GeofenceLocation | None
    distance_m: float | None
    tolerance_m: float | None
    within_tolerance: bool
    gps_available: bool = True
    proximity_verified: bool = True

    @property
    def rounded_distance_m(self) -> int | None:
        if self.distance_m is None:
            return None
        return int(round(self.distance_m))

    def to_flags(self) -> dict[str, Any]:
        location = self.nearest_location
        return {
            "location_id": location.id if location is not None else None,
            "location_name": location.name if location is not None else None,
            "distance_m": self.rounded_distance_m,
            "tolerance_m": self.tolerance_m,
            "within_tolerance": self.within_tolerance,
            "gps_available": self.gps_available,
            "proximity_verified": self.proximity_verified,
        }


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_M * c


def normalize_device_class(raw: str | DeviceClass | None) -> DeviceClass | None:
    if raw is None:
        return None
    if isinstance(raw, DeviceClass):
        return raw
    try:
        return DeviceClass(raw.strip().lower())
    except ValueError:
        return None


def resolve_tolerance_m(
    location: GeofenceLocation,
    *,
    device_setting: DeviceRadiusSetting | None,
    purpose: GeofencePurpose,
    default_radius_m: float | None = None,
) -> float:
    """Device-class override first, then the location radius, then the global default."""
    if device_setting is not None and device_setting.is_active:
        if purpose == GeofencePurpose.CHECK_OUT:
            return float(device_setting.check_out_radius_m)
        return float(device_setting.check_in_radius_m)
    if location.radius_m is not None and location.radius_m > 0:
        return float(location.radius_m)
    if default_radius_m is None:
        default_radius_m = get_settings().default_geofence_radius_m
    return float(default_radius_m)


def validate_position(
    lat: float,
    lon: float,
    locations: Sequence[GeofenceLocation],
    *,
    device_setting: DeviceRadiusSetting | None = None,
    purpose: GeofencePurpose = GeofencePurpose.CHECK_IN,
    default_radius_m: float | None = None,
) -> GeofenceValidation:
    closest_match: tuple[GeofenceLocation, float, float] | None = None
    closest_any: tuple[GeofenceLocation, float, float] | None = None

    for location in locations:
        if not location.is_active:
            continue
        distance_value = distance_m(location.latitude, location.longitude, lat, lon)
        tolerance = resolve_tolerance_m(
            location,
            device_setting=device_setting,
            purpose=purpose,
            default_radius_m=default_radius_m,
        )
        if closest_any is None or distance_value < closest_any[1]:
            closest_any = (location, distance_value, tolerance)
        if distance_value <= tolerance and (closest_match is None or distance_value < closest_match[1]):
            closest_match = (location, distance_value, tolerance)

    if closest_match is not None:
        location, distance_value, tolerance = closest_match
        return GeofenceValidation(
            nearest_location=location,
            distance_m=distance_value,
            tolerance_m=tolerance,
            within_tolerance=True,
        )

    if closest_any is not None:
        location, distance_value, tolerance = closest_any
        return GeofenceValidation(
            nearest_location=location,
            distance_m=distance_value,
            tolerance_m=tolerance,
            within_tolerance=False,
        )

    return GeofenceValidation(
        nearest_location=None,
        distance_m=None,
        tolerance_m=None,
        within_tolerance=False,
    )


def validate_qr_position(
    lat: float | None,
    lon: float | None,
    location: GeofenceLocation,
    *,
    device_setting: DeviceRadiusSetting | None = None,
    purpose: GeofencePurpose = GeofencePurpose.CHECK_IN,
    default_radius_m: float | None = None,
) -> GeofenceValidation:
    """Validate a QR scan against the location encoded in the code.

    A scan without coordinates is accepted but marked unverified.
    """
    if lat is None or lon is None:
        logger.warning(
            "qr_scan_without_gps",
            extra={"location_id": location.id, "purpose": purpose.value},
        )
        return GeofenceValidation(
            nearest_location=location,
            distance_m=None,
            tolerance_m=None,
            within_tolerance=True,
            gps_available=False,
            proximity_verified=False,
        )

    distance_value = distance_m(location.latitude, location.longitude, lat, lon)
    tolerance = resolve_tolerance_m(
        location,
        device_setting=device_setting,
        purpose=purpose,
        default_radius_m=default_radius_m,
    )
    return GeofenceValidation(
        nearest_location=location,
        distance_m=distance_value,
        tolerance_m=tolerance,
        within_tolerance=distance_value <= tolerance,
    )


def load_active_locations(db: Session) -> list[GeofenceLocation]:
    return list(
        db.scalars(
            select(GeofenceLocation)
            .where(GeofenceLocation.is_active.is_(True))
            .order_by(GeofenceLocation.id.asc())
        ).all()
    )


def load_location(db: Session, location_id: int) -> GeofenceLocation | None:
    return db.scalar(
        select(GeofenceLocation).where(
            GeofenceLocation.id == location_id,
            GeofenceLocation.is_active.is_(True),
        )
    )


def load_device_radius_setting(db: Session, device_class: DeviceClass | None) -> DeviceRadiusSetting | None:
    if device_class is None:
        return None
    return db.scalar(
        select(DeviceRadiusSetting).where(
            DeviceRadiusSetting.device_type == device_class,
            DeviceRadiusSetting.is_active.is_(True),
        )
    )
