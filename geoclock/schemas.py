from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from geoclock.models import (
    CaptureType,
    LocationSource,
    PermissionStatus,
    PermissionType,
    VerificationStatus,
)
from geoclock.services.location import AccuracyLevel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        allow_inf_nan=False,
    )


class LocationCaptureRequest(RequestModel):
    time_record_id: int = Field(ge=1)
    capture_type: CaptureType
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float = Field(ge=0)
    source: LocationSource
    timestamp: datetime
    altitude: float | None = None
    heading: float | None = Field(default=None, ge=0, le=360)
    speed: float | None = Field(default=None, ge=0)
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _validate_source(self) -> "LocationCaptureRequest":
        if self.source == LocationSource.MANUAL:
            raise ValueError("Invalid location source: manual locations cannot be captured from a device.")
        return self


class CapturedLocationRead(CamelModel):
    latitude: float
    longitude: float
    accuracy: float | None = None
    source: LocationSource | None = None


class CaptureValidationRead(CamelModel):
    accuracy: AccuracyLevel
    warnings: list[str] = Field(default_factory=list)
    status: VerificationStatus


class LocationCaptureResponse(CamelModel):
    success: bool
    time_record_id: int
    capture_type: CaptureType
    location: CapturedLocationRead
    validation: CaptureValidationRead
    verification_id: int
    timestamp: datetime


class DirectionLocationRead(CamelModel):
    timestamp: datetime | None = None
    location: CapturedLocationRead | None = None


class TimeRecordLocationsResponse(CamelModel):
    time_record_id: int
    clock_in: DirectionLocationRead
    clock_out: DirectionLocationRead


class LocationVerifyRequest(RequestModel):
    time_record_id: int = Field(ge=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float = Field(ge=0)
    strict_mode: bool = False
    include_facility: bool = False


class AccuracyRead(CamelModel):
    level: AccuracyLevel
    acceptable: bool
    value: float


class NearestSiteRead(CamelModel):
    id: int
    name: str
    address: str | None = None
    allowed_radius: int
    location_id: int


class GeofenceVerdictRead(CamelModel):
    is_valid: bool
    is_within_geofence: bool
    distance_from_site: int | None = None
    nearest_site: NearestSiteRead | None = None
    accuracy: AccuracyRead
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class FacilityRead(CamelModel):
    name: str
    address: str
    type: str | None = None
    osm_id: str | None = None


class FacilityLookupRead(CamelModel):
    success: bool
    facility: FacilityRead | None = None
    distance: float | None = None
    cached: bool = False


class LocationVerifyResponse(CamelModel):
    time_record_id: int
    verdict: GeofenceVerdictRead
    facility: FacilityLookupRead | None = None


class SiteLocationRead(CamelModel):
    id: int
    name: str
    latitude: float
    longitude: float
    radius_m: int
    is_primary: bool
    strict_geofence: bool

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SiteRead(CamelModel):
    id: int
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SiteRequirementsRead(CamelModel):
    max_accuracy: float
    proximity_required: bool
    strict_mode: bool


class SiteRequirementsResponse(CamelModel):
    time_record_id: int
    site: SiteRead | None = None
    locations: list[SiteLocationRead] = Field(default_factory=list)
    requirements: SiteRequirementsRead


class LocationPermissionRequest(RequestModel):
    permission_status: PermissionStatus
    permission_type: PermissionType | None = None
    browser_info: str | None = Field(default=None, max_length=1024)
    device_info: str | None = Field(default=None, max_length=1024)
    metadata: dict[str, Any] | None = None


class LocationPermissionResponse(CamelModel):
    success: bool
    permission_id: int
    permission_status: PermissionStatus
    has_permission: bool
    timestamp: datetime


class LocationPermissionStatusResponse(CamelModel):
    has_permission: bool
    permission_type: PermissionType | None = None
    last_checked: datetime | None = None
    latest_status: PermissionStatus | None = None


class LocationHistoryItemRead(CamelModel):
    id: int
    time_record_id: int
    action: CaptureType
    timestamp: datetime
    accuracy: float
    is_within_geofence: bool
    is_manual: bool
    verification_status: VerificationStatus
    timezone: str | None = None


class LocationHistoryResponse(CamelModel):
    items: list[LocationHistoryItemRead] = Field(default_factory=list)


class LocationCleanupResponse(CamelModel):
    ok: bool
    retention_days: int
    deleted: dict[str, int]


class AdminVerificationRead(CamelModel):
    id: int
    verification_type: CaptureType
    verification_status: VerificationStatus
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float
    location_source: LocationSource
    distance_from_site: float | None = None
    is_within_geofence: bool
    flag_reason: str | None = None
    encryption_version: int
    verification_time: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
