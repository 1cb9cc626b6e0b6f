from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from geoclock.audit import log_audit
from geoclock.db import get_db
from geoclock.errors import PolicyViolation
from geoclock.models import AuditActorType, PermissionStatus, TimeRecord, VerificationStatus
from geoclock.schemas import (
    CapturedLocationRead,
    CaptureValidationRead,
    DirectionLocationRead,
    FacilityLookupRead,
    GeofenceVerdictRead,
    LocationCaptureRequest,
    LocationCaptureResponse,
    LocationHistoryItemRead,
    LocationHistoryResponse,
    LocationPermissionRequest,
    LocationPermissionResponse,
    LocationPermissionStatusResponse,
    LocationVerifyRequest,
    LocationVerifyResponse,
    SiteLocationRead,
    SiteRead,
    SiteRequirementsRead,
    SiteRequirementsResponse,
    TimeRecordLocationsResponse,
)
from geoclock.security import require_student
from geoclock.services.capture import capture_location, get_owned_time_record
from geoclock.services.facility_lookup import FacilityLookupClient
from geoclock.services.geofence import validate_location_with_geofence
from geoclock.services.location import Coordinate, LocationReading, MAX_ACCEPTABLE_ACCURACY_M
from geoclock.services.permissions import get_location_permission_status, record_location_permission
from geoclock.services.site_locator import list_active_site_locations
from geoclock.services.verification import get_location_history
from geoclock.settings import get_settings

router = APIRouter(prefix="/api/location", tags=["location"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def get_facility_lookup(request: Request) -> FacilityLookupClient | None:
    return getattr(request.app.state, "facility_lookup", None)


def _direction_read(record: TimeRecord, *, clock_in: bool) -> DirectionLocationRead:
    if clock_in:
        timestamp, lat, lon = record.clock_in, record.clock_in_latitude, record.clock_in_longitude
        accuracy, source = record.clock_in_accuracy, record.clock_in_source
    else:
        timestamp, lat, lon = record.clock_out, record.clock_out_latitude, record.clock_out_longitude
        accuracy, source = record.clock_out_accuracy, record.clock_out_source
    location = None
    if lat is not None and lon is not None:
        location = CapturedLocationRead(latitude=lat, longitude=lon, accuracy=accuracy, source=source)
    return DirectionLocationRead(timestamp=timestamp, location=location)


@router.post("/capture", response_model=LocationCaptureResponse)
def capture(
    payload: LocationCaptureRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
) -> LocationCaptureResponse:
    reading = LocationReading(
        coordinate=Coordinate(latitude=payload.latitude, longitude=payload.longitude),
        accuracy_m=payload.accuracy,
        captured_at=payload.timestamp,
        source=payload.source,
        altitude=payload.altitude,
        heading=payload.heading,
        speed=payload.speed,
    )
    audit_base = {
        "actor_type": AuditActorType.STUDENT,
        "actor_id": user_id,
        "entity_type": "time_record",
        "entity_id": str(payload.time_record_id),
        "ip": _client_ip(request),
        "user_agent": _user_agent(request),
        "request_id": getattr(request.state, "request_id", None),
    }
    try:
        outcome = capture_location(
            db,
            user_id=user_id,
            time_record_id=payload.time_record_id,
            capture_type=payload.capture_type,
            reading=reading,
            metadata=payload.metadata,
        )
    except PolicyViolation as exc:
        request.state.location_status = "rejected"
        log_audit(
            db,
            action="LOCATION_CAPTURE_REJECTED",
            success=False,
            details={
                "capture_type": payload.capture_type.value,
                "verification_status": VerificationStatus.REJECTED.value,
                "errors": exc.details,
            },
            **audit_base,
        )
        raise

    request.state.location_status = outcome.status.value
    request.state.flags = {"warnings": outcome.warnings}
    log_audit(
        db,
        action="LOCATION_CAPTURED",
        success=True,
        details={
            "capture_type": outcome.capture_type.value,
            "verification_id": outcome.verification_id,
            "verification_status": outcome.status.value,
            "accuracy_level": outcome.verdict.accuracy.level.value,
            "warnings": outcome.warnings,
        },
        **audit_base,
    )
    return LocationCaptureResponse(
        success=True,
        time_record_id=outcome.time_record_id,
        capture_type=outcome.capture_type,
        location=CapturedLocationRead(
            latitude=reading.coordinate.latitude,
            longitude=reading.coordinate.longitude,
            accuracy=reading.accuracy_m,
            source=reading.source,
        ),
        validation=CaptureValidationRead(
            accuracy=outcome.verdict.accuracy.level,
            warnings=outcome.warnings,
            status=outcome.status,
        ),
        verification_id=outcome.verification_id,
        timestamp=outcome.captured_at,
    )


@router.get("/capture", response_model=TimeRecordLocationsResponse)
def captured_locations(
    time_record_id: int = Query(alias="timeRecordId", ge=1),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
) -> TimeRecordLocationsResponse:
    record = get_owned_time_record(db, time_record_id=time_record_id, user_id=user_id)
    return TimeRecordLocationsResponse(
        time_record_id=record.id,
        clock_in=_direction_read(record, clock_in=True),
        clock_out=_direction_read(record, clock_in=False),
    )


@router.post("/verify", response_model=LocationVerifyResponse)
def verify(
    payload: LocationVerifyRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
    facility_lookup: FacilityLookupClient | None = Depends(get_facility_lookup),
) -> LocationVerifyResponse:
    record = get_owned_time_record(db, time_record_id=payload.time_record_id, user_id=user_id)
    coordinate = Coordinate(latitude=payload.latitude, longitude=payload.longitude)
    verdict = validate_location_with_geofence(
        db,
        user_id=user_id,
        coordinate=coordinate,
        accuracy_m=payload.accuracy,
        clinical_site_id=record.clinical_site_id,
        strict_mode=get_settings().location_strict_mode or payload.strict_mode,
    )

    facility = None
    if payload.include_facility and facility_lookup is not None:
        facility = FacilityLookupRead.model_validate(facility_lookup.lookup(coordinate).to_dict())

    return LocationVerifyResponse(
        time_record_id=record.id,
        verdict=GeofenceVerdictRead.model_validate(verdict.to_dict()),
        facility=facility,
    )


@router.get("/verify", response_model=SiteRequirementsResponse)
def site_requirements(
    time_record_id: int = Query(alias="timeRecordId", ge=1),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
) -> SiteRequirementsResponse:
    record = get_owned_time_record(db, time_record_id=time_record_id, user_id=user_id)
    locations = []
    if record.clinical_site_id is not None:
        locations = [
            location
            for location, _site in list_active_site_locations(db, clinical_site_id=record.clinical_site_id)
        ]
    settings = get_settings()
    return SiteRequirementsResponse(
        time_record_id=record.id,
        site=SiteRead.model_validate(record.clinical_site) if record.clinical_site is not None else None,
        locations=[SiteLocationRead.model_validate(location) for location in locations],
        requirements=SiteRequirementsRead(
            max_accuracy=MAX_ACCEPTABLE_ACCURACY_M,
            proximity_required=bool(locations),
            strict_mode=settings.location_strict_mode or any(item.strict_geofence for item in locations),
        ),
    )


@router.get("/permissions", response_model=LocationPermissionStatusResponse)
def permission_status(
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
) -> LocationPermissionStatusResponse:
    return LocationPermissionStatusResponse(**get_location_permission_status(db, user_id))


@router.post("/permissions", response_model=LocationPermissionResponse)
def record_permission(
    payload: LocationPermissionRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
) -> LocationPermissionResponse:
    permission = record_location_permission(
        db,
        user_id=user_id,
        permission_status=payload.permission_status,
        permission_type=payload.permission_type,
        browser_info=payload.browser_info,
        device_info=payload.device_info,
        metadata=payload.metadata,
    )
    log_audit(
        db,
        actor_type=AuditActorType.STUDENT,
        actor_id=user_id,
        action="LOCATION_PERMISSION_RECORDED",
        success=True,
        entity_type="location_permission",
        entity_id=str(permission.id),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={"permission_status": permission.permission_status.value},
        request_id=getattr(request.state, "request_id", None),
    )
    return LocationPermissionResponse(
        success=True,
        permission_id=permission.id,
        permission_status=permission.permission_status,
        has_permission=permission.permission_status == PermissionStatus.GRANTED,
        timestamp=permission.created_at,
    )


@router.get("/history", response_model=LocationHistoryResponse)
def history(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_student),
) -> LocationHistoryResponse:
    items = get_location_history(db, user_id, limit=limit)
    return LocationHistoryResponse(items=[LocationHistoryItemRead(**item) for item in items])
