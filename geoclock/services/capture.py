from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geoclock.db import retry_transient_storage
from geoclock.errors import ConflictError, DependencyError, NotFoundError, PolicyViolation
from geoclock.models import CaptureType, TimeRecord, VerificationStatus
from geoclock.services.geofence import GeofenceVerdict, validate_location_with_geofence
from geoclock.services.location import LocationReading
from geoclock.services.verification import (
    add_verification_rows,
    derive_verification_status,
    record_location_verification,
)
from geoclock.settings import get_settings

logger = logging.getLogger("geoclock.capture")

_DIRECTION_LABELS = {
    CaptureType.CLOCK_IN: "Clock-in",
    CaptureType.CLOCK_OUT: "Clock-out",
}


@dataclass(slots=True)
class CaptureOutcome:
    time_record_id: int
    capture_type: CaptureType
    reading: LocationReading
    verdict: GeofenceVerdict
    status: VerificationStatus
    verification_id: int
    captured_at: datetime
    warnings: list[str] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _direction_columns(capture_type: CaptureType) -> dict[str, Any]:
    if capture_type == CaptureType.CLOCK_IN:
        return {
            "latitude": TimeRecord.clock_in_latitude,
            "longitude": TimeRecord.clock_in_longitude,
            "accuracy": TimeRecord.clock_in_accuracy,
            "source": TimeRecord.clock_in_source,
        }
    return {
        "latitude": TimeRecord.clock_out_latitude,
        "longitude": TimeRecord.clock_out_longitude,
        "accuracy": TimeRecord.clock_out_accuracy,
        "source": TimeRecord.clock_out_source,
    }


def is_direction_captured(record: TimeRecord, capture_type: CaptureType) -> bool:
    if capture_type == CaptureType.CLOCK_IN:
        return record.clock_in_latitude is not None
    return record.clock_out_latitude is not None


def _already_captured(capture_type: CaptureType) -> ConflictError:
    return ConflictError(
        f"{_DIRECTION_LABELS[capture_type]} location already captured.",
        code="LOCATION_ALREADY_CAPTURED",
    )


def get_owned_time_record(db: Session, *, time_record_id: int, user_id: str) -> TimeRecord:
    record = db.scalar(
        select(TimeRecord).where(
            TimeRecord.id == time_record_id,
            TimeRecord.student_id == user_id,
        )
    )
    if record is None:
        raise NotFoundError("Time record not found or access denied.", code="TIME_RECORD_NOT_FOUND")
    return record


def _timestamp_warnings(reading: LocationReading, now_utc: datetime) -> list[str]:
    skew_seconds = max(0, int(get_settings().capture_timestamp_skew_seconds))
    drift = abs((now_utc - _as_utc(reading.captured_at)).total_seconds())
    if drift > skew_seconds:
        minutes = max(1, skew_seconds // 60)
        return [f"Location timestamp differs from server time by more than {minutes} minutes"]
    return []


def capture_location(
    db: Session,
    *,
    user_id: str,
    time_record_id: int,
    capture_type: CaptureType,
    reading: LocationReading,
    metadata: dict[str, Any] | None = None,
    strict_mode: bool | None = None,
    now_utc: datetime | None = None,
) -> CaptureOutcome:
    """Validate and store the location for one direction of a time record.

    A direction moves from unset to captured exactly once. Rejected readings
    are still recorded as verifications but leave the time record untouched.
    """
    now_utc = now_utc or _utc_now()
    settings = get_settings()
    effective_strict = settings.location_strict_mode if strict_mode is None else strict_mode

    record = get_owned_time_record(db, time_record_id=time_record_id, user_id=user_id)
    if is_direction_captured(record, capture_type):
        raise _already_captured(capture_type)

    capture_warnings = _timestamp_warnings(reading, now_utc)
    verdict = validate_location_with_geofence(
        db,
        user_id=user_id,
        coordinate=reading.coordinate,
        accuracy_m=reading.accuracy_m,
        clinical_site_id=record.clinical_site_id,
        strict_mode=effective_strict,
    )
    status = derive_verification_status(verdict)
    verification_metadata: dict[str, Any] = {
        **(metadata or {}),
        "client_timestamp": _as_utc(reading.captured_at).isoformat(),
        "capture_warnings": capture_warnings,
    }
    for key in ("altitude", "heading", "speed"):
        value = getattr(reading, key)
        if value is not None:
            verification_metadata[key] = value

    columns = _direction_columns(capture_type)

    verification_kwargs: dict[str, Any] = {
        "time_record_id": time_record_id,
        "verification_type": capture_type,
        "verdict": verdict,
        "coordinate": reading.coordinate,
        "accuracy_m": reading.accuracy_m,
        "source": reading.source,
        "user_id": user_id,
        "metadata": verification_metadata,
        "verified_at": now_utc,
    }

    def _persist_capture() -> int:
        locked = db.scalar(select(TimeRecord).where(TimeRecord.id == time_record_id).with_for_update())
        if locked is None:
            raise NotFoundError("Time record not found or access denied.", code="TIME_RECORD_NOT_FOUND")
        # Conditional write so a concurrent capture of the same direction loses.
        result = db.execute(
            update(TimeRecord)
            .where(TimeRecord.id == time_record_id, columns["latitude"].is_(None))
            .values(
                {
                    columns["latitude"]: reading.coordinate.latitude,
                    columns["longitude"]: reading.coordinate.longitude,
                    columns["accuracy"]: reading.accuracy_m,
                    columns["source"]: reading.source,
                    TimeRecord.updated_at: now_utc,
                }
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise _already_captured(capture_type)
        row = add_verification_rows(db, **verification_kwargs)
        db.commit()
        return row.id

    if verdict.is_valid:
        try:
            verification_id = retry_transient_storage(db, _persist_capture)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception(
                "location_capture_write_failed",
                extra={"time_record_id": time_record_id, "capture_type": capture_type.value},
            )
            raise DependencyError("Failed to capture location data.") from exc
    else:
        # The time record stays untouched, so the attempt is stored on its own.
        verification_id = record_location_verification(db, **verification_kwargs)

    logger.info(
        "location_capture_evaluated",
        extra={
            "time_record_id": time_record_id,
            "capture_type": capture_type.value,
            "verification_id": verification_id,
            "verification_status": status.value,
            "accuracy_level": verdict.accuracy.level.value,
            "is_within_geofence": verdict.is_within_geofence,
            "policy": verdict.metadata.get("policy"),
        },
    )

    if not verdict.is_valid:
        raise PolicyViolation("Location did not pass verification.", details=list(verdict.errors))

    return CaptureOutcome(
        time_record_id=time_record_id,
        capture_type=capture_type,
        reading=reading,
        verdict=verdict,
        status=status,
        verification_id=verification_id,
        captured_at=now_utc,
        warnings=[*verdict.warnings, *capture_warnings],
    )
