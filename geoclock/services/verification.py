from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geoclock.db import retry_transient_storage
from geoclock.errors import DependencyError, InputError
from geoclock.models import (
    CaptureType,
    LocationAccuracyLog,
    LocationPermission,
    LocationSource,
    LocationVerification,
    TimeRecord,
    VerificationStatus,
)
from geoclock.services.geofence import GeofenceVerdict
from geoclock.services.location import Coordinate
from geoclock.services.location_crypto import (
    ENCRYPTION_VERSION,
    LocationDecryptionError,
    decrypt_location_from_storage,
    encrypt_location_for_storage,
)

logger = logging.getLogger("geoclock.verification")

DEFAULT_HISTORY_LIMIT = 50
MAX_RETENTION_DAYS = 36500


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def derive_verification_status(verdict: GeofenceVerdict) -> VerificationStatus:
    if verdict.errors or not verdict.is_valid:
        return VerificationStatus.REJECTED
    if verdict.warnings:
        return VerificationStatus.FLAGGED
    return VerificationStatus.APPROVED


def _flag_reason(verdict: GeofenceVerdict) -> str | None:
    if verdict.errors:
        return "; ".join(verdict.errors)
    if verdict.warnings:
        return "; ".join(verdict.warnings)
    return None


def add_verification_rows(
    db: Session,
    *,
    time_record_id: int,
    verification_type: CaptureType,
    verdict: GeofenceVerdict,
    coordinate: Coordinate,
    accuracy_m: float,
    source: LocationSource,
    user_id: str,
    metadata: dict[str, Any] | None = None,
    verified_at: datetime | None = None,
) -> LocationVerification:
    """Stage a verification row and its accuracy log in the current transaction."""
    status = derive_verification_status(verdict)
    payload, marker = encrypt_location_for_storage(coordinate.latitude, coordinate.longitude)
    log_payload, log_marker = encrypt_location_for_storage(coordinate.latitude, coordinate.longitude)
    verified_at = verified_at or _utc_now()

    record = LocationVerification(
        time_record_id=time_record_id,
        verification_type=verification_type,
        user_latitude=payload,
        user_longitude=marker,
        encryption_version=ENCRYPTION_VERSION,
        user_accuracy=float(accuracy_m),
        location_source=source,
        clinical_site_location_id=verdict.nearest_site.location_id if verdict.nearest_site else None,
        distance_from_site=(
            float(verdict.distance_from_site) if verdict.distance_from_site is not None else None
        ),
        is_within_geofence=verdict.is_within_geofence,
        verification_status=status,
        flag_reason=_flag_reason(verdict),
        verification_metadata={
            **(metadata or {}),
            "warnings": list(verdict.warnings),
            "errors": list(verdict.errors),
            "accuracy_level": verdict.accuracy.level.value,
            "policy": verdict.metadata.get("policy"),
            "encrypted": True,
            "encryption_version": ENCRYPTION_VERSION,
        },
        verification_time=verified_at,
    )
    db.add(record)
    db.add(
        LocationAccuracyLog(
            user_id=user_id,
            time_record_id=time_record_id,
            latitude=log_payload,
            longitude=log_marker,
            accuracy=float(accuracy_m),
            location_source=source,
            verification_type=verification_type,
            verification_status=status,
            created_at=verified_at,
        )
    )
    db.flush()
    return record


def record_location_verification(
    db: Session,
    *,
    time_record_id: int,
    verification_type: CaptureType,
    verdict: GeofenceVerdict,
    coordinate: Coordinate,
    accuracy_m: float,
    source: LocationSource,
    user_id: str,
    metadata: dict[str, Any] | None = None,
    verified_at: datetime | None = None,
) -> int:
    """Persist one verification in its own transaction and return its id.

    Used for attempts that do not touch the time record, such as rejected
    captures. Accepted captures stage their rows with ``add_verification_rows``
    so the record update and the verification commit together.
    """

    def _write() -> int:
        record = add_verification_rows(
            db,
            time_record_id=time_record_id,
            verification_type=verification_type,
            verdict=verdict,
            coordinate=coordinate,
            accuracy_m=accuracy_m,
            source=source,
            user_id=user_id,
            metadata=metadata,
            verified_at=verified_at,
        )
        db.commit()
        return record.id

    try:
        record_id = retry_transient_storage(db, _write)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "location_verification_write_failed",
            extra={"time_record_id": time_record_id, "verification_type": verification_type.value},
        )
        raise DependencyError("Failed to save location verification.") from exc

    logger.info(
        "location_verification_recorded",
        extra={
            "verification_id": record_id,
            "time_record_id": time_record_id,
            "verification_type": verification_type.value,
            "verification_status": derive_verification_status(verdict).value,
        },
    )
    return record_id


def get_location_history(
    db: Session,
    user_id: str,
    *,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[dict[str, Any]]:
    rows = db.scalars(
        select(LocationVerification)
        .join(TimeRecord, TimeRecord.id == LocationVerification.time_record_id)
        .where(TimeRecord.student_id == user_id)
        .order_by(LocationVerification.verification_time.desc(), LocationVerification.id.desc())
        .limit(max(1, limit))
    ).all()
    return [
        {
            "id": row.id,
            "time_record_id": row.time_record_id,
            "action": row.verification_type,
            "timestamp": row.verification_time,
            "accuracy": row.user_accuracy,
            "is_within_geofence": row.is_within_geofence,
            "is_manual": row.location_source == LocationSource.MANUAL,
            "verification_status": row.verification_status,
            "timezone": (row.verification_metadata or {}).get("timezone"),
        }
        for row in rows
    ]


def list_time_record_verifications(db: Session, time_record_id: int) -> list[dict[str, Any]]:
    rows = db.scalars(
        select(LocationVerification)
        .where(LocationVerification.time_record_id == time_record_id)
        .order_by(LocationVerification.verification_time.asc(), LocationVerification.id.asc())
    ).all()
    items: list[dict[str, Any]] = []
    for row in rows:
        try:
            latitude, longitude = decrypt_location_from_storage(row.user_latitude, row.user_longitude)
        except LocationDecryptionError:
            logger.warning("location_verification_unreadable", extra={"verification_id": row.id})
            latitude, longitude = None, None
        items.append(
            {
                "id": row.id,
                "verification_type": row.verification_type,
                "verification_status": row.verification_status,
                "latitude": latitude,
                "longitude": longitude,
                "accuracy": row.user_accuracy,
                "location_source": row.location_source,
                "distance_from_site": row.distance_from_site,
                "is_within_geofence": row.is_within_geofence,
                "flag_reason": row.flag_reason,
                "encryption_version": row.encryption_version,
                "verification_time": row.verification_time,
                "metadata": row.verification_metadata or {},
            }
        )
    return items


def cleanup_old_location_data(
    db: Session,
    retention_days: int,
    *,
    now_utc: datetime | None = None,
) -> dict[str, int]:
    """Delete location data older than ``retention_days``.

    Each user's latest permission row is kept regardless of age.
    """
    if retention_days < 1 or retention_days > MAX_RETENTION_DAYS:
        raise InputError(
            "Invalid retention window",
            details=[f"retention_days must be between 1 and {MAX_RETENTION_DAYS}"],
        )

    try:
        cutoff = (now_utc or _utc_now()) - timedelta(days=retention_days)
    except OverflowError as exc:
        raise InputError(
            "Invalid retention window",
            details=["retention_days reaches past the earliest representable date"],
        ) from exc
    latest_permission_ids = select(func.max(LocationPermission.id)).group_by(LocationPermission.user_id)

    verifications = db.execute(
        delete(LocationVerification)
        .where(LocationVerification.verification_time < cutoff)
        .execution_options(synchronize_session=False)
    )
    accuracy_logs = db.execute(
        delete(LocationAccuracyLog)
        .where(LocationAccuracyLog.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    permissions = db.execute(
        delete(LocationPermission)
        .where(
            LocationPermission.created_at < cutoff,
            LocationPermission.id.not_in(latest_permission_ids),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    result = {
        "location_verifications": int(verifications.rowcount or 0),
        "location_accuracy_logs": int(accuracy_logs.rowcount or 0),
        "location_permissions": int(permissions.rowcount or 0),
    }
    logger.info(
        "location_data_cleanup",
        extra={"retention_days": retention_days, "cutoff": cutoff.isoformat(), "deleted": result},
    )
    return result
