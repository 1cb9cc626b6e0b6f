from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geoclock.audit import log_audit
from geoclock.db import get_db
from geoclock.errors import DependencyError, NotFoundError
from geoclock.models import AuditActorType, TimeRecord
from geoclock.schemas import AdminVerificationRead, LocationCleanupResponse
from geoclock.security import require_admin
from geoclock.services.verification import (
    MAX_RETENTION_DAYS,
    cleanup_old_location_data,
    list_time_record_verifications,
)
from geoclock.settings import get_settings

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


@router.post("/location/cleanup", response_model=LocationCleanupResponse)
def cleanup_location_data(
    request: Request,
    retention_days: int | None = Query(default=None, alias="retentionDays", ge=1, le=MAX_RETENTION_DAYS),
    db: Session = Depends(get_db),
    claims: dict[str, Any] = Depends(require_admin),
) -> LocationCleanupResponse:
    days = retention_days or get_settings().location_retention_days
    try:
        deleted = cleanup_old_location_data(db, days)
    except SQLAlchemyError as exc:
        db.rollback()
        raise DependencyError("Failed to clean up location data.") from exc

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=str(claims.get("sub") or "admin"),
        action="LOCATION_DATA_CLEANUP",
        success=True,
        entity_type="location_data",
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details={"retention_days": days, "deleted": deleted},
        request_id=getattr(request.state, "request_id", None),
    )
    return LocationCleanupResponse(ok=True, retention_days=days, deleted=deleted)


@router.get("/time-records/{time_record_id}/verifications", response_model=list[AdminVerificationRead])
def time_record_verifications(
    time_record_id: int,
    db: Session = Depends(get_db),
    _claims: dict[str, Any] = Depends(require_admin),
) -> list[AdminVerificationRead]:
    if db.scalar(select(TimeRecord.id).where(TimeRecord.id == time_record_id)) is None:
        raise NotFoundError("Time record not found.", code="TIME_RECORD_NOT_FOUND")
    return [AdminVerificationRead(**item) for item in list_time_record_verifications(db, time_record_id)]
