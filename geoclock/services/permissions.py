from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geoclock.errors import DependencyError
from geoclock.models import LocationPermission, PermissionStatus, PermissionType

logger = logging.getLogger("geoclock.permissions")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def record_location_permission(
    db: Session,
    *,
    user_id: str,
    permission_status: PermissionStatus,
    permission_type: PermissionType | None = None,
    browser_info: str | None = None,
    device_info: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> LocationPermission:
    """Append a permission row. History is never updated in place."""
    now = _utc_now()
    if permission_type is None and permission_status == PermissionStatus.DENIED:
        permission_type = PermissionType.DENIED

    permission = LocationPermission(
        user_id=user_id,
        permission_status=permission_status,
        permission_type=permission_type,
        browser_info=browser_info,
        device_info=device_info,
        permission_metadata=metadata or {},
        responded_at=now,
        last_used_at=now,
        created_at=now,
    )
    db.add(permission)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("location_permission_write_failed", extra={"user_id": user_id})
        raise DependencyError("Failed to store location permission.") from exc
    db.refresh(permission)
    return permission


def _latest(db: Session, user_id: str, *, status: PermissionStatus | None = None) -> LocationPermission | None:
    statement = select(LocationPermission).where(LocationPermission.user_id == user_id)
    if status is not None:
        statement = statement.where(LocationPermission.permission_status == status)
    return db.scalar(
        statement.order_by(LocationPermission.created_at.desc(), LocationPermission.id.desc()).limit(1)
    )


def get_location_permission_status(db: Session, user_id: str) -> dict[str, Any]:
    """Return the most recent ``granted`` row, if any.

    ``latest_status`` exposes the newest row of any status so a denial
    recorded after a grant stays visible to callers.
    """
    latest_any = _latest(db, user_id)
    latest_status = latest_any.permission_status if latest_any is not None else None

    granted = _latest(db, user_id, status=PermissionStatus.GRANTED)
    if granted is None:
        return {"has_permission": False, "latest_status": latest_status}

    return {
        "has_permission": True,
        "permission_type": granted.permission_type,
        "last_checked": granted.last_used_at or granted.created_at,
        "latest_status": latest_status,
    }
