from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geoclock.models import AuditActorType, AuditLog

logger = logging.getLogger("geoclock.audit")

# Coordinates are only ever stored encrypted on verification rows.
COORDINATE_DETAIL_KEYS = frozenset({"lat", "lon", "latitude", "longitude"})

# Verdict fields lifted out of details so log queries can filter on them.
VERDICT_DETAIL_KEYS = ("capture_type", "verification_id", "verification_status", "accuracy_level")


def scrub_location_details(details: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``details`` with raw coordinates removed at any depth."""
    if not details:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in details.items():
        if key in COORDINATE_DETAIL_KEYS:
            continue
        if isinstance(value, dict):
            value = scrub_location_details(value)
        cleaned[key] = value
    return cleaned


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog | None:
    """Write one audit row. A failed write is logged and never fails the request."""
    safe_details = scrub_location_details(details)
    verdict_fields = {key: safe_details[key] for key in VERDICT_DETAIL_KEYS if key in safe_details}

    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=safe_details,
    )
    db.add(audit)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "entity_id": entity_id,
                "success": success,
                **verdict_fields,
            },
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip": ip,
            "user_agent": user_agent,
            "success": success,
            **verdict_fields,
            "details": safe_details,
        },
    )
    return audit
