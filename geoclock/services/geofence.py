from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from geoclock.services.location import (
    AccuracyAssessment,
    AccuracyLevel,
    Coordinate,
    classify_accuracy,
)
from geoclock.services.site_locator import find_nearest_site_location

logger = logging.getLogger("geoclock.location")

EDGE_WARNING_RATIO = 0.8
NO_SITE_LOCATION_WARNING = "Clinical site has no location coordinates configured."
STRICT_SITE_ERROR = "This clinical site enforces strict geofencing."
VALIDATION_FAILED_ERROR = "Failed to validate location."

POLICY_LENIENT = "lenient"
POLICY_STRICT = "strict"
POLICY_SITE_ENFORCED = "site_enforced"


@dataclass(frozen=True, slots=True)
class NearestSiteInfo:
    id: int
    name: str
    address: str | None
    allowed_radius: int
    location_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "allowed_radius": self.allowed_radius,
            "location_id": self.location_id,
        }


@dataclass(slots=True)
class GeofenceVerdict:
    accuracy: AccuracyAssessment
    is_valid: bool = False
    is_within_geofence: bool = False
    distance_from_site: int | None = None
    nearest_site: NearestSiteInfo | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "is_within_geofence": self.is_within_geofence,
            "distance_from_site": self.distance_from_site,
            "nearest_site": self.nearest_site.to_dict() if self.nearest_site else None,
            "accuracy": self.accuracy.to_dict(),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
        }


def _accuracy_error(accuracy_m: float) -> str:
    return (
        f"Location accuracy is too poor (±{round(accuracy_m)}m). "
        "Please try again with a better GPS signal."
    )


def _accuracy_gate(verdict: GeofenceVerdict, accuracy_m: float) -> None:
    if not verdict.accuracy.acceptable:
        verdict.errors.append(_accuracy_error(accuracy_m))


def validate_location_with_geofence(
    db: Session,
    *,
    user_id: str,
    coordinate: Coordinate,
    accuracy_m: float,
    clinical_site_id: int | None = None,
    strict_mode: bool = False,
) -> GeofenceVerdict:
    """Evaluate a reading against the nearest configured site geofence.

    Accuracy is always a hard gate. Geofence containment only gates validity
    when the caller asks for strict mode or the matched site location has
    ``strict_geofence`` set; otherwise a violation is reported as a warning.
    Faults are folded into ``errors``; this function does not raise.
    """
    verdict = GeofenceVerdict(
        accuracy=AccuracyAssessment(level=AccuracyLevel.LOW, acceptable=False, value=accuracy_m),
        metadata={"policy": POLICY_STRICT if strict_mode else POLICY_LENIENT, "strict_mode": strict_mode},
    )

    try:
        verdict.accuracy = classify_accuracy(accuracy_m)
        nearest = find_nearest_site_location(db, coordinate, clinical_site_id=clinical_site_id)

        if nearest is None:
            verdict.warnings.append(NO_SITE_LOCATION_WARNING)
            _accuracy_gate(verdict, accuracy_m)
            verdict.is_valid = verdict.accuracy.acceptable
            verdict.metadata["site_location_configured"] = False
            return verdict

        site = nearest.site
        location = nearest.location
        radius = int(location.radius_m)
        distance_value = nearest.distance_m

        verdict.distance_from_site = round(distance_value)
        verdict.nearest_site = NearestSiteInfo(
            id=site.id,
            name=site.name,
            address=site.address,
            allowed_radius=radius,
            location_id=location.id,
        )
        verdict.metadata["site_location_configured"] = True

        _accuracy_gate(verdict, accuracy_m)
        verdict.is_within_geofence = distance_value <= radius

        site_enforced = bool(location.strict_geofence)
        is_strict = strict_mode or site_enforced
        if site_enforced:
            verdict.metadata["policy"] = POLICY_SITE_ENFORCED

        if not verdict.is_within_geofence:
            message = f"Location is {verdict.distance_from_site}m away from {site.name} (allowed: {radius}m)"
            if is_strict:
                verdict.errors.append(message)
                if site_enforced:
                    verdict.errors.append(STRICT_SITE_ERROR)
            else:
                verdict.warnings.append(message)

        if verdict.accuracy.level == AccuracyLevel.LOW and verdict.accuracy.acceptable:
            verdict.warnings.append(
                f"Location accuracy is low (±{round(accuracy_m)}m). "
                "Consider moving to an area with a better GPS signal."
            )

        if verdict.is_within_geofence and distance_value > radius * EDGE_WARNING_RATIO:
            verdict.warnings.append(
                f"You are near the edge of the allowed area ({verdict.distance_from_site}m from site)"
            )

        if is_strict:
            verdict.is_valid = verdict.is_within_geofence and verdict.accuracy.acceptable
        else:
            verdict.is_valid = verdict.accuracy.acceptable
        return verdict
    except Exception:
        logger.exception(
            "geofence_validation_failed",
            extra={"user_id": user_id, "clinical_site_id": clinical_site_id},
        )
        return GeofenceVerdict(
            accuracy=verdict.accuracy,
            is_valid=False,
            errors=[VALIDATION_FAILED_ERROR],
            metadata=verdict.metadata,
        )
