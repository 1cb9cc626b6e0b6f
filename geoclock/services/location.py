from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from math import asin, cos, isfinite, radians, sin, sqrt

from geoclock.errors import InputError
from geoclock.models import LocationSource

EARTH_RADIUS_M = 6371000.0


class AccuracyLevel(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Upper bound (inclusive, meters) for each tier. Anything above the last
# bound is still LOW but no longer acceptable.
ACCURACY_TIERS: tuple[tuple[float, AccuracyLevel], ...] = (
    (10.0, AccuracyLevel.HIGH),
    (50.0, AccuracyLevel.MEDIUM),
    (100.0, AccuracyLevel.LOW),
)
MAX_ACCEPTABLE_ACCURACY_M = ACCURACY_TIERS[-1][0]


@dataclass(frozen=True, slots=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        errors: list[str] = []
        if not isfinite(self.latitude) or not -90.0 <= self.latitude <= 90.0:
            errors.append("Invalid latitude value")
        if not isfinite(self.longitude) or not -180.0 <= self.longitude <= 180.0:
            errors.append("Invalid longitude value")
        if errors:
            raise InputError("Invalid location data", details=errors)


@dataclass(frozen=True, slots=True)
class LocationReading:
    coordinate: Coordinate
    accuracy_m: float
    captured_at: datetime
    source: LocationSource
    altitude: float | None = None
    heading: float | None = None
    speed: float | None = None

    def __post_init__(self) -> None:
        if not isfinite(self.accuracy_m) or self.accuracy_m < 0:
            raise InputError("Invalid location data", details=["Invalid accuracy value"])


@dataclass(frozen=True, slots=True)
class AccuracyAssessment:
    level: AccuracyLevel
    acceptable: bool
    value: float

    def to_dict(self) -> dict[str, object]:
        return {"level": self.level.value, "acceptable": self.acceptable, "value": self.value}


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Float error can push a marginally past 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def distance_between(a: Coordinate, b: Coordinate) -> float:
    return distance_m(a.latitude, a.longitude, b.latitude, b.longitude)


def classify_accuracy(accuracy_m: float) -> AccuracyAssessment:
    if accuracy_m < 0:
        raise ValueError(f"accuracy must be non-negative, got {accuracy_m}")

    for upper_bound, level in ACCURACY_TIERS:
        if accuracy_m <= upper_bound:
            return AccuracyAssessment(level=level, acceptable=True, value=accuracy_m)
    return AccuracyAssessment(level=AccuracyLevel.LOW, acceptable=False, value=accuracy_m)
