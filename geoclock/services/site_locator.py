from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from geoclock.models import ClinicalSite, ClinicalSiteLocation
from geoclock.services.location import Coordinate, distance_m


@dataclass(frozen=True, slots=True)
class NearestSiteLocation:
    site: ClinicalSite
    location: ClinicalSiteLocation
    distance_m: float


def list_active_site_locations(
    db: Session,
    *,
    clinical_site_id: int | None = None,
) -> list[tuple[ClinicalSiteLocation, ClinicalSite]]:
    statement = (
        select(ClinicalSiteLocation, ClinicalSite)
        .join(ClinicalSite, ClinicalSite.id == ClinicalSiteLocation.clinical_site_id)
        .where(ClinicalSiteLocation.is_active.is_(True), ClinicalSite.is_active.is_(True))
        .order_by(ClinicalSiteLocation.id.asc())
    )
    if clinical_site_id is not None:
        statement = statement.where(ClinicalSiteLocation.clinical_site_id == clinical_site_id)
    return [(location, site) for location, site in db.execute(statement).all()]


def find_nearest_site_location(
    db: Session,
    coordinate: Coordinate,
    *,
    clinical_site_id: int | None = None,
) -> NearestSiteLocation | None:
    """Return the closest active site location, or None when nothing is configured.

    Equal distances resolve to the lowest location id.
    """
    best: NearestSiteLocation | None = None
    best_key: tuple[float, int] | None = None
    for location, site in list_active_site_locations(db, clinical_site_id=clinical_site_id):
        value = distance_m(coordinate.latitude, coordinate.longitude, location.latitude, location.longitude)
        key = (value, location.id)
        if best_key is None or key < best_key:
            best_key = key
            best = NearestSiteLocation(site=site, location=location, distance_m=value)
    return best
