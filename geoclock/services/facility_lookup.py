from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from geoclock.services.location import Coordinate, distance_m
from geoclock.services.lookup_cache import LookupCache
from geoclock.settings import Settings

logger = logging.getLogger("geoclock.facility_lookup")


@dataclass(frozen=True, slots=True)
class FacilityInfo:
    name: str
    address: str
    type: str | None = None
    osm_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "address": self.address, "type": self.type, "osm_id": self.osm_id}


@dataclass(frozen=True, slots=True)
class FacilityLookupResult:
    success: bool
    facility: FacilityInfo | None = None
    distance: float | None = None
    cached: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "facility": self.facility.to_dict() if self.facility else None,
            "distance": self.distance,
            "cached": self.cached,
        }


def _cache_key(coordinate: Coordinate) -> str:
    return f"{round(coordinate.latitude, 4)},{round(coordinate.longitude, 4)}"


class FacilityLookupClient:
    """Reverse-geocoding lookup against a Nominatim-compatible endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str,
        timeout_seconds: int,
        cache: LookupCache[FacilityLookupResult],
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout_seconds = max(1, int(timeout_seconds))
        self.cache = cache

    def _fetch(self, coordinate: Coordinate) -> dict[str, Any]:
        query = urllib_parse.urlencode(
            {
                "format": "jsonv2",
                "lat": f"{coordinate.latitude:.6f}",
                "lon": f"{coordinate.longitude:.6f}",
                "zoom": 18,
                "addressdetails": 0,
            }
        )
        request = urllib_request.Request(
            url=f"{self.base_url}/reverse?{query}",
            method="GET",
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
        )
        with urllib_request.urlopen(request, timeout=self.timeout_seconds) as response:
            body = response.read().decode("utf-8", errors="ignore")
        payload = json.loads(body or "{}")
        if not isinstance(payload, dict):
            raise ValueError("unexpected lookup payload")
        return payload

    def lookup(self, coordinate: Coordinate) -> FacilityLookupResult:
        key = _cache_key(coordinate)
        cached = self.cache.get(key)
        if cached is not None:
            return FacilityLookupResult(
                success=cached.success,
                facility=cached.facility,
                distance=cached.distance,
                cached=True,
            )

        try:
            payload = self._fetch(coordinate)
        except (urllib_error.URLError, TimeoutError, OSError, ValueError) as exc:
            logger.warning(
                "facility_lookup_failed",
                extra={"error_type": exc.__class__.__name__, "error": str(exc)},
            )
            return FacilityLookupResult(success=False, error=str(exc))

        if payload.get("error"):
            result = FacilityLookupResult(success=False, error=str(payload.get("error")))
            self.cache.set(key, result)
            return result

        address = str(payload.get("display_name") or "").strip()
        name = str(payload.get("name") or "").strip() or address.split(",")[0].strip()
        distance_value: float | None = None
        try:
            distance_value = round(
                distance_m(
                    coordinate.latitude,
                    coordinate.longitude,
                    float(payload["lat"]),
                    float(payload["lon"]),
                ),
                2,
            )
        except (KeyError, TypeError, ValueError):
            distance_value = None

        if not name:
            result = FacilityLookupResult(success=False, error="no_facility_found")
        else:
            osm_id = payload.get("osm_id")
            result = FacilityLookupResult(
                success=True,
                facility=FacilityInfo(
                    name=name,
                    address=address,
                    type=str(payload.get("type") or payload.get("category") or "") or None,
                    osm_id=str(osm_id) if osm_id is not None else None,
                ),
                distance=distance_value,
            )
        self.cache.set(key, result)
        return result


def build_facility_lookup(settings: Settings) -> FacilityLookupClient | None:
    if not settings.facility_lookup_enabled:
        return None
    cache: LookupCache[FacilityLookupResult] = LookupCache(
        ttl_seconds=settings.facility_lookup_cache_ttl_seconds,
        max_entries=settings.facility_lookup_cache_max_entries,
    )
    return FacilityLookupClient(
        base_url=settings.facility_lookup_base_url,
        user_agent=settings.facility_lookup_user_agent,
        timeout_seconds=settings.facility_lookup_timeout_seconds,
        cache=cache,
    )
