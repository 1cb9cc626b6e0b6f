from __future__ import annotations

import unittest
from unittest.mock import patch

from geoclock.models import ClinicalSite, ClinicalSiteLocation
from geoclock.services.geofence import (
    NO_SITE_LOCATION_WARNING,
    STRICT_SITE_ERROR,
    VALIDATION_FAILED_ERROR,
    validate_location_with_geofence,
)
from geoclock.services.location import AccuracyLevel, Coordinate
from geoclock.services.site_locator import NearestSiteLocation

POINT = Coordinate(latitude=41.0, longitude=29.0)


def _nearest(distance: float, *, radius_m: int = 100, strict_geofence: bool = False) -> NearestSiteLocation:
    site = ClinicalSite(id=3, name="General Hospital", address="1 Hospital Way", is_active=True)
    location = ClinicalSiteLocation(
        id=11,
        clinical_site_id=3,
        name="Main entrance",
        latitude=41.0,
        longitude=29.0,
        radius_m=radius_m,
        is_active=True,
        strict_geofence=strict_geofence,
    )
    return NearestSiteLocation(site=site, location=location, distance_m=distance)


class GeofenceValidationTests(unittest.TestCase):
    def _validate(self, nearest: NearestSiteLocation | None, *, accuracy: float = 20, strict_mode: bool = False):
        with patch("geoclock.services.geofence.find_nearest_site_location", return_value=nearest):
            return validate_location_with_geofence(
                object(),  # type: ignore[arg-type]
                user_id="student-1",
                coordinate=POINT,
                accuracy_m=accuracy,
                clinical_site_id=3,
                strict_mode=strict_mode,
            )

    def test_inside_fence_lenient_is_valid(self) -> None:
        verdict = self._validate(_nearest(50))

        self.assertTrue(verdict.is_valid)
        self.assertTrue(verdict.is_within_geofence)
        self.assertEqual(verdict.errors, [])
        self.assertEqual(verdict.warnings, [])
        self.assertEqual(verdict.distance_from_site, 50)
        assert verdict.nearest_site is not None
        self.assertEqual(verdict.nearest_site.allowed_radius, 100)
        self.assertEqual(verdict.nearest_site.location_id, 11)

    def test_outside_fence_lenient_warns_only(self) -> None:
        verdict = self._validate(_nearest(150))

        self.assertTrue(verdict.is_valid)
        self.assertFalse(verdict.is_within_geofence)
        self.assertEqual(verdict.errors, [])
        self.assertEqual(verdict.warnings, ["Location is 150m away from General Hospital (allowed: 100m)"])

    def test_outside_fence_strict_mode_is_rejected(self) -> None:
        verdict = self._validate(_nearest(150), strict_mode=True)

        self.assertFalse(verdict.is_valid)
        self.assertEqual(verdict.errors, ["Location is 150m away from General Hospital (allowed: 100m)"])
        self.assertEqual(verdict.metadata["policy"], "strict")

    def test_site_enforced_fence_overrides_lenient_default(self) -> None:
        verdict = self._validate(_nearest(150, strict_geofence=True))

        self.assertFalse(verdict.is_valid)
        self.assertEqual(len(verdict.errors), 2)
        self.assertIn("Location is 150m away from General Hospital (allowed: 100m)", verdict.errors)
        self.assertIn(STRICT_SITE_ERROR, verdict.errors)
        self.assertEqual(verdict.metadata["policy"], "site_enforced")

    def test_no_site_location_is_valid_with_single_warning(self) -> None:
        verdict = self._validate(None)

        self.assertTrue(verdict.is_valid)
        self.assertFalse(verdict.is_within_geofence)
        self.assertIsNone(verdict.nearest_site)
        self.assertIsNone(verdict.distance_from_site)
        self.assertEqual(verdict.warnings, [NO_SITE_LOCATION_WARNING])
        self.assertEqual(verdict.errors, [])

    def test_no_site_location_still_applies_accuracy_gate(self) -> None:
        verdict = self._validate(None, accuracy=150)

        self.assertFalse(verdict.is_valid)
        self.assertEqual(len(verdict.errors), 1)
        self.assertIn("±150m", verdict.errors[0])

    def test_unacceptable_accuracy_rejects_even_inside_fence(self) -> None:
        verdict = self._validate(_nearest(10), accuracy=101)

        self.assertFalse(verdict.is_valid)
        self.assertTrue(verdict.is_within_geofence)
        self.assertEqual(len(verdict.errors), 1)
        self.assertEqual(verdict.accuracy.level, AccuracyLevel.LOW)
        self.assertFalse(verdict.accuracy.acceptable)

    def test_low_accuracy_adds_warning(self) -> None:
        verdict = self._validate(_nearest(10), accuracy=80)

        self.assertTrue(verdict.is_valid)
        self.assertEqual(len(verdict.warnings), 1)
        self.assertIn("accuracy is low", verdict.warnings[0])

    def test_edge_of_fence_adds_warning(self) -> None:
        verdict = self._validate(_nearest(90))

        self.assertTrue(verdict.is_valid)
        self.assertTrue(verdict.is_within_geofence)
        self.assertEqual(verdict.warnings, ["You are near the edge of the allowed area (90m from site)"])

    def test_lookup_fault_is_folded_into_single_error(self) -> None:
        with patch(
            "geoclock.services.geofence.find_nearest_site_location",
            side_effect=RuntimeError("connection reset"),
        ):
            verdict = validate_location_with_geofence(
                object(),  # type: ignore[arg-type]
                user_id="student-1",
                coordinate=POINT,
                accuracy_m=5,
            )

        self.assertFalse(verdict.is_valid)
        self.assertEqual(verdict.errors, [VALIDATION_FAILED_ERROR])
        self.assertEqual(verdict.warnings, [])


if __name__ == "__main__":
    unittest.main()
