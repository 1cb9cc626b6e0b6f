from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from geoclock.errors import ConflictError, DependencyError, PolicyViolation
from geoclock.models import CaptureType, LocationSource, LocationVerification, TimeRecord, VerificationStatus
from geoclock.services import capture as capture_service
from geoclock.services.capture import capture_location, get_owned_time_record
from geoclock.services.location import Coordinate, LocationReading
from tests.db_utils import build_sqlite_session_factory, seed_site, seed_time_record


def _reading(latitude: float = 41.0, longitude: float = 29.0) -> LocationReading:
    return LocationReading(
        coordinate=Coordinate(latitude=latitude, longitude=longitude),
        accuracy_m=5,
        captured_at=datetime.now(timezone.utc),
        source=LocationSource.GPS,
    )


class ConcurrentCaptureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_sqlite_session_factory()
        self.first = self.session_factory()
        self.second = self.session_factory()
        site, _ = seed_site(self.first)
        self.record = seed_time_record(self.first, clinical_site_id=site.id)

    def tearDown(self) -> None:
        self.first.close()
        self.second.close()

    def test_same_direction_race_keeps_first_capture(self) -> None:
        # The second session still holds the record as it was before the first capture.
        stale = get_owned_time_record(self.second, time_record_id=self.record.id, user_id="student-1")
        self.assertIsNone(stale.clock_in_latitude)

        outcome = capture_location(
            self.first,
            user_id="student-1",
            time_record_id=self.record.id,
            capture_type=CaptureType.CLOCK_IN,
            reading=_reading(),
        )
        self.assertEqual(outcome.status, VerificationStatus.APPROVED)

        with self.assertRaises(ConflictError) as ctx:
            capture_location(
                self.second,
                user_id="student-1",
                time_record_id=self.record.id,
                capture_type=CaptureType.CLOCK_IN,
                reading=_reading(latitude=41.0004),
            )
        self.assertEqual(ctx.exception.code, "LOCATION_ALREADY_CAPTURED")

        fresh = self.session_factory()
        try:
            record = fresh.get(TimeRecord, self.record.id)
            assert record is not None
            self.assertEqual(record.clock_in_latitude, 41.0)
            self.assertEqual(fresh.scalar(select(func.count(LocationVerification.id))), 1)
        finally:
            fresh.close()


class RejectedCaptureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_sqlite_session_factory()
        self.db = self.session_factory()
        site, _ = seed_site(self.db, strict_geofence=True)
        self.record = seed_time_record(self.db, clinical_site_id=site.id)
        self.now = datetime.now(timezone.utc)

    def tearDown(self) -> None:
        self.db.close()

    def _capture_outside_fence(self) -> None:
        capture_location(
            self.db,
            user_id="student-1",
            time_record_id=self.record.id,
            capture_type=CaptureType.CLOCK_IN,
            reading=_reading(latitude=41.01),
            now_utc=self.now,
        )

    def test_rejection_is_stored_through_verification_recorder(self) -> None:
        with patch.object(
            capture_service,
            "record_location_verification",
            wraps=capture_service.record_location_verification,
        ) as recorder:
            with self.assertRaises(PolicyViolation):
                self._capture_outside_fence()

        recorder.assert_called_once()
        self.assertEqual(recorder.call_args.kwargs["verified_at"], self.now)
        self.assertEqual(recorder.call_args.kwargs["verification_type"], CaptureType.CLOCK_IN)
        row = self.db.scalar(select(LocationVerification))
        assert row is not None
        self.assertEqual(row.verification_status, VerificationStatus.REJECTED)
        self.assertIsNone(self.db.get(TimeRecord, self.record.id).clock_in_latitude)

    def test_rejection_storage_failure_is_dependency_error(self) -> None:
        failure = OperationalError("INSERT", {}, Exception("server closed the connection"))
        with patch.object(self.db, "commit", side_effect=failure):
            with self.assertRaises(DependencyError) as ctx:
                self._capture_outside_fence()

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(self.db.scalar(select(func.count(LocationVerification.id))), 0)


if __name__ == "__main__":
    unittest.main()
