from __future__ import annotations

import unittest
from datetime import datetime, timezone

from fastapi.testclient import TestClient
from sqlalchemy import select

from geoclock.db import get_db
from geoclock.main import app
from geoclock.models import AuditLog, LocationVerification, TimeRecord, VerificationStatus
from geoclock.security import require_admin, require_student
from tests.db_utils import build_sqlite_session_factory, override_get_db, seed_site, seed_time_record


def _capture_body(time_record_id: int, **overrides: object) -> dict[str, object]:
    body: dict[str, object] = {
        "timeRecordId": time_record_id,
        "captureType": "clock_in",
        "latitude": 41.0,
        "longitude": 29.0,
        "accuracy": 5,
        "source": "gps",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    body.update(overrides)
    return body


class LocationEndpointTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_sqlite_session_factory()
        self.db = self.session_factory()
        app.dependency_overrides[get_db] = override_get_db(self.session_factory)
        app.dependency_overrides[require_student] = lambda: "student-1"
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _reload(self, time_record_id: int) -> TimeRecord:
        db = self.session_factory()
        try:
            record = db.get(TimeRecord, time_record_id)
            assert record is not None
            return record
        finally:
            db.close()


class LocationCaptureEndpointTests(LocationEndpointTestCase):
    def test_capture_success(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        response = self.client.post("/api/location/capture", json=_capture_body(record.id))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["timeRecordId"], record.id)
        self.assertEqual(body["captureType"], "clock_in")
        self.assertEqual(body["location"]["source"], "gps")
        self.assertEqual(body["validation"], {"accuracy": "high", "warnings": [], "status": "approved"})
        self.assertIsInstance(body["verificationId"], int)
        self.assertIn("X-Request-Id", response.headers)

        stored = self._reload(record.id)
        self.assertEqual(stored.clock_in_latitude, 41.0)
        self.assertEqual(stored.clock_in_accuracy, 5)
        self.assertIsNone(stored.clock_out_latitude)

        audit = self.db.scalar(select(AuditLog).where(AuditLog.action == "LOCATION_CAPTURED"))
        assert audit is not None
        self.assertTrue(audit.success)

    def test_second_clock_in_conflicts_and_keeps_first_reading(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        first = self.client.post("/api/location/capture", json=_capture_body(record.id))
        second = self.client.post(
            "/api/location/capture",
            json=_capture_body(record.id, latitude=41.0003, accuracy=9),
        )

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["error"]["code"], "LOCATION_ALREADY_CAPTURED")
        stored = self._reload(record.id)
        self.assertEqual(stored.clock_in_latitude, 41.0)
        self.assertEqual(stored.clock_in_accuracy, 5)

    def test_clock_out_is_independent_of_clock_in(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        self.client.post("/api/location/capture", json=_capture_body(record.id))
        response = self.client.post(
            "/api/location/capture",
            json=_capture_body(record.id, captureType="clock_out", latitude=41.0002),
        )

        self.assertEqual(response.status_code, 200)
        stored = self._reload(record.id)
        self.assertEqual(stored.clock_in_latitude, 41.0)
        self.assertEqual(stored.clock_out_latitude, 41.0002)

    def test_invalid_latitude_is_rejected_before_validation(self) -> None:
        record = seed_time_record(self.db)

        response = self.client.post("/api/location/capture", json=_capture_body(record.id, latitude=91))

        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["code"], "VALIDATION_ERROR")
        self.assertTrue(any(item.startswith("latitude") for item in error["details"]))
        self.assertIsNone(self.db.scalar(select(LocationVerification)))

    def test_manual_source_and_unknown_fields_are_rejected(self) -> None:
        record = seed_time_record(self.db)

        manual = self.client.post("/api/location/capture", json=_capture_body(record.id, source="manual"))
        unknown = self.client.post("/api/location/capture", json=_capture_body(record.id, floor=3))

        self.assertEqual(manual.status_code, 422)
        self.assertEqual(unknown.status_code, 422)

    def test_site_enforced_fence_rejects_and_records_attempt(self) -> None:
        site, _ = seed_site(self.db, strict_geofence=True)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        response = self.client.post(
            "/api/location/capture",
            json=_capture_body(record.id, latitude=41.01),
        )

        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["code"], "LOCATION_REJECTED")
        self.assertEqual(len(error["details"]), 2)
        self.assertIn("This clinical site enforces strict geofencing.", error["details"])

        self.assertIsNone(self._reload(record.id).clock_in_latitude)
        verification = self.db.scalar(select(LocationVerification))
        assert verification is not None
        self.assertEqual(verification.verification_status, VerificationStatus.REJECTED)
        self.assertIsNotNone(
            self.db.scalar(select(AuditLog).where(AuditLog.action == "LOCATION_CAPTURE_REJECTED"))
        )

    def test_out_of_fence_lenient_capture_is_flagged(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        response = self.client.post(
            "/api/location/capture",
            json=_capture_body(record.id, latitude=41.01),
        )

        self.assertEqual(response.status_code, 200)
        validation = response.json()["validation"]
        self.assertEqual(validation["status"], "flagged")
        self.assertEqual(len(validation["warnings"]), 1)

    def test_stale_device_timestamp_adds_warning(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        response = self.client.post(
            "/api/location/capture",
            json=_capture_body(record.id, timestamp="2020-01-01T00:00:00Z"),
        )

        self.assertEqual(response.status_code, 200)
        warnings = response.json()["validation"]["warnings"]
        self.assertTrue(any("server time" in item for item in warnings))

    def test_foreign_time_record_is_not_found(self) -> None:
        record = seed_time_record(self.db, student_id="student-2")

        response = self.client.post("/api/location/capture", json=_capture_body(record.id))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "TIME_RECORD_NOT_FOUND")

    def test_missing_token_is_unauthorized(self) -> None:
        app.dependency_overrides.pop(require_student)
        record = seed_time_record(self.db)

        response = self.client.post("/api/location/capture", json=_capture_body(record.id))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_captured_locations_are_listed_per_direction(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)
        self.client.post("/api/location/capture", json=_capture_body(record.id))

        response = self.client.get("/api/location/capture", params={"timeRecordId": record.id})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["clockIn"]["location"]["latitude"], 41.0)
        self.assertIsNone(body["clockOut"]["location"])


class LocationVerifyEndpointTests(LocationEndpointTestCase):
    def test_dry_run_verdict_does_not_persist(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        response = self.client.post(
            "/api/location/verify",
            json={"timeRecordId": record.id, "latitude": 41.0, "longitude": 29.0, "accuracy": 20},
        )

        self.assertEqual(response.status_code, 200)
        verdict = response.json()["verdict"]
        self.assertTrue(verdict["isValid"])
        self.assertTrue(verdict["isWithinGeofence"])
        self.assertEqual(verdict["nearestSite"]["allowedRadius"], 100)
        self.assertEqual(verdict["accuracy"]["level"], "medium")
        self.assertIsNone(response.json()["facility"])
        self.assertIsNone(self.db.scalar(select(LocationVerification)))

    def test_site_requirements(self) -> None:
        site, location = seed_site(self.db, strict_geofence=True)
        record = seed_time_record(self.db, clinical_site_id=site.id)

        response = self.client.get("/api/location/verify", params={"timeRecordId": record.id})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["site"]["name"], "General Hospital")
        self.assertEqual([item["id"] for item in body["locations"]], [location.id])
        self.assertEqual(
            body["requirements"],
            {"maxAccuracy": 100.0, "proximityRequired": True, "strictMode": True},
        )


class LocationPermissionAndHistoryEndpointTests(LocationEndpointTestCase):
    def test_permission_round_trip(self) -> None:
        created = self.client.post(
            "/api/location/permissions",
            json={"permissionStatus": "granted", "permissionType": "precise", "browserInfo": "Firefox"},
        )
        current = self.client.get("/api/location/permissions")

        self.assertEqual(created.status_code, 200)
        self.assertTrue(created.json()["hasPermission"])
        self.assertEqual(current.status_code, 200)
        self.assertEqual(current.json()["permissionType"], "precise")
        self.assertEqual(current.json()["latestStatus"], "granted")

    def test_history_lists_own_verifications(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)
        self.client.post("/api/location/capture", json=_capture_body(record.id))

        response = self.client.get("/api/location/history")

        self.assertEqual(response.status_code, 200)
        items = response.json()["items"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["action"], "clock_in")
        self.assertEqual(items[0]["verificationStatus"], "approved")
        self.assertFalse(items[0]["isManual"])


class AdminLocationEndpointTests(LocationEndpointTestCase):
    def setUp(self) -> None:
        super().setUp()
        app.dependency_overrides[require_admin] = lambda: {"sub": "admin-1", "role": "admin"}

    def test_admin_verification_view_decrypts(self) -> None:
        site, _ = seed_site(self.db)
        record = seed_time_record(self.db, clinical_site_id=site.id)
        self.client.post("/api/location/capture", json=_capture_body(record.id))

        response = self.client.get(f"/api/admin/time-records/{record.id}/verifications")

        self.assertEqual(response.status_code, 200)
        items = response.json()
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["latitude"], 41.0)
        self.assertEqual(items[0]["encryptionVersion"], 1)

    def test_cleanup_runs_with_requested_window(self) -> None:
        response = self.client.post("/api/admin/location/cleanup", params={"retentionDays": 30})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["retentionDays"], 30)
        self.assertEqual(body["deleted"]["location_verifications"], 0)
        self.assertIsNotNone(self.db.scalar(select(AuditLog).where(AuditLog.action == "LOCATION_DATA_CLEANUP")))

    def test_cleanup_rejects_zero_window(self) -> None:
        response = self.client.post("/api/admin/location/cleanup", params={"retentionDays": 0})
        self.assertEqual(response.status_code, 422)

    def test_cleanup_rejects_oversized_window(self) -> None:
        response = self.client.post("/api/admin/location/cleanup", params={"retentionDays": 1000000})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")
        self.assertIsNone(self.db.scalar(select(AuditLog).where(AuditLog.action == "LOCATION_DATA_CLEANUP")))


if __name__ == "__main__":
    unittest.main()
