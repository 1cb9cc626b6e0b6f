from __future__ import annotations

import unittest
from unittest.mock import patch

from geoclock.services.location_crypto import (
    ENCRYPTION_MARKER,
    LocationDecryptionError,
    decrypt_location_from_storage,
    encrypt_location_for_storage,
    is_location_encrypted,
)
from geoclock.settings import Settings


class LocationCryptoTests(unittest.TestCase):
    def test_encrypted_payload_decrypts_to_input_coordinates(self) -> None:
        payload, marker = encrypt_location_for_storage(41.0082, 28.9784)

        self.assertEqual(marker, ENCRYPTION_MARKER)
        self.assertTrue(is_location_encrypted(marker))
        self.assertNotIn("41.0082", payload)
        self.assertEqual(decrypt_location_from_storage(payload, marker), (41.0082, 28.9784))

    def test_legacy_plain_rows_are_read_as_floats(self) -> None:
        self.assertFalse(is_location_encrypted("28.9784"))
        self.assertEqual(decrypt_location_from_storage("41.0082", "28.9784"), (41.0082, 28.9784))

    def test_unknown_marker_is_rejected(self) -> None:
        payload, _ = encrypt_location_for_storage(41.0, 29.0)
        with self.assertRaises(LocationDecryptionError):
            decrypt_location_from_storage(payload, "ENCRYPTED_V9")

    def test_token_from_another_key_is_rejected(self) -> None:
        with patch(
            "geoclock.services.location_crypto.get_settings",
            return_value=Settings(location_encryption_key="first-key"),
        ):
            payload, marker = encrypt_location_for_storage(41.0, 29.0)

        with patch(
            "geoclock.services.location_crypto.get_settings",
            return_value=Settings(location_encryption_key="second-key"),
        ):
            with self.assertRaises(LocationDecryptionError):
                decrypt_location_from_storage(payload, marker)

    def test_production_requires_configured_key(self) -> None:
        production = Settings(environment="production", location_encryption_key="")
        with (
            patch("geoclock.services.location_crypto.get_settings", return_value=production),
            patch("geoclock.settings.get_settings", return_value=production),
        ):
            with self.assertRaises(RuntimeError):
                encrypt_location_for_storage(41.0, 29.0)


if __name__ == "__main__":
    unittest.main()
